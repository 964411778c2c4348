import io

from app.studio.db import session_scope
from app.studio.mailer import Mailer
from app.studio.modules.otp.models import OtpChallenge
from conftest import data_uri, kyc_payload, login_admin

EMAIL = "nouvel.auteur@example.com"


def _register(client, outbox, email=EMAIL, pseudo="NouvelAuteur"):
    r = client.post("/api/otp/issue", json={"identifier": email, "purpose": "registration", "draft": {"pseudo": pseudo}})
    assert r.status_code == 202, r.json
    assert "code" not in r.json["data"]
    code = outbox.last_code_for(email)
    assert code and code not in r.get_data(as_text=True)

    r = client.post("/api/otp/verify", json={"identifier": email, "code": code})
    assert r.status_code == 200, r.json
    grant = r.json["data"]["grant"]
    assert r.json["data"]["draft"]["pseudo"] == pseudo

    r = client.post(
        "/api/register/complete",
        json={
            "identity": {"email": email, "pseudo": pseudo},
            "grant": grant,
            "credential": {"password": "motdepasse", "confirm_password": "motdepasse"},
            "profile": {"speciality": "Contes"},
            "kyc": kyc_payload(),
        },
    )
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_register_validate_step(client):
    r = client.post("/api/register/validate", json={"step": "setting_credential", "data": {"password": "short"}})
    assert r.status_code == 400
    assert "password" in r.json["error"]["details"]["fields"]

    r = client.post("/api/register/validate", json={"step": "collecting_identity", "data": {"email": EMAIL, "pseudo": "x"}})
    assert r.status_code == 200 and r.json["data"]["valid"] is True

    r = client.post("/api/register/validate", json={"step": "complete", "data": {}})
    assert r.status_code == 400


def test_otp_resend_is_rate_limited(client, outbox):
    body = {"identifier": EMAIL, "draft": {"pseudo": "NouvelAuteur"}}
    assert client.post("/api/otp/issue", json=body).status_code == 202
    r = client.post("/api/otp/issue", json=body)
    assert r.status_code == 429
    assert r.json["error"]["code"] == "rate_limited"
    assert 0 < int(r.headers["Retry-After"]) <= 60
    assert len(outbox.outbox) == 1


def test_resend_without_draft_keeps_first_identity(app, client, outbox):
    assert client.post("/api/otp/issue", json={"identifier": EMAIL, "draft": {"pseudo": "NouvelAuteur"}}).status_code == 202

    r = client.post("/api/otp/issue", json={"identifier": EMAIL, "purpose": "registration"})
    assert r.status_code == 429, r.json
    assert r.json["error"]["code"] == "rate_limited"

    with session_scope(app) as s:
        ch = s.query(OtpChallenge).one()
        ch.cooldown_until = ch.issued_at
    r = client.post("/api/otp/issue", json={"identifier": EMAIL, "purpose": "registration"})
    assert r.status_code == 202, r.json
    assert len(outbox.outbox) == 2

    r = client.post("/api/otp/verify", json={"identifier": EMAIL, "code": outbox.last_code_for(EMAIL)})
    assert r.status_code == 200, r.json
    assert r.json["data"]["draft"]["pseudo"] == "NouvelAuteur"


def test_resend_without_draft_and_no_earlier_code_is_invalid(client, outbox):
    r = client.post("/api/otp/issue", json={"identifier": EMAIL, "purpose": "registration"})
    assert r.status_code == 400
    assert "pseudo" in r.json["error"]["details"]["fields"]
    assert outbox.outbox == []


class _DownMailer(Mailer):
    def send(self, mail):
        raise OSError("smtp unreachable")


def test_failed_delivery_rolls_back_the_challenge(app, client, outbox):
    body = {"identifier": EMAIL, "draft": {"pseudo": "NouvelAuteur"}}
    app.extensions["mailer"] = _DownMailer()
    r = client.post("/api/otp/issue", json=body)
    assert r.status_code == 503
    assert r.json["error"]["code"] == "delivery_failed"
    with session_scope(app) as s:
        assert s.query(OtpChallenge).count() == 0

    # No cooldown left behind: the retry goes straight through.
    app.extensions["mailer"] = outbox
    r = client.post("/api/otp/issue", json=body)
    assert r.status_code == 202, r.json
    assert outbox.last_code_for(EMAIL)


def test_wrong_code_attempt_is_persisted(app, client, outbox):
    client.post("/api/otp/issue", json={"identifier": EMAIL, "draft": {"pseudo": "NouvelAuteur"}})
    code = outbox.last_code_for(EMAIL)
    wrong = "000000" if code != "000000" else "111111"

    r = client.post("/api/otp/verify", json={"identifier": EMAIL, "code": wrong})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "mismatch"
    with session_scope(app) as s:
        assert s.query(OtpChallenge).one().attempts == 1

    assert client.post("/api/otp/verify", json={"identifier": EMAIL, "code": code}).status_code == 200
    r = client.post("/api/otp/verify", json={"identifier": EMAIL, "code": code})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "already_consumed"

    r = client.post("/api/otp/verify", json={"identifier": "ghost@example.com", "code": "123456"})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "not_found"


def test_kyc_review_round_trip(app, client, outbox):
    data = _register(client, outbox)
    author_id = data["author"]["id"]
    first_id = data["kyc"]["id"]

    r = client.get("/api/kyc/me")
    assert r.json["data"]["current"]["status"] == "pending"

    admin = app.test_client()
    login_admin(admin)
    r = admin.get("/api/admin/kyc?status=pending")
    assert r.json["data"]["total"] == 1
    item = r.json["data"]["items"][0]
    assert item["author"]["pseudo"] == "NouvelAuteur"
    assert item["fields"]["doc_front_url"].startswith("/api/admin/blobs/kyc/author-")

    blob = admin.get(item["fields"]["doc_front_url"])
    assert blob.status_code == 200 and blob.data == b"front"
    assert client.get(item["fields"]["doc_front_url"]).status_code == 401

    r = admin.put(f"/api/kyc/{first_id}/review", json={"decision": "rejected", "reason": ""})
    assert r.status_code == 422
    assert r.json["error"]["code"] == "reason_required"
    r = admin.put(f"/api/kyc/{first_id}/review", json={"decision": "rejected", "reason": "photo floue"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "rejected"

    r = client.get("/api/authors/notifications/list")
    inbox = r.json["data"]
    assert [n["type"] for n in inbox["items"]].count("kyc_rejected") == 1
    assert inbox["unreadCount"] == 2

    r = client.post(
        "/api/kyc/submit",
        json={
            "authorId": 999,
            "cinNumber": "123456789012",
            "docFront": data_uri(b"front-2"),
            "docBack": data_uri(b"back-2"),
            "selfie": data_uri(b"selfie-2"),
        },
    )
    assert r.status_code == 201, r.json
    second = r.json["data"]
    assert (second["author_id"], second["version"], second["status"]) == (author_id, 2, "pending")

    r = client.post("/api/kyc/submit", json=kyc_payload())
    assert r.status_code == 409
    assert r.json["error"]["code"] == "already_pending"

    assert admin.put(f"/api/kyc/{second['id']}/review", json={"decision": "approved"}).status_code == 200
    r = admin.put(f"/api/kyc/{second['id']}/review", json={"decision": "approved"})
    assert r.status_code == 409
    assert r.json["error"]["code"] == "already_reviewed"

    r = admin.get(f"/api/admin/kyc/history/{author_id}")
    assert [(h["version"], h["status"]) for h in r.json["data"]["kyc"]] == [(2, "approved"), (1, "rejected")]
    assert r.json["data"]["kyc"][1]["rejection_reason"] == "photo floue"

    r = client.get("/api/authors/me/eligibility")
    assert r.json["data"]["canPublish"] is True
    assert r.json["data"]["canReceivePayouts"] is False


def test_payment_method_flow(app, client, outbox):
    _register(client, outbox)
    r = client.post(
        "/api/payment-methods/submit",
        json={"provider": "orange_money", "phoneNumber": "+261320000000", "accountHolderName": "Rasoa"},
    )
    assert r.status_code == 201, r.json
    pm_id = r.json["data"]["id"]

    admin = app.test_client()
    login_admin(admin)
    assert admin.get("/api/admin/payment-methods").json["data"]["total"] == 1
    # The KYC route does not review payment methods.
    assert admin.put(f"/api/kyc/{pm_id}/review", json={"decision": "approved"}).status_code == 404
    assert admin.put(f"/api/payment-methods/{pm_id}/review", json={"decision": "approved"}).status_code == 200

    r = client.get("/api/payment-methods/me")
    assert r.json["data"]["current"]["status"] == "approved"


def test_document_upload_then_reference(client, outbox, storage):
    _register(client, outbox)
    r = client.post(
        "/api/kyc/documents",
        data={"slot": "selfie", "file": (io.BytesIO(b"jpeg-bytes"), "me.jpg", "image/jpeg")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201, r.json
    ref = r.json["data"]["ref"]
    assert ref.startswith("blob:kyc/author-")
    assert storage.exists(ref[len("blob:"):])


def test_story_moderation_over_http(app, client, outbox):
    data = _register(client, outbox)
    admin = app.test_client()
    login_admin(admin)
    admin.put(f"/api/kyc/{data['kyc']['id']}/review", json={"decision": "approved"})

    r = client.post("/api/stories", json={"title": {"fr": "Le Baobab"}, "synopsis": "Un conte"})
    assert r.status_code == 201
    sid = r.json["data"]["id"]
    assert r.json["data"]["status"] == "draft"

    r = client.post(f"/api/stories/{sid}/chapters", json={"title": "Un", "content": "Il était une fois"})
    assert r.status_code == 201
    cid = r.json["data"]["id"]
    r = client.post(f"/api/content/chapter/{cid}/submit-review")
    assert r.status_code == 409
    assert r.json["error"]["code"] == "precondition_failed"

    r = client.post(f"/api/content/story/{sid}/submit-review")
    assert r.status_code == 200
    assert r.json["data"]["content"]["status"] == "pending"
    assert client.put(f"/api/stories/{sid}", json={"title": "Autre"}).status_code == 409

    assert admin.get("/api/admin/content/pending-count").json["data"] == {"pending_stories": 1, "pending_chapters": 0}
    assert admin.get("/api/admin/content/stories").json["data"]["total"] == 1

    r = admin.put(
        f"/api/content/story/{sid}/review",
        json={"decision": "approved", "edits": {"title": {"fr": "Le Grand Baobab"}}},
    )
    assert r.status_code == 200
    assert r.json["data"]["status"] == "published"
    assert r.json["data"]["title"] == {"fr": "Le Grand Baobab"}

    r = client.post(f"/api/content/story/{sid}/submit-review")
    assert r.status_code == 409
    assert r.json["error"]["code"] == "not_draft_or_rejected"

    assert client.post(f"/api/content/chapter/{cid}/submit-review").status_code == 200
    r = admin.get(f"/api/admin/content/chapters?story_id={sid}")
    assert r.json["data"]["items"][0]["id"] == cid

    r = client.post(f"/api/stories/{sid}/archive")
    assert r.status_code == 200 and r.json["data"]["status"] == "archived"

    r = client.get(f"/api/content/story/{sid}/reviews")
    assert r.json["data"][0]["admin_edits"] == {"title": {"fr": "Le Grand Baobab"}}


def test_author_cannot_touch_others(app, client, outbox):
    _register(client, outbox)
    sid = client.post("/api/stories", json={"title": "A moi"}).json["data"]["id"]
    nid = client.get("/api/authors/notifications/list").json["data"]["items"][0]["id"]

    other = app.test_client()
    _register(other, outbox, email="autre@example.com", pseudo="Autre")
    assert other.get(f"/api/stories/{sid}").status_code == 404
    assert other.put(f"/api/authors/notifications/{nid}/read").status_code == 404
    assert other.delete(f"/api/authors/notifications/{nid}").status_code == 404

    assert client.put(f"/api/authors/notifications/{nid}/read").json["data"]["is_read"] is True
    assert client.delete(f"/api/authors/notifications/{nid}").status_code == 200


def test_admin_inbox(app, client, outbox):
    _register(client, outbox)
    admin = app.test_client()
    login_admin(admin)
    r = admin.get("/api/admin/notifications")
    assert sorted(n["type"] for n in r.json["data"]["items"]) == ["kyc_pending_review", "new_creator"]
    assert r.json["data"]["unreadCount"] == 2
    assert admin.put("/api/admin/notifications/read-all").json["data"]["updated"] == 2
    assert admin.get("/api/admin/notifications?unread=1").json["data"]["total"] == 0

    client.post("/api/authors/logout")
    assert client.get("/api/authors/notifications/list").status_code == 401
