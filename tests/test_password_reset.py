import pytest
from werkzeug.security import check_password_hash

from app.studio.db import session_scope
from app.studio.errors import ChallengeAlreadyConsumed, ValidationError
from app.studio.mailer import Mailer
from app.studio.models import AuditEvent
from app.studio.modules.authors import service as authors
from app.studio.modules.authors.models import Author
from app.studio.modules.otp import service as otp
from app.studio.modules.otp.models import OtpChallenge
from conftest import T0, login_author, make_author


def _seed_author(app, **kw):
    with session_scope(app) as s:
        return make_author(s, **kw).id


def test_reset_request_ignores_unknown_and_suspended(app):
    _seed_author(app, email="banned@example.com", pseudo="banned", status="suspended")
    with session_scope(app) as s:
        assert authors.request_password_reset(s, email="ghost@example.com", now=T0) is None
        assert authors.request_password_reset(s, email="banned@example.com", now=T0) is None


def test_reset_password_sets_hash_and_spends_grant(app):
    author_id = _seed_author(app)
    with session_scope(app) as s:
        issued = authors.request_password_reset(s, email="Author@Example.com", now=T0)
        assert issued.challenge.target_author_id == author_id
        code = issued.code
    with session_scope(app) as s:
        grant = otp.verify_challenge(s, identifier="author@example.com", code=code, purpose="password_reset", now=T0).grant

    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            authors.reset_password(s, email="author@example.com", grant=grant, new_password="short", now=T0)

    with session_scope(app) as s:
        authors.reset_password(s, email="author@example.com", grant=grant, new_password="nouveau-secret", now=T0)

    with session_scope(app) as s:
        a = s.get(Author, author_id)
        assert check_password_hash(a.password_hash, "nouveau-secret")
        assert a.password_changed_at == T0
        assert s.query(AuditEvent).filter(AuditEvent.action == "author.password_reset").count() == 1

    with session_scope(app) as s:
        with pytest.raises(ChallengeAlreadyConsumed):
            authors.reset_password(s, email="author@example.com", grant=grant, new_password="encore-autre", now=T0)


def test_forgot_password_answers_the_same_for_unknown_accounts(app, client, outbox):
    _seed_author(app)
    r = client.post("/api/authors/forgot-password", json={"email": "ghost@example.com"})
    assert r.status_code == 202
    unknown_body = r.json
    assert outbox.outbox == []

    r = client.post("/api/authors/forgot-password", json={"email": "author@example.com"})
    assert r.status_code == 202
    assert r.json == unknown_body
    assert outbox.last_code_for("author@example.com")

    # A second request inside the cooldown does not leak the account either.
    r = client.post("/api/authors/forgot-password", json={"email": "author@example.com"})
    assert r.status_code == 202
    assert len(outbox.outbox) == 1


def test_reset_flow_over_http(app, client, outbox):
    _seed_author(app)
    client.post("/api/authors/forgot-password", json={"email": "author@example.com"})
    code = outbox.last_code_for("author@example.com")

    r = client.post("/api/authors/verify-reset-otp", json={"email": "author@example.com", "code": code})
    assert r.status_code == 200, r.json
    grant = r.json["data"]["grant"]

    r = client.post(
        "/api/authors/reset-password",
        json={"email": "author@example.com", "grant": grant, "newPassword": "nouveau-secret"},
    )
    assert r.status_code == 200, r.json

    r = client.post("/api/authors/login", json={"email": "author@example.com", "password": "secret-pw"})
    assert r.status_code == 401
    login_author(client, password="nouveau-secret")
    assert client.get("/api/authors/me").json["data"]["email"] == "author@example.com"

    r = client.post(
        "/api/authors/reset-password",
        json={"email": "author@example.com", "grant": grant, "newPassword": "troisieme-secret"},
    )
    assert r.status_code == 400
    assert r.json["error"]["code"] == "already_consumed"


def test_registration_code_cannot_reset_a_password(client, outbox):
    client.post("/api/otp/issue", json={"identifier": "new@example.com", "draft": {"pseudo": "Nouveau"}})
    code = outbox.last_code_for("new@example.com")
    r = client.post("/api/authors/verify-reset-otp", json={"email": "new@example.com", "code": code})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "not_found"


def test_forgot_password_hides_delivery_failure(app, client, outbox):
    _seed_author(app)

    class DownMailer(Mailer):
        def send(self, mail):
            raise OSError("smtp unreachable")

    app.extensions["mailer"] = DownMailer()
    r = client.post("/api/authors/forgot-password", json={"email": "author@example.com"})
    assert r.status_code == 202
    with session_scope(app) as s:
        assert s.query(OtpChallenge).count() == 0

    app.extensions["mailer"] = outbox
    r = client.post("/api/authors/forgot-password", json={"email": "author@example.com"})
    assert r.status_code == 202
    assert outbox.last_code_for("author@example.com")
