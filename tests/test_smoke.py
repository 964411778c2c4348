from app.studio import create_app


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json["success"] is False


def test_login_and_admin_access(client):
    # Anonymous is unauthorized
    r = client.get("/api/admin/kyc")
    assert r.status_code == 401
    assert r.json["error"]["code"] == "unauthorized"

    r = client.post("/api/admin/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401

    r = client.post("/api/admin/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert "kyc.review" in r.json["data"]["permissions"]

    r = client.get("/api/admin/kyc")
    assert r.status_code == 200
    assert r.json["data"] == {"items": [], "total": 0, "totalPages": 0, "page": 1, "limit": 20}

    assert client.post("/api/admin/logout").status_code == 200
    assert client.get("/api/admin/kyc").status_code == 401


def test_missing_permission_is_forbidden(client):
    client.post("/api/admin/login", json={"email": "viewer@example.com", "password": "pw"})
    r = client.get("/api/admin/kyc")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "forbidden"


def test_login_rate_limit(client):
    for _ in range(5):
        assert client.post("/api/admin/login", json={"email": "admin@example.com", "password": "bad"}).status_code == 401
    r = client.post("/api/admin/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) > 0


def test_csrf_enforced_when_enabled(app, monkeypatch):
    monkeypatch.setenv("CSRF_ENABLED", "1")
    c = create_app().test_client()

    r = c.post("/api/otp/issue", json={"identifier": "x@example.com", "draft": {"pseudo": "x"}})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "csrf_invalid"

    token = c.get("/api/csrf").json["data"]["csrf_token"]
    r = c.post(
        "/api/otp/issue",
        json={"identifier": "x@example.com", "draft": {"pseudo": "x"}},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 202


def test_login_rotates_csrf_token(app, monkeypatch):
    monkeypatch.setenv("CSRF_ENABLED", "1")
    c = create_app().test_client()
    before = c.get("/api/csrf").json["data"]["csrf_token"]

    r = c.post("/api/admin/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    after = r.json["data"]["csrf_token"]
    assert after != before

    assert c.put("/api/admin/notifications/read-all", headers={"X-CSRF-Token": before}).status_code == 400
    assert c.put("/api/admin/notifications/read-all", headers={"X-CSRF-Token": after}).status_code == 200
