import base64
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.studio import auth, create_app
from app.studio.db import session_scope
from app.studio.models import Base, Permission, Role, User
from app.studio.modules.authors.models import Author

ADMIN_PERMISSIONS = (
    ("admin.view", "Admin: view shell"),
    ("kyc.review", "KYC: review"),
    ("payments.review", "Payments: review"),
    ("content.review", "Content: review"),
    ("notifications.view", "Notifications: view"),
)

T0 = datetime(2026, 3, 1, 9, 0, 0)


def data_uri(payload: bytes = b"fake-image-bytes", mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode()}"


def kyc_payload(cin: str = "123456789012") -> dict:
    return {
        "cin_number": cin,
        "doc_front": data_uri(b"front"),
        "doc_back": data_uri(b"back"),
        "selfie": data_uri(b"selfie", "image/jpeg"),
    }


def payment_payload() -> dict:
    return {"provider": "mvola", "phone_number": "+261340000000", "account_holder_name": "Rakoto Jean"}


def make_author(s, *, email: str = "author@example.com", pseudo: str = "rakoto", status: str = "active") -> Author:
    a = Author(email=email, pseudo=pseudo, password_hash=generate_password_hash("secret-pw"), status=status)
    s.add(a)
    s.flush()
    return a


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_PREFIX", "STORAGE_DIR", "CSRF_ENABLED"):
        monkeypatch.delenv(k, raising=False)
    # Local storage writes under ./storage
    monkeypatch.chdir(tmp_path)
    auth._login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = [Permission(key=k, name=n) for k, n in ADMIN_PERMISSIONS]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        viewer = Role(key="viewer", name="Viewer")
        viewer.permissions.append(perms[0])
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        v = User(email="viewer@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        v.roles.append(viewer)
        s.add_all([*perms, r, viewer, u, v])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def storage(app):
    return app.extensions["storage"]


@pytest.fixture()
def outbox(app):
    return app.extensions["mailer"]


def admin_user(s) -> User:
    return s.query(User).filter(User.email == "admin@example.com").one()


def login_admin(client, email: str = "admin@example.com"):
    r = client.post("/api/admin/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200, r.json
    return r


def login_author(client, email: str = "author@example.com", password: str = "secret-pw"):
    r = client.post("/api/authors/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r
