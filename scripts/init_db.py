import os
import sys
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.studio.models import Permission, Role, User
from scripts._db_utils import script_session

PERMISSIONS = (
    ("admin.view", "Admin: view shell"),
    ("kyc.review", "KYC: review identity submissions"),
    ("payments.review", "Payments: review payout methods"),
    ("content.review", "Content: moderate stories and chapters"),
    ("notifications.view", "Notifications: back-office inbox"),
)

# role key -> (display name, permission keys)
ROLES = {
    "admin": ("Administrator", tuple(k for k, _ in PERMISSIONS)),
    # Moderators work the queues but cannot approve payout methods.
    "moderator": ("Moderator", ("admin.view", "kyc.review", "content.review", "notifications.view")),
}


def seed(s: Session, *, admin_email: str, admin_password: str) -> User:
    """Idempotent. Never overwrites an existing admin user's password."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS:
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, keys) in ROLES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
        for pk in keys:
            if perms[pk] not in role.permissions:
                role.permissions.append(perms[pk])
        roles[key] = role

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
        s.add(user)
    if roles["admin"] not in user.roles:
        user.roles.append(roles["admin"])
    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@studio.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and admin_password == "change-me":
        raise RuntimeError("Set ADMIN_PASSWORD before seeding a production database.")

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///studio.db").strip()

    # Direct engine/session so release can seed without importing app.wsgi.
    with script_session(db_url) as s:
        seed(s, admin_email=admin_email, admin_password=admin_password)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")


if __name__ == "__main__":
    seed_only()
