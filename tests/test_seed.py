from werkzeug.security import check_password_hash

from app.studio.db import session_scope
from app.studio.models import Role, User
from app.studio.rbac import user_has_permission
from scripts import init_db


def test_seed_is_idempotent_and_keeps_passwords(app):
    with session_scope(app) as s:
        init_db.seed(s, admin_email="boss@studio.local", admin_password="first-password")
    with session_scope(app) as s:
        init_db.seed(s, admin_email="boss@studio.local", admin_password="second-password")

    with session_scope(app) as s:
        boss = s.query(User).filter(User.email == "boss@studio.local").one()
        assert check_password_hash(boss.password_hash, "first-password")
        assert [r.key for r in boss.roles] == ["admin"]
        admin_role = s.query(Role).filter(Role.key == "admin").one()
        assert len(admin_role.permissions) == len(init_db.PERMISSIONS)


def test_moderator_cannot_review_payment_methods(app):
    with session_scope(app) as s:
        init_db.seed(s, admin_email="boss@studio.local", admin_password="pw-pw-pw-pw")
        mod = User(email="mod@studio.local", password_hash="x", is_active=True)
        mod.roles.append(s.query(Role).filter(Role.key == "moderator").one())
        s.add(mod)
        s.flush()
        assert user_has_permission(mod, "kyc.review")
        assert user_has_permission(mod, "content.review")
        assert not user_has_permission(mod, "payments.review")
