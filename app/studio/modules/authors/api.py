from __future__ import annotations

from flask import Blueprint, request, session

from app.studio.audit import record_event
from app.studio.auth import check_login_rate_limit, clear_login_attempts, record_login_attempt
from app.studio.db import db_session
from app.studio.errors import Unauthorized, ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.authors import service as authors
from app.studio.modules.otp.api import issue_password_reset, verify_and_commit
from app.studio.modules.verification import engine
from app.studio.rbac import current_author, require_author
from app.studio.security import rotate_csrf_token
from app.studio.utils import utcnow

bp = Blueprint("authors", __name__)


@bp.post("/authors/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    key = f"author:{request.remote_addr or 'unknown'}"

    check_login_rate_limit(key)
    record_login_attempt(key)

    s = db_session()
    author = authors.authenticate(s, email=email, password=password)
    if author is None or not author.is_active:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Author",
            entity_id=email.lower(),
            reason="Invalid credentials" if author is None else f"Account {author.status}",
        )
        s.commit()
        raise Unauthorized("Invalid credentials.")

    author.last_login_at = utcnow()
    session["author_id"] = author.id
    csrf_token = rotate_csrf_token()
    clear_login_attempts(key)
    record_event(s, actor=author, action="auth.login", entity_type="Author", entity_id=str(author.id))
    s.commit()
    return ok({**authors.serialize_author(author), "csrf_token": csrf_token})


@bp.post("/authors/logout")
@require_author
def logout():
    author = current_author()
    s = db_session()
    record_event(s, actor=author, action="auth.logout", entity_type="Author", entity_id=str(author.id))
    s.commit()
    session.pop("author_id", None)
    return ok()


@bp.get("/authors/me")
@require_author
def me():
    return ok(authors.serialize_author(current_author()))


@bp.get("/authors/me/eligibility")
@require_author
def eligibility():
    return ok(engine.eligibility(db_session(), current_author()))


@bp.post("/authors/forgot-password")
def forgot_password():
    email = (json_body().get("email") or "").strip()
    if not email:
        raise ValidationError.from_errors({"email": "Email is required."})
    issue_password_reset(email)
    return ok({"sent": True}, 202)


@bp.post("/authors/verify-reset-otp")
def verify_reset_otp():
    data = json_body()
    email = (data.get("email") or "").strip()
    code = str(data.get("code") or "")
    if not email or not code:
        raise ValidationError.from_errors({"code": "Email and code are required."})
    verified = verify_and_commit(identifier=email, code=code, purpose="password_reset")
    return ok({"grant": verified.grant, "grantExpiresAt": verified.grant_expires_at.isoformat()})


@bp.post("/authors/reset-password")
def reset_password():
    data = json_body()
    s = db_session()
    author = authors.reset_password(
        s,
        email=(data.get("email") or "").strip(),
        grant=(data.get("grant") or "").strip(),
        new_password=data.get("newPassword") or data.get("new_password") or "",
    )
    s.commit()
    return ok({"id": author.id})
