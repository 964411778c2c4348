from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from app.studio.audit import record_event
from app.studio.db import db_session
from app.studio.errors import RateLimited, Unauthorized
from app.studio.http import json_body, ok
from app.studio.models import User
from app.studio.modules.authors.models import Author
from app.studio.rbac import current_user
from app.studio.security import rotate_csrf_token
from app.studio.utils import utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def check_login_rate_limit(key: str) -> None:
    now = utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[key] = [t for t in _login_attempts[key] if t > cutoff]
    if len(_login_attempts[key]) >= _LOGIN_RATE_LIMIT:
        oldest = min(_login_attempts[key])
        retry_after = int((oldest + timedelta(seconds=_LOGIN_RATE_WINDOW) - now).total_seconds()) + 1
        raise RateLimited(retry_after, "Too many login attempts. Please wait 5 minutes.")


def record_login_attempt(key: str) -> None:
    _login_attempts[key].append(utcnow())


def clear_login_attempts(key: str) -> None:
    _login_attempts.pop(key, None)


def load_current_user() -> None:
    """
    Loads g.current_user (back office) and g.current_author from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    g.current_author = None
    if request.path.startswith(("/health", "/healthz")):
        return

    user_id = session.get("user_id")
    author_id = session.get("author_id")
    if not user_id and not author_id:
        return

    try:
        s = db_session()
        if user_id:
            user = s.get(User, int(user_id))
            if user and user.is_active:
                g.current_user = user
            else:
                session.pop("user_id", None)
        if author_id:
            author = s.get(Author, int(author_id))
            if author and author.is_active:
                g.current_author = author
            else:
                session.pop("author_id", None)
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        session.pop("author_id", None)


@bp.post("/admin/login")
def admin_login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    ip = request.remote_addr or "unknown"

    check_login_rate_limit(f"admin:{ip}")
    record_login_attempt(f"admin:{ip}")

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
        )
        s.commit()
        raise Unauthorized("Invalid credentials.")

    session["user_id"] = user.id
    csrf_token = rotate_csrf_token()
    clear_login_attempts(f"admin:{ip}")
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    perms = sorted(user.permission_keys)
    return ok({"id": user.id, "email": user.email, "permissions": perms, "csrf_token": csrf_token})


@bp.post("/admin/logout")
def admin_logout():
    user = current_user()
    s = db_session()
    record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
    s.commit()
    session.pop("user_id", None)
    return ok()
