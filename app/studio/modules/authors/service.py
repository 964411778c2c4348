from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.studio.audit import record_event
from app.studio.errors import PreconditionFailed, ValidationError
from app.studio.modules.authors.models import Author
from app.studio.modules.otp import service as otp
from app.studio.modules.registration.wizard import validate_credential
from app.studio.utils import normalize_email, utcnow

logger = logging.getLogger(__name__)


def find_by_email(s: Session, email: str) -> Author | None:
    return s.query(Author).filter(Author.email == normalize_email(email)).one_or_none()


def authenticate(s: Session, *, email: str, password: str) -> Author | None:
    author = find_by_email(s, email)
    if author is None or not check_password_hash(author.password_hash, password or ""):
        return None
    return author


def request_password_reset(
    s: Session,
    *,
    email: str,
    ttl_seconds: int = otp.DEFAULT_TTL_SECONDS,
    cooldown_seconds: int = otp.DEFAULT_COOLDOWN_SECONDS,
    now: datetime | None = None,
) -> otp.IssuedChallenge | None:
    """Issue a reset challenge for a known, non-suspended account; None otherwise."""
    author = find_by_email(s, email)
    if author is None or author.status == "suspended":
        logger.info("RESET: no eligible account for requested email")
        return None
    return otp.issue_challenge(
        s,
        identifier=author.email,
        purpose="password_reset",
        target_author_id=author.id,
        ttl_seconds=ttl_seconds,
        cooldown_seconds=cooldown_seconds,
        now=now,
    )


def reset_password(s: Session, *, email: str, grant: str, new_password: str, now: datetime | None = None) -> Author:
    errors = validate_credential({"password": new_password})
    if errors:
        raise ValidationError.from_errors(errors)
    now = now or utcnow()
    ch = otp.redeem_grant(s, identifier=email, grant=grant, purpose="password_reset", now=now)
    author = s.get(Author, ch.target_author_id) if ch.target_author_id else None
    if author is None:
        raise PreconditionFailed("Email verification is missing or no longer valid.")
    author.password_hash = generate_password_hash(new_password)
    author.password_changed_at = now
    record_event(s, actor=author, action="author.password_reset", entity_type="Author", entity_id=str(author.id))
    logger.info("RESET: password changed author=%s", author.id)
    return author


def serialize_author(author: Author) -> dict:
    return {
        "id": author.id,
        "email": author.email,
        "pseudo": author.pseudo,
        "phone_number": author.phone_number,
        "biography": author.biography,
        "speciality": author.speciality,
        "status": author.status,
        "email_verified_at": author.email_verified_at.isoformat() if author.email_verified_at else None,
        "created_at": author.created_at.isoformat() if author.created_at else None,
    }
