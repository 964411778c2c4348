"""
OTP challenge store.

Challenges are keyed by normalized email. Each issuance inserts the next
sequence number for the identifier, so the newest row is the only one that
can verify and two racing issuances cannot both succeed: the loser trips the
(identifier, sequence) unique constraint and is reported as rate limited.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.studio.errors import (
    ChallengeAlreadyConsumed,
    ChallengeExpired,
    ChallengeMismatch,
    ChallengeNotFound,
    PreconditionFailed,
    RateLimited,
    ValidationError,
)
from app.studio.mailer import Mailer, OutgoingMail
from app.studio.modules.otp.models import PURPOSES, OtpChallenge
from app.studio.utils import generate_otp_code, generate_token, is_valid_email, normalize_email, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
DEFAULT_COOLDOWN_SECONDS = 60
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_GRANT_TTL_SECONDS = 900


@dataclass(frozen=True)
class IssuedChallenge:
    challenge: OtpChallenge
    code: str  # for out-of-band delivery only

    @property
    def handle(self) -> str:
        return self.challenge.handle


@dataclass(frozen=True)
class VerifiedChallenge:
    purpose: str
    identifier: str
    draft: dict[str, Any] | None
    target_author_id: int | None
    grant: str
    grant_expires_at: datetime


def latest_challenge(s: Session, identifier: str, *, for_update: bool = False) -> OtpChallenge | None:
    q = s.query(OtpChallenge).filter(OtpChallenge.identifier == identifier).order_by(OtpChallenge.sequence.desc())
    if for_update:
        q = q.with_for_update()
    return q.first()


def issue_challenge(
    s: Session,
    *,
    identifier: str,
    purpose: str,
    draft: dict[str, Any] | None = None,
    target_author_id: int | None = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
    now: datetime | None = None,
) -> IssuedChallenge:
    ident = normalize_email(identifier)
    if not is_valid_email(ident):
        raise ValidationError.from_errors({"identifier": "A valid email address is required."})
    if purpose not in PURPOSES:
        raise ValidationError.from_errors({"purpose": f"Purpose must be one of: {', '.join(PURPOSES)}"})

    now = now or utcnow()
    prev = latest_challenge(s, ident, for_update=True)
    if prev is not None and prev.cooldown_until > now:
        retry_after = int((prev.cooldown_until - now).total_seconds()) + 1
        logger.warning("OTP: issue rate limited identifier=%s retry_after=%ss", ident, retry_after)
        raise RateLimited(retry_after)

    code = generate_otp_code()
    ch = OtpChallenge(
        handle=secrets.token_urlsafe(16),
        identifier=ident,
        sequence=(prev.sequence + 1) if prev is not None else 1,
        purpose=purpose,
        code_hash=generate_password_hash(code),
        attempts=0,
        issued_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        cooldown_until=now + timedelta(seconds=cooldown_seconds),
        draft_payload=draft,
        target_author_id=target_author_id,
    )
    s.add(ch)
    try:
        s.flush()
    except IntegrityError:
        # A concurrent issuance for the same identifier won the sequence slot.
        s.rollback()
        logger.warning("OTP: concurrent issue lost identifier=%s", ident)
        raise RateLimited(cooldown_seconds)

    logger.info("OTP: issued identifier=%s purpose=%s sequence=%s", ident, purpose, ch.sequence)
    return IssuedChallenge(challenge=ch, code=code)


def deliver_code(mailer: Mailer, issued: IssuedChallenge) -> None:
    ch = issued.challenge
    minutes = max(int((ch.expires_at - ch.issued_at).total_seconds() // 60), 1)
    if ch.purpose == "password_reset":
        subject = "Réinitialisation de votre mot de passe"
    else:
        subject = "Votre code de vérification"
    body = f"Votre code est {issued.code}. Il expire dans {minutes} minutes."
    mailer.send(OutgoingMail(to=ch.identifier, subject=subject, body=body, purpose=ch.purpose, code=issued.code))


def verify_challenge(
    s: Session,
    *,
    identifier: str,
    code: str,
    purpose: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    grant_ttl_seconds: int = DEFAULT_GRANT_TTL_SECONDS,
    now: datetime | None = None,
) -> VerifiedChallenge:
    """
    Check `code` against the newest challenge for `identifier` and consume it.

    A wrong code bumps the attempt counter before raising; callers commit
    on ChallengeMismatch so the counter survives the error.
    """
    ident = normalize_email(identifier)
    code = (code or "").strip()
    now = now or utcnow()

    ch = latest_challenge(s, ident)
    if ch is None or (purpose is not None and ch.purpose != purpose):
        raise ChallengeNotFound()
    if ch.consumed_at is not None:
        raise ChallengeAlreadyConsumed()
    if now >= ch.expires_at or ch.attempts >= max_attempts:
        raise ChallengeExpired()

    if not (len(code) == 6 and code.isdigit() and check_password_hash(ch.code_hash, code)):
        s.execute(
            update(OtpChallenge)
            .where(OtpChallenge.id == ch.id)
            .values(attempts=OtpChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info("OTP: mismatch identifier=%s sequence=%s", ident, ch.sequence)
        raise ChallengeMismatch()

    grant = generate_token()
    grant_expires_at = now + timedelta(seconds=grant_ttl_seconds)
    res = s.execute(
        update(OtpChallenge)
        .where(OtpChallenge.id == ch.id, OtpChallenge.consumed_at.is_(None))
        .values(consumed_at=now, grant_hash=generate_password_hash(grant), grant_expires_at=grant_expires_at)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        # Another request consumed the same code first.
        raise ChallengeAlreadyConsumed()
    s.refresh(ch)

    logger.info("OTP: verified identifier=%s purpose=%s", ident, ch.purpose)
    return VerifiedChallenge(
        purpose=ch.purpose,
        identifier=ident,
        draft=dict(ch.draft_payload) if ch.draft_payload else None,
        target_author_id=ch.target_author_id,
        grant=grant,
        grant_expires_at=grant_expires_at,
    )


def redeem_grant(
    s: Session,
    *,
    identifier: str,
    grant: str,
    purpose: str,
    now: datetime | None = None,
) -> OtpChallenge:
    """Spend the grant issued by `verify_challenge`. Single use."""
    ident = normalize_email(identifier)
    now = now or utcnow()
    ch = latest_challenge(s, ident, for_update=True)
    if (
        ch is None
        or ch.purpose != purpose
        or ch.grant_hash is None
        or not grant
        or not check_password_hash(ch.grant_hash, grant)
    ):
        raise PreconditionFailed("Email verification is missing or no longer valid.")
    if ch.grant_used_at is not None:
        raise ChallengeAlreadyConsumed("This verification has already been used.")
    if ch.grant_expires_at is None or now >= ch.grant_expires_at:
        raise ChallengeExpired("The email verification has expired. Request a new code.")

    res = s.execute(
        update(OtpChallenge)
        .where(OtpChallenge.id == ch.id, OtpChallenge.grant_used_at.is_(None))
        .values(grant_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ChallengeAlreadyConsumed("This verification has already been used.")
    s.refresh(ch)
    return ch
