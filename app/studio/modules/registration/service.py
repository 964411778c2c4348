"""
Registration orchestrator.

    start_registration   -> issues the sign-up challenge, keeping the identity step as its draft
    complete_registration -> spends the verification grant and creates, in one transaction,
                             the Author, its first KYC submission and the welcome notifications
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.studio.audit import record_event
from app.studio.errors import PreconditionFailed, ValidationError
from app.studio.modules.authors.models import Author
from app.studio.modules.otp import service as otp
from app.studio.modules.registration.wizard import COLLECTING_IDENTITY, RegistrationWizard, validate_step
from app.studio.modules.verification import engine
from app.studio.modules.verification.models import VerificationSubmission
from app.studio.storage import Storage
from app.studio.utils import normalize_email, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    author: Author
    kyc: VerificationSubmission


def _identity_conflicts(s: Session, *, email: str, pseudo: str) -> dict[str, str]:
    errors: dict[str, str] = {}
    if s.query(Author.id).filter(Author.email == email).first() is not None:
        errors["email"] = "An account already exists for this email."
    if s.query(Author.id).filter(func.lower(Author.pseudo) == pseudo.lower()).first() is not None:
        errors["pseudo"] = "This pseudo is already taken."
    return errors


def _previous_draft(s: Session, email: str) -> dict | None:
    prev = otp.latest_challenge(s, email)
    if prev is None or prev.purpose != "registration" or not prev.draft_payload:
        return None
    return dict(prev.draft_payload)


def check_identity_available(s: Session, identity: dict) -> None:
    errors = _identity_conflicts(
        s, email=normalize_email(identity.get("email")), pseudo=(identity.get("pseudo") or "").strip()
    )
    if errors:
        raise ValidationError.from_errors(errors)


def start_registration(
    s: Session,
    *,
    identity: dict,
    ttl_seconds: int = otp.DEFAULT_TTL_SECONDS,
    cooldown_seconds: int = otp.DEFAULT_COOLDOWN_SECONDS,
    now: datetime | None = None,
) -> otp.IssuedChallenge:
    if set(identity) <= {"email"}:
        # A resend carries only the address; keep the identity sent with the first code.
        identity = _previous_draft(s, normalize_email(identity.get("email"))) or identity
    validate_step(COLLECTING_IDENTITY, identity)
    wizard = RegistrationWizard()
    wizard.submit_identity(identity)
    check_identity_available(s, wizard.identity)
    issued = otp.issue_challenge(
        s,
        identifier=wizard.identity["email"],
        purpose="registration",
        draft=wizard.identity,
        ttl_seconds=ttl_seconds,
        cooldown_seconds=cooldown_seconds,
        now=now,
    )
    wizard.challenge_issued(issued.handle)
    return issued


def complete_registration(
    s: Session,
    *,
    payload: dict,
    storage: Storage,
    max_document_bytes: int,
    now: datetime | None = None,
) -> RegistrationResult:
    """
    All-or-nothing: any failure leaves no Author, no submission and an unspent grant
    once the caller rolls back.
    """
    wizard = RegistrationWizard.from_completion_payload(payload)
    now = now or utcnow()

    email = wizard.identity["email"]
    ch = otp.redeem_grant(s, identifier=email, grant=wizard.grant or "", purpose="registration", now=now)
    # The identity proven by OTP is authoritative over anything re-sent by the client.
    draft = ch.draft_payload or {}
    if normalize_email(draft.get("email")) != email:
        raise PreconditionFailed("Email verification does not match this registration.")
    pseudo = draft.get("pseudo") or wizard.identity["pseudo"]

    errors = _identity_conflicts(s, email=email, pseudo=pseudo)
    if errors:
        raise ValidationError.from_errors(errors)

    author = Author(
        email=email,
        pseudo=pseudo,
        password_hash=generate_password_hash(wizard.credential["password"]),
        phone_number=draft.get("phone_number"),
        biography=wizard.profile.get("biography"),
        speciality=wizard.profile.get("speciality"),
        status="active",
        email_verified_at=ch.consumed_at,
        created_at=now,
        updated_at=now,
    )
    s.add(author)
    try:
        s.flush()
    except IntegrityError:
        s.rollback()
        raise ValidationError.from_errors({"email": "An account already exists for this email."})

    kyc = engine.submit(
        s,
        author=author,
        kind=engine.KYC,
        payload=wizard.kyc,
        storage=storage,
        max_document_bytes=max_document_bytes,
        now=now,
    )
    engine.announce_registration(s, author=author, kyc=kyc, now=now)
    record_event(
        s,
        actor=author,
        action="author.register",
        entity_type="Author",
        entity_id=str(author.id),
        metadata={"pseudo": author.pseudo, "kyc_submission_id": kyc.id},
    )
    wizard.mark_complete()
    logger.info("REGISTER: author=%s created with kyc submission=%s", author.id, kyc.id)
    return RegistrationResult(author=author, kyc=kyc)
