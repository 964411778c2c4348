"""
Verification engine for KYC and payout-method submissions.

States per version: pending -> approved | rejected. A rejected submission is
retried by inserting the next version; approved is final for its version.
Reviews are a compare-and-swap on `status = 'pending'`, so of two racing
moderators exactly one wins and the other gets AlreadyReviewed.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.studio.audit import record_event
from app.studio.errors import AlreadyPending, AlreadyReviewed, NotFound, PreconditionFailed, ReasonRequired, ValidationError
from app.studio.models import User
from app.studio.modules.authors.models import Author
from app.studio.modules.notifications import service as notifications
from app.studio.modules.verification.documents import store_document
from app.studio.modules.verification.models import KINDS, VerificationSubmission
from app.studio.storage import Storage
from app.studio.utils import clean_str, utcnow

logger = logging.getLogger(__name__)

KYC = "kyc"
PAYMENT_METHOD = "payment_method"

KYC_DOCUMENT_SLOTS = ("doc_front", "doc_back", "selfie")
CIN_RE = re.compile(r"^[0-9A-Za-z]{6,20}$")
PHONE_RE = re.compile(r"^\+?[0-9 ]{8,20}$")

DECISIONS = ("approved", "rejected")
_DECISION_ALIASES = {
    "approve": "approved",
    "approved": "approved",
    "valide": "approved",
    "reject": "rejected",
    "rejected": "rejected",
    "rejete": "rejected",
}

_REVIEW_NOTIFICATIONS = {
    (KYC, "approved"): (notifications.KYC_APPROVED, "Identité vérifiée", "Votre vérification d'identité a été approuvée."),
    (KYC, "rejected"): (notifications.KYC_REJECTED, "Vérification refusée", "Votre vérification d'identité a été refusée : {reason}"),
    (PAYMENT_METHOD, "approved"): (
        notifications.PAYMENT_APPROVED,
        "Moyen de paiement validé",
        "Votre moyen de paiement a été validé.",
    ),
    (PAYMENT_METHOD, "rejected"): (
        notifications.PAYMENT_REJECTED,
        "Moyen de paiement refusé",
        "Votre moyen de paiement a été refusé : {reason}",
    ),
}


# Client payloads use camelCase.
_FIELD_ALIASES = {
    "cinNumber": "cin_number",
    "docFront": "doc_front",
    "docBack": "doc_back",
    "phoneNumber": "phone_number",
    "accountHolderName": "account_holder_name",
}


def canonical_fields(payload: dict) -> dict:
    out: dict = {}
    for key, value in (payload or {}).items():
        out.setdefault(_FIELD_ALIASES.get(key, key), value)
    return out


def parse_decision(raw: str | None) -> str:
    decision = _DECISION_ALIASES.get((raw or "").strip().lower())
    if decision is None:
        raise ValidationError.from_errors({"decision": "Decision must be 'approved' or 'rejected'."})
    return decision


def validate_kyc_fields(payload: dict) -> dict[str, str]:
    payload = canonical_fields(payload)
    errors: dict[str, str] = {}
    cin = str(payload.get("cin_number") or "").strip()
    if not cin:
        errors["cin_number"] = "CIN number is required."
    elif not CIN_RE.match(cin):
        errors["cin_number"] = "CIN number must be 6-20 letters or digits."
    for slot in KYC_DOCUMENT_SLOTS:
        if not str(payload.get(slot) or "").strip():
            errors[slot] = f"{slot} document is required."
    return errors


def validate_payment_fields(payload: dict) -> dict[str, str]:
    payload = canonical_fields(payload)
    errors: dict[str, str] = {}
    if not clean_str(payload.get("provider")):
        errors["provider"] = "Provider is required."
    phone = str(payload.get("phone_number") or "").strip()
    if not phone:
        errors["phone_number"] = "Payout phone number is required."
    elif not PHONE_RE.match(phone):
        errors["phone_number"] = "Payout phone number is invalid."
    if not clean_str(payload.get("account_holder_name")):
        errors["account_holder_name"] = "Account holder name is required."
    return errors


def _normalize_fields(kind: str, payload: dict, *, author_id: int, storage: Storage, max_document_bytes: int) -> dict:
    payload = canonical_fields(payload)
    errors = validate_kyc_fields(payload) if kind == KYC else validate_payment_fields(payload)
    if errors:
        raise ValidationError.from_errors(errors)
    if kind == KYC:
        fields = {"cin_number": str(payload["cin_number"]).strip()}
        for slot in KYC_DOCUMENT_SLOTS:
            fields[slot] = store_document(
                storage,
                owner_key=f"author-{author_id}",
                slot=slot,
                value=str(payload[slot]),
                max_bytes=max_document_bytes,
            )
        return fields
    return {
        "provider": clean_str(payload.get("provider")),
        "phone_number": str(payload["phone_number"]).strip(),
        "account_holder_name": clean_str(payload.get("account_holder_name")),
    }


def current_submission(s: Session, author_id: int, kind: str) -> VerificationSubmission | None:
    return (
        s.query(VerificationSubmission)
        .filter(VerificationSubmission.author_id == author_id, VerificationSubmission.kind == kind)
        .order_by(VerificationSubmission.version.desc())
        .first()
    )


def submission_history(s: Session, author_id: int, kind: str) -> list[VerificationSubmission]:
    return (
        s.query(VerificationSubmission)
        .filter(VerificationSubmission.author_id == author_id, VerificationSubmission.kind == kind)
        .order_by(VerificationSubmission.version.desc())
        .all()
    )


def submit(
    s: Session,
    *,
    author: Author,
    kind: str,
    payload: dict,
    storage: Storage,
    max_document_bytes: int,
    now: datetime | None = None,
) -> VerificationSubmission:
    """Create version 1, or version n+1 after a rejection."""
    if kind not in KINDS:
        raise ValueError(f"Invalid submission kind: {kind}")
    if not author.is_active:
        raise PreconditionFailed("Only active accounts can submit verifications.")
    now = now or utcnow()

    # Serialize submitters per author; no-op on SQLite.
    s.query(Author).filter(Author.id == author.id).with_for_update().one()

    current = current_submission(s, author.id, kind)
    if current is not None:
        if current.status == "pending":
            raise AlreadyPending()
        if current.status == "approved" and kind == KYC:
            raise PreconditionFailed("Identity is already verified.")

    fields = _normalize_fields(kind, payload, author_id=author.id, storage=storage, max_document_bytes=max_document_bytes)
    sub = VerificationSubmission(
        author_id=author.id,
        kind=kind,
        version=(current.version + 1) if current is not None else 1,
        fields=fields,
        status="pending",
        submitted_at=now,
    )
    s.add(sub)
    try:
        s.flush()
    except IntegrityError:
        # Lost the version slot to a concurrent submit.
        s.rollback()
        raise AlreadyPending()

    pending_type = notifications.KYC_PENDING_REVIEW if kind == KYC else notifications.PAYMENT_PENDING_REVIEW
    label = "vérification d'identité" if kind == KYC else "moyen de paiement"
    notifications.emit(
        s,
        recipient_type="admin",
        recipient_id=None,
        type_=pending_type,
        title=f"Nouvelle {label} à examiner" if kind == KYC else f"Nouveau {label} à examiner",
        message=f"{author.pseudo} ({author.email}) a soumis une {label} (version {sub.version})."
        if kind == KYC
        else f"{author.pseudo} ({author.email}) a soumis un {label} (version {sub.version}).",
        action_url="/admin/kyc" if kind == KYC else "/admin/payment-methods",
        source_type="VerificationSubmission",
        source_id=sub.id,
        transition_version=sub.version,
        now=now,
    )
    record_event(
        s,
        actor=author,
        action=f"{kind}.submit",
        entity_type="VerificationSubmission",
        entity_id=str(sub.id),
        metadata={"version": sub.version, "resubmission": current is not None},
    )
    logger.info("VERIFY: submitted kind=%s author=%s submission=%s version=%s", kind, author.id, sub.id, sub.version)
    return sub


def review(
    s: Session,
    *,
    submission_id: int,
    admin: User,
    decision: str,
    reason: str | None = None,
    kind: str | None = None,
    now: datetime | None = None,
) -> VerificationSubmission:
    """Record a moderator decision on a pending submission. First writer wins."""
    decision = parse_decision(decision)
    reason = clean_str(reason)
    if decision == "rejected" and not reason:
        raise ReasonRequired()

    sub = s.get(VerificationSubmission, submission_id)
    if sub is None or (kind is not None and sub.kind != kind):
        raise NotFound("Submission not found.")
    now = now or utcnow()

    res = s.execute(
        update(VerificationSubmission)
        .where(VerificationSubmission.id == submission_id, VerificationSubmission.status == "pending")
        .values(
            status=decision,
            rejection_reason=reason if decision == "rejected" else None,
            reviewed_at=now,
            reviewed_by_user_id=admin.id,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        logger.warning("VERIFY: stale review submission=%s admin=%s", submission_id, admin.id)
        raise AlreadyReviewed()
    s.refresh(sub)

    type_, title, message = _REVIEW_NOTIFICATIONS[(sub.kind, decision)]
    notifications.emit(
        s,
        recipient_type="author",
        recipient_id=sub.author_id,
        type_=type_,
        title=title,
        message=message.format(reason=reason or ""),
        action_url="/creator/settings",
        source_type="VerificationSubmission",
        source_id=sub.id,
        transition_version=sub.version,
        now=now,
    )
    record_event(
        s,
        actor=admin,
        action=f"{sub.kind}.review",
        entity_type="VerificationSubmission",
        entity_id=str(sub.id),
        reason=reason,
        metadata={"decision": decision, "version": sub.version, "author_id": sub.author_id},
    )
    logger.info("VERIFY: reviewed kind=%s submission=%s status=%s admin=%s", sub.kind, sub.id, decision, admin.id)
    return sub


def announce_registration(s: Session, *, author: Author, kyc: VerificationSubmission, now: datetime | None = None) -> None:
    """Welcome the new author and tell the back office a creator joined."""
    notifications.emit(
        s,
        recipient_type="author",
        recipient_id=author.id,
        type_=notifications.WELCOME,
        title="Bienvenue !",
        message=f"Bienvenue {author.pseudo} ! Votre vérification d'identité est en cours d'examen.",
        action_url="/creator/dashboard",
        source_type="Author",
        source_id=author.id,
        now=now,
    )
    notifications.emit(
        s,
        recipient_type="admin",
        recipient_id=None,
        type_=notifications.NEW_CREATOR,
        title="Nouveau créateur",
        message=f"{author.pseudo} ({author.email}) vient de s'inscrire.",
        action_url="/admin/authors",
        source_type="Author",
        source_id=author.id,
        now=now,
    )


def is_kyc_approved(s: Session, author_id: int) -> bool:
    cur = current_submission(s, author_id, KYC)
    return cur is not None and cur.status == "approved"


def eligibility(s: Session, author: Author) -> dict[str, bool]:
    kyc_ok = is_kyc_approved(s, author.id)
    pm = current_submission(s, author.id, PAYMENT_METHOD)
    pm_ok = pm is not None and pm.status == "approved"
    return {
        "kycApproved": kyc_ok,
        "paymentMethodApproved": pm_ok,
        "canPublish": author.is_active and kyc_ok,
        "canReceivePayouts": author.is_active and kyc_ok and pm_ok,
    }


def require_can_publish(s: Session, author: Author) -> None:
    if not author.is_active:
        raise PreconditionFailed("This account is not active.")
    if not is_kyc_approved(s, author.id):
        raise PreconditionFailed("Identity verification must be approved before submitting content.")


def require_can_receive_payouts(s: Session, author: Author) -> None:
    elig = eligibility(s, author)
    if not elig["canReceivePayouts"]:
        raise PreconditionFailed("Payouts require an approved identity verification and payment method.")


def serialize(sub: VerificationSubmission, *, include_author: bool = False) -> dict:
    fields = dict(sub.fields or {})
    if sub.kind == KYC:
        for slot in KYC_DOCUMENT_SLOTS:
            if fields.get(slot):
                fields[f"{slot}_url"] = f"/api/admin/blobs/{fields[slot]}"
    out = {
        "id": sub.id,
        "author_id": sub.author_id,
        "kind": sub.kind,
        "version": sub.version,
        "status": sub.status,
        "fields": fields,
        "rejection_reason": sub.rejection_reason,
        "submitted_at": sub.submitted_at.isoformat() if sub.submitted_at else None,
        "reviewed_at": sub.reviewed_at.isoformat() if sub.reviewed_at else None,
        "reviewed_by_user_id": sub.reviewed_by_user_id,
    }
    if include_author and sub.author is not None:
        out["author"] = {
            "id": sub.author.id,
            "email": sub.author.email,
            "pseudo": sub.author.pseudo,
            "phone_number": sub.author.phone_number,
        }
    return out
