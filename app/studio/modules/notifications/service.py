"""
Notification dispatcher.

`emit` is called only by the lifecycle services, inside the transaction that
performs the state change it announces. It is idempotent on
(recipient, type, source entity, transition version).
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Query, Session

from app.studio.errors import NotFound
from app.studio.modules.notifications.models import Notification
from app.studio.utils import utcnow

logger = logging.getLogger(__name__)

RECIPIENT_TYPES = ("author", "admin")

# Author inbox
WELCOME = "welcome"
KYC_APPROVED = "kyc_approved"
KYC_REJECTED = "kyc_rejected"
PAYMENT_APPROVED = "payment_approved"
PAYMENT_REJECTED = "payment_rejected"
STORY_APPROVED = "story_approved"
STORY_REJECTED = "story_rejected"
CHAPTER_APPROVED = "chapter_approved"
CHAPTER_REJECTED = "chapter_rejected"

# Back-office inbox
NEW_CREATOR = "new_creator"
KYC_PENDING_REVIEW = "kyc_pending_review"
PAYMENT_PENDING_REVIEW = "payment_pending_review"
CONTENT_PENDING_REVIEW = "content_pending_review"


def dedupe_key(recipient_type: str, recipient_id: int | None, type_: str, source_type: str | None, source_id: int | None, version: int) -> str:
    rid = "*" if recipient_id is None else str(recipient_id)
    src = f"{source_type or '-'}:{source_id if source_id is not None else '-'}"
    return f"{recipient_type}:{rid}|{type_}|{src}|v{version}"


def emit(
    s: Session,
    *,
    recipient_type: str,
    recipient_id: int | None,
    type_: str,
    title: str,
    message: str,
    action_url: str | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
    transition_version: int = 1,
    now: datetime | None = None,
) -> Notification:
    """Store a notification, or return the one already stored for the same transition."""
    if recipient_type not in RECIPIENT_TYPES:
        raise ValueError(f"Invalid recipient_type: {recipient_type}")
    if recipient_type == "author" and recipient_id is None:
        raise ValueError("Author notifications need a recipient_id.")

    key = dedupe_key(recipient_type, recipient_id, type_, source_type, source_id, transition_version)
    existing = s.query(Notification).filter(Notification.dedupe_key == key).one_or_none()
    if existing is not None:
        logger.info("NOTIFY: duplicate emit ignored key=%s id=%s", key, existing.id)
        return existing

    n = Notification(
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        type=type_,
        title=title,
        message=message,
        action_url=action_url,
        source_type=source_type,
        source_id=source_id,
        transition_version=transition_version,
        dedupe_key=key,
        is_read=False,
        created_at=now or utcnow(),
    )
    s.add(n)
    # The unique dedupe_key backs this up; callers emit only after winning their status swap.
    s.flush()
    logger.info("NOTIFY: id=%s type=%s recipient=%s:%s", n.id, type_, recipient_type, recipient_id)
    return n


def inbox_query(s: Session, *, recipient_type: str, recipient_id: int | None, unread_only: bool = False) -> Query:
    q = s.query(Notification).filter(Notification.recipient_type == recipient_type)
    if recipient_type == "author":
        q = q.filter(Notification.recipient_id == recipient_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc())


def unread_count(s: Session, *, recipient_type: str, recipient_id: int | None) -> int:
    return inbox_query(s, recipient_type=recipient_type, recipient_id=recipient_id, unread_only=True).order_by(None).count()


def _owned(s: Session, notification_id: int, *, recipient_type: str, recipient_id: int | None) -> Notification:
    n = s.get(Notification, notification_id)
    if n is None or n.recipient_type != recipient_type:
        raise NotFound("Notification not found.")
    if recipient_type == "author" and n.recipient_id != recipient_id:
        # Someone else's notification looks exactly like a missing one.
        raise NotFound("Notification not found.")
    return n


def mark_read(s: Session, notification_id: int, *, recipient_type: str, recipient_id: int | None) -> Notification:
    n = _owned(s, notification_id, recipient_type=recipient_type, recipient_id=recipient_id)
    if not n.is_read:
        n.is_read = True
        n.read_at = utcnow()
        s.flush()
    return n


def mark_all_read(s: Session, *, recipient_type: str, recipient_id: int | None) -> int:
    stmt = (
        update(Notification)
        .where(Notification.recipient_type == recipient_type, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
    )
    if recipient_type == "author":
        stmt = stmt.where(Notification.recipient_id == recipient_id)
    res = s.execute(stmt.execution_options(synchronize_session=False))
    return int(res.rowcount or 0)


def delete(s: Session, notification_id: int, *, recipient_type: str, recipient_id: int | None) -> None:
    n = _owned(s, notification_id, recipient_type=recipient_type, recipient_id=recipient_id)
    s.delete(n)
    s.flush()


def serialize(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "action_url": n.action_url,
        "source_type": n.source_type,
        "source_id": n.source_id,
        "is_read": n.is_read,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }
