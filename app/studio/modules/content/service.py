"""
Story and chapter review lifecycle.

Transitions (both content types):
    draft    -> pending                (author submits for review)
    pending  -> published | rejected   (moderator decision, compare-and-swap)
    rejected -> pending                (author resubmits after edits)
    published -> archived              (stories only, author action)

Each submit opens a ContentReview round; the round number keys the
notification so a retried review never notifies twice.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.studio import localized
from app.studio.audit import record_event
from app.studio.errors import (
    AlreadyPending,
    AlreadyReviewed,
    NotDraftOrRejected,
    NotFound,
    PreconditionFailed,
    ReasonRequired,
    ValidationError,
)
from app.studio.models import User
from app.studio.modules.authors.models import Author
from app.studio.modules.content.models import Chapter, ContentReview, Story
from app.studio.modules.notifications import service as notifications
from app.studio.modules.verification import engine
from app.studio.utils import clean_str, utcnow

logger = logging.getLogger(__name__)

CONTENT_TYPES = {"story": Story, "chapter": Chapter}

STATUS_TRANSITIONS = {
    "draft": {"pending"},
    "pending": {"published", "rejected"},
    "rejected": {"pending"},
    "published": {"archived"},
    "archived": set(),
}

EDITABLE_STATUSES = {"draft", "rejected"}

# Fields a moderator may correct before approving.
STORY_EDITABLE = ("title", "synopsis", "genre_id", "is_premium", "cover_url")
CHAPTER_EDITABLE = ("title", "content")
LOCALIZED_FIELDS = ("title", "synopsis", "content")


def _fallback() -> tuple[str, ...]:
    if has_app_context():
        return tuple(current_app.config.get("LOCALE_FALLBACK") or localized.DEFAULT_FALLBACK)
    return localized.DEFAULT_FALLBACK


def _localized(field: str, value: Any) -> dict:
    fallback = _fallback()
    try:
        return localized.normalize(value, primary=fallback[0], allowed=fallback)
    except ValueError as e:
        raise ValidationError.from_errors({field: str(e)})


def _clean_changes(payload: dict, allowed: tuple[str, ...]) -> dict[str, Any]:
    unknown = sorted(set(payload) - set(allowed))
    if unknown:
        raise ValidationError.from_errors({k: "Field cannot be edited." for k in unknown})
    changes: dict[str, Any] = {}
    for key, value in payload.items():
        if key in LOCALIZED_FIELDS:
            changes[key] = _localized(key, value)
        elif key == "genre_id":
            if value in (None, ""):
                changes[key] = None
            else:
                try:
                    changes[key] = int(value)
                except (TypeError, ValueError):
                    raise ValidationError.from_errors({"genre_id": "genre_id must be an integer."})
        elif key == "is_premium":
            changes[key] = bool(value)
        else:
            changes[key] = clean_str(value)
    return changes


def get_content(s: Session, content_type: str, content_id: int) -> Story | Chapter:
    model = CONTENT_TYPES.get(content_type)
    if model is None:
        raise NotFound("Unknown content type.")
    obj = s.get(model, content_id)
    if obj is None:
        raise NotFound(f"{content_type.capitalize()} not found.")
    return obj


def content_owner_id(obj: Story | Chapter) -> int:
    return obj.author_id if isinstance(obj, Story) else obj.story.author_id


def get_owned_content(s: Session, content_type: str, content_id: int, author: Author) -> Story | Chapter:
    obj = get_content(s, content_type, content_id)
    if content_owner_id(obj) != author.id:
        raise NotFound(f"{content_type.capitalize()} not found.")
    return obj


# ---------- Drafting ----------
def create_story(s: Session, *, author: Author, payload: dict) -> Story:
    changes = _clean_changes(payload, STORY_EDITABLE)
    if not changes.get("title"):
        raise ValidationError.from_errors({"title": "Title is required."})
    story = Story(author_id=author.id, status="draft", **changes)
    s.add(story)
    s.flush()
    record_event(s, actor=author, action="story.create", entity_type="Story", entity_id=str(story.id))
    return story


def create_chapter(s: Session, *, author: Author, story: Story, payload: dict) -> Chapter:
    if story.author_id != author.id:
        raise NotFound("Story not found.")
    if story.status == "archived":
        raise PreconditionFailed("Archived stories cannot receive new chapters.")
    changes = _clean_changes(payload, CHAPTER_EDITABLE)
    errors = {}
    if not changes.get("title"):
        errors["title"] = "Title is required."
    if not changes.get("content"):
        errors["content"] = "Content is required."
    if errors:
        raise ValidationError.from_errors(errors)
    next_number = (s.query(func.max(Chapter.number)).filter(Chapter.story_id == story.id).scalar() or 0) + 1
    chapter = Chapter(story_id=story.id, number=next_number, status="draft", **changes)
    s.add(chapter)
    s.flush()
    record_event(
        s,
        actor=author,
        action="chapter.create",
        entity_type="Chapter",
        entity_id=str(chapter.id),
        metadata={"story_id": story.id, "number": next_number},
    )
    return chapter


def update_draft(s: Session, *, author: Author, obj: Story | Chapter, payload: dict) -> Story | Chapter:
    """Author edits; only while the item is a draft or was rejected."""
    if obj.status not in EDITABLE_STATUSES:
        raise PreconditionFailed(f"Content cannot be edited while {obj.status}.")
    allowed = STORY_EDITABLE if isinstance(obj, Story) else CHAPTER_EDITABLE
    changes = _clean_changes(payload, allowed)
    for key, value in changes.items():
        if key in LOCALIZED_FIELDS:
            value = localized.merge(getattr(obj, key), value)
        setattr(obj, key, value)
    record_event(
        s,
        actor=author,
        action=f"{_type_of(obj)}.edit",
        entity_type=type(obj).__name__,
        entity_id=str(obj.id),
        metadata={"fields": sorted(changes)},
    )
    return obj


def _type_of(obj: Story | Chapter) -> str:
    return "story" if isinstance(obj, Story) else "chapter"


# ---------- Review lifecycle ----------
def submit_for_review(s: Session, *, author: Author, obj: Story | Chapter, now: datetime | None = None) -> ContentReview:
    content_type = _type_of(obj)
    if obj.status == "pending":
        raise AlreadyPending(f"This {content_type} is already awaiting review.")
    if obj.status not in ("draft", "rejected"):
        raise NotDraftOrRejected()
    engine.require_can_publish(s, author)
    if isinstance(obj, Chapter) and obj.story.status == "draft":
        raise PreconditionFailed("Submit the story for review before its chapters.")
    if isinstance(obj, Chapter) and obj.story.status == "archived":
        raise PreconditionFailed("The story has been archived.")
    if not localized.resolve(obj.title, fallback=_fallback()):
        raise ValidationError.from_errors({"title": "Title is required."})

    model = type(obj)
    now = now or utcnow()
    prev_status = obj.status
    next_round = obj.review_round + 1
    res = s.execute(
        update(model)
        .where(model.id == obj.id, model.status == prev_status, model.review_round == obj.review_round)
        .values(status="pending", review_round=next_round, submitted_at=now, rejection_reason=None)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        s.refresh(obj)
        if obj.status == "pending":
            raise AlreadyPending(f"This {content_type} is already awaiting review.")
        raise NotDraftOrRejected()
    s.refresh(obj)

    round_ = ContentReview(content_type=content_type, content_id=obj.id, round=next_round, submitted_at=now)
    s.add(round_)
    s.flush()

    label = "histoire" if content_type == "story" else "chapitre"
    notifications.emit(
        s,
        recipient_type="admin",
        recipient_id=None,
        type_=notifications.CONTENT_PENDING_REVIEW,
        title=f"Nouveau contenu à valider ({label})",
        message=f"{author.pseudo} a soumis « {localized.resolve(obj.title, fallback=_fallback())} » pour validation.",
        action_url="/admin/content-approval",
        source_type=model.__name__,
        source_id=obj.id,
        transition_version=next_round,
        now=now,
    )
    record_event(
        s,
        actor=author,
        action=f"{content_type}.submit_review",
        entity_type=model.__name__,
        entity_id=str(obj.id),
        metadata={"round": next_round, "from": prev_status},
    )
    logger.info("CONTENT: submitted %s=%s round=%s", content_type, obj.id, next_round)
    return round_


def review(
    s: Session,
    *,
    content_type: str,
    content_id: int,
    admin: User,
    decision: str,
    reason: str | None = None,
    edits: dict | None = None,
    now: datetime | None = None,
) -> Story | Chapter:
    decision = engine.parse_decision(decision)
    reason = clean_str(reason)
    if decision == "rejected" and not reason:
        raise ReasonRequired()

    obj = get_content(s, content_type, content_id)
    model = type(obj)
    changes: dict[str, Any] = {}
    if edits:
        if decision != "approved":
            raise ValidationError.from_errors({"edits": "Edits can only accompany an approval."})
        changes = _clean_changes(edits, STORY_EDITABLE if model is Story else CHAPTER_EDITABLE)
        for key in LOCALIZED_FIELDS:
            if key in changes:
                changes[key] = localized.merge(getattr(obj, key), changes[key])

    now = now or utcnow()
    new_status = "published" if decision == "approved" else "rejected"
    values: dict[str, Any] = {"status": new_status, "reviewed_at": now}
    if decision == "approved":
        values.update(changes)
        values["published_at"] = now
        values["rejection_reason"] = None
    else:
        values["rejection_reason"] = reason

    # Status and edits land in one statement, guarded on the pending state.
    res = s.execute(
        update(model)
        .where(model.id == obj.id, model.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        logger.warning("CONTENT: stale review %s=%s admin=%s", content_type, content_id, admin.id)
        raise AlreadyReviewed()
    s.refresh(obj)

    rr = (
        s.query(ContentReview)
        .filter(
            ContentReview.content_type == content_type,
            ContentReview.content_id == obj.id,
            ContentReview.round == obj.review_round,
        )
        .one_or_none()
    )
    if rr is None:
        rr = ContentReview(content_type=content_type, content_id=obj.id, round=obj.review_round, submitted_at=obj.submitted_at or now)
        s.add(rr)
    rr.decision = new_status
    rr.rejection_reason = reason if decision == "rejected" else None
    rr.admin_edits = changes or None
    rr.reviewed_at = now
    rr.reviewed_by_user_id = admin.id

    title = localized.resolve(obj.title, fallback=_fallback())
    if content_type == "story":
        type_ = notifications.STORY_APPROVED if decision == "approved" else notifications.STORY_REJECTED
        action_url = f"/creator/stories/{obj.id}"
        label = "Votre histoire"
    else:
        type_ = notifications.CHAPTER_APPROVED if decision == "approved" else notifications.CHAPTER_REJECTED
        action_url = f"/creator/stories/{obj.story_id}/chapters"
        label = "Votre chapitre"
    if decision == "approved":
        message = f"{label} « {title} » a été publié(e)."
    else:
        message = f"{label} « {title} » a été refusé(e) : {reason}"
    notifications.emit(
        s,
        recipient_type="author",
        recipient_id=content_owner_id(obj),
        type_=type_,
        title="Contenu publié" if decision == "approved" else "Contenu refusé",
        message=message,
        action_url=action_url,
        source_type=model.__name__,
        source_id=obj.id,
        transition_version=obj.review_round,
        now=now,
    )
    record_event(
        s,
        actor=admin,
        action=f"{content_type}.review",
        entity_type=model.__name__,
        entity_id=str(obj.id),
        reason=reason,
        metadata={"decision": new_status, "round": obj.review_round, "edited_fields": sorted(changes)},
    )
    logger.info("CONTENT: reviewed %s=%s status=%s admin=%s", content_type, obj.id, new_status, admin.id)
    return obj


def archive_story(s: Session, *, author: Author, story: Story, now: datetime | None = None) -> Story:
    if story.author_id != author.id:
        raise NotFound("Story not found.")
    if "archived" not in STATUS_TRANSITIONS.get(story.status, set()):
        raise PreconditionFailed("Only published stories can be archived.")
    now = now or utcnow()
    res = s.execute(
        update(Story)
        .where(Story.id == story.id, Story.status == "published")
        .values(status="archived", archived_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise PreconditionFailed("Only published stories can be archived.")
    s.refresh(story)
    record_event(s, actor=author, action="story.archive", entity_type="Story", entity_id=str(story.id))
    logger.info("CONTENT: archived story=%s", story.id)
    return story


def pending_counts(s: Session) -> dict[str, int]:
    return {
        "pending_stories": s.query(Story).filter(Story.status == "pending").count(),
        "pending_chapters": s.query(Chapter).filter(Chapter.status == "pending").count(),
    }


def review_history(s: Session, content_type: str, content_id: int) -> list[ContentReview]:
    return (
        s.query(ContentReview)
        .filter(ContentReview.content_type == content_type, ContentReview.content_id == content_id)
        .order_by(ContentReview.round.desc())
        .all()
    )


# ---------- Serialization ----------
def _dt(v: datetime | None) -> str | None:
    return v.isoformat() if v else None


def _review_fields(obj: Story | Chapter) -> dict:
    return {
        "status": obj.status,
        "rejection_reason": obj.rejection_reason,
        "review_round": obj.review_round,
        "submitted_at": _dt(obj.submitted_at),
        "reviewed_at": _dt(obj.reviewed_at),
        "published_at": _dt(obj.published_at),
    }


def serialize_story(story: Story, *, locale: str | None = None, include_author: bool = False) -> dict:
    fallback = _fallback()
    out = {
        "id": story.id,
        "author_id": story.author_id,
        "title": story.title,
        "title_text": localized.resolve(story.title, locale, fallback=fallback),
        "synopsis": story.synopsis,
        "genre_id": story.genre_id,
        "is_premium": story.is_premium,
        "cover_url": story.cover_url,
        "archived_at": _dt(story.archived_at),
        **_review_fields(story),
    }
    if include_author and story.author is not None:
        out["author"] = {"id": story.author.id, "email": story.author.email, "pseudo": story.author.pseudo}
    return out


def serialize_chapter(chapter: Chapter, *, locale: str | None = None) -> dict:
    fallback = _fallback()
    return {
        "id": chapter.id,
        "story_id": chapter.story_id,
        "number": chapter.number,
        "title": chapter.title,
        "title_text": localized.resolve(chapter.title, locale, fallback=fallback),
        "content": chapter.content,
        "story": {
            "id": chapter.story.id,
            "title": chapter.story.title,
            "status": chapter.story.status,
        },
        **_review_fields(chapter),
    }


def serialize_review(rr: ContentReview) -> dict:
    return {
        "round": rr.round,
        "submitted_at": _dt(rr.submitted_at),
        "decision": rr.decision,
        "rejection_reason": rr.rejection_reason,
        "admin_edits": rr.admin_edits,
        "reviewed_at": _dt(rr.reviewed_at),
        "reviewed_by_user_id": rr.reviewed_by_user_id,
    }
