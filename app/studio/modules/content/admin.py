from __future__ import annotations

from flask import Blueprint, request

from app.studio.db import db_session
from app.studio.errors import ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.content import service as content
from app.studio.modules.content.models import Chapter, Story
from app.studio.pagination import page_args, paginate
from app.studio.rbac import current_user, require_permission

bp = Blueprint("content_admin", __name__)

_LIST_STATUSES = ("draft", "pending", "published", "rejected", "archived")


def _status_filter(q, model):
    status = (request.args.get("status") or "pending").strip().lower()
    if status == "all":
        return q
    if status not in _LIST_STATUSES:
        raise ValidationError.from_errors({"status": f"Status must be one of: all, {', '.join(_LIST_STATUSES)}"})
    return q.filter(model.status == status)


@bp.get("/admin/content/stories")
@require_permission("content.review")
def stories():
    q = _status_filter(db_session().query(Story), Story)
    q = q.order_by(Story.submitted_at.asc(), Story.id.asc())
    page, limit = page_args()
    return ok(paginate(q, page=page, limit=limit, serialize=lambda r: content.serialize_story(r, include_author=True)))


@bp.get("/admin/content/chapters")
@require_permission("content.review")
def chapters():
    q = _status_filter(db_session().query(Chapter), Chapter)
    story_id = request.args.get("story_id")
    if story_id and story_id.isdigit():
        q = q.filter(Chapter.story_id == int(story_id))
    q = q.order_by(Chapter.submitted_at.asc(), Chapter.id.asc())
    page, limit = page_args()
    return ok(paginate(q, page=page, limit=limit, serialize=content.serialize_chapter))


@bp.get("/admin/content/pending-count")
@require_permission("content.review")
def pending_count():
    return ok(content.pending_counts(db_session()))


@bp.get("/admin/content/<content_type>/<int:content_id>/history")
@require_permission("content.review")
def history(content_type: str, content_id: int):
    s = db_session()
    obj = content.get_content(s, content_type, content_id)
    return ok([content.serialize_review(rr) for rr in content.review_history(s, content_type, obj.id)])


@bp.put("/content/<content_type>/<int:content_id>/review")
@require_permission("content.review")
def review(content_type: str, content_id: int):
    data = json_body()
    s = db_session()
    obj = content.review(
        s,
        content_type=content_type,
        content_id=content_id,
        admin=current_user(),
        decision=data.get("decision") or data.get("status") or "",
        reason=data.get("reason") or data.get("rejection_reason"),
        edits=data.get("edits") or None,
    )
    s.commit()
    if isinstance(obj, Story):
        return ok(content.serialize_story(obj, include_author=True))
    return ok(content.serialize_chapter(obj))
