from __future__ import annotations

from flask import Blueprint, request

from app.studio.db import db_session
from app.studio.http import json_body, ok
from app.studio.modules.content import service as content
from app.studio.modules.content.models import Chapter, Story
from app.studio.rbac import current_author, require_author

bp = Blueprint("content", __name__)


def _locale() -> str | None:
    return (request.args.get("lang") or "").strip() or None


def _serialize(obj: Story | Chapter) -> dict:
    if isinstance(obj, Story):
        return content.serialize_story(obj, locale=_locale())
    return content.serialize_chapter(obj, locale=_locale())


@bp.get("/stories")
@require_author
def list_stories():
    s = db_session()
    rows = s.query(Story).filter(Story.author_id == current_author().id).order_by(Story.created_at.desc(), Story.id.desc()).all()
    return ok([_serialize(r) for r in rows])


@bp.post("/stories")
@require_author
def create_story():
    s = db_session()
    story = content.create_story(s, author=current_author(), payload=json_body())
    s.commit()
    return ok(_serialize(story), 201)


@bp.get("/stories/<int:story_id>")
@require_author
def get_story(story_id: int):
    story = content.get_owned_content(db_session(), "story", story_id, current_author())
    return ok(_serialize(story))


@bp.put("/stories/<int:story_id>")
@require_author
def update_story(story_id: int):
    s = db_session()
    author = current_author()
    story = content.get_owned_content(s, "story", story_id, author)
    content.update_draft(s, author=author, obj=story, payload=json_body())
    s.commit()
    return ok(_serialize(story))


@bp.post("/stories/<int:story_id>/archive")
@require_author
def archive_story(story_id: int):
    s = db_session()
    author = current_author()
    story = content.get_owned_content(s, "story", story_id, author)
    content.archive_story(s, author=author, story=story)
    s.commit()
    return ok(_serialize(story))


@bp.get("/stories/<int:story_id>/chapters")
@require_author
def list_chapters(story_id: int):
    story = content.get_owned_content(db_session(), "story", story_id, current_author())
    return ok([_serialize(c) for c in story.chapters])


@bp.post("/stories/<int:story_id>/chapters")
@require_author
def create_chapter(story_id: int):
    s = db_session()
    author = current_author()
    story = content.get_owned_content(s, "story", story_id, author)
    chapter = content.create_chapter(s, author=author, story=story, payload=json_body())
    s.commit()
    return ok(_serialize(chapter), 201)


@bp.put("/chapters/<int:chapter_id>")
@require_author
def update_chapter(chapter_id: int):
    s = db_session()
    author = current_author()
    chapter = content.get_owned_content(s, "chapter", chapter_id, author)
    content.update_draft(s, author=author, obj=chapter, payload=json_body())
    s.commit()
    return ok(_serialize(chapter))


@bp.post("/content/<content_type>/<int:content_id>/submit-review")
@require_author
def submit_review(content_type: str, content_id: int):
    s = db_session()
    author = current_author()
    obj = content.get_owned_content(s, content_type, content_id, author)
    rr = content.submit_for_review(s, author=author, obj=obj)
    s.commit()
    return ok({"content": _serialize(obj), "review": content.serialize_review(rr)})


@bp.get("/content/<content_type>/<int:content_id>/reviews")
@require_author
def review_history(content_type: str, content_id: int):
    s = db_session()
    obj = content.get_owned_content(s, content_type, content_id, current_author())
    return ok([content.serialize_review(rr) for rr in content.review_history(s, content_type, obj.id)])
