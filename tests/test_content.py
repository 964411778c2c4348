import pytest

from app.studio import localized
from app.studio.db import session_scope
from app.studio.errors import (
    AlreadyPending,
    AlreadyReviewed,
    NotDraftOrRejected,
    NotFound,
    PreconditionFailed,
    ReasonRequired,
    ValidationError,
)
from app.studio.modules.authors.models import Author
from app.studio.modules.content import service as content
from app.studio.modules.content.models import Chapter, ContentReview, Story
from app.studio.modules.notifications.models import Notification
from app.studio.modules.verification import engine
from conftest import admin_user, kyc_payload, make_author


def _verified_author(app, storage, *, email="author@example.com", pseudo="rakoto"):
    with session_scope(app) as s:
        author = make_author(s, email=email, pseudo=pseudo)
        sub = engine.submit(
            s, author=author, kind=engine.KYC, payload=kyc_payload(), storage=storage, max_document_bytes=1024
        )
        engine.review(s, submission_id=sub.id, admin=admin_user(s), decision="approved")
        return author.id


def _story(app, author_id, title="Le Baobab"):
    with session_scope(app) as s:
        author = s.get(Author, author_id)
        return content.create_story(s, author=author, payload={"title": title, "synopsis": {"fr": "Un conte"}}).id


def _submit(app, author_id, content_type, content_id):
    with session_scope(app) as s:
        author = s.get(Author, author_id)
        obj = content.get_owned_content(s, content_type, content_id, author)
        return content.submit_for_review(s, author=author, obj=obj).round


def _review(app, content_type, content_id, decision, reason=None, edits=None):
    with session_scope(app) as s:
        obj = content.review(
            s,
            content_type=content_type,
            content_id=content_id,
            admin=admin_user(s),
            decision=decision,
            reason=reason,
            edits=edits,
        )
        return obj.status


def test_story_approved_with_admin_edit_then_terminal(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)

    assert _submit(app, aid, "story", sid) == 1
    with session_scope(app) as s:
        assert s.get(Story, sid).status == "pending"

    assert _review(app, "story", sid, "approved", edits={"title": {"fr": "Le Grand Baobab"}}) == "published"
    with session_scope(app) as s:
        story = s.get(Story, sid)
        assert story.title == {"fr": "Le Grand Baobab"}
        assert story.published_at is not None
        rr = s.query(ContentReview).filter(ContentReview.content_id == sid).one()
        assert rr.decision == "published"
        assert rr.admin_edits == {"title": {"fr": "Le Grand Baobab"}}

    with pytest.raises(NotDraftOrRejected):
        _submit(app, aid, "story", sid)


def test_submit_requires_approved_kyc(app, storage):
    with session_scope(app) as s:
        aid = make_author(s).id
    sid = _story(app, aid)
    with pytest.raises(PreconditionFailed):
        _submit(app, aid, "story", sid)

    with session_scope(app) as s:
        author = s.get(Author, aid)
        engine.submit(s, author=author, kind=engine.KYC, payload=kyc_payload(), storage=storage, max_document_bytes=1024)
    # Pending KYC is not enough either.
    with pytest.raises(PreconditionFailed):
        _submit(app, aid, "story", sid)


def test_double_submit_is_already_pending(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    _submit(app, aid, "story", sid)
    with pytest.raises(AlreadyPending):
        _submit(app, aid, "story", sid)


def test_reject_then_resubmit_opens_new_round(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    _submit(app, aid, "story", sid)

    with pytest.raises(ReasonRequired):
        _review(app, "story", sid, "rejected", reason=" ")
    assert _review(app, "story", sid, "rejected", reason="Synopsis trop court") == "rejected"
    with pytest.raises(AlreadyReviewed):
        _review(app, "story", sid, "approved")

    with session_scope(app) as s:
        author = s.get(Author, aid)
        story = s.get(Story, sid)
        content.update_draft(s, author=author, obj=story, payload={"synopsis": {"en": "A tale"}})
    assert _submit(app, aid, "story", sid) == 2

    with session_scope(app) as s:
        story = s.get(Story, sid)
        assert story.status == "pending"
        assert story.rejection_reason is None
        assert story.synopsis == {"fr": "Un conte", "en": "A tale"}
        rounds = content.review_history(s, "story", sid)
        assert [(r.round, r.decision) for r in rounds] == [(2, None), (1, "rejected")]
        assert rounds[1].rejection_reason == "Synopsis trop court"
        notes = s.query(Notification).filter(Notification.type == "story_rejected").all()
        assert len(notes) == 1 and notes[0].recipient_id == aid


def test_edits_only_accompany_an_approval(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    _submit(app, aid, "story", sid)
    with pytest.raises(ValidationError):
        _review(app, "story", sid, "rejected", reason="no", edits={"title": "X"})
    with pytest.raises(ValidationError):
        _review(app, "story", sid, "approved", edits={"author_id": 2})
    with session_scope(app) as s:
        assert s.get(Story, sid).status == "pending"


def test_chapter_waits_for_story_to_leave_draft(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    with session_scope(app) as s:
        author = s.get(Author, aid)
        story = s.get(Story, sid)
        c1 = content.create_chapter(s, author=author, story=story, payload={"title": "Un", "content": "Il était une fois"})
        c2 = content.create_chapter(s, author=author, story=story, payload={"title": "Deux", "content": "La suite"})
        assert (c1.number, c2.number) == (1, 2)
        cid = c1.id

    with pytest.raises(PreconditionFailed):
        _submit(app, aid, "chapter", cid)

    _submit(app, aid, "story", sid)
    # Story pending is enough for its chapters.
    _submit(app, aid, "chapter", cid)

    _review(app, "story", sid, "approved")
    with session_scope(app) as s:
        # Approving the story leaves chapters alone.
        assert s.get(Chapter, cid).status == "pending"

    assert _review(app, "chapter", cid, "approved", edits={"content": {"fr": "Il était une fois, corrigé"}}) == "published"
    with session_scope(app) as s:
        assert s.get(Chapter, cid).content == {"fr": "Il était une fois, corrigé"}
        assert s.query(Notification).filter(Notification.type == "chapter_approved").count() == 1


def test_pending_content_cannot_be_edited(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    _submit(app, aid, "story", sid)
    with session_scope(app) as s:
        with pytest.raises(PreconditionFailed):
            content.update_draft(s, author=s.get(Author, aid), obj=s.get(Story, sid), payload={"title": "Autre"})


def test_archive_only_from_published(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid)
    with session_scope(app) as s:
        with pytest.raises(PreconditionFailed):
            content.archive_story(s, author=s.get(Author, aid), story=s.get(Story, sid))

    _submit(app, aid, "story", sid)
    _review(app, "story", sid, "approved")
    with session_scope(app) as s:
        story = content.archive_story(s, author=s.get(Author, aid), story=s.get(Story, sid))
        assert story.status == "archived" and story.archived_at is not None

    with pytest.raises(NotDraftOrRejected):
        _submit(app, aid, "story", sid)
    with session_scope(app) as s:
        with pytest.raises(PreconditionFailed):
            content.create_chapter(s, author=s.get(Author, aid), story=s.get(Story, sid), payload={"title": "x", "content": "y"})


def test_other_authors_content_is_invisible(app, storage):
    aid = _verified_author(app, storage)
    other = _verified_author(app, storage, email="other@example.com", pseudo="other")
    sid = _story(app, aid)
    with session_scope(app) as s:
        with pytest.raises(NotFound):
            content.get_owned_content(s, "story", sid, s.get(Author, other))
        with pytest.raises(NotFound):
            content.get_content(s, "poem", sid)


def test_localized_text_resolution(app, storage):
    aid = _verified_author(app, storage)
    sid = _story(app, aid, title={"en": "The Baobab", "gasy": "Ny Baobab"})
    with session_scope(app) as s:
        story = s.get(Story, sid)
        assert localized.resolve(story.title) == "The Baobab"
        assert localized.resolve(story.title, "gasy") == "Ny Baobab"
        assert localized.resolve(story.title, "de") == "The Baobab"

    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            content.create_story(s, author=s.get(Author, aid), payload={"title": {"de": "Der Baobab"}})


def test_pending_counts(app, storage):
    aid = _verified_author(app, storage)
    _submit(app, aid, "story", _story(app, aid, "A"))
    _story(app, aid, "B")
    with session_scope(app) as s:
        assert content.pending_counts(s) == {"pending_stories": 1, "pending_chapters": 0}
