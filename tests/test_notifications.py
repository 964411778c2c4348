import pytest

from app.studio.db import session_scope
from app.studio.errors import NotFound
from app.studio.modules.notifications import service as notifications
from app.studio.modules.notifications.models import Notification
from conftest import make_author


def _emit(s, recipient_id, *, version=1, type_=notifications.KYC_APPROVED, source_id=7):
    return notifications.emit(
        s,
        recipient_type="author",
        recipient_id=recipient_id,
        type_=type_,
        title="Identité vérifiée",
        message="ok",
        source_type="VerificationSubmission",
        source_id=source_id,
        transition_version=version,
    )


def test_emit_is_idempotent_per_transition(app):
    with session_scope(app) as s:
        aid = make_author(s).id
        first = _emit(s, aid)
    with session_scope(app) as s:
        again = _emit(s, aid)
        assert again.id == first.id
        # A new transition version is a new notification.
        newer = _emit(s, aid, version=2)
        assert newer.id != first.id
    with session_scope(app) as s:
        assert s.query(Notification).count() == 2


def test_dedupe_key_shape():
    assert notifications.dedupe_key("author", 3, "welcome", "Author", 3, 1) == "author:3|welcome|Author:3|v1"
    assert notifications.dedupe_key("admin", None, "new_creator", None, None, 1) == "admin:*|new_creator|-:-|v1"


def test_emit_validates_recipient(app):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            notifications.emit(s, recipient_type="author", recipient_id=None, type_="welcome", title="t", message="m")
        with pytest.raises(ValueError):
            notifications.emit(s, recipient_type="guest", recipient_id=1, type_="welcome", title="t", message="m")


def test_read_and_delete_are_owner_scoped(app):
    with session_scope(app) as s:
        mine = make_author(s).id
        theirs = make_author(s, email="b@example.com", pseudo="bee").id
        nid = _emit(s, mine).id
        _emit(s, mine, source_id=8)
        _emit(s, theirs)

    with session_scope(app) as s:
        with pytest.raises(NotFound):
            notifications.mark_read(s, nid, recipient_type="author", recipient_id=theirs)
        with pytest.raises(NotFound):
            notifications.delete(s, nid, recipient_type="author", recipient_id=theirs)
        with pytest.raises(NotFound):
            notifications.mark_read(s, nid, recipient_type="admin", recipient_id=None)

    with session_scope(app) as s:
        n = notifications.mark_read(s, nid, recipient_type="author", recipient_id=mine)
        assert n.is_read and n.read_at is not None
        assert notifications.unread_count(s, recipient_type="author", recipient_id=mine) == 1
        assert notifications.mark_all_read(s, recipient_type="author", recipient_id=mine) == 1

    with session_scope(app) as s:
        assert notifications.unread_count(s, recipient_type="author", recipient_id=mine) == 0
        assert notifications.unread_count(s, recipient_type="author", recipient_id=theirs) == 1
        notifications.delete(s, nid, recipient_type="author", recipient_id=mine)
        assert notifications.inbox_query(s, recipient_type="author", recipient_id=mine).count() == 1

    with session_scope(app) as s:
        assert s.get(Notification, nid) is None
        assert notifications.inbox_query(s, recipient_type="author", recipient_id=mine).count() == 1


def test_admin_inbox_is_shared(app):
    with session_scope(app) as s:
        notifications.emit(
            s,
            recipient_type="admin",
            recipient_id=None,
            type_=notifications.NEW_CREATOR,
            title="Nouveau créateur",
            message="m",
            source_type="Author",
            source_id=1,
        )
        aid = make_author(s).id
        _emit(s, aid)
    with session_scope(app) as s:
        rows = notifications.inbox_query(s, recipient_type="admin", recipient_id=None).all()
        assert [n.type for n in rows] == ["new_creator"]
