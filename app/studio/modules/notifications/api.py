from __future__ import annotations

from flask import Blueprint, request

from app.studio.audit import record_event
from app.studio.db import db_session
from app.studio.http import ok
from app.studio.modules.notifications import service as notifications
from app.studio.pagination import page_args, paginate
from app.studio.rbac import current_author, require_author

bp = Blueprint("notifications", __name__)


def _scope() -> dict:
    return {"recipient_type": "author", "recipient_id": current_author().id}


@bp.get("/authors/notifications/list")
@require_author
def inbox():
    s = db_session()
    unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    page, limit = page_args()
    data = paginate(
        notifications.inbox_query(s, unread_only=unread_only, **_scope()),
        page=page,
        limit=limit,
        serialize=notifications.serialize,
    )
    data["unreadCount"] = notifications.unread_count(s, **_scope())
    return ok(data)


@bp.put("/authors/notifications/<int:notification_id>/read")
@require_author
def read(notification_id: int):
    s = db_session()
    n = notifications.mark_read(s, notification_id, **_scope())
    s.commit()
    return ok(notifications.serialize(n))


@bp.put("/authors/notifications/read-all")
@require_author
def read_all():
    s = db_session()
    updated = notifications.mark_all_read(s, **_scope())
    s.commit()
    return ok({"updated": updated})


@bp.delete("/authors/notifications/<int:notification_id>")
@require_author
def delete(notification_id: int):
    s = db_session()
    notifications.delete(s, notification_id, **_scope())
    record_event(
        s,
        actor=current_author(),
        action="notification.delete",
        entity_type="Notification",
        entity_id=str(notification_id),
    )
    s.commit()
    return ok()
