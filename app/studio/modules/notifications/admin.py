from __future__ import annotations

from flask import Blueprint, request

from app.studio.audit import record_event
from app.studio.db import db_session
from app.studio.http import ok
from app.studio.modules.notifications import service as notifications
from app.studio.pagination import page_args, paginate
from app.studio.rbac import current_user, require_permission

bp = Blueprint("notifications_admin", __name__)

# The back office shares one inbox.
_SCOPE = {"recipient_type": "admin", "recipient_id": None}


@bp.get("/admin/notifications")
@require_permission("notifications.view")
def inbox():
    s = db_session()
    unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    page, limit = page_args()
    data = paginate(
        notifications.inbox_query(s, unread_only=unread_only, **_SCOPE),
        page=page,
        limit=limit,
        serialize=notifications.serialize,
    )
    data["unreadCount"] = notifications.unread_count(s, **_SCOPE)
    return ok(data)


@bp.put("/admin/notifications/<int:notification_id>/read")
@require_permission("notifications.view")
def read(notification_id: int):
    s = db_session()
    n = notifications.mark_read(s, notification_id, **_SCOPE)
    s.commit()
    return ok(notifications.serialize(n))


@bp.put("/admin/notifications/read-all")
@require_permission("notifications.view")
def read_all():
    s = db_session()
    updated = notifications.mark_all_read(s, **_SCOPE)
    s.commit()
    return ok({"updated": updated})


@bp.delete("/admin/notifications/<int:notification_id>")
@require_permission("notifications.view")
def delete(notification_id: int):
    s = db_session()
    notifications.delete(s, notification_id, **_SCOPE)
    record_event(
        s,
        actor=current_user(),
        action="notification.delete",
        entity_type="Notification",
        entity_id=str(notification_id),
    )
    s.commit()
    return ok()
