from __future__ import annotations

from typing import Any, Callable

from flask import request
from sqlalchemy.orm import Query

from app.studio.utils import parse_int

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def page_args() -> tuple[int, int]:
    page = parse_int(request.args.get("page"), 1)
    limit = parse_int(request.args.get("limit"), DEFAULT_LIMIT, maximum=MAX_LIMIT)
    return page, limit


def paginate(q: Query, *, page: int, limit: int, serialize: Callable[[Any], dict]) -> dict:
    """Offset pagination in the `{items, total, totalPages}` shape the admin client reads."""
    total = q.order_by(None).count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total + limit - 1) // limit
    return {
        "items": [serialize(r) for r in rows],
        "total": total,
        "totalPages": total_pages,
        "page": page,
        "limit": limit,
    }
