from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.studio.errors import Forbidden, Unauthorized
from app.studio.models import User
from app.studio.modules.authors.models import Author


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in user.permission_keys


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                raise Unauthorized()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Forbidden()
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_author(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        author: Author | None = getattr(g, "current_author", None)
        if not author:
            raise Unauthorized()
        return fn(*args, **kwargs)

    return wrapped


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise Unauthorized()
    return u


def current_author() -> Author:
    a = getattr(g, "current_author", None)
    if not a:
        raise Unauthorized()
    return a
