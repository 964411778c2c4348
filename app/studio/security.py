import secrets

from flask import Request, current_app, jsonify, request, session

# Login endpoints create the session the CSRF token lives in.
CSRF_EXEMPT_ENDPOINTS = {"auth.admin_login", "authors.login"}
_UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def rotate_csrf_token() -> str:
    """New token after a privilege change (login)."""
    session["csrf_token"] = secrets.token_urlsafe(32)
    return session["csrf_token"]


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header or JSON body."""
    token = req.headers.get("X-CSRF-Token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def csrf_protect():
    """before_request hook; a no-op unless CSRF_ENABLED."""
    if not current_app.config.get("CSRF_ENABLED"):
        return None
    if request.path.startswith(("/health", "/healthz")):
        return None
    ensure_csrf_token()
    session.permanent = True
    if request.method not in _UNSAFE_METHODS or request.endpoint in CSRF_EXEMPT_ENDPOINTS:
        return None
    if validate_csrf(request):
        return None
    current_app.logger.warning("CSRF: rejected %s %s", request.method, request.path)
    resp = jsonify({"success": False, "error": {"code": "csrf_invalid", "message": "CSRF token missing or invalid."}})
    resp.status_code = 400
    return resp
