from flask import Blueprint

from app.studio.http import ok
from app.studio.security import ensure_csrf_token

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/csrf")
def csrf_token():
    return ok({"csrf_token": ensure_csrf_token()})
