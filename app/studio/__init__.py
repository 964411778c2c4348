import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

# Registers every mapped table on Base before blueprints import services.
import app.studio.models  # noqa: F401
from app.studio.config import load_config
from app.studio.db import db_session, init_db, teardown_db_session
from app.studio.errors import RateLimited, StudioError
from app.studio.mailer import mailer_from_config
from app.studio.security import csrf_protect
from app.studio.storage import storage_from_config
from app.studio.routes import bp as routes_bp
from app.studio.auth import bp as auth_bp, load_current_user
from app.studio.modules.otp.api import bp as otp_bp
from app.studio.modules.registration.api import bp as registration_bp
from app.studio.modules.authors.api import bp as authors_bp
from app.studio.modules.verification.api import bp as verification_bp
from app.studio.modules.verification.admin import bp as verification_admin_bp
from app.studio.modules.content.api import bp as content_bp
from app.studio.modules.content.admin import bp as content_admin_bp
from app.studio.modules.notifications.api import bp as notifications_bp
from app.studio.modules.notifications.admin import bp as notifications_admin_bp


def _error_response(status: int, code: str, message: str, details: dict | None = None):
    err: dict = {"code": code, "message": message}
    if details:
        err["details"] = details
    return jsonify({"success": False, "error": err}), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    app.before_request(csrf_protect)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("MAIL_BACKEND") == "memory":
            raise RuntimeError("MAIL_BACKEND=memory is for tests only.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
    app.extensions["storage"] = storage_from_config(app.config)
    app.extensions["mailer"] = mailer_from_config(app.config)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(otp_bp, url_prefix="/api")
    app.register_blueprint(registration_bp, url_prefix="/api")
    app.register_blueprint(authors_bp, url_prefix="/api")
    app.register_blueprint(verification_bp, url_prefix="/api")
    app.register_blueprint(verification_admin_bp, url_prefix="/api")
    app.register_blueprint(content_bp, url_prefix="/api")
    app.register_blueprint(content_admin_bp, url_prefix="/api")
    app.register_blueprint(notifications_bp, url_prefix="/api")
    app.register_blueprint(notifications_admin_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(StudioError)
    def _studio_error(e: StudioError):
        # Nothing from a failed operation may reach the database.
        if getattr(g, "db_session", None) is not None:
            db_session().rollback()
        if e.status_code == 403:
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s",
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        resp = jsonify({"success": False, "error": e.to_dict()})
        resp.status_code = e.status_code
        if isinstance(e, RateLimited):
            resp.headers["Retry-After"] = str(e.retry_after)
        return resp

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        code = (e.name or "error").lower().replace(" ", "_")
        return _error_response(e.code or 500, code, e.description or e.name)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in DO logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error_response(500, "internal_error", "Internal server error.")

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
