from __future__ import annotations

from flask import Blueprint, current_app

from app.studio.db import db_session
from app.studio.errors import ChallengeMismatch, DeliveryFailed, RateLimited, ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.authors import service as authors
from app.studio.modules.otp import service as otp
from app.studio.modules.registration import service as registration

bp = Blueprint("otp", __name__)


def deliver_and_commit(issued: otp.IssuedChallenge | None) -> None:
    """
    Hand the code to the mailer, then commit the challenge. The code never goes back to the client.

    A failed send rolls the challenge back so its cooldown does not lock the caller out.
    """
    s = db_session()
    if issued is not None:
        try:
            otp.deliver_code(current_app.extensions["mailer"], issued)
        except OSError as e:
            s.rollback()
            current_app.logger.error("OTP: delivery failed purpose=%s error=%s", issued.challenge.purpose, e)
            raise DeliveryFailed() from e
    s.commit()


def verify_and_commit(*, identifier: str, code: str, purpose: str | None = None) -> otp.VerifiedChallenge:
    s = db_session()
    try:
        verified = otp.verify_challenge(
            s,
            identifier=identifier,
            code=code,
            purpose=purpose,
            max_attempts=current_app.config["OTP_MAX_ATTEMPTS"],
            grant_ttl_seconds=current_app.config["GRANT_TTL_SECONDS"],
        )
    except ChallengeMismatch:
        # Keep the attempt counter bump.
        s.commit()
        raise
    s.commit()
    return verified


def issue_password_reset(email: str) -> None:
    """Same outcome whether or not the account exists, including while cooling down."""
    cfg = current_app.config
    try:
        issued = authors.request_password_reset(
            db_session(),
            email=email,
            ttl_seconds=cfg["OTP_TTL_SECONDS"],
            cooldown_seconds=cfg["OTP_COOLDOWN_SECONDS"],
        )
    except RateLimited as e:
        current_app.logger.warning("RESET: request inside cooldown retry_after=%ss", e.retry_after)
        db_session().rollback()
        return
    try:
        deliver_and_commit(issued)
    except DeliveryFailed:
        # Already rolled back and logged; a 503 here would reveal that the account exists.
        return


@bp.post("/otp/issue")
def issue():
    data = json_body()
    identifier = (data.get("identifier") or data.get("email") or "").strip()
    purpose = (data.get("purpose") or "registration").strip()
    cfg = current_app.config
    s = db_session()

    if purpose == "registration":
        identity = dict(data.get("draft") or {})
        identity["email"] = identifier
        issued = registration.start_registration(
            s,
            identity=identity,
            ttl_seconds=cfg["OTP_TTL_SECONDS"],
            cooldown_seconds=cfg["OTP_COOLDOWN_SECONDS"],
        )
        deliver_and_commit(issued)
        return ok(
            {
                "handle": issued.handle,
                "expiresIn": cfg["OTP_TTL_SECONDS"],
                "retryAfter": cfg["OTP_COOLDOWN_SECONDS"],
            },
            202,
        )

    if purpose == "password_reset":
        issue_password_reset(identifier)
        return ok({"sent": True}, 202)

    raise ValidationError.from_errors({"purpose": "Purpose must be registration or password_reset."})


@bp.post("/otp/verify")
def verify():
    data = json_body()
    identifier = (data.get("identifier") or data.get("email") or "").strip()
    code = str(data.get("code") or "")
    if not identifier or not code:
        raise ValidationError.from_errors({"code": "Identifier and code are required."})
    verified = verify_and_commit(identifier=identifier, code=code, purpose=data.get("purpose") or None)
    return ok(
        {
            "purpose": verified.purpose,
            "identifier": verified.identifier,
            "draft": verified.draft,
            "grant": verified.grant,
            "grantExpiresAt": verified.grant_expires_at.isoformat(),
        }
    )
