from __future__ import annotations

from flask import Blueprint, current_app, session

from app.studio.db import db_session
from app.studio.errors import ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.authors.service import serialize_author
from app.studio.modules.registration import service as registration
from app.studio.modules.registration.wizard import COLLECTING_IDENTITY, STEP_VALIDATORS, validate_step
from app.studio.modules.verification import engine
from app.studio.security import rotate_csrf_token

bp = Blueprint("registration", __name__)


@bp.post("/register/validate")
def validate():
    """Server-side check of one wizard step. Nothing is stored."""
    data = json_body()
    step = (data.get("step") or "").strip()
    if step not in STEP_VALIDATORS:
        raise ValidationError.from_errors({"step": f"Unknown step: {step!r}"})
    fields = data.get("data") or {}
    validate_step(step, fields)
    if step == COLLECTING_IDENTITY:
        registration.check_identity_available(db_session(), fields)
    return ok({"step": step, "valid": True})


@bp.post("/register/complete")
def complete():
    s = db_session()
    result = registration.complete_registration(
        s,
        payload=json_body(),
        storage=current_app.extensions["storage"],
        max_document_bytes=current_app.config["MAX_DOCUMENT_BYTES"],
    )
    s.commit()
    session["author_id"] = result.author.id
    csrf_token = rotate_csrf_token()
    return ok(
        {"author": serialize_author(result.author), "kyc": engine.serialize(result.kyc), "csrf_token": csrf_token},
        201,
    )
