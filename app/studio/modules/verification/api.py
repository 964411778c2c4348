from __future__ import annotations

from flask import Blueprint, current_app, request

from app.studio.db import db_session
from app.studio.errors import ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.verification import engine
from app.studio.modules.verification.documents import ALLOWED_TYPES, put_document
from app.studio.rbac import current_author, require_author

bp = Blueprint("verification", __name__)


def _submit(kind: str):
    s = db_session()
    sub = engine.submit(
        s,
        author=current_author(),
        kind=kind,
        payload=json_body(),
        storage=current_app.extensions["storage"],
        max_document_bytes=current_app.config["MAX_DOCUMENT_BYTES"],
    )
    s.commit()
    return ok(engine.serialize(sub), 201)


def _status(kind: str):
    s = db_session()
    author = current_author()
    history = engine.submission_history(s, author.id, kind)
    return ok(
        {
            "current": engine.serialize(history[0]) if history else None,
            "history": [engine.serialize(h) for h in history],
        }
    )


@bp.post("/kyc/submit")
@require_author
def kyc_submit():
    return _submit(engine.KYC)


@bp.get("/kyc/me")
@require_author
def kyc_me():
    return _status(engine.KYC)


@bp.post("/kyc/documents")
@require_author
def kyc_upload_document():
    """Pre-upload one document; the returned `blob:` reference can replace a data URI on submit."""
    author = current_author()
    slot = (request.form.get("slot") or "").strip()
    if slot not in engine.KYC_DOCUMENT_SLOTS:
        raise ValidationError.from_errors({"slot": f"Slot must be one of: {', '.join(engine.KYC_DOCUMENT_SLOTS)}"})
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError.from_errors({"file": "File is required."})
    mime = (f.mimetype or "").lower()
    if mime not in ALLOWED_TYPES:
        raise ValidationError.from_errors({"file": f"Unsupported document type: {mime}"})
    data = f.read()
    max_bytes = current_app.config["MAX_DOCUMENT_BYTES"]
    if not data or len(data) > max_bytes:
        raise ValidationError.from_errors({"file": f"Document must be between 1 byte and {max_bytes} bytes."})
    key = put_document(
        current_app.extensions["storage"], owner_key=f"author-{author.id}", slot=slot, mime=mime, data=data
    )
    current_app.logger.info("KYC: document uploaded author=%s slot=%s", author.id, slot)
    return ok({"ref": f"blob:{key}"}, 201)


@bp.post("/payment-methods/submit")
@require_author
def payment_submit():
    return _submit(engine.PAYMENT_METHOD)


@bp.get("/payment-methods/me")
@require_author
def payment_me():
    return _status(engine.PAYMENT_METHOD)
