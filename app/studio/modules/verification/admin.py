from __future__ import annotations

import mimetypes

from flask import Blueprint, current_app, request, send_file

from app.studio.db import db_session
from app.studio.errors import NotFound, ValidationError
from app.studio.http import json_body, ok
from app.studio.modules.authors.models import Author
from app.studio.modules.verification import engine
from app.studio.modules.verification.models import STATUSES, VerificationSubmission
from app.studio.pagination import page_args, paginate
from app.studio.rbac import current_user, require_permission
from app.studio.storage import StorageError

bp = Blueprint("verification_admin", __name__)


def _queue(kind: str):
    s = db_session()
    status = (request.args.get("status") or "pending").strip().lower()
    q = s.query(VerificationSubmission).filter(VerificationSubmission.kind == kind)
    if status != "all":
        if status not in STATUSES:
            raise ValidationError.from_errors({"status": f"Status must be one of: all, {', '.join(STATUSES)}"})
        q = q.filter(VerificationSubmission.status == status)
    q = q.order_by(VerificationSubmission.submitted_at.asc(), VerificationSubmission.id.asc())
    page, limit = page_args()
    return ok(paginate(q, page=page, limit=limit, serialize=lambda r: engine.serialize(r, include_author=True)))


def _review(kind: str, submission_id: int):
    data = json_body()
    s = db_session()
    sub = engine.review(
        s,
        submission_id=submission_id,
        admin=current_user(),
        decision=data.get("decision") or data.get("status") or "",
        reason=data.get("reason") or data.get("rejection_reason"),
        kind=kind,
    )
    s.commit()
    return ok(engine.serialize(sub, include_author=True))


@bp.get("/admin/kyc")
@require_permission("kyc.review")
def kyc_queue():
    return _queue(engine.KYC)


@bp.put("/kyc/<int:submission_id>/review")
@require_permission("kyc.review")
def kyc_review(submission_id: int):
    return _review(engine.KYC, submission_id)


@bp.get("/admin/kyc/history/<int:author_id>")
@require_permission("kyc.review")
def kyc_history(author_id: int):
    s = db_session()
    author = s.get(Author, author_id)
    if author is None:
        raise NotFound("Author not found.")
    return ok(
        {
            "author": {"id": author.id, "email": author.email, "pseudo": author.pseudo, "status": author.status},
            "kyc": [engine.serialize(h) for h in engine.submission_history(s, author_id, engine.KYC)],
            "payment_method": [
                engine.serialize(h) for h in engine.submission_history(s, author_id, engine.PAYMENT_METHOD)
            ],
            "eligibility": engine.eligibility(s, author),
        }
    )


@bp.get("/admin/payment-methods")
@require_permission("payments.review")
def payment_queue():
    return _queue(engine.PAYMENT_METHOD)


@bp.put("/payment-methods/<int:submission_id>/review")
@require_permission("payments.review")
def payment_review(submission_id: int):
    return _review(engine.PAYMENT_METHOD, submission_id)


@bp.get("/admin/blobs/<path:key>")
@require_permission("kyc.review")
def blob(key: str):
    storage = current_app.extensions["storage"]
    try:
        if not storage.exists(key):
            raise NotFound("Document not found.")
        fobj = storage.open(key)
    except StorageError:
        raise NotFound("Document not found.")
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fobj, mimetype=mimetype, download_name=key.rsplit("/", 1)[-1])
