"""
Typed failures raised by the lifecycle services.

Each error carries a stable machine code and the HTTP status the API layer
answers with. Services raise them before or instead of mutating state; the
request teardown rolls the transaction back.
"""
from __future__ import annotations

from typing import Any


class StudioError(Exception):
    code = "error"
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(StudioError):
    code = "validation_error"
    default_message = "Invalid input."

    @classmethod
    def from_errors(cls, errors: dict[str, str]) -> "ValidationError":
        return cls("; ".join(errors.values()), details={"fields": errors})


class RateLimited(StudioError):
    code = "rate_limited"
    status_code = 429
    default_message = "Please wait before requesting a new code."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = max(int(retry_after), 1)
        super().__init__(message, details={"retry_after": self.retry_after})


# OTP verification failures all answer 400: the caller re-prompts for a code.
class ChallengeNotFound(StudioError):
    code = "not_found"
    default_message = "No verification code was requested for this address."


class ChallengeExpired(StudioError):
    code = "expired"
    default_message = "The verification code has expired."


class ChallengeMismatch(StudioError):
    code = "mismatch"
    default_message = "The verification code is incorrect."


class ChallengeAlreadyConsumed(StudioError):
    code = "already_consumed"
    default_message = "The verification code has already been used."


class NotFound(StudioError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class AlreadyReviewed(StudioError):
    code = "already_reviewed"
    status_code = 409
    default_message = "This item has already been reviewed. Refresh and try again."


class ReasonRequired(StudioError):
    code = "reason_required"
    status_code = 422
    default_message = "A rejection reason is required."


class AlreadyPending(StudioError):
    code = "already_pending"
    status_code = 409
    default_message = "A submission is already awaiting review."


class NotDraftOrRejected(StudioError):
    code = "not_draft_or_rejected"
    status_code = 409
    default_message = "Only draft or rejected content can be submitted for review."


class PreconditionFailed(StudioError):
    code = "precondition_failed"
    status_code = 409
    default_message = "This action is not allowed yet."


class Unauthorized(StudioError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(StudioError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have access to this resource."


class DeliveryFailed(StudioError):
    code = "delivery_failed"
    status_code = 503
    default_message = "The verification code could not be sent. Try again shortly."
