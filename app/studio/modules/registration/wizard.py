"""
Sign-up wizard state machine.

The wizard lives on the client between requests; the server rebuilds it to
validate each step and, on completion, to validate everything at once.
Going back never has side effects. In particular leaving AwaitingOTP for
CollectingIdentity does not touch the outstanding challenge.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.studio.errors import PreconditionFailed, ValidationError
from app.studio.modules.verification.engine import validate_kyc_fields
from app.studio.utils import clean_str, is_valid_email, normalize_email

COLLECTING_IDENTITY = "collecting_identity"
AWAITING_OTP = "awaiting_otp"
SETTING_CREDENTIAL = "setting_credential"
COLLECTING_PROFILE = "collecting_profile"
SUBMITTING_KYC = "submitting_kyc"
COMPLETE = "complete"

STEPS = (COLLECTING_IDENTITY, AWAITING_OTP, SETTING_CREDENTIAL, COLLECTING_PROFILE, SUBMITTING_KYC, COMPLETE)

MIN_PASSWORD_LENGTH = 8
MAX_PSEUDO_LENGTH = 64


def validate_identity(data: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    email = normalize_email(data.get("email"))
    if not is_valid_email(email):
        errors["email"] = "A valid email address is required."
    pseudo = (data.get("pseudo") or "").strip()
    if not pseudo:
        errors["pseudo"] = "Pseudo is required."
    elif len(pseudo) > MAX_PSEUDO_LENGTH:
        errors["pseudo"] = f"Pseudo must be at most {MAX_PSEUDO_LENGTH} characters."
    return errors


def validate_credential(data: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    password = data.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    confirm = data.get("confirm_password")
    if confirm is not None and confirm != password:
        errors["confirm_password"] = "Passwords do not match."
    return errors


def validate_profile(data: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    if len(data.get("biography") or "") > 5000:
        errors["biography"] = "Biography is too long."
    if len(data.get("speciality") or "") > 128:
        errors["speciality"] = "Speciality is too long."
    return errors


STEP_VALIDATORS = {
    COLLECTING_IDENTITY: validate_identity,
    SETTING_CREDENTIAL: validate_credential,
    COLLECTING_PROFILE: validate_profile,
    SUBMITTING_KYC: validate_kyc_fields,
}


def validate_step(step: str, data: dict) -> None:
    validator = STEP_VALIDATORS.get(step)
    if validator is None:
        raise ValidationError.from_errors({"step": f"Step {step!r} has no form to validate."})
    errors = validator(data or {})
    if errors:
        raise ValidationError.from_errors(errors)


@dataclass
class RegistrationWizard:
    state: str = COLLECTING_IDENTITY
    identity: dict[str, Any] = field(default_factory=dict)
    otp_handle: str | None = None
    grant: str | None = None
    credential: dict[str, Any] = field(default_factory=dict)
    profile: dict[str, Any] = field(default_factory=dict)
    kyc: dict[str, Any] = field(default_factory=dict)

    def _expect(self, state: str) -> None:
        if self.state != state:
            raise PreconditionFailed(f"Registration is at step {self.state!r}, not {state!r}.")

    def submit_identity(self, data: dict) -> None:
        self._expect(COLLECTING_IDENTITY)
        validate_step(COLLECTING_IDENTITY, data)
        self.identity = {
            "email": normalize_email(data.get("email")),
            "pseudo": data["pseudo"].strip(),
            "phone_number": clean_str(data.get("phone_number")),
        }
        self.state = AWAITING_OTP

    def challenge_issued(self, handle: str) -> None:
        self._expect(AWAITING_OTP)
        self.otp_handle = handle

    def otp_verified(self, grant: str) -> None:
        self._expect(AWAITING_OTP)
        if not grant:
            raise PreconditionFailed("Email verification is required.")
        self.grant = grant
        self.state = SETTING_CREDENTIAL

    def set_credential(self, data: dict) -> None:
        self._expect(SETTING_CREDENTIAL)
        validate_step(SETTING_CREDENTIAL, data)
        self.credential = {"password": data["password"]}
        self.state = COLLECTING_PROFILE

    def set_profile(self, data: dict) -> None:
        self._expect(COLLECTING_PROFILE)
        validate_step(COLLECTING_PROFILE, data)
        self.profile = {
            "biography": clean_str(data.get("biography")),
            "speciality": clean_str(data.get("speciality")),
        }
        self.state = SUBMITTING_KYC

    def set_kyc(self, data: dict) -> None:
        self._expect(SUBMITTING_KYC)
        validate_step(SUBMITTING_KYC, data)
        self.kyc = dict(data)

    def back(self) -> None:
        if self.state in (COLLECTING_IDENTITY, COMPLETE):
            raise PreconditionFailed(f"Cannot go back from {self.state!r}.")
        # Collected data and the outstanding challenge handle are kept.
        self.state = STEPS[STEPS.index(self.state) - 1]

    def ready(self) -> bool:
        return self.state == SUBMITTING_KYC and bool(self.kyc) and bool(self.grant)

    def mark_complete(self) -> None:
        if not self.ready():
            raise PreconditionFailed("Registration is not ready to complete.")
        self.state = COMPLETE

    @classmethod
    def from_completion_payload(cls, payload: dict) -> "RegistrationWizard":
        """Replay every step from a single `complete` request body."""
        w = cls()
        w.submit_identity(payload.get("identity") or {})
        w.otp_verified((payload.get("grant") or "").strip())
        w.set_credential(payload.get("credential") or {})
        w.set_profile(payload.get("profile") or {})
        w.set_kyc(payload.get("kyc") or {})
        return w
