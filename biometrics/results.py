"""Explicit result variants returned by the biometric services.

Services never raise to signal an expected outcome such as a lockout or a
duplicate registration. They return :class:`Ok` or :class:`Err`, and callers
branch on the variant. Exceptions stay reserved for integrity faults and
programming errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Machine readable failure codes shared by the services and the API."""

    # Input validation
    CONSENT_REQUIRED = "CONSENT_REQUIRED"
    INVALID_QUALITY_SCORE = "INVALID_QUALITY_SCORE"
    INVALID_TEMPLATE = "INVALID_TEMPLATE"
    INVALID_VERIFICATION_TYPE = "INVALID_VERIFICATION_TYPE"
    INVALID_LIVENESS_SCORE = "INVALID_LIVENESS_SCORE"
    INVALID_DAYS = "INVALID_DAYS"
    MISSING_FIELDS = "MISSING_FIELDS"
    INVALID_REQUEST = "INVALID_REQUEST"
    # Security state
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    # Verification outcome
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    # Integrity
    DECRYPTION_FAILURE = "DECRYPTION_FAILURE"
    TEMPLATE_DIMENSION_MISMATCH = "TEMPLATE_DIMENSION_MISMATCH"
    # Not found / conflict
    PROFILE_EXISTS = "PROFILE_EXISTS"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    # Authorisation
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    CROSS_TENANT_DENIED = "CROSS_TENANT_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"
    # Second factor
    NO_ACTIVE_CHALLENGE = "NO_ACTIVE_CHALLENGE"
    OTP_EXPIRED = "OTP_EXPIRED"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    INVALID_CODE = "INVALID_CODE"


DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CONSENT_REQUIRED: "Biometric consent is required for face registration.",
    ErrorCode.INVALID_QUALITY_SCORE: "Quality score must be between 0 and 1.",
    ErrorCode.INVALID_TEMPLATE: "Face template is malformed.",
    ErrorCode.INVALID_VERIFICATION_TYPE: "Verification type must be start, end, or test.",
    ErrorCode.INVALID_LIVENESS_SCORE: "Liveness score must be between 0 and 1.",
    ErrorCode.INVALID_DAYS: "Days must be between 1 and 365.",
    ErrorCode.MISSING_FIELDS: "Required fields are missing.",
    ErrorCode.INVALID_REQUEST: "The request payload is invalid.",
    ErrorCode.ACCOUNT_LOCKED: "Face verification is temporarily locked. Try again later.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many verification attempts. Try again later.",
    ErrorCode.VERIFICATION_FAILED: "Face verification failed.",
    ErrorCode.DECRYPTION_FAILURE: "Face verification is unavailable. Contact support.",
    ErrorCode.TEMPLATE_DIMENSION_MISMATCH: "Face verification is unavailable. Contact support.",
    ErrorCode.PROFILE_EXISTS: "A face profile is already registered.",
    ErrorCode.PROFILE_NOT_FOUND: "No face profile is registered. Register before verifying.",
    ErrorCode.USER_NOT_FOUND: "User not found.",
    ErrorCode.DEVICE_NOT_FOUND: "Device not found.",
    ErrorCode.INSUFFICIENT_PERMISSIONS: "You do not have permission to perform this action.",
    ErrorCode.CROSS_TENANT_DENIED: "You can only manage users in your own company.",
    ErrorCode.ACCESS_DENIED: "You can only submit records for your own account.",
    ErrorCode.NO_ACTIVE_CHALLENGE: "No active one-time code found. Request a new code.",
    ErrorCode.OTP_EXPIRED: "The one-time code has expired. Request a new code.",
    ErrorCode.TOO_MANY_ATTEMPTS: "Too many incorrect codes. Request a new code.",
    ErrorCode.INVALID_CODE: "The one-time code is incorrect.",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome wrapping ``value``."""

    value: T

    ok = True


@dataclass(frozen=True)
class Err:
    """Expected failure with a code, a caller-safe message and optional payload.

    ``payload`` carries records written before the failure was decided, for
    example the attempt row of a failed verification.
    """

    code: ErrorCode
    message: str = ""
    payload: Any = None

    ok = False

    def __post_init__(self) -> None:
        if not self.message:
            object.__setattr__(self, "message", DEFAULT_MESSAGES.get(self.code, self.code.value))


Result = Union[Ok[T], Err]
