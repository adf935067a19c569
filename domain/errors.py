"""Failure taxonomy for issuance and redemption.

Every error carries a machine-readable ``reason`` (also written to the
``denied`` audit event) and the HTTP status the API layer should use.
"""

from __future__ import annotations

from typing import Optional


class AccessError(Exception):
    reason: str = "internal_error"
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload = {"error": self.message, "reason": self.reason}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInput(AccessError):
    reason = "invalid_input"
    status_code = 400
    default_message = "Validation error"


class Unauthorized(AccessError):
    reason = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class NotFound(AccessError):
    reason = "not_found"
    status_code = 404
    default_message = "Not found"


class ResourceInactive(AccessError):
    reason = "resource_inactive"
    status_code = 400
    default_message = "Space is inactive"


class OutsideOperatingHours(AccessError):
    reason = "outside_operating_hours"
    status_code = 400
    default_message = "Space is currently closed"


class Expired(AccessError):
    reason = "expired"
    status_code = 400
    default_message = "Access code has expired"


class AlreadyUsed(AccessError):
    reason = "already_used"
    status_code = 400
    default_message = "Access code already used"


class InvalidOTP(AccessError):
    reason = "invalid_otp"
    status_code = 400
    default_message = "Invalid OTP code"


class LimitExceeded(AccessError):
    reason = "limit_exceeded"
    status_code = 400
    default_message = "Too many active access codes"


class ActuationFailure(AccessError):
    reason = "actuation_failed"
    status_code = 500
    default_message = "Failed to unlock space"


class StoreUnavailable(AccessError):
    reason = "store_unavailable"
    status_code = 500
    default_message = "Storage temporarily unavailable"
