"""Typed failures raised by the services and rendered by the HTTP layer."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for expected, non-fatal failures of a domain operation."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "Something went wrong"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        super().__init__(message or self.message)
        self.detail = message or self.message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.context}


# Input validation


class InvalidPhone(ServiceError):
    status_code = 400
    code = "invalid_phone"
    message = "Phone number must contain 10 to 15 digits"


class InvalidCode(ServiceError):
    status_code = 400
    code = "invalid_code"
    message = "Verification code has an invalid format"


# Policy rejection


class RateLimited(ServiceError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message, retry_after=retry_after)
        self.retry_after = retry_after


class AttemptsExhausted(ServiceError):
    status_code = 403
    code = "attempts_exhausted"
    message = "Too many incorrect codes. Request a new one."


# OTP state


class NoActiveChallenge(ServiceError):
    status_code = 404
    code = "no_active_challenge"
    message = "No pending verification for this phone number"


class ChallengeExpired(ServiceError):
    status_code = 410
    code = "expired"
    message = "Verification code has expired. Request a new one."


class CodeMismatch(ServiceError):
    status_code = 401
    code = "code_mismatch"
    message = "Incorrect verification code"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(attempts_remaining=attempts_remaining)
        self.attempts_remaining = attempts_remaining


# Accounts


class DuplicatePhone(ServiceError):
    status_code = 409
    code = "duplicate_phone"
    message = "An account with this phone number already exists"


class AccountNotFound(ServiceError):
    status_code = 404
    code = "not_found"
    message = "No user found with this phone number."


class InvalidCredentials(ServiceError):
    status_code = 401
    code = "invalid_credentials"
    message = "Incorrect password. Please try again."


# Bookings


class BookingNotFound(ServiceError):
    status_code = 404
    code = "not_found"
    message = "Booking not found"


class InvalidTransition(ServiceError):
    status_code = 409
    code = "invalid_transition"
    message = "Booking cannot move to the requested state"


class AlreadyAccepted(ServiceError):
    status_code = 409
    code = "already_accepted"
    message = "Booking has already been accepted by another driver"


class Unauthorized(ServiceError):
    status_code = 403
    code = "unauthorized"
    message = "Not allowed to act on this booking"


# Dependencies


class DeliveryFailed(ServiceError):
    status_code = 502
    code = "delivery_failed"
    message = "Could not deliver the message. Please retry."


class StoreUnavailable(ServiceError):
    status_code = 503
    code = "store_unavailable"
    message = "Service temporarily unavailable"
