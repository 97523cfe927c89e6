"""
core/errors.py -- Typed error hierarchy shared by every Gatehouse layer.

AppError is the base for all expected failures. Each subclass pins the HTTP
status class and a stable machine-readable code; api/main.py converts any
AppError into the standard ErrorResponse envelope:

    {"error": {"code": "<error_code>", "message": "<message>"}}

Stores signal "not found" by returning None. The auth workflow maps those
lower-level outcomes onto the deliberately coarse kinds below so that callers
cannot distinguish, for example, a malformed verification token from an
unknown one.

InternalError and DeliveryError carry server-side detail in `detail` for the
log only. The API layer never copies that detail into a response body.

Layer rule: core/ is the kernel. No imports from api/, auth/, sessions/,
query/, or mail/.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    @property
    def exposes_detail(self) -> bool:
        """True when `detail` is safe to send to the client (4xx only)."""
        return self.status_code < 500


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"
    default_message = "Request validation failed."


class InvalidTokenError(AppError):
    """Undecodable, unknown, spent, or email-mismatched verification token.

    One message for every cause so the response reveals nothing about which
    check failed.
    """

    status_code = 403
    error_code = "invalid_token"
    default_message = "Invalid token"


class TokenExpiredError(AppError):
    status_code = 403
    error_code = "token_expired"
    default_message = "Token expired"


class InvalidCredentialsError(AppError):
    """Unknown email or wrong password. Identical payload for both."""

    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Credentials not valid!"


class UnauthorizedError(AppError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Unauthorized"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"
    default_message = "Not found."


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"
    default_message = "Resource already exists."


class DeliveryError(AppError):
    """Outbound mail could not be handed to the delivery provider."""

    status_code = 502
    error_code = "delivery_failed"
    default_message = "Message delivery failed."


class InternalError(AppError):
    """Storage, session-store, or hashing malfunction."""

    status_code = 500
    error_code = "internal_error"
