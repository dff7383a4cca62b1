"""
auth/errors.py -- Typed failures raised by the authentication core.

Every auth operation fails with exactly one of these. Each class carries the
HTTP status and a stable machine-readable code, so the boundary (api/main.py)
can render any of them with a single exception handler instead of each route
building its own HTTPException.

status is "fail" for client errors (4xx) and "error" for server errors (5xx),
matching the response envelope clients already parse.

InvalidTokenError is deliberately NOT an AppError: it never reaches the
boundary. The auth dependencies translate it into NotAuthenticatedError (or
into an anonymous context for the soft variant).

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for operational errors that are safe to show to clients."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input data."


class DuplicateEmailError(ValidationError):
    code = "duplicate_email"
    default_message = "An account with that email address already exists."


class InvalidCredentialsError(AppError):
    """Login failure. Unknown email and wrong password are indistinguishable."""

    status_code = 401
    code = "bad_credentials"
    default_message = "Incorrect email or password."


class NotAuthenticatedError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "You are not logged in! Please log in to get access."


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ExpiredOrInvalidTokenError(AppError):
    status_code = 400
    code = "invalid_reset_token"
    default_message = "Token is invalid or has expired."


class EmailDeliveryError(AppError):
    status_code = 500
    code = "email_delivery_failed"
    default_message = "There was an error sending the email. Try again later!"


class InvalidTokenError(Exception):
    """A session token failed verification.

    reason is one of "expired", "bad_signature", "malformed" or
    "missing_claims". It is used for logging only -- every reason is treated
    as "not authenticated".
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"invalid session token ({reason})")
