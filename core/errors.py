"""
core/errors.py -- Typed domain errors with HTTP status semantics.

Every failure the auth core reports to a caller is an AppError subclass that
carries a status code, a stable machine-readable code, and an operator-safe
message. The API layer turns these into the standard error envelope; nothing
else needs to know about HTTP.

Taxonomy:
  Unauthenticated   401  missing / invalid / expired credential
  Forbidden         403  authenticated but not allowed
  NotFound          404  absent or not owned by the caller (same response)
  Conflict          409  duplicate email / resource
  ValidationFailed  400  malformed or unacceptable input
  RateLimited       429  too many requests
  ConfigurationError 500 server misconfiguration (e.g. signing secret unset)

Layer rule: core/ is the kernel. No imports from api/, auth/, or notify/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for expected, operator-safe failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required."


class TokenExpired(Unauthenticated):
    code = "token_expired"
    default_message = "Token has expired."


class TokenInvalid(Unauthenticated):
    code = "token_invalid"
    default_message = "Invalid token."


class InvalidCredentials(Unauthenticated):
    """Raised for both unknown email and wrong password.

    The message is fixed so the two cases are indistinguishable to a caller.
    """

    code = "invalid_credentials"
    default_message = "Invalid email or password"


class InvalidOrExpiredRefreshToken(Unauthenticated):
    code = "invalid_refresh_token"
    default_message = "Invalid or expired refresh token. Please login again."


class AccountGone(Unauthenticated):
    code = "account_gone"
    default_message = "Account no longer exists."


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class AccountDeactivated(Forbidden):
    code = "account_deactivated"
    default_message = "Your account has been deactivated. Please contact support."


class AccountBanned(Forbidden):
    code = "account_banned"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Your account has been banned. Reason: {reason or 'No reason provided'}")


# ---------------------------------------------------------------------------
# 404 / 409 / 400 / 429 / 500
# ---------------------------------------------------------------------------


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_failed"
    default_message = "Invalid request."


class AlreadyVerified(ValidationFailed):
    code = "already_verified"
    default_message = "Email is already verified."


class InvalidOrExpiredToken(ValidationFailed):
    code = "invalid_or_expired_token"
    default_message = "Invalid or expired token."


class RateLimited(AppError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after_seconds: int = 60) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class ConfigurationError(AppError):
    status_code = 500
    code = "configuration_error"
    default_message = "Server is misconfigured."
