"""
auth/errors.py -- Exception hierarchy for the credential and session core.

These exceptions are framework-agnostic: nothing here knows about HTTP. Each
class carries a stable machine-readable ``code`` and a default human message;
api/main.py owns the mapping from exception class to HTTP status.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for every error raised by auth/."""

    code = "session_error"
    message = "Session operation failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ---------------------------------------------------------------------------
# Input validation (caller-fixable)
# ---------------------------------------------------------------------------


class AllFieldsRequiredError(SessionError):
    code = "all_fields_required"
    message = "All fields are required."


class InvalidEmailFormatError(SessionError):
    code = "invalid_email_format"
    message = "Email must be a valid format (e.g., user@example.com)."


class PasswordTooShortError(SessionError):
    code = "password_too_short"
    message = "Password must be at least 8 characters long."


class PasswordTooLongError(SessionError):
    """bcrypt only reads the first 72 bytes; longer inputs are rejected up front."""

    code = "password_too_long"
    message = "Password must be at most 72 bytes long."


class LogoutFieldsRequiredError(SessionError):
    code = "logout_fields_required"
    message = "Logout fields (user_id, refresh_token) are required."


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------


class EmailExistsError(SessionError):
    code = "email_exists"
    message = "Email address is already registered."


class InvalidCredentialsError(SessionError):
    """Raised for unknown email AND wrong password -- the two are indistinguishable."""

    code = "invalid_credentials"
    message = "Invalid email or password."


class RefreshTokenNotWhitelistedError(SessionError):
    code = "refresh_token_not_whitelisted"
    message = "The refresh token is not whitelisted for this user."


class UnknownUserError(SessionError):
    code = "unknown_user"
    message = "User ID does not belong to any account."


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class DuplicateEmailError(SessionError):
    """The unique constraint on user.email rejected an insert."""

    code = "email_exists"
    message = "Email address is already registered."


class StorageError(SessionError):
    """Any persistence fault. Always propagated, never retried."""

    code = "storage_failure"
    message = "The credential store is unavailable."


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


class TokenError(SessionError):
    code = "invalid_token"
    message = "Invalid token."


class TokenExpiredError(TokenError):
    code = "token_expired"
    message = "Token has expired."


class InvalidSignatureError(TokenError):
    code = "invalid_signature"
    message = "Invalid token signature."
