"""
Dashboard - Authentication Errors

Domain errors raised inside the auth core. Each error carries:
- kind: stable machine-readable category
- message: text that is safe to show to the end user
- reason: internal detail written to the login-attempt ledger and logs

Infrastructure failures raise StoreUnavailableError, which is not an AuthError.
"""

from enum import Enum
from typing import Optional


GENERIC_LOGIN_FAILURE = "Invalid email or password"


class ErrorKind(str, Enum):
    """Categories of authentication/authorization failure."""
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DISABLED = "account_disabled"
    ACCOUNT_NOT_VERIFIED = "account_not_verified"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_2FA_CODE = "invalid_2fa_code"
    TWO_FACTOR_NOT_CONFIGURED = "two_factor_not_configured"
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
    ROLE_NOT_FOUND = "role_not_found"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SYSTEM_ROLE_PROTECTED = "system_role_protected"


class AuthError(Exception):
    """Base class for domain errors in the auth core."""

    kind: ErrorKind = ErrorKind.INVALID_CREDENTIALS
    default_message: str = GENERIC_LOGIN_FAILURE

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.message = message or self.default_message
        self.reason = reason or self.message
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = GENERIC_LOGIN_FAILURE


class AccountDisabledError(AuthError):
    kind = ErrorKind.ACCOUNT_DISABLED
    default_message = "Account is disabled"


class AccountNotVerifiedError(AuthError):
    # Shown to the user with the generic message to avoid account enumeration
    kind = ErrorKind.ACCOUNT_NOT_VERIFIED
    default_message = GENERIC_LOGIN_FAILURE


class AccountLockedError(AuthError):
    kind = ErrorKind.ACCOUNT_LOCKED
    default_message = "Account temporarily locked due to too many failed login attempts"


class InvalidTwoFactorCodeError(AuthError):
    kind = ErrorKind.INVALID_2FA_CODE
    default_message = "Invalid two-factor authentication code"


class TwoFactorNotConfiguredError(AuthError):
    kind = ErrorKind.TWO_FACTOR_NOT_CONFIGURED
    default_message = "Two-factor authentication is not configured"


class InvalidOrExpiredTokenError(AuthError):
    kind = ErrorKind.INVALID_OR_EXPIRED_TOKEN
    default_message = "Invalid or expired authentication token"


class RoleNotFoundError(AuthError):
    kind = ErrorKind.ROLE_NOT_FOUND
    default_message = "Role not found"


class PermissionDeniedError(AuthError):
    kind = ErrorKind.PERMISSION_DENIED
    default_message = "Permission denied"


class NotFoundError(AuthError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class ConflictError(AuthError):
    kind = ErrorKind.CONFLICT
    default_message = "Already exists"


class SystemRoleProtectedError(AuthError):
    kind = ErrorKind.SYSTEM_ROLE_PROTECTED
    default_message = "This role is protected"


class StoreUnavailableError(Exception):
    """Raised when the backing store cannot be reached or fails mid-operation."""
    pass
