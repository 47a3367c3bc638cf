"""
Dashboard - Security Dependencies

FastAPI dependencies for authentication and authorization.

The AuthMiddleware resolves the session cookie once per request and stores
a typed RequestAuthContext on request.state.auth. Everything downstream
receives that context (or the user in it) through these dependencies; the
guards never query the store themselves.

Usage:
    @router.get("/users")
    async def list_users(user: AuthenticatedUser = Depends(require_permission("users", "read"))):
        ...

Guard failures raise AuthRedirect, which the app turns into a 302:
- no authenticated user  -> /auth/login?redirect=<path>
- missing permission     -> /403
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session as DBSession

from backend.auth.database import get_db
from backend.auth.exceptions import AuthError, ErrorKind
from backend.auth.service import AuthResult, AuthService
from backend.gateway.rbac import AuthenticatedUser, has_permission


LOGIN_PATH = "/auth/login"
FORBIDDEN_PATH = "/403"
TWO_FACTOR_SETUP_PATH = "/auth/setup-2fa"
TWO_FACTOR_VERIFY_PATH = "/auth/verify-2fa"
DASHBOARD_PATH = "/dashboard"


@dataclass(frozen=True)
class RequestAuthContext:
    """Authentication state of the current request."""
    user: Optional[AuthenticatedUser] = None
    session_id: Optional[UUID] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = RequestAuthContext()


ERROR_STATUS = {
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ACCOUNT_NOT_VERIFIED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ACCOUNT_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorKind.ACCOUNT_LOCKED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.INVALID_2FA_CODE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.TWO_FACTOR_NOT_CONFIGURED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_OR_EXPIRED_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ROLE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.SYSTEM_ROLE_PROTECTED: status.HTTP_409_CONFLICT,
}


def http_error(kind: ErrorKind, message: str) -> HTTPException:
    return HTTPException(status_code=ERROR_STATUS.get(kind, status.HTTP_400_BAD_REQUEST), detail=message)


def unwrap(result: AuthResult):
    """Return the value of a successful AuthResult or raise the matching HTTPException."""
    if not result.ok:
        raise http_error(result.error_kind, result.message)
    return result.value


def error_response_status(error: AuthError) -> int:
    return ERROR_STATUS.get(error.kind, status.HTTP_400_BAD_REQUEST)


class AuthRedirect(Exception):
    """Raised by guards; rendered as a 302 to location."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(location)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    agent = request.headers.get("User-Agent")
    return agent[:512] if agent else None


def get_auth_context(request: Request) -> RequestAuthContext:
    return getattr(request.state, "auth", ANONYMOUS)


def get_auth_service(db: DBSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


async def require_auth(
    request: Request,
    context: RequestAuthContext = Depends(get_auth_context),
) -> AuthenticatedUser:
    """
    Require an authenticated user.

    Raises:
        AuthRedirect: to the login page, remembering the requested path
    """
    if context.user is None:
        raise AuthRedirect(f"{LOGIN_PATH}?redirect={quote(request.url.path)}")
    return context.user


def require_permission(resource: str, action: str):
    """
    Dependency factory enforcing an exact (resource, action) grant.

    Args:
        resource: e.g. "users"
        action: "read" or "manage"; "manage" does not imply "read"
    """
    async def dependency(context: RequestAuthContext = Depends(get_auth_context)) -> AuthenticatedUser:
        if context.user is None:
            raise AuthRedirect(LOGIN_PATH)

        if not has_permission(context.user, resource, action):
            raise AuthRedirect(FORBIDDEN_PATH)

        return context.user

    return dependency
