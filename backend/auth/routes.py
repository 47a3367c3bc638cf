"""
Dashboard - Authentication Routes

API endpoints for authentication:
- POST   /auth/login           - Password (and optional TOTP) login
- POST   /auth/verify-2fa      - Second step of a 2FA login
- POST   /auth/logout          - Revoke current session
- GET    /auth/me              - Current user info
- GET    /auth/sessions        - List active sessions
- DELETE /auth/sessions/{id}   - Revoke one of your own sessions
- POST   /auth/2fa/setup       - Start authenticator enrollment
- POST   /auth/2fa/enable      - Confirm enrollment with a code
- POST   /auth/2fa/disable     - Turn 2FA off
- POST   /auth/register        - Self-service sign up
- GET    /auth/verify-email    - Confirm an email address

The session token and the pending 2FA token travel only in HttpOnly
cookies; response bodies never carry them.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from backend.auth.dependencies import (
    DASHBOARD_PATH,
    LOGIN_PATH,
    TWO_FACTOR_SETUP_PATH,
    TWO_FACTOR_VERIFY_PATH,
    RequestAuthContext,
    get_auth_context,
    get_auth_service,
    get_client_ip,
    get_user_agent,
    http_error,
    require_auth,
    unwrap,
)
from backend.auth.schemas import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    UserResponse,
    ActiveSessionsResponse,
    SessionInfo,
    VerifyTwoFactorRequest,
    TwoFactorSetupResponse,
    EnableTwoFactorRequest,
    DisableTwoFactorRequest,
    MessageResponse,
    RegisterRequest,
    ErrorResponse,
)
from backend.auth import sessions as session_store
from backend.auth.service import AuthService, LoginOutcome
from backend.config import settings
from backend.gateway.rbac import AuthenticatedUser


router = APIRouter(prefix="/auth", tags=["authentication"])


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def _expired_cookie(key: str) -> str:
    scratch = Response()
    scratch.delete_cookie(key, path="/")
    return scratch.headers["set-cookie"]


def _user_response(user: AuthenticatedUser) -> UserResponse:
    return UserResponse.model_validate(user.model_dump())


def _complete_login(response: Response, outcome: LoginOutcome) -> LoginResponse:
    """Turn a LoginOutcome into cookies plus a redirect hint."""
    if outcome.pending_token:
        _set_cookie(
            response,
            settings.PENDING_COOKIE_NAME,
            outcome.pending_token,
            settings.PENDING_AUTH_EXPIRE_MINUTES * 60,
        )
        return LoginResponse(status="two_factor_required", redirect=TWO_FACTOR_VERIFY_PATH)

    _set_cookie(
        response,
        settings.SESSION_COOKIE_NAME,
        outcome.session.token,
        settings.SESSION_EXPIRE_DAYS * 24 * 60 * 60,
    )
    return LoginResponse(
        status="authenticated",
        redirect=TWO_FACTOR_SETUP_PATH if outcome.requires_setup else DASHBOARD_PATH,
        requires_setup=outcome.requires_setup,
        user=_user_response(outcome.user),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    summary="Authenticate user",
)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate user with email and password.

    Users with 2FA who did not send a code get a short-lived pending cookie
    and are sent to the verification step; everyone else gets a session
    cookie.

    Raises:
        401: Invalid credentials or 2FA code
        403: Account disabled
        429: Too many failed attempts
    """
    result = await service.login(
        credentials.email,
        credentials.password,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        two_factor_code=credentials.two_factor_code,
    )
    return _complete_login(response, unwrap(result))


@router.post(
    "/verify-2fa",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Complete a two-factor login",
)
async def verify_two_factor(
    request: Request,
    response: Response,
    body: VerifyTwoFactorRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Exchange the pending cookie and a TOTP code for a session.

    The pending cookie is single-use: it is cleared whether or not the
    code was right.
    """
    pending_token = request.cookies.get(settings.PENDING_COOKIE_NAME)
    if not pending_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Two-factor session expired, please log in again",
        )

    result = await service.verify_pending_login(
        pending_token,
        body.code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    if not result.ok:
        # HTTPException replaces the response, so the cookie removal has to ride on it
        error = http_error(result.error_kind, result.message)
        error.headers = {"set-cookie": _expired_cookie(settings.PENDING_COOKIE_NAME)}
        raise error

    response.delete_cookie(settings.PENDING_COOKIE_NAME, path="/")
    return _complete_login(response, result.value)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Invalidate current session",
)
async def logout(
    response: Response,
    context: RequestAuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    """
    Revoke the current session and clear the cookie.

    Safe to call without a session.
    """
    if context.session_id is not None:
        await service.logout(context.session_id)

    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return LogoutResponse(redirect=LOGIN_PATH)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user information",
)
async def get_me(user: AuthenticatedUser = Depends(require_auth)):
    return _user_response(user)


@router.get(
    "/sessions",
    response_model=ActiveSessionsResponse,
    summary="List active sessions",
)
async def list_sessions(
    user: AuthenticatedUser = Depends(require_auth),
    context: RequestAuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    """List all active sessions for the current user."""
    active_sessions = await session_store.get_active_sessions(service.db, user.id)

    session_list = [
        SessionInfo(
            id=s.id,
            issued_at=s.issued_at,
            expires_at=s.expires_at,
            last_seen=s.last_seen,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            is_current=(s.id == context.session_id),
        )
        for s in active_sessions
    ]

    return ActiveSessionsResponse(sessions=session_list, total=len(session_list))


@router.delete(
    "/sessions/{target_session_id}",
    response_model=MessageResponse,
    summary="Revoke a specific session",
)
async def revoke_session(
    target_session_id: UUID,
    user: AuthenticatedUser = Depends(require_auth),
    service: AuthService = Depends(get_auth_service),
):
    """
    Revoke one of the current user's sessions.

    Another user's session is reported as not found.
    """
    owned = {s.id for s in await session_store.get_active_sessions(service.db, user.id)}
    if target_session_id not in owned:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    await service.logout(target_session_id)
    return MessageResponse(message="Session revoked")


# =============================================================================
# Two-factor enrollment
# =============================================================================

@router.post(
    "/2fa/setup",
    response_model=TwoFactorSetupResponse,
    summary="Start two-factor enrollment",
)
async def setup_two_factor(
    request: Request,
    user: AuthenticatedUser = Depends(require_auth),
    service: AuthService = Depends(get_auth_service),
):
    """
    Generate a secret and QR code for an authenticator app.

    Nothing changes on the account until /auth/2fa/enable succeeds.
    """
    setup = unwrap(await service.setup_2fa(user.id, request.url.hostname or "localhost"))
    return TwoFactorSetupResponse(
        secret=setup.secret,
        otpauth_uri=setup.otpauth_uri,
        qr_code=setup.qr_code,
    )


@router.post(
    "/2fa/enable",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Confirm two-factor enrollment",
)
async def enable_two_factor(
    body: EnableTwoFactorRequest,
    user: AuthenticatedUser = Depends(require_auth),
    service: AuthService = Depends(get_auth_service),
):
    unwrap(await service.enable_2fa(user.id, body.secret, body.code))
    return MessageResponse(message="Two-factor authentication enabled")


@router.post(
    "/2fa/disable",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Disable two-factor authentication",
)
async def disable_two_factor(
    body: DisableTwoFactorRequest,
    user: AuthenticatedUser = Depends(require_auth),
    service: AuthService = Depends(get_auth_service),
):
    unwrap(await service.disable_2fa(user.id, body.code))
    return MessageResponse(message="Two-factor authentication disabled")


# =============================================================================
# Registration
# =============================================================================

@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
    summary="Create a new account",
)
async def register(
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Create an unverified account with the default role.

    The account cannot log in until the email address is verified.
    """
    user = unwrap(await service.register(body.email, body.username, body.password, body.name))
    return _user_response(user)


@router.get(
    "/verify-email",
    response_model=MessageResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Verify an email address",
)
async def verify_email(
    token: str,
    service: AuthService = Depends(get_auth_service),
):
    unwrap(await service.verify_email(token))
    return MessageResponse(message="Email verified")
