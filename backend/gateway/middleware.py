"""
Dashboard - Security Middleware

Request/response middleware for:
- Request ID injection for tracing
- Security headers
- Session resolution and forced two-factor enrollment

Session resolution never rejects a request on its own: an absent or invalid
session yields an anonymous context and route guards decide access.
"""

import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from backend.auth import site_settings
from backend.auth.dependencies import ANONYMOUS, RequestAuthContext, TWO_FACTOR_SETUP_PATH
from backend.auth.exceptions import StoreUnavailableError
from backend.auth.service import AuthService
from backend.config import settings


logger = logging.getLogger(__name__)


# Paths that stay reachable for a user who still has to enrol in 2FA
FORCE_2FA_EXCLUDED_PREFIXES = (
    "/auth/",
    "/api/v1/auth/",
    "/logout",
    "/static",
    "/assets",
    "/favicon",
    "/health",
    "/docs",
    "/openapi.json",
)


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Security-focused middleware for all incoming requests.

    Responsibilities:
    1. Inject X-Request-ID header for distributed tracing
    2. Add security headers to response
    3. Log request timing
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process each request through security pipeline."""

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("%s %s -> %d (%.1fms)", request.method, request.url.path, response.status_code, duration_ms)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"

        return response


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Per-request authentication gate.

    1. Ensure the database has been initialized (shared, one-time)
    2. Resolve the session cookie into a RequestAuthContext
    3. Redirect users without 2FA to enrollment when force_two_factor is on
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.auth = ANONYMOUS

        initializer = getattr(request.app.state, "db_initializer", None)
        if initializer is not None:
            await initializer.ensure_initialized()

        token = request.cookies.get(settings.SESSION_COOKIE_NAME)
        if not token:
            return await call_next(request)

        try:
            with request.app.state.db_session_factory() as db:
                resolved = await AuthService(db).resolve_session(token)
                force_2fa = (
                    resolved is not None
                    and not resolved.user.two_factor_enabled
                    and not request.url.path.startswith(FORCE_2FA_EXCLUDED_PREFIXES)
                    and await site_settings.is_force_two_factor_enabled(db)
                )
        except StoreUnavailableError:
            return JSONResponse(status_code=503, content={"detail": "Service unavailable"})

        if resolved is None:
            response = await call_next(request)
            response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
            return response

        request.state.auth = RequestAuthContext(user=resolved.user, session_id=resolved.session_id)

        if force_2fa:
            return RedirectResponse(TWO_FACTOR_SETUP_PATH, status_code=302)

        return await call_next(request)
