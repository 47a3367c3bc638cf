"""
Dashboard - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS, security and authentication middleware
- Authentication and admin routes
- Database lifecycle management and one-time seeding

Security: every request passes through AuthMiddleware, which resolves the
session cookie; route guards decide access.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.config import settings
from backend.logger import configure_logging
from backend.gateway.middleware import AuthMiddleware, SecurityMiddleware
from backend.gateway.rbac import AuthenticatedUser, Resource, Action
from backend.auth.bootstrap import DatabaseInitializer
from backend.auth.database import get_engine, get_session_factory
from backend.auth.dependencies import AuthRedirect, error_response_status, require_permission
from backend.auth.exceptions import AuthError, StoreUnavailableError
from backend.auth.routes import router as auth_router
from backend.admin.routes import router as admin_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Configure logging
        - Create the engine and session factory
        - Create tables and seed roles, settings and demo users

    Shutdown:
        - Dispose the engine
    """
    configure_logging(settings.LOG_LEVEL)

    engine = get_engine(settings.DATABASE_URL)
    app.state.db_engine = engine
    app.state.db_session_factory = get_session_factory(engine)
    app.state.db_initializer = DatabaseInitializer(engine, seed_demo=settings.SEED_DEMO_USERS)

    await app.state.db_initializer.ensure_initialized()
    logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)

    yield

    engine.dispose()


app = FastAPI(
    title="Dashboard",
    description="Dashboard authentication and role-based access control",
    version="0.1.0",
    lifespan=lifespan,
)

# Last added runs first: CORS, then security headers, then session resolution
app.add_middleware(AuthMiddleware)
app.add_middleware(SecurityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(AuthRedirect)
async def auth_redirect_handler(request: Request, exc: AuthRedirect):
    return RedirectResponse(exc.location, status_code=status.HTTP_302_FOUND)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(
        status_code=error_response_status(exc),
        content={"detail": exc.message, "error_code": exc.kind.value},
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service unavailable"},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # Admin and account routes call the store without the AuthService wrapper
    logger.error("Database failure on %s: %s", request.url.path, type(exc).__name__)
    return await store_unavailable_handler(request, StoreUnavailableError("Database unavailable"))


app.include_router(auth_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint for local dev tooling."""
    initializer = getattr(app.state, "db_initializer", None)
    return {
        "status": "healthy",
        "version": "0.1.0",
        "database": bool(initializer and initializer.initialized),
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/403", status_code=status.HTTP_403_FORBIDDEN)
async def forbidden():
    return {"detail": "You do not have permission to view this page"}


@app.get("/api/v1/dashboard")
async def dashboard(
    user: AuthenticatedUser = Depends(require_permission(Resource.DASHBOARD, Action.READ)),
):
    """Landing data for the dashboard home page."""
    role = user.primary_role
    return {
        "message": f"Welcome, {user.name or user.username}",
        "role": role.display_name if role else None,
        "two_factor_enabled": user.two_factor_enabled,
    }
