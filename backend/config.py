"""
Dashboard - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
"""

from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: SQLAlchemy URL for the auth store
        BCRYPT_ROUNDS: bcrypt cost factor for password hashes
        SESSION_EXPIRE_DAYS: Lifetime of a full session
        PENDING_AUTH_EXPIRE_MINUTES: Lifetime of a password-verified, 2FA-pending token
        LOGIN_MAX_ATTEMPTS: Failed attempts tolerated inside the lockout window
        LOGIN_LOCKOUT_MINUTES: Trailing window over which failures are counted
        TOTP_WINDOW: Accepted clock drift, in 30 second steps either side
        TOTP_ISSUER: Issuer label shown in authenticator apps
    """

    APP_NAME: str = "Dashboard"
    ENVIRONMENT: str = "development"

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./dashboard.db"
    SEED_DEMO_USERS: bool = True

    # Credentials
    BCRYPT_ROUNDS: int = 10

    # Sessions
    SESSION_EXPIRE_DAYS: int = 7
    PENDING_AUTH_EXPIRE_MINUTES: int = 5
    SESSION_COOKIE_NAME: str = "dashboard-session"
    PENDING_COOKIE_NAME: str = "dashboard-pending-auth"

    # Brute-force lockout
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_MINUTES: int = 15

    # Two-factor authentication
    TOTP_WINDOW: int = 2
    TOTP_ISSUER: str = "Dashboard"
    TWO_FACTOR_SETUP_MINUTES: int = 10

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @field_validator("TOTP_WINDOW")
    @classmethod
    def totp_window_positive(cls, v):
        if v < 1:
            raise ValueError("TOTP_WINDOW must be at least 1")
        return v

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def bcrypt_rounds_in_range(cls, v):
        # bcrypt.gensalt only accepts 4..31
        if not 4 <= v <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @property
    def COOKIE_SECURE(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
