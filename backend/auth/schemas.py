"""
Dashboard - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.
"""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


def _normalize_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email format")
    return v.lower()


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")
    two_factor_code: Optional[str] = Field(None, description="TOTP code, if already known")

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        return _normalize_email(v)


class VerifyTwoFactorRequest(BaseModel):
    """Request body for POST /auth/verify-2fa. The pending token travels in a cookie."""
    code: str = Field(..., min_length=6, max_length=8)


class PermissionInfo(BaseModel):
    resource: str
    action: str

    model_config = ConfigDict(from_attributes=True)


class RoleInfo(BaseModel):
    id: UUID
    name: str
    display_name: str
    permissions: list[PermissionInfo] = []

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    """Secret-free user profile."""
    id: UUID
    email: str
    username: str
    name: str
    is_active: bool
    is_verified: bool
    two_factor_enabled: bool
    last_login_at: Optional[datetime] = None
    roles: list[RoleInfo] = []

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    """
    Response body for login and 2FA verification.

    status is "authenticated" or "two_factor_required"; redirect tells the
    client where to go next.
    """
    status: str
    redirect: str
    requires_setup: bool = False
    user: Optional[UserResponse] = None


class LogoutResponse(BaseModel):
    message: str = Field(default="Logged out")
    redirect: str


class SessionInfo(BaseModel):
    """Session information for user display. Never includes the token."""
    id: UUID
    issued_at: datetime
    expires_at: datetime
    last_seen: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_current: bool = False


class ActiveSessionsResponse(BaseModel):
    sessions: list[SessionInfo]
    total: int


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_uri: str
    qr_code: str = Field(..., description="PNG data URI of the otpauth URI")


class EnableTwoFactorRequest(BaseModel):
    secret: str = Field(..., min_length=16, max_length=64)
    code: str = Field(..., min_length=6, max_length=8)


class DisableTwoFactorRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


class MessageResponse(BaseModel):
    message: str


class RegisterRequest(BaseModel):
    email: str
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8)
    name: str = Field(default="", max_length=255)

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v):
        """Enforce password strength requirements."""
        if not re.search(r"[A-Za-z]", v):
            raise ValueError("Password must contain at least one letter")
        if not re.search(r"\d", v):
            raise ValueError("Password must contain at least one digit")
        return v


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    error_code: Optional[str] = None
    request_id: Optional[str] = None
