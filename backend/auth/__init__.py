"""
Dashboard - Authentication Package

Cookie-session authentication with:
- bcrypt password hashing
- Optional TOTP two-factor authentication
- Login-attempt ledger with lockout
- RBAC with deny-by-default
"""

from backend.auth.models import User, Session, Role, Permission
from backend.auth.service import AuthService, AuthResult
from backend.auth.dependencies import require_auth, require_permission

__all__ = [
    "User",
    "Session",
    "Role",
    "Permission",
    "AuthService",
    "AuthResult",
    "require_auth",
    "require_permission",
]
