"""
Dashboard - Role-Based Access Control (RBAC)

Permission evaluation over an immutable snapshot of the authenticated user.

Security:
- Deny-by-default: only explicit (resource, action) grants are honoured
- No hierarchy: "manage" does NOT imply "read"
- Permissions are unioned across every role the user holds
- Evaluation never touches the store; the snapshot is taken once when the
  session is resolved, so grants changed mid-request are not visible until
  the next resolution
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Resource(str, Enum):
    """Pages/modules under permission control."""
    USERS = "users"
    ROLES = "roles"
    SETTINGS = "settings"
    DASHBOARD = "dashboard"


class Action(str, Enum):
    """Simplified action set."""
    READ = "read"      # View the page and its content
    MANAGE = "manage"  # View and modify everything on the page


class PermissionGrant(BaseModel):
    """A single (resource, action) pair granted through a role."""
    model_config = ConfigDict(frozen=True)

    resource: str
    action: str


class RoleGrant(BaseModel):
    """A role held by the user, with its materialized permissions."""
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    display_name: str
    permissions: tuple[PermissionGrant, ...] = ()


class AuthenticatedUser(BaseModel):
    """
    Immutable, secret-free view of a user for the lifetime of one request.

    Built once at session resolution; never carries the password hash,
    TOTP secret or verification token.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    email: str
    username: str
    name: str
    is_active: bool
    is_verified: bool
    two_factor_enabled: bool
    last_login_at: Optional[datetime] = None
    roles: tuple[RoleGrant, ...] = ()

    @property
    def primary_role(self) -> Optional[RoleGrant]:
        """First assigned role, used for display only."""
        return self.roles[0] if self.roles else None


def has_permission(user: Optional[AuthenticatedUser], resource: str, action: str) -> bool:
    """
    Check whether any of the user's roles grants (resource, action) exactly.

    Args:
        user: Snapshot of the authenticated user (None means anonymous)
        resource: e.g. "users"
        action: e.g. "manage"

    Returns:
        True on the first exact match, False otherwise. Never raises.
    """
    if user is None:
        return False

    resource = getattr(resource, "value", resource)
    action = getattr(action, "value", action)

    for role in user.roles:
        for permission in role.permissions:
            if permission.resource == resource and permission.action == action:
                return True
    return False


def build_authenticated_user(user) -> AuthenticatedUser:
    """
    Materialize an AuthenticatedUser from a loaded ORM User.

    Args:
        user: backend.auth.models.User with roles/permissions loadable

    Returns:
        Frozen snapshot
    """
    roles = tuple(
        RoleGrant(
            id=role.id,
            name=role.name,
            display_name=role.display_name,
            permissions=tuple(
                PermissionGrant(resource=p.resource, action=p.action)
                for p in sorted(role.permissions, key=lambda p: (p.resource, p.action))
            ),
        )
        for role in sorted(user.roles, key=lambda r: r.name)
    )

    return AuthenticatedUser(
        id=user.id,
        email=user.email,
        username=user.username,
        name=user.name,
        is_active=user.is_active,
        is_verified=user.is_verified,
        two_factor_enabled=user.two_factor_enabled,
        last_login_at=user.last_login_at,
        roles=roles,
    )
