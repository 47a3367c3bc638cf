"""
Dashboard - Admin API Routes

Administrative endpoints:
- Role and permission management
- User status and role assignment
- Login attempt history
- Global settings (force two-factor)

Every route is guarded by an exact (resource, action) permission.
Domain errors raised by the admin service are rendered by the app-level
AuthError handler.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Depends, Query, Path, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import selectinload
from sqlmodel import Session as DBSession, select

from backend.admin import service as admin_service
from backend.auth import attempts, site_settings
from backend.auth.database import get_db
from backend.auth.dependencies import require_permission
from backend.auth.models import User
from backend.gateway.rbac import AuthenticatedUser, Resource, Action


router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class PermissionItem(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    resource: str
    action: str

    model_config = ConfigDict(from_attributes=True)


class RoleListItem(BaseModel):
    """Role item for admin list."""
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    is_system: bool
    user_count: int
    permission_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleDetailResponse(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    is_system: bool
    user_count: int
    permissions: List[PermissionItem] = []

    model_config = ConfigDict(from_attributes=True)


class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50, pattern=r"^[a-z][a-z0-9_-]*$")
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permission_ids: List[UUID] = []


class RoleUpdateRequest(BaseModel):
    """Fields left out are not changed."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permission_ids: Optional[List[UUID]] = None


class UserListItem(BaseModel):
    """User item for admin list."""
    id: UUID
    email: str
    username: str
    name: str
    is_active: bool
    is_verified: bool
    two_factor_enabled: bool
    roles: List[str] = []
    created_at: datetime
    last_login_at: Optional[datetime] = None


class UserListResponse(BaseModel):
    users: List[UserListItem]
    total: int


class UserStatusRequest(BaseModel):
    is_active: bool


class UserRolesRequest(BaseModel):
    role_ids: List[UUID]


class LoginAttemptItem(BaseModel):
    id: UUID
    email: str
    ip_address: str
    success: bool
    failure_reason: Optional[str] = None
    user_agent: Optional[str] = None
    attempted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ForceTwoFactorRequest(BaseModel):
    enabled: bool


class ForceTwoFactorResponse(BaseModel):
    enabled: bool


def _user_item(user: User) -> UserListItem:
    return UserListItem(
        id=user.id,
        email=user.email,
        username=user.username,
        name=user.name,
        is_active=user.is_active,
        is_verified=user.is_verified,
        two_factor_enabled=user.two_factor_enabled,
        roles=sorted(role.name for role in user.roles),
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )


# =============================================================================
# Role Endpoints
# =============================================================================

@router.get("/roles", response_model=List[RoleListItem], summary="List Roles")
async def list_roles(
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.READ)),
    db: DBSession = Depends(get_db),
):
    """List all roles with user and permission counts. System roles first."""
    return [RoleListItem.model_validate(r) for r in await admin_service.list_roles(db)]


@router.get("/roles/{role_id}", response_model=RoleDetailResponse, summary="Get Role")
async def get_role(
    role_id: UUID = Path(..., description="Role ID"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.READ)),
    db: DBSession = Depends(get_db),
):
    return RoleDetailResponse.model_validate(await admin_service.get_role(db, role_id))


@router.post(
    "/roles",
    response_model=RoleDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Role",
)
async def create_role(
    body: RoleCreateRequest,
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    detail = await admin_service.create_role(
        db,
        name=body.name,
        display_name=body.display_name,
        description=body.description,
        permission_ids=body.permission_ids,
    )
    return RoleDetailResponse.model_validate(detail)


@router.put("/roles/{role_id}", response_model=RoleDetailResponse, summary="Update Role")
async def update_role(
    body: RoleUpdateRequest,
    role_id: UUID = Path(..., description="Role ID"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    """
    Update role metadata and/or replace its permission set.

    The administrator role only accepts description changes.
    """
    detail = await admin_service.update_role(
        db,
        role_id,
        display_name=body.display_name,
        description=body.description,
        permission_ids=body.permission_ids,
    )
    return RoleDetailResponse.model_validate(detail)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Role")
async def delete_role(
    role_id: UUID = Path(..., description="Role ID"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    await admin_service.delete_role(db, role_id)


@router.get("/permissions", response_model=List[PermissionItem], summary="List Permissions")
async def list_permissions(
    admin: AuthenticatedUser = Depends(require_permission(Resource.ROLES, Action.READ)),
    db: DBSession = Depends(get_db),
):
    return await admin_service.list_permissions(db)


# =============================================================================
# User Management Endpoints
# =============================================================================

@router.get("/users", response_model=UserListResponse, summary="List All Users")
async def list_users(
    admin: AuthenticatedUser = Depends(require_permission(Resource.USERS, Action.READ)),
    db: DBSession = Depends(get_db),
):
    users = db.exec(
        select(User).options(selectinload(User.roles)).order_by(User.created_at)
    ).all()
    items = [_user_item(u) for u in users]
    return UserListResponse(users=items, total=len(items))


@router.put("/users/{target_user_id}/status", response_model=UserListItem, summary="Enable or Disable User")
async def update_user_status(
    body: UserStatusRequest,
    target_user_id: UUID = Path(..., description="User ID to update"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.USERS, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    """
    Activate or deactivate an account.

    Deactivation revokes every session of the account.
    """
    # Prevent self-deactivation
    if target_user_id == admin.id and not body.is_active:
        raise HTTPException(
            status_code=400,
            detail="Cannot deactivate your own account"
        )

    user = await admin_service.set_user_active(db, target_user_id, body.is_active)
    return _user_item(user)


@router.put("/users/{target_user_id}/roles", response_model=UserListItem, summary="Assign Roles")
async def update_user_roles(
    body: UserRolesRequest,
    target_user_id: UUID = Path(..., description="User ID to update"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.USERS, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    user = await admin_service.assign_roles(db, target_user_id, body.role_ids)
    return _user_item(user)


@router.delete("/users/{target_user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete User")
async def delete_user(
    target_user_id: UUID = Path(..., description="User ID to delete"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.USERS, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    if target_user_id == admin.id:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete your own account"
        )

    await admin_service.delete_user(db, target_user_id)


@router.get("/login-attempts", response_model=List[LoginAttemptItem], summary="Recent Login Attempts")
async def list_login_attempts(
    email: Optional[str] = Query(None, description="Filter by email"),
    limit: int = Query(50, ge=1, le=500, description="Maximum rows"),
    admin: AuthenticatedUser = Depends(require_permission(Resource.USERS, Action.READ)),
    db: DBSession = Depends(get_db),
):
    return await attempts.get_recent_attempts(db, email=email.strip().lower() if email else None, limit=limit)


# =============================================================================
# Settings Endpoints
# =============================================================================

@router.get("/settings/force-two-factor", response_model=ForceTwoFactorResponse, summary="Get Force 2FA")
async def get_force_two_factor(
    admin: AuthenticatedUser = Depends(require_permission(Resource.SETTINGS, Action.READ)),
    db: DBSession = Depends(get_db),
):
    return ForceTwoFactorResponse(enabled=await site_settings.is_force_two_factor_enabled(db))


@router.put("/settings/force-two-factor", response_model=ForceTwoFactorResponse, summary="Set Force 2FA")
async def set_force_two_factor(
    body: ForceTwoFactorRequest,
    admin: AuthenticatedUser = Depends(require_permission(Resource.SETTINGS, Action.MANAGE)),
    db: DBSession = Depends(get_db),
):
    """
    Require every user to enrol in two-factor authentication.

    Users without 2FA are redirected to enrollment on their next request.
    """
    await site_settings.set_force_two_factor(db, body.enabled)
    return ForceTwoFactorResponse(enabled=body.enabled)
