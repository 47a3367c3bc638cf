"""
Dashboard - Role & Account Administration

Administrative mutations that affect who can authenticate and what they
may do once authenticated.

Invariants enforced here (not only at seed time):
- The admin role always holds every permission; its permission set and
  display name cannot be edited, and it cannot be deleted
- A role cannot be deleted while any user holds it
- Role metadata and permission grants change in one transaction
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session as DBSession, select

from backend.auth import sessions as session_store
from backend.auth.bootstrap import ensure_admin_has_all_permissions
from backend.auth.exceptions import (
    ConflictError,
    NotFoundError,
    RoleNotFoundError,
    SystemRoleProtectedError,
)
from backend.auth.models import (
    User,
    Role,
    Permission,
    RolePermission,
    UserRole,
    ADMIN_ROLE_NAME,
)


logger = logging.getLogger(__name__)


@dataclass
class RoleSummary:
    id: UUID
    name: str
    display_name: str
    description: Optional[str]
    is_system: bool
    user_count: int
    permission_count: int
    created_at: datetime
    updated_at: datetime


@dataclass
class RoleDetail:
    id: UUID
    name: str
    display_name: str
    description: Optional[str]
    is_system: bool
    user_count: int
    permissions: list[Permission] = field(default_factory=list)


def _is_protected(role: Role) -> bool:
    return role.is_system or role.name == ADMIN_ROLE_NAME


def _count_users(db: DBSession, role_id: UUID) -> int:
    return db.exec(select(func.count()).select_from(UserRole).where(UserRole.role_id == role_id)).one()


def _load_permissions(db: DBSession, permission_ids: Sequence[UUID]) -> list[Permission]:
    ids = set(permission_ids)
    if not ids:
        return []
    found = list(db.exec(select(Permission).where(Permission.id.in_(ids))).all())
    if len(found) != len(ids):
        raise NotFoundError("Unknown permission")
    return found


def _get_role(db: DBSession, role_id: UUID) -> Role:
    role = db.get(Role, role_id)
    if role is None:
        raise RoleNotFoundError()
    return role


# =============================================================================
# Roles
# =============================================================================

async def list_roles(db: DBSession) -> list[RoleSummary]:
    """All roles, system roles first, newest first within each group."""
    user_counts = dict(
        db.exec(select(UserRole.role_id, func.count()).group_by(UserRole.role_id)).all()
    )
    permission_counts = dict(
        db.exec(select(RolePermission.role_id, func.count()).group_by(RolePermission.role_id)).all()
    )
    roles = db.exec(select(Role).order_by(Role.is_system.desc(), Role.created_at.desc())).all()

    return [
        RoleSummary(
            id=role.id,
            name=role.name,
            display_name=role.display_name,
            description=role.description,
            is_system=role.is_system,
            user_count=user_counts.get(role.id, 0),
            permission_count=permission_counts.get(role.id, 0),
            created_at=role.created_at,
            updated_at=role.updated_at,
        )
        for role in roles
    ]


async def get_role(db: DBSession, role_id: UUID) -> RoleDetail:
    role = _get_role(db, role_id)
    return RoleDetail(
        id=role.id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        is_system=role.is_system,
        user_count=_count_users(db, role.id),
        permissions=sorted(role.permissions, key=lambda p: (p.resource, p.action)),
    )


async def create_role(
    db: DBSession,
    name: str,
    display_name: str,
    description: Optional[str] = None,
    permission_ids: Sequence[UUID] = (),
) -> RoleDetail:
    """
    Create a non-system role.

    Raises:
        ConflictError: name already taken
        NotFoundError: unknown permission id
    """
    if db.exec(select(Role).where(Role.name == name)).first():
        raise ConflictError("Role with this name already exists")

    role = Role(
        name=name,
        display_name=display_name,
        description=description,
        is_system=False,
    )
    role.permissions = _load_permissions(db, permission_ids)
    db.add(role)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Role with this name already exists") from e

    logger.info("Created role %s", name)
    return await get_role(db, role.id)


async def update_role(
    db: DBSession,
    role_id: UUID,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    permission_ids: Optional[Sequence[UUID]] = None,
) -> RoleDetail:
    """
    Update a role's metadata and/or replace its permission set.

    For the admin role only the description may change; any attempt to
    change its display name or permission set is rejected before anything
    is written.

    Raises:
        RoleNotFoundError: unknown role
        SystemRoleProtectedError: illegal change to the admin role
        NotFoundError: unknown permission id
    """
    role = _get_role(db, role_id)

    if _is_protected(role):
        if display_name is not None and display_name != role.display_name:
            raise SystemRoleProtectedError("The administrator role cannot be renamed")
        if permission_ids is not None:
            all_ids = set(db.exec(select(Permission.id)).all())
            if set(permission_ids) != all_ids:
                raise SystemRoleProtectedError("The administrator role must keep every permission")
            # Requested set equals the full set; nothing to rewrite
            permission_ids = None

    new_permissions = None if permission_ids is None else _load_permissions(db, permission_ids)

    try:
        if new_permissions is not None:
            role.permissions = new_permissions
        if display_name is not None:
            role.display_name = display_name
        if description is not None:
            role.description = description
        role.updated_at = datetime.utcnow()
        db.add(role)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if _is_protected(role):
        ensure_admin_has_all_permissions(db)

    logger.info("Updated role %s", role.name)
    return await get_role(db, role.id)


async def delete_role(db: DBSession, role_id: UUID) -> None:
    """
    Delete a role.

    Raises:
        RoleNotFoundError: unknown role
        SystemRoleProtectedError: system role, or role still assigned to users
    """
    role = _get_role(db, role_id)

    if _is_protected(role):
        raise SystemRoleProtectedError("Administrator role cannot be deleted")

    if _count_users(db, role.id) > 0:
        raise SystemRoleProtectedError("Cannot delete role that is assigned to users")

    db.delete(role)
    db.commit()
    logger.info("Deleted role %s", role.name)


async def list_permissions(db: DBSession) -> list[Permission]:
    return list(db.exec(select(Permission).order_by(Permission.resource, Permission.action)).all())


# =============================================================================
# Account state
# =============================================================================

def _get_user(db: DBSession, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def set_user_active(db: DBSession, user_id: UUID, is_active: bool) -> User:
    """
    Enable or disable an account. Disabling also revokes its sessions
    in the same commit.
    """
    user = _get_user(db, user_id)
    user.is_active = is_active
    db.add(user)

    revoked = 0
    if not is_active:
        revoked = await session_store.revoke_all_user_sessions(db, user.id, commit=False)

    db.commit()
    if not is_active:
        logger.info("Disabled user %s, revoked %d sessions", user_id, revoked)

    db.refresh(user)
    return user


async def assign_roles(db: DBSession, user_id: UUID, role_ids: Sequence[UUID]) -> User:
    """Replace the user's role set in one commit."""
    user = _get_user(db, user_id)

    roles = []
    for role_id in set(role_ids):
        roles.append(_get_role(db, role_id))

    user.roles = roles
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def delete_user(db: DBSession, user_id: UUID) -> None:
    """Delete an account; its sessions, pending tokens and attempts go with it."""
    user = _get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)
