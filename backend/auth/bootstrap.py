"""
Dashboard - Database Bootstrap

Creates tables and seeds the default RBAC policy, global settings and
(optionally) demo users.

The first request (or app startup) calls DatabaseInitializer.ensure_initialized();
concurrent callers all await the same in-flight run instead of racing.
Seeding is idempotent: existing rows are left alone, except that the system
role is always topped up to hold every permission.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import yaml
from sqlmodel import Session as DBSession, select
from starlette.concurrency import run_in_threadpool

from backend.auth.database import init_db
from backend.auth.models import (
    User,
    Role,
    Permission,
    Setting,
    ADMIN_ROLE_NAME,
)
from backend.auth.password import hash_password


logger = logging.getLogger(__name__)

POLICY_PATH = Path(__file__).parent / "policies.yaml"

DEMO_PASSWORD = "password123"


def load_policy(path: Path = POLICY_PATH) -> dict:
    """Load the seed policy from YAML. A missing file seeds nothing."""
    if not path.exists():
        return {}

    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _describe(resource: str, action: str) -> tuple[str, str]:
    return f"{action.capitalize()} {resource}", f"Can {action} {resource}"


def seed_permissions(db: DBSession, policy: dict) -> list[Permission]:
    """Upsert every resource x action permission."""
    permissions = []
    for resource in policy.get("resources", []):
        for action in policy.get("actions", []):
            permission = db.exec(
                select(Permission).where(Permission.resource == resource, Permission.action == action)
            ).first()
            if permission is None:
                display_name, description = _describe(resource, action)
                permission = Permission(
                    name=f"{resource}.{action}",
                    display_name=display_name,
                    description=description,
                    resource=resource,
                    action=action,
                )
                db.add(permission)
            permissions.append(permission)
    db.commit()
    return permissions


def seed_roles(db: DBSession, policy: dict) -> dict[str, Role]:
    """Create missing roles with their default grants. Existing roles keep their grants."""
    by_name = {p.name: p for p in db.exec(select(Permission)).all()}
    roles = {}

    for name, spec in (policy.get("roles") or {}).items():
        role = db.exec(select(Role).where(Role.name == name)).first()
        if role is None:
            role = Role(
                name=name,
                display_name=spec.get("display_name", name.capitalize()),
                description=spec.get("description"),
                is_system=bool(spec.get("system", False)),
            )
            role.permissions = [by_name[p] for p in spec.get("permissions", []) if p in by_name]
            db.add(role)
        roles[name] = role
    db.commit()

    ensure_admin_has_all_permissions(db)
    return roles


def ensure_admin_has_all_permissions(db: DBSession) -> None:
    """Grant the system role any permission it is missing."""
    admin = db.exec(select(Role).where(Role.name == ADMIN_ROLE_NAME)).first()
    if admin is None:
        return

    held = {p.id for p in admin.permissions}
    missing = [p for p in db.exec(select(Permission)).all() if p.id not in held]
    if missing:
        admin.permissions.extend(missing)
        db.add(admin)
        db.commit()
        logger.info("Granted %d missing permissions to the %s role", len(missing), ADMIN_ROLE_NAME)


def seed_settings(db: DBSession, policy: dict) -> None:
    for key, value in (policy.get("settings") or {}).items():
        if db.get(Setting, key) is None:
            db.add(Setting(key=key, value=str(value).lower()))
    db.commit()


def seed_demo_users(db: DBSession, policy: dict, password: str = DEMO_PASSWORD) -> list[User]:
    """Create demo accounts (active, verified, 2FA off) if they do not exist."""
    created = []
    password_hash = None

    for spec in policy.get("demo_users") or []:
        if db.exec(select(User).where(User.email == spec["email"])).first():
            continue

        password_hash = password_hash or hash_password(password)
        user = User(
            email=spec["email"],
            username=spec["username"],
            name=spec.get("name", ""),
            password_hash=password_hash,
            is_active=True,
            is_verified=True,
        )
        role = db.exec(select(Role).where(Role.name == spec.get("role"))).first()
        if role:
            user.roles.append(role)
        db.add(user)
        created.append(user)

    db.commit()
    return created


def seed_database(db: DBSession, seed_demo: bool = True, policy: Optional[dict] = None) -> None:
    """Apply the full seed in dependency order."""
    policy = policy if policy is not None else load_policy()

    seed_permissions(db, policy)
    seed_roles(db, policy)
    seed_settings(db, policy)
    if seed_demo:
        created = seed_demo_users(db, policy)
        if created:
            logger.info("Created %d demo users", len(created))


class DatabaseInitializer:
    """
    Process-wide, idempotent database initialization guard.

    Usage:
        initializer = DatabaseInitializer(engine)
        await initializer.ensure_initialized()
    """

    def __init__(self, engine, seed_demo: bool = True):
        self._engine = engine
        self._seed_demo = seed_demo
        self._task: Optional[asyncio.Future] = None
        self.run_count = 0

    @property
    def initialized(self) -> bool:
        task = self._task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    def _initialize(self) -> None:
        self.run_count += 1
        logger.info("Initializing database")
        init_db(self._engine)
        with DBSession(self._engine) as db:
            seed_database(db, seed_demo=self._seed_demo)
        logger.info("Database is ready")

    async def ensure_initialized(self) -> None:
        """
        Run initialization once; concurrent callers share the same run.

        A failed run is forgotten so the next caller retries.
        """
        # No await between the check and the assignment
        if self._task is None:
            self._task = asyncio.ensure_future(run_in_threadpool(self._initialize))

        task = self._task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            logger.exception("Database initialization failed")
            raise
