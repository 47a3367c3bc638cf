"""
Dashboard - Authentication Database Models

SQLModel-based models for identity, RBAC and authentication state.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Sessions and pending-auth tokens are server-controlled for immediate revocation
- Login attempts are append-only
- All timestamps in UTC
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, String, Boolean, DateTime, Text, UniqueConstraint


ADMIN_ROLE_NAME = "admin"
DEFAULT_ROLE_NAME = "user"
FORCE_TWO_FACTOR_KEY = "force_two_factor"


class UserRole(SQLModel, table=True):
    """Assignment of a role to a user."""
    __tablename__ = "user_roles"

    user_id: UUID = Field(foreign_key="users.id", primary_key=True)
    role_id: UUID = Field(foreign_key="roles.id", primary_key=True)
    assigned_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )


class RolePermission(SQLModel, table=True):
    """Grant of a permission to a role."""
    __tablename__ = "role_permissions"

    role_id: UUID = Field(foreign_key="roles.id", primary_key=True)
    permission_id: UUID = Field(foreign_key="permissions.id", primary_key=True)
    granted_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )


class User(SQLModel, table=True):
    """
    User account for authentication.

    Attributes:
        id: Unique identifier (UUIDv4)
        email: Login identifier (unique, indexed)
        username: Display handle (unique)
        password_hash: bcrypt hash (never store plaintext)
        name: Display name
        is_active: Disabled users cannot login
        is_verified: Users must verify their email before logging in
        verification_token: One-time email verification token
        two_factor_enabled: TOTP required at login
        two_factor_secret: base32 TOTP secret, set only while two_factor_enabled
        last_login_at: Timestamp of the last completed login
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique user identifier"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    username: str = Field(
        sa_column=Column(String(100), unique=True, index=True, nullable=False),
        description="Unique username"
    )
    password_hash: str = Field(
        sa_column=Column(String(255), nullable=False),
        description="bcrypt password hash"
    )
    name: str = Field(
        default="",
        sa_column=Column(String(255), nullable=False, default=""),
    )
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True),
        description="Whether user can authenticate"
    )
    is_verified: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
        description="Whether the email address has been verified"
    )
    verification_token: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True, unique=True),
    )
    two_factor_enabled: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    two_factor_secret: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True),
        description="base32 TOTP secret"
    )
    last_login_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
        description="Account creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
        description="Last update timestamp"
    )

    # Relationships
    roles: list["Role"] = Relationship(back_populates="users", link_model=UserRole)
    sessions: list["Session"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    pending_auths: list["PendingAuth"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    login_attempts: list["LoginAttempt"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    two_factor_enrollment: Optional["TwoFactorEnrollment"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "uselist": False},
    )


class Role(SQLModel, table=True):
    """
    Named permission bundle.

    The ``admin`` role is the system role: it always holds every permission
    and cannot be renamed, re-scoped or deleted.
    """
    __tablename__ = "roles"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(
        sa_column=Column(String(100), unique=True, index=True, nullable=False),
        description="Machine key"
    )
    display_name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    is_system: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
    )

    users: list[User] = Relationship(back_populates="roles", link_model=UserRole)
    permissions: list["Permission"] = Relationship(back_populates="roles", link_model=RolePermission)


class Permission(SQLModel, table=True):
    """Atomic (resource, action) capability."""
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action", name="uq_permission_resource_action"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(String(100), unique=True, nullable=False))
    display_name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    resource: str = Field(sa_column=Column(String(50), nullable=False))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
    )

    roles: list[Role] = Relationship(back_populates="permissions", link_model=RolePermission)


class Session(SQLModel, table=True):
    """
    Server-side session issued after a completed login.

    The bearer token is distinct from the primary key so that the id can be
    shown in session listings without exposing the credential.

    Attributes:
        id: Unique session identifier (UUIDv4)
        user_id: Foreign key to user
        token: Opaque bearer token carried in the session cookie
        issued_at: Session creation timestamp
        expires_at: Session expiration timestamp
        last_seen: Last activity timestamp
        ip_address: Client IP for audit
        user_agent: Client user-agent for audit
    """
    __tablename__ = "sessions"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique session identifier"
    )
    user_id: UUID = Field(
        foreign_key="users.id",
        nullable=False,
        index=True,
        description="Reference to user"
    )
    token: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False),
        description="Opaque bearer token"
    )
    issued_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False, index=True),
        description="Session expiration timestamp"
    )
    last_seen: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )
    ip_address: Optional[str] = Field(
        default=None,
        sa_column=Column(String(45), nullable=True),
        description="Client IP address"
    )
    user_agent: Optional[str] = Field(
        default=None,
        sa_column=Column(String(512), nullable=True),
        description="Client user-agent string"
    )

    # Relationships
    user: Optional[User] = Relationship(back_populates="sessions")


class PendingAuth(SQLModel, table=True):
    """
    Short-lived token bridging "password verified" and "2FA verified".

    Consumed exactly once; expired rows are deleted when encountered.
    """
    __tablename__ = "pending_auths"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False),
    )
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(45), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )

    user: Optional[User] = Relationship(back_populates="pending_auths")


class LoginAttempt(SQLModel, table=True):
    """
    Append-only audit row for every login attempt.

    user_id is null when the email did not match an account.
    """
    __tablename__ = "login_attempts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    ip_address: str = Field(sa_column=Column(String(45), nullable=False))
    success: bool = Field(sa_column=Column(Boolean, nullable=False))
    failure_reason: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    user_id: Optional[UUID] = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    attempted_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow, index=True),
    )

    user: Optional[User] = Relationship(back_populates="login_attempts")


class TwoFactorEnrollment(SQLModel, table=True):
    """
    Staged TOTP secret awaiting confirmation.

    One row per user; a new setup replaces the previous one.
    """
    __tablename__ = "two_factor_enrollments"

    user_id: UUID = Field(foreign_key="users.id", primary_key=True)
    secret: str = Field(sa_column=Column(String(64), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow),
    )

    user: Optional[User] = Relationship(back_populates="two_factor_enrollment")


class Setting(SQLModel, table=True):
    """Global key/value setting; booleans are stored as "true"/"false"."""
    __tablename__ = "settings"

    key: str = Field(sa_column=Column(String(100), primary_key=True))
    value: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
    )
