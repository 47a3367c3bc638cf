"""
Dashboard - Authentication Service

Orchestrates the login state machine and two-factor lifecycle on top of
the password hasher, TOTP engine, session store, pending-auth store and
login-attempt ledger.

Error policy:
- Domain failures (AuthError) are raised internally and converted at the
  public boundary into an AuthResult carrying a user-safe message
- The precise failure reason is written to the login-attempt ledger
- Store failures are raised as StoreUnavailableError, never folded into
  an AuthResult

Usage:
    service = AuthService(db)
    result = await service.login(email, password, ip_address, user_agent)
    if result.ok and result.value.pending_token:
        ...  # send the user to the 2FA prompt
"""

import hmac
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Optional, TypeVar
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import Session as DBSession, select

from backend.auth import attempts, pending as pending_store, sessions as session_store
from backend.auth import site_settings, totp
from backend.auth.exceptions import (
    AuthError,
    ErrorKind,
    InvalidCredentialsError,
    AccountDisabledError,
    AccountNotVerifiedError,
    AccountLockedError,
    InvalidTwoFactorCodeError,
    TwoFactorNotConfiguredError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    ConflictError,
    StoreUnavailableError,
)
from backend.auth.models import (
    User,
    Role,
    Session,
    TwoFactorEnrollment,
    DEFAULT_ROLE_NAME,
)
from backend.auth.password import (
    hash_password_async,
    verify_password_async,
    needs_rehash,
)
from backend.config import settings
from backend.gateway.rbac import AuthenticatedUser, build_authenticated_user


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AuthResult(Generic[T]):
    """Outcome of a public auth flow: either a value or a safe error."""
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, value: T = None) -> "AuthResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthError) -> "AuthResult[T]":
        return cls(error_kind=error.kind, message=error.message)


@dataclass
class LoginOutcome:
    """
    Successful (or half-successful) login.

    Exactly one of session / pending_token is set.
    """
    user: AuthenticatedUser
    session: Optional[Session] = None
    pending_token: Optional[str] = None
    requires_setup: bool = False


@dataclass
class TwoFactorSetup:
    """Material shown to the user while enrolling an authenticator."""
    secret: str
    otpauth_uri: str
    qr_code: str


@dataclass
class ResolvedSession:
    """A live session and the user snapshot taken when it was resolved."""
    session_id: UUID
    user: AuthenticatedUser


def _user_with_grants():
    return select(User).options(selectinload(User.roles).selectinload(Role.permissions))


class AuthService:
    """
    Authentication orchestrator bound to one database session.

    One instance per request/unit of work; holds no state between calls.
    """

    def __init__(self, db: DBSession):
        self.db = db

    # ------------------------------------------------------------------
    # Boundary helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _store_errors(self):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Auth store failure: %s", type(e).__name__)
            raise StoreUnavailableError("Authentication store unavailable") from e

    async def _run(self, flow) -> AuthResult:
        try:
            with self._store_errors():
                value = await flow
        except AuthError as e:
            return AuthResult.failure(e)
        return AuthResult.success(value)

    def _get_user(self, user_id: UUID) -> User:
        user = self.db.exec(_user_with_grants().where(User.id == user_id)).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    async def _requires_setup(self, user: User) -> bool:
        if user.two_factor_enabled:
            return False
        return await site_settings.is_force_two_factor_enabled(self.db)

    def _touch_last_login(self, user: User) -> None:
        user.last_login_at = datetime.utcnow()
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        ip_address: str,
        user_agent: Optional[str] = None,
        two_factor_code: Optional[str] = None,
    ) -> AuthResult[LoginOutcome]:
        """
        Authenticate with email + password (+ TOTP code if already known).

        Returns:
            AuthResult whose value carries either a Session or, for 2FA
            users who did not send a code, a pending_token
        """
        return await self._run(self._login(email, password, ip_address, user_agent, two_factor_code))

    async def _login(self, email, password, ip_address, user_agent, two_factor_code) -> LoginOutcome:
        email = (email or "").strip().lower()
        user = self.db.exec(_user_with_grants().where(User.email == email)).first()

        async def fail(error: AuthError, user_id: Optional[UUID] = None):
            await attempts.record_attempt(
                self.db,
                email=email,
                ip_address=ip_address,
                success=False,
                failure_reason=error.reason,
                user_id=user_id,
                user_agent=user_agent,
            )
            raise error

        if not user:
            await fail(InvalidCredentialsError(reason="Invalid credentials"))

        if not user.is_active:
            await fail(AccountDisabledError(reason="Account is disabled"), user.id)

        if not user.is_verified:
            await fail(AccountNotVerifiedError(reason="Account not verified"), user.id)

        # Lockout is checked before the bcrypt comparison
        failures = await attempts.count_recent_failures(
            self.db, email, timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        )
        if failures >= settings.LOGIN_MAX_ATTEMPTS:
            await fail(
                AccountLockedError(reason="Account locked due to too many failed attempts"),
                user.id,
            )

        if not await verify_password_async(password or "", user.password_hash):
            await fail(InvalidCredentialsError(reason="Invalid credentials"), user.id)

        if needs_rehash(user.password_hash):
            user.password_hash = await hash_password_async(password)
            self.db.add(user)
            self.db.commit()

        if user.two_factor_enabled and not two_factor_code:
            token = await pending_store.create_pending_auth(
                self.db, user.id, ip_address=ip_address, user_agent=user_agent
            )
            # Password phase succeeded
            await attempts.record_attempt(
                self.db,
                email=email,
                ip_address=ip_address,
                success=True,
                user_id=user.id,
                user_agent=user_agent,
            )
            logger.info("Issued pending 2FA token for user %s", user.id)
            return LoginOutcome(user=build_authenticated_user(user), pending_token=token)

        if user.two_factor_enabled:
            if not user.two_factor_secret:
                await fail(
                    TwoFactorNotConfiguredError(reason="2FA enabled without a secret"),
                    user.id,
                )
            if not totp.verify_code(user.two_factor_secret, two_factor_code, settings.TOTP_WINDOW):
                await fail(InvalidTwoFactorCodeError(reason="Invalid 2FA code"), user.id)

        session = await session_store.create_session(
            self.db, user.id, ip_address=ip_address, user_agent=user_agent
        )
        self._touch_last_login(user)
        await attempts.record_attempt(
            self.db,
            email=email,
            ip_address=ip_address,
            success=True,
            user_id=user.id,
            user_agent=user_agent,
        )
        logger.info("User %s logged in from %s", user.id, ip_address)

        return LoginOutcome(
            user=build_authenticated_user(user),
            session=session,
            requires_setup=await self._requires_setup(user),
        )

    async def verify_pending_login(
        self,
        pending_token: str,
        two_factor_code: str,
        ip_address: str,
        user_agent: Optional[str] = None,
    ) -> AuthResult[LoginOutcome]:
        """
        Complete a 2FA login started by login().

        The pending token is consumed before the code is checked, so a wrong
        code forces the user back to the password step.
        """
        return await self._run(
            self._verify_pending_login(pending_token, two_factor_code, ip_address, user_agent)
        )

    async def _verify_pending_login(self, pending_token, two_factor_code, ip_address, user_agent) -> LoginOutcome:
        pending = await pending_store.consume_pending_auth(self.db, pending_token)

        user = self.db.exec(_user_with_grants().where(User.id == pending.user_id)).first()
        if not user:
            raise InvalidOrExpiredTokenError(reason="Pending token owner no longer exists")
        async def fail(error: AuthError):
            await attempts.record_attempt(
                self.db,
                email=user.email,
                ip_address=ip_address,
                success=False,
                failure_reason=error.reason,
                user_id=user.id,
                user_agent=user_agent,
            )
            raise error

        if not user.is_active:
            await fail(AccountDisabledError(reason="Account disabled during 2FA verification"))

        if not user.two_factor_secret:
            await fail(TwoFactorNotConfiguredError(reason="2FA secret missing during verification"))

        if not totp.verify_code(user.two_factor_secret, two_factor_code, settings.TOTP_WINDOW):
            await fail(InvalidTwoFactorCodeError(reason="Invalid 2FA code during verification"))

        session = await session_store.create_session(
            self.db, user.id, ip_address=ip_address, user_agent=user_agent
        )
        self._touch_last_login(user)
        logger.info("User %s completed 2FA login from %s", user.id, ip_address)

        return LoginOutcome(
            user=build_authenticated_user(user),
            session=session,
            requires_setup=await self._requires_setup(user),
        )

    async def logout(self, session_id: UUID) -> None:
        """Revoke a session. Unknown sessions are ignored."""
        with self._store_errors():
            if await session_store.revoke_session(self.db, session_id):
                logger.info("Session %s revoked", session_id)

    # ------------------------------------------------------------------
    # Session resolution
    # ------------------------------------------------------------------

    async def resolve_session(self, session_token: str) -> Optional[ResolvedSession]:
        """
        Resolve a session cookie into a user snapshot.

        Returns None for missing, expired or revoked sessions and for users
        that have since been disabled.
        """
        with self._store_errors():
            session = await session_store.find_session_by_token(self.db, session_token)
            if not session:
                return None

            user = self.db.exec(_user_with_grants().where(User.id == session.user_id)).first()
            if not user or not user.is_active:
                return None

            return ResolvedSession(session_id=session.id, user=build_authenticated_user(user))

    async def get_user_by_session(self, session_token: str) -> Optional[AuthenticatedUser]:
        resolved = await self.resolve_session(session_token)
        return resolved.user if resolved else None

    # ------------------------------------------------------------------
    # Two-factor lifecycle
    # ------------------------------------------------------------------

    async def setup_2fa(self, user_id: UUID, hostname: str) -> AuthResult[TwoFactorSetup]:
        """
        Generate a new TOTP secret and stage it until enable_2fa confirms it.

        A second call replaces the staged secret.
        """
        return await self._run(self._setup_2fa(user_id, hostname))

    async def _setup_2fa(self, user_id: UUID, hostname: str) -> TwoFactorSetup:
        user = self._get_user(user_id)

        generated = totp.generate_secret(f"{hostname}:{user.email}", settings.TOTP_ISSUER)

        now = datetime.utcnow()
        enrollment = self.db.get(TwoFactorEnrollment, user.id) or TwoFactorEnrollment(user_id=user.id)
        enrollment.secret = generated.secret
        enrollment.created_at = now
        enrollment.expires_at = now + timedelta(minutes=settings.TWO_FACTOR_SETUP_MINUTES)
        self.db.add(enrollment)
        self.db.commit()

        return TwoFactorSetup(
            secret=generated.secret,
            otpauth_uri=generated.otpauth_uri,
            qr_code=totp.render_qr_data_uri(generated.otpauth_uri),
        )

    async def enable_2fa(self, user_id: UUID, secret: str, token: str) -> AuthResult[None]:
        """
        Confirm enrollment with a code from the authenticator.

        On failure nothing is written to the user record.
        """
        return await self._run(self._enable_2fa(user_id, secret, token))

    async def _enable_2fa(self, user_id: UUID, secret: str, token: str) -> None:
        user = self._get_user(user_id)

        enrollment = self.db.get(TwoFactorEnrollment, user.id)
        if (
            enrollment is None
            or enrollment.expires_at <= datetime.utcnow()
            or not hmac.compare_digest((secret or "").encode(), enrollment.secret.encode())
        ):
            raise TwoFactorNotConfiguredError("Two-factor setup expired, please start again")

        if not totp.verify_code(secret, token, settings.TOTP_WINDOW):
            raise InvalidTwoFactorCodeError("Invalid verification code")

        # Flag, secret and staging row change in one commit
        user.two_factor_enabled = True
        user.two_factor_secret = secret
        self.db.add(user)
        self.db.delete(enrollment)
        self.db.commit()

        logger.info("Two-factor authentication enabled for user %s", user.id)

    async def disable_2fa(self, user_id: UUID, token: str) -> AuthResult[None]:
        """
        Turn 2FA off after checking a current code.

        Flag and secret are cleared in the same commit.
        """
        return await self._run(self._disable_2fa(user_id, token))

    async def _disable_2fa(self, user_id: UUID, token: str) -> None:
        user = self._get_user(user_id)

        if not user.two_factor_enabled or not user.two_factor_secret:
            raise TwoFactorNotConfiguredError("Two-factor authentication is not enabled")

        if not totp.verify_code(user.two_factor_secret, token, settings.TOTP_WINDOW):
            raise InvalidTwoFactorCodeError("Invalid verification code")

        user.two_factor_enabled = False
        user.two_factor_secret = None
        self.db.add(user)
        self.db.commit()

        logger.info("Two-factor authentication disabled for user %s", user.id)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, email: str, username: str, password: str, name: str = "") -> AuthResult[AuthenticatedUser]:
        """
        Create an unverified account holding the default role.

        The verification token is available on the stored user for the
        mailer; it is not part of the returned snapshot.
        """
        return await self._run(self._register(email, username, password, name))

    async def _register(self, email, username, password, name) -> AuthenticatedUser:
        email = email.strip().lower()
        existing = self.db.exec(
            select(User).where(or_(User.email == email, User.username == username))
        ).first()
        if existing:
            raise ConflictError("User with this email or username already exists")

        default_role = self.db.exec(select(Role).where(Role.name == DEFAULT_ROLE_NAME)).first()

        user = User(
            email=email,
            username=username,
            name=name,
            password_hash=await hash_password_async(password),
            is_active=True,
            is_verified=False,
            verification_token=secrets.token_urlsafe(32),
        )
        if default_role:
            user.roles.append(default_role)

        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            self.db.rollback()
            raise ConflictError("User with this email or username already exists") from e

        logger.info("Registered user %s", user.id)
        return build_authenticated_user(self._get_user(user.id))

    async def verify_email(self, token: str) -> AuthResult[None]:
        """Mark the owner of a verification token as verified."""
        return await self._run(self._verify_email(token))

    async def _verify_email(self, token: str) -> None:
        if not token:
            raise InvalidOrExpiredTokenError("Invalid verification token")

        user = self.db.exec(select(User).where(User.verification_token == token)).first()
        if not user:
            raise InvalidOrExpiredTokenError("Invalid verification token")

        user.is_verified = True
        user.verification_token = None
        self.db.add(user)
        self.db.commit()
