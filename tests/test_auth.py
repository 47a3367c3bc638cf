"""
Dashboard - Authentication Test Suite

Tests for:
- Password hashing
- Session store and pending-auth store
- Login-attempt ledger and lockout
- Login flows through AuthService
- Authentication HTTP endpoints

Run with: pytest tests/test_auth.py -v
"""

import asyncio
import threading

import pytest
from datetime import datetime, timedelta
from uuid import uuid4

import bcrypt
from sqlalchemy.exc import OperationalError
from sqlmodel import Session as DBSession, create_engine, select

from backend.auth import attempts, pending as pending_store, sessions as session_store
from backend.auth import service as service_module
from backend.auth import site_settings
from backend.auth.database import init_db
from backend.auth.exceptions import (
    ErrorKind,
    GENERIC_LOGIN_FAILURE,
    InvalidOrExpiredTokenError,
    StoreUnavailableError,
)
from backend.auth.models import LoginAttempt, PendingAuth, Session
from backend.auth.password import hash_password, verify_password, needs_rehash
from backend.config import settings
from tests.conftest import (
    ADMIN_EMAIL,
    USER_EMAIL,
    get_user,
    login,
    make_user,
    session_cookie,
)


# =============================================================================
# PASSWORD HASHING TESTS
# =============================================================================

class TestPasswordHashing:
    """Unit tests for bcrypt password utilities."""

    def test_hash_password_creates_bcrypt_hash(self):
        """Password hashing creates valid bcrypt hash."""
        hashed = hash_password("SecurePassword123")

        assert hashed.startswith("$2b$")
        assert len(hashed) == 60

    def test_verify_password_correct(self):
        password = "SecurePassword123"
        hashed = hash_password(password)

        assert verify_password(password, hashed) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("SecurePassword123")

        assert verify_password("WrongPassword", hashed) is False

    def test_verify_password_empty_string(self):
        hashed = hash_password("SecurePassword123")

        assert verify_password("", hashed) is False

    def test_verify_password_malformed_hash(self):
        """A corrupt stored hash is a mismatch, not a crash."""
        assert verify_password("password", "not-a-bcrypt-hash") is False

    def test_different_passwords_different_hashes(self):
        """Same password generates different hashes (salted)."""
        password = "SecurePassword123"
        hash1 = hash_password(password)
        hash2 = hash_password(password)

        assert hash1 != hash2
        assert verify_password(password, hash1) is True
        assert verify_password(password, hash2) is True

    def test_needs_rehash_old_work_factor(self):
        old_hash = bcrypt.hashpw(b"password", bcrypt.gensalt(rounds=4)).decode()

        assert needs_rehash(old_hash, target_work_factor=12) is True

    def test_needs_rehash_current_factor(self):
        current_hash = hash_password("password")

        assert needs_rehash(current_hash) is False

    def test_needs_rehash_invalid_hash(self):
        assert needs_rehash("garbage") is True


# =============================================================================
# SESSION STORE TESTS
# =============================================================================

class TestSessionStore:
    """Unit tests for server-side sessions."""

    @pytest.mark.asyncio
    async def test_create_session(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)

        session = await session_store.create_session(seeded_db, user.id, ip_address="10.0.0.1")

        assert session.user_id == user.id
        assert len(session.token) >= 43
        assert session.expires_at - session.issued_at == timedelta(days=settings.SESSION_EXPIRE_DAYS)

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)

        first = await session_store.create_session(seeded_db, user.id)
        second = await session_store.create_session(seeded_db, user.id)

        assert first.token != second.token

    @pytest.mark.asyncio
    async def test_find_live_session(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        session = await session_store.create_session(seeded_db, user.id)

        found = await session_store.find_session_by_token(seeded_db, session.token)

        assert found is not None
        assert found.id == session.id

    @pytest.mark.asyncio
    async def test_find_unknown_token(self, seeded_db):
        assert await session_store.find_session_by_token(seeded_db, "nope") is None
        assert await session_store.find_session_by_token(seeded_db, "") is None

    @pytest.mark.asyncio
    async def test_expired_session_is_deleted_on_lookup(self, seeded_db):
        """Expiry is checked on every lookup and the row is removed."""
        user = get_user(seeded_db, USER_EMAIL)
        session = await session_store.create_session(seeded_db, user.id)
        session.expires_at = datetime.utcnow() - timedelta(seconds=1)
        seeded_db.add(session)
        seeded_db.commit()
        session_id = session.id

        assert await session_store.find_session_by_token(seeded_db, session.token) is None

        seeded_db.expire_all()
        assert seeded_db.get(Session, session_id) is None

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        session = await session_store.create_session(seeded_db, user.id)
        session_id, token = session.id, session.token

        assert await session_store.revoke_session(seeded_db, session_id) is True
        assert await session_store.revoke_session(seeded_db, session_id) is False
        assert await session_store.revoke_session(seeded_db, uuid4()) is False
        assert await session_store.find_session_by_token(seeded_db, token) is None

    @pytest.mark.asyncio
    async def test_revoke_all_user_sessions(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        other = get_user(seeded_db, ADMIN_EMAIL)
        for _ in range(3):
            await session_store.create_session(seeded_db, user.id)
        kept = await session_store.create_session(seeded_db, other.id)

        assert await session_store.revoke_all_user_sessions(seeded_db, user.id) == 3
        assert await session_store.get_active_sessions(seeded_db, user.id) == []
        assert await session_store.find_session_by_token(seeded_db, kept.token) is not None

    @pytest.mark.asyncio
    async def test_active_sessions_and_cleanup(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        live = await session_store.create_session(seeded_db, user.id)
        stale = await session_store.create_session(seeded_db, user.id)
        stale.expires_at = datetime.utcnow() - timedelta(hours=1)
        seeded_db.add(stale)
        seeded_db.commit()

        active = await session_store.get_active_sessions(seeded_db, user.id)
        assert [s.id for s in active] == [live.id]

        assert await session_store.cleanup_expired_sessions(seeded_db) == 1


# =============================================================================
# PENDING AUTH TESTS
# =============================================================================

class TestPendingAuth:
    """Single-use, short-lived tokens between the password and 2FA steps."""

    @pytest.mark.asyncio
    async def test_consume_once(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        token = await pending_store.create_pending_auth(seeded_db, user.id, ip_address="10.0.0.1")

        pending = await pending_store.consume_pending_auth(seeded_db, token)

        assert pending.user_id == user.id
        with pytest.raises(InvalidOrExpiredTokenError):
            await pending_store.consume_pending_auth(seeded_db, token)

    def test_concurrent_consume_has_one_winner(self, tmp_path):
        """Two connections that both found the row race on the DELETE."""
        engine = create_engine(
            f"sqlite:///{tmp_path / 'pending.db'}",
            connect_args={"check_same_thread": False},
        )
        init_db(engine)
        with DBSession(engine) as db:
            user = make_user(db, "race@example.com")
            token = asyncio.run(pending_store.create_pending_auth(db, user.id))

        both_looked_up = threading.Barrier(2, timeout=5)
        outcomes = []

        def consume():
            with DBSession(engine) as db:
                expunge = db.expunge

                def expunge_then_wait(instance):
                    expunge(instance)
                    both_looked_up.wait()

                db.expunge = expunge_then_wait
                try:
                    asyncio.run(pending_store.consume_pending_auth(db, token))
                    outcomes.append("consumed")
                except InvalidOrExpiredTokenError:
                    outcomes.append("rejected")

        workers = [threading.Thread(target=consume) for _ in range(2)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)
        engine.dispose()

        assert sorted(outcomes) == ["consumed", "rejected"]

    @pytest.mark.asyncio
    async def test_expired_token_rejected_and_deleted(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        token = await pending_store.create_pending_auth(seeded_db, user.id)
        row = seeded_db.exec(select(PendingAuth).where(PendingAuth.token == token)).one()
        row.expires_at = datetime.utcnow() - timedelta(seconds=1)
        seeded_db.add(row)
        seeded_db.commit()

        with pytest.raises(InvalidOrExpiredTokenError):
            await pending_store.consume_pending_auth(seeded_db, token)

        seeded_db.expire_all()
        assert seeded_db.exec(select(PendingAuth).where(PendingAuth.token == token)).first() is None

    @pytest.mark.asyncio
    async def test_unknown_or_empty_token(self, seeded_db):
        with pytest.raises(InvalidOrExpiredTokenError):
            await pending_store.consume_pending_auth(seeded_db, "missing")
        with pytest.raises(InvalidOrExpiredTokenError):
            await pending_store.consume_pending_auth(seeded_db, "")

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        await pending_store.create_pending_auth(seeded_db, user.id)
        stale = await pending_store.create_pending_auth(seeded_db, user.id)
        row = seeded_db.exec(select(PendingAuth).where(PendingAuth.token == stale)).one()
        row.expires_at = datetime.utcnow() - timedelta(minutes=1)
        seeded_db.add(row)
        seeded_db.commit()

        assert await pending_store.cleanup_expired_pending_auth(seeded_db) == 1


# =============================================================================
# LOGIN ATTEMPT LEDGER TESTS
# =============================================================================

class TestLoginAttempts:

    @pytest.mark.asyncio
    async def test_count_recent_failures(self, seeded_db):
        for _ in range(3):
            await attempts.record_attempt(seeded_db, "a@example.com", "10.0.0.1", success=False, failure_reason="x")
        await attempts.record_attempt(seeded_db, "a@example.com", "10.0.0.1", success=True)
        await attempts.record_attempt(seeded_db, "b@example.com", "10.0.0.1", success=False)

        count = await attempts.count_recent_failures(seeded_db, "a@example.com", timedelta(minutes=15))

        assert count == 3

    @pytest.mark.asyncio
    async def test_old_failures_fall_out_of_window(self, seeded_db):
        seeded_db.add(LoginAttempt(
            email="a@example.com",
            ip_address="10.0.0.1",
            success=False,
            attempted_at=datetime.utcnow() - timedelta(minutes=16),
        ))
        seeded_db.commit()

        assert await attempts.count_recent_failures(seeded_db, "a@example.com", timedelta(minutes=15)) == 0

    @pytest.mark.asyncio
    async def test_purge_attempts(self, seeded_db):
        user = get_user(seeded_db, USER_EMAIL)
        await attempts.record_attempt(seeded_db, USER_EMAIL, "10.0.0.1", success=False)
        await pending_store.create_pending_auth(seeded_db, user.id)

        assert await attempts.purge_attempts(seeded_db) == (1, 1)
        assert await attempts.get_recent_attempts(seeded_db) == []


# =============================================================================
# LOGIN FLOW TESTS
# =============================================================================

class TestLoginFlow:
    """AuthService.login without two-factor authentication."""

    @pytest.mark.asyncio
    async def test_login_success(self, service, seeded_db):
        result = await service.login(ADMIN_EMAIL, "password123", "10.0.0.1", "pytest")

        assert result.ok
        outcome = result.value
        assert outcome.session is not None
        assert outcome.pending_token is None
        assert outcome.requires_setup is False
        assert outcome.user.email == ADMIN_EMAIL

        user = get_user(seeded_db, ADMIN_EMAIL)
        assert user.last_login_at is not None

        ledger = await attempts.get_recent_attempts(seeded_db, email=ADMIN_EMAIL)
        assert ledger[0].success is True
        assert ledger[0].user_id == user.id

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, service):
        result = await service.login("  Admin@Example.COM ", "password123", "10.0.0.1")

        assert result.ok

    @pytest.mark.asyncio
    async def test_wrong_password(self, service, seeded_db):
        result = await service.login(ADMIN_EMAIL, "wrong", "10.0.0.1")

        assert not result.ok
        assert result.error_kind == ErrorKind.INVALID_CREDENTIALS
        assert result.message == GENERIC_LOGIN_FAILURE

        ledger = await attempts.get_recent_attempts(seeded_db, email=ADMIN_EMAIL)
        assert ledger[0].success is False
        assert ledger[0].failure_reason == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_unknown_email_is_indistinguishable(self, service, seeded_db):
        result = await service.login("ghost@example.com", "password123", "10.0.0.1")

        assert result.error_kind == ErrorKind.INVALID_CREDENTIALS
        assert result.message == GENERIC_LOGIN_FAILURE

        ledger = await attempts.get_recent_attempts(seeded_db, email="ghost@example.com")
        assert len(ledger) == 1
        assert ledger[0].user_id is None

    @pytest.mark.asyncio
    async def test_disabled_account(self, service, seeded_db):
        make_user(seeded_db, "off@example.com", is_active=False)

        result = await service.login("off@example.com", "password123", "10.0.0.1")

        assert result.error_kind == ErrorKind.ACCOUNT_DISABLED
        assert result.message == "Account is disabled"

    @pytest.mark.asyncio
    async def test_unverified_account_gets_generic_message(self, service, seeded_db):
        make_user(seeded_db, "new@example.com", is_verified=False)

        result = await service.login("new@example.com", "password123", "10.0.0.1")

        assert result.error_kind == ErrorKind.ACCOUNT_NOT_VERIFIED
        assert result.message == GENERIC_LOGIN_FAILURE
        ledger = await attempts.get_recent_attempts(seeded_db, email="new@example.com")
        assert ledger[0].failure_reason == "Account not verified"

    @pytest.mark.asyncio
    async def test_lockout_after_max_failures(self, service, seeded_db, monkeypatch):
        """Once locked, even the correct password is refused without being checked."""
        for _ in range(settings.LOGIN_MAX_ATTEMPTS):
            result = await service.login(USER_EMAIL, "wrong", "10.0.0.1")
            assert result.error_kind == ErrorKind.INVALID_CREDENTIALS

        password_checks = []

        async def spy(plain_password, hashed_password):
            password_checks.append(plain_password)
            return True

        monkeypatch.setattr(service_module, "verify_password_async", spy)

        result = await service.login(USER_EMAIL, "password123", "10.0.0.1")

        assert result.error_kind == ErrorKind.ACCOUNT_LOCKED
        assert password_checks == []
        ledger = await attempts.get_recent_attempts(seeded_db, email=USER_EMAIL)
        assert ledger[0].failure_reason == "Account locked due to too many failed attempts"

    @pytest.mark.asyncio
    async def test_lockout_does_not_affect_other_accounts(self, service):
        for _ in range(settings.LOGIN_MAX_ATTEMPTS):
            await service.login(USER_EMAIL, "wrong", "10.0.0.1")

        assert (await service.login(ADMIN_EMAIL, "password123", "10.0.0.1")).ok

    @pytest.mark.asyncio
    async def test_rehash_on_login(self, service, seeded_db, monkeypatch):
        """Hashes below the configured work factor are upgraded transparently."""
        monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 5)

        assert (await service.login(USER_EMAIL, "password123", "10.0.0.1")).ok

        user = get_user(seeded_db, USER_EMAIL)
        assert user.password_hash.startswith("$2b$05$")
        assert verify_password("password123", user.password_hash)

    @pytest.mark.asyncio
    async def test_requires_setup_when_two_factor_forced(self, service, seeded_db):
        await site_settings.set_force_two_factor(seeded_db, True)

        result = await service.login(USER_EMAIL, "password123", "10.0.0.1")

        assert result.ok
        assert result.value.session is not None
        assert result.value.requires_setup is True

    @pytest.mark.asyncio
    async def test_store_failure_is_not_an_auth_result(self, service, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("INSERT INTO sessions", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session_store, "create_session", broken)

        with pytest.raises(StoreUnavailableError):
            await service.login(ADMIN_EMAIL, "password123", "10.0.0.1")

    @pytest.mark.asyncio
    async def test_logout_revokes_session(self, service, seeded_db):
        outcome = (await service.login(ADMIN_EMAIL, "password123", "10.0.0.1")).value
        session_id, token = outcome.session.id, outcome.session.token

        await service.logout(session_id)
        await service.logout(session_id)

        assert await service.get_user_by_session(token) is None

    @pytest.mark.asyncio
    async def test_session_of_disabled_user_does_not_resolve(self, service, seeded_db):
        outcome = (await service.login(USER_EMAIL, "password123", "10.0.0.1")).value
        user = get_user(seeded_db, USER_EMAIL)
        user.is_active = False
        seeded_db.add(user)
        seeded_db.commit()

        assert await service.get_user_by_session(outcome.session.token) is None


# =============================================================================
# REGISTRATION TESTS
# =============================================================================

class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_creates_unverified_user(self, service, seeded_db):
        result = await service.register("New@Example.com", "newbie", "password1", "Newbie")

        assert result.ok
        assert result.value.email == "new@example.com"
        assert result.value.is_verified is False
        assert [r.name for r in result.value.roles] == ["user"]

        login_result = await service.login("new@example.com", "password1", "10.0.0.1")
        assert login_result.error_kind == ErrorKind.ACCOUNT_NOT_VERIFIED

    @pytest.mark.asyncio
    async def test_verify_email_then_login(self, service, seeded_db):
        await service.register("new@example.com", "newbie", "password1")
        token = get_user(seeded_db, "new@example.com").verification_token

        assert (await service.verify_email(token)).ok
        assert (await service.login("new@example.com", "password1", "10.0.0.1")).ok
        assert get_user(seeded_db, "new@example.com").verification_token is None

    @pytest.mark.asyncio
    async def test_verify_email_bad_token(self, service):
        result = await service.verify_email("bogus")

        assert result.error_kind == ErrorKind.INVALID_OR_EXPIRED_TOKEN

    @pytest.mark.asyncio
    async def test_register_duplicate(self, service):
        result = await service.register(ADMIN_EMAIL, "someone", "password1")

        assert result.error_kind == ErrorKind.CONFLICT


# =============================================================================
# HTTP ENDPOINT TESTS
# =============================================================================

class TestLoginEndpoint:
    """Integration tests for POST /auth/login."""

    def test_login_success_sets_session_cookie(self, client):
        response = login(client, ADMIN_EMAIL)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "authenticated"
        assert data["redirect"] == "/dashboard"
        assert data["user"]["email"] == ADMIN_EMAIL
        assert "token" not in response.text
        assert session_cookie(client)

        set_cookie = response.headers["set-cookie"]
        assert "HttpOnly" in set_cookie
        assert "SameSite=lax" in set_cookie

    def test_login_invalid_password(self, client):
        response = login(client, ADMIN_EMAIL, "WrongPassword123")

        assert response.status_code == 401
        assert response.json()["detail"] == GENERIC_LOGIN_FAILURE
        assert session_cookie(client) is None

    def test_login_user_not_found(self, client):
        response = login(client, "nonexistent@example.com")

        assert response.status_code == 401
        assert response.json()["detail"] == GENERIC_LOGIN_FAILURE

    def test_login_disabled_user(self, client, seeded_db):
        make_user(seeded_db, "off@example.com", is_active=False)

        response = login(client, "off@example.com")

        assert response.status_code == 403
        assert response.json()["detail"] == "Account is disabled"

    def test_login_locked(self, client):
        for _ in range(settings.LOGIN_MAX_ATTEMPTS):
            login(client, USER_EMAIL, "wrong")

        response = login(client, USER_EMAIL)

        assert response.status_code == 429

    def test_login_malformed_email_rejected(self, client):
        response = login(client, "not-an-email")

        assert response.status_code == 422


class TestSessionEndpoints:

    def test_me_requires_login(self, client):
        response = client.get("/api/v1/auth/me", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?redirect=/api/v1/auth/me"

    def test_me_returns_profile_without_secrets(self, client):
        login(client, ADMIN_EMAIL)

        response = client.get("/api/v1/auth/me")

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == ADMIN_EMAIL
        assert data["roles"][0]["name"] == "admin"
        assert "password_hash" not in data
        assert "two_factor_secret" not in data

    def test_logout_invalidates_session(self, client):
        login(client, ADMIN_EMAIL)
        token = session_cookie(client)

        response = client.post("/api/v1/auth/logout")

        assert response.status_code == 200
        assert response.json()["redirect"] == "/auth/login"
        assert session_cookie(client) is None

        # The old token no longer works even if replayed
        client.cookies.set(settings.SESSION_COOKIE_NAME, token)
        assert client.get("/api/v1/auth/me", follow_redirects=False).status_code == 302

    def test_logout_without_session(self, client):
        assert client.post("/api/v1/auth/logout").status_code == 200

    def test_list_sessions_marks_current(self, client):
        login(client, ADMIN_EMAIL)

        data = client.get("/api/v1/auth/sessions").json()

        assert data["total"] == 1
        assert data["sessions"][0]["is_current"] is True

    def test_cannot_revoke_foreign_session(self, client, seeded_db):
        other = login(client, USER_EMAIL)
        assert other.status_code == 200
        user = get_user(seeded_db, USER_EMAIL)
        foreign = seeded_db.exec(select(Session).where(Session.user_id == user.id)).first()

        client.cookies.clear()
        login(client, ADMIN_EMAIL)
        response = client.delete(f"/api/v1/auth/sessions/{foreign.id}")

        assert response.status_code == 404

    def test_revoke_own_session(self, client, seeded_db):
        login(client, ADMIN_EMAIL)
        admin = get_user(seeded_db, ADMIN_EMAIL)
        session = seeded_db.exec(select(Session).where(Session.user_id == admin.id)).first()

        response = client.delete(f"/api/v1/auth/sessions/{session.id}")

        assert response.status_code == 200
        assert client.get("/api/v1/auth/me", follow_redirects=False).status_code == 302


class TestRegistrationEndpoints:

    def test_register_verify_login(self, client, seeded_db):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "username": "newbie", "password": "password1"},
        )
        assert response.status_code == 201

        token = get_user(seeded_db, "new@example.com").verification_token
        assert client.get("/api/v1/auth/verify-email", params={"token": token}).status_code == 200

        assert login(client, "new@example.com", "password1").status_code == 200

    def test_register_weak_password(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "username": "newbie", "password": "allletters"},
        )

        assert response.status_code == 422

    def test_register_duplicate(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": ADMIN_EMAIL, "username": "other", "password": "password1"},
        )

        assert response.status_code == 409
