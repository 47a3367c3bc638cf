"""
Dashboard - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, service, client, and user fixtures.
"""

import os

# Cheap hashes for the whole test run; must be set before settings load
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import time
from typing import Generator

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from backend.app import app
from backend.auth.bootstrap import DEMO_PASSWORD, DatabaseInitializer, seed_database
from backend.auth.database import get_engine, get_session_factory, init_db
from backend.auth.models import User, Role
from backend.auth.password import hash_password
from backend.auth.service import AuthService
from backend.config import settings


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

ADMIN_EMAIL = "admin@example.com"
EDITOR_EMAIL = "editor@example.com"
USER_EMAIL = "user@example.com"


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = get_engine(TEST_DATABASE_URL)
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def seeded_db(db_session) -> Session:
    """Database with default roles, permissions, settings and demo users."""
    seed_database(db_session, seed_demo=True)
    return db_session


@pytest.fixture(scope="function")
def service(seeded_db) -> AuthService:
    return AuthService(seeded_db)


@pytest.fixture(scope="function")
def client(test_engine, seeded_db) -> Generator[TestClient, None, None]:
    """Create a test client bound to the test database."""
    app.state.db_engine = test_engine
    app.state.db_session_factory = get_session_factory(test_engine)
    app.state.db_initializer = DatabaseInitializer(test_engine, seed_demo=True)

    # No context manager: the lifespan would replace the test engine
    yield TestClient(app)


def get_user(db: Session, email: str) -> User:
    db.expire_all()
    return db.exec(select(User).where(User.email == email)).first()


def make_user(
    db: Session,
    email: str,
    password: str = DEMO_PASSWORD,
    role_name: str = "user",
    **fields,
) -> User:
    """Create a user holding one role. Extra fields override the defaults."""
    values = dict(
        email=email,
        username=email.split("@")[0],
        name=email.split("@")[0].capitalize(),
        password_hash=hash_password(password),
        is_active=True,
        is_verified=True,
    )
    values.update(fields)
    user = User(**values)

    role = db.exec(select(Role).where(Role.name == role_name)).first()
    if role:
        user.roles.append(role)

    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def two_factor_user(seeded_db) -> tuple[User, str]:
    """A verified user with 2FA enabled; returns (user, secret)."""
    secret = pyotp.random_base32()
    user = make_user(
        seeded_db,
        "totp@example.com",
        two_factor_enabled=True,
        two_factor_secret=secret,
    )
    return user, secret


def current_code(secret: str) -> str:
    return pyotp.TOTP(secret).now()


def invalid_code(secret: str) -> str:
    """A well-formed code that is not valid anywhere near the current time."""
    totp = pyotp.TOTP(secret)
    now = time.time()
    nearby = {totp.at(now + step * 30) for step in range(-4, 5)}
    for n in range(1000000):
        code = f"{n:06d}"
        if code not in nearby:
            return code


def login(client: TestClient, email: str, password: str = DEMO_PASSWORD, **extra):
    """Helper: POST /auth/login and return the response."""
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password, **extra},
    )


def session_cookie(client: TestClient):
    return client.cookies.get(settings.SESSION_COOKIE_NAME)


def pending_cookie(client: TestClient):
    return client.cookies.get(settings.PENDING_COOKIE_NAME)


def cookie_cleared(response, name: str) -> bool:
    """True when the response carries a Set-Cookie that expires name."""
    headers = response.headers.get_list("set-cookie")
    return any(h.startswith(f"{name}=") and "Max-Age=0" in h for h in headers)
