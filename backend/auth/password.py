"""
Dashboard - Password Hashing Utilities

Password hashing using bcrypt.
Work factor comes from settings.BCRYPT_ROUNDS (default 10).

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- bcrypt.checkpw compares in constant time
"""

import bcrypt
from starlette.concurrency import run_in_threadpool

from backend.config import settings


def hash_password(password: str, rounds: int = None) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plaintext password
        rounds: Override the configured work factor

    Returns:
        bcrypt hash string (includes salt)

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> hashed.startswith("$2b$")
        True
    """
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Args:
        plain_password: Plaintext password to verify
        hashed_password: bcrypt hash to check against

    Returns:
        True if password matches, False otherwise
    """
    try:
        password_bytes = plain_password.encode("utf-8")
        hashed_bytes = hashed_password.encode("utf-8")
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except (ValueError, TypeError):
        # Invalid hash format
        return False


async def hash_password_async(password: str) -> str:
    """Hash off the event loop; bcrypt is CPU bound."""
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    """Verify off the event loop; bcrypt is CPU bound."""
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


def needs_rehash(hashed_password: str, target_work_factor: int = None) -> bool:
    """
    Check if a password hash was produced with a lower work factor.

    Args:
        hashed_password: Existing bcrypt hash
        target_work_factor: Desired work factor (defaults to settings)

    Returns:
        True if hash should be regenerated
    """
    target = target_work_factor or settings.BCRYPT_ROUNDS
    try:
        # bcrypt hash format: $2b$XX$...
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < target
    except (ValueError, IndexError):
        # Not a valid bcrypt hash, definitely needs rehash
        return True
