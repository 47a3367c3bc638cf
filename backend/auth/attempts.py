"""
Dashboard - Login-Attempt Ledger

Append-only record of every login attempt, used as a sliding-window
counter for brute-force lockout.

Ledger writes are not best-effort: the ledger IS the throttling control,
so a failed write propagates to the caller instead of being swallowed.
Counting and recording are not serialized; the next request's count
converges on the appended rows.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func
from sqlmodel import Session as DBSession, select

from backend.auth.models import LoginAttempt, PendingAuth


logger = logging.getLogger(__name__)


async def record_attempt(
    db: DBSession,
    email: str,
    ip_address: str,
    success: bool,
    failure_reason: Optional[str] = None,
    user_id: Optional[UUID] = None,
    user_agent: Optional[str] = None,
) -> LoginAttempt:
    """
    Append a login attempt.

    Args:
        db: Database session
        email: Email as submitted
        ip_address: Client IP
        success: Whether the attempt (or its password phase) succeeded
        failure_reason: Internal reason; None on success
        user_id: Matched user, None if the email is unknown
        user_agent: Client user-agent

    Returns:
        The stored LoginAttempt
    """
    attempt = LoginAttempt(
        email=email,
        ip_address=ip_address,
        success=success,
        failure_reason=None if success else failure_reason,
        user_id=user_id,
        user_agent=user_agent,
        attempted_at=datetime.utcnow(),
    )
    db.add(attempt)
    db.commit()
    db.refresh(attempt)

    if not success:
        logger.warning("Login failure for %s from %s: %s", email, ip_address, failure_reason)

    return attempt


async def count_recent_failures(db: DBSession, email: str, window: timedelta) -> int:
    """
    Count failed attempts for an email inside the trailing window.

    Args:
        db: Database session
        email: Email to count for
        window: Trailing period (e.g. 15 minutes)

    Returns:
        Number of attempts with success=False since now - window
    """
    since = datetime.utcnow() - window
    statement = select(func.count()).select_from(LoginAttempt).where(
        LoginAttempt.email == email,
        LoginAttempt.success == False,  # noqa: E712
        LoginAttempt.attempted_at >= since,
    )
    return db.exec(statement).one()


async def get_recent_attempts(db: DBSession, email: Optional[str] = None, limit: int = 50) -> list[LoginAttempt]:
    """Most recent attempts first, optionally filtered by email."""
    statement = select(LoginAttempt).order_by(LoginAttempt.attempted_at.desc()).limit(limit)
    if email:
        statement = statement.where(LoginAttempt.email == email)
    return list(db.exec(statement).all())


async def purge_attempts(db: DBSession) -> tuple[int, int]:
    """
    Administrative purge of the ledger and any outstanding pending-auth tokens.

    Returns:
        Tuple of (attempts deleted, pending tokens deleted)
    """
    attempts = db.exec(delete(LoginAttempt))
    pending = db.exec(delete(PendingAuth))
    db.commit()

    logger.info("Purged %d login attempts and %d pending tokens", attempts.rowcount, pending.rowcount)
    return attempts.rowcount, pending.rowcount
