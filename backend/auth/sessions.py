"""
Dashboard - Session Management

Server-side session management for authentication.
Sessions enable immediate revocation and activity tracking.

Security:
- Sessions are stored server-side; the cookie only carries an opaque token
- The token is distinct from the session id
- Expiry is checked live on every lookup; expired rows are deleted on sight
- Logout deletes the row immediately
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import Session as DBSession, select

from backend.auth.models import Session
from backend.config import settings


logger = logging.getLogger(__name__)


def generate_token() -> str:
    """Opaque bearer token (256 bits of entropy, URL safe)."""
    return secrets.token_urlsafe(32)


async def create_session(
    db: DBSession,
    user_id: UUID,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Session:
    """
    Create a new server-side session.

    Args:
        db: Database session
        user_id: User's unique identifier
        ip_address: Client IP for audit
        user_agent: Client user-agent for audit

    Returns:
        Created Session object with expires_at = now + SESSION_EXPIRE_DAYS
    """
    now = datetime.utcnow()
    expires_at = now + timedelta(days=settings.SESSION_EXPIRE_DAYS)

    session = Session(
        user_id=user_id,
        token=generate_token(),
        issued_at=now,
        expires_at=expires_at,
        last_seen=now,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    db.add(session)
    db.commit()
    db.refresh(session)

    return session


async def find_session_by_token(db: DBSession, token: str) -> Optional[Session]:
    """
    Look up a live session by its bearer token.

    Args:
        db: Database session
        token: Token from the session cookie

    Returns:
        Session if found and not expired, None otherwise.
        An expired session is deleted and reported exactly like a missing one.
    """
    if not token:
        return None

    statement = select(Session).where(Session.token == token)
    session = db.exec(statement).first()

    if not session:
        return None

    now = datetime.utcnow()
    if session.expires_at <= now:
        db.exec(delete(Session).where(Session.id == session.id))
        db.commit()
        return None

    # Update last_seen for activity tracking
    session.last_seen = now
    db.add(session)
    db.commit()
    db.refresh(session)

    return session


async def revoke_session(db: DBSession, session_id: UUID) -> bool:
    """
    Delete a session (logout).

    Idempotent: revoking an unknown or already-revoked session is not an error.

    Returns:
        True if a row was deleted, False if nothing matched
    """
    result = db.exec(delete(Session).where(Session.id == session_id))
    db.commit()
    return result.rowcount > 0


async def revoke_all_user_sessions(db: DBSession, user_id: UUID, commit: bool = True) -> int:
    """
    Delete all sessions for a user (force logout everywhere).

    With commit=False the delete joins the caller's transaction.

    Use cases:
        - Account deactivated by an administrator

    Returns:
        Number of sessions deleted
    """
    result = db.exec(delete(Session).where(Session.user_id == user_id))
    if commit:
        db.commit()
    return result.rowcount


async def get_active_sessions(db: DBSession, user_id: UUID) -> list[Session]:
    """
    Get all live sessions for a user, newest first.
    """
    now = datetime.utcnow()

    statement = select(Session).where(
        Session.user_id == user_id,
        Session.expires_at > now,
    ).order_by(Session.issued_at.desc())

    return list(db.exec(statement).all())


async def cleanup_expired_sessions(db: DBSession) -> int:
    """
    Delete all expired sessions.

    Lookups already ignore expired rows; this only reclaims space.

    Returns:
        Number of sessions cleaned up
    """
    result = db.exec(delete(Session).where(Session.expires_at <= datetime.utcnow()))
    db.commit()

    if result.rowcount:
        logger.info("Removed %d expired sessions", result.rowcount)
    return result.rowcount
