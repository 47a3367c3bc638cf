"""
Dashboard - Pending-Auth Store

Short-lived tokens issued when a 2FA user has supplied the right password
but not yet a TOTP code.

Security:
- Fixed 5 minute lifetime
- consume() is a conditional delete: of two concurrent consumers of the
  same token exactly one sees rowcount == 1, the other fails
- An expired token is deleted the moment it is presented
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import Session as DBSession, select

from backend.auth.exceptions import InvalidOrExpiredTokenError
from backend.auth.models import PendingAuth
from backend.auth.sessions import generate_token
from backend.config import settings


logger = logging.getLogger(__name__)


async def create_pending_auth(
    db: DBSession,
    user_id: UUID,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """
    Issue a pending-auth token for a password-verified user.

    Returns:
        The opaque token to carry in the pending-auth cookie
    """
    token = generate_token()
    pending = PendingAuth(
        token=token,
        user_id=user_id,
        expires_at=datetime.utcnow() + timedelta(minutes=settings.PENDING_AUTH_EXPIRE_MINUTES),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(pending)
    db.commit()

    return token


async def consume_pending_auth(db: DBSession, token: str) -> PendingAuth:
    """
    Fetch and delete a pending-auth token in one logical step.

    Args:
        db: Database session
        token: Token from the pending-auth cookie

    Returns:
        The consumed PendingAuth (detached; its row no longer exists)

    Raises:
        InvalidOrExpiredTokenError: unknown, already consumed, or expired token
    """
    if not token:
        raise InvalidOrExpiredTokenError(reason="Missing pending token")

    pending = db.exec(select(PendingAuth).where(PendingAuth.token == token)).first()
    if not pending:
        raise InvalidOrExpiredTokenError(reason="Unknown pending token")

    db.expunge(pending)

    # Only the caller whose DELETE removes the row owns the token
    result = db.exec(delete(PendingAuth).where(PendingAuth.id == pending.id))
    db.commit()

    if result.rowcount != 1:
        raise InvalidOrExpiredTokenError(reason="Pending token already consumed")

    if pending.expires_at <= datetime.utcnow():
        logger.info("Rejected expired pending token for user %s", pending.user_id)
        raise InvalidOrExpiredTokenError(reason="Pending token expired")

    return pending


async def cleanup_expired_pending_auth(db: DBSession) -> int:
    """Delete every expired pending-auth row. Returns the number removed."""
    result = db.exec(delete(PendingAuth).where(PendingAuth.expires_at <= datetime.utcnow()))
    db.commit()
    return result.rowcount
