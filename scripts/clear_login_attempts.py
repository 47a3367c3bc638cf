"""
Dashboard - Clear Login Attempts

Deletes every login-attempt row and every pending 2FA token, lifting all
active lockouts. Intended for development and for support after a
lockout storm.

Usage:
    python -m scripts.clear_login_attempts
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session

from backend.config import settings
from backend.auth.attempts import purge_attempts
from backend.auth.database import get_engine, init_db


async def main() -> None:
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        attempts, pending = await purge_attempts(session)

    print(f"Deleted {attempts} login attempts")
    print(f"Deleted {pending} pending 2FA tokens")


if __name__ == "__main__":
    asyncio.run(main())
