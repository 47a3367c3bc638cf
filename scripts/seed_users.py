"""
Dashboard - Database Seed Script

Creates tables, the default roles and permissions, global settings and
the demo accounts for development.

Usage:
    python -m scripts.seed_users
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session, select

from backend.config import settings
from backend.auth.bootstrap import DEMO_PASSWORD, load_policy, seed_database
from backend.auth.database import get_engine, init_db
from backend.auth.models import User


def seed(with_demo_users: bool) -> None:
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        seed_database(session, seed_demo=with_demo_users)

        if not with_demo_users:
            return

        for spec in load_policy().get("demo_users") or []:
            user = session.exec(select(User).where(User.email == spec["email"])).first()
            if user:
                print(f"  {user.email} ({spec.get('role')})")
        print(f"  Password: {DEMO_PASSWORD}")


if __name__ == "__main__":
    print("=" * 50)
    print("Dashboard - User Seed Script")
    print("=" * 50)

    response = input("Create demo users for all roles? (y/n): ")
    seed(with_demo_users=response.lower() == "y")

    print()
    print("Done!")
