#!/usr/bin/env python3
"""
Utility script to view recent login attempts.
Usage: python scripts/view_login_attempts.py [limit] [email]
"""

import asyncio
import sys
import os

from rich.console import Console
from rich.table import Table
from rich import print as rprint

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from backend.config import settings
from backend.auth.attempts import get_recent_attempts
from backend.auth.database import get_engine, init_db

console = Console()


async def view_attempts(limit: int = 20, email: str = None):
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        rows = await get_recent_attempts(session, email=email.lower() if email else None, limit=limit)

    if not rows:
        rprint("[yellow]No login attempts found.[/yellow]")
        return

    table = Table(title=f"Login Attempts (Limit: {limit})")
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Email", style="yellow")
    table.add_column("IP", style="magenta")
    table.add_column("Result", style="green")
    table.add_column("Reason", style="white")

    for row in rows:
        table.add_row(
            row.attempted_at.strftime("%Y-%m-%d %H:%M:%S"),
            row.email,
            row.ip_address,
            "[green]ok[/green]" if row.success else "[red]failed[/red]",
            row.failure_reason or "",
        )

    console.print(table)
    rprint(f"\n[dim]Showing {len(rows)} attempts.[/dim]")


if __name__ == "__main__":
    limit = 20
    if len(sys.argv) > 1 and sys.argv[1].isdigit():
        limit = int(sys.argv[1])
    email = sys.argv[2] if len(sys.argv) > 2 else None

    asyncio.run(view_attempts(limit, email))
