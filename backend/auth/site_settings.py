"""
Dashboard - Global Settings Store

Key/value settings shared by the login flow and request middleware.
Booleans are stored as the strings "true"/"false".
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Session as DBSession

from backend.auth.models import Setting, FORCE_TWO_FACTOR_KEY


async def get_setting(db: DBSession, key: str) -> Optional[str]:
    """Return the raw value for key, or None if unset."""
    setting = db.get(Setting, key)
    return setting.value if setting else None


async def set_setting(db: DBSession, key: str, value: str) -> Setting:
    """Create or overwrite a setting."""
    setting = db.get(Setting, key)
    if setting is None:
        setting = Setting(key=key, value=value)
    else:
        setting.value = value
        setting.updated_at = datetime.utcnow()

    db.add(setting)
    db.commit()
    db.refresh(setting)
    return setting


async def is_force_two_factor_enabled(db: DBSession) -> bool:
    """True when every user must enrol in 2FA before using the dashboard."""
    return await get_setting(db, FORCE_TWO_FACTOR_KEY) == "true"


async def set_force_two_factor(db: DBSession, enabled: bool) -> Setting:
    return await set_setting(db, FORCE_TWO_FACTOR_KEY, "true" if enabled else "false")
