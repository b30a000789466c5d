# backend/app/core/clock.py
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    SQLite hands back naive datetimes even for DateTime(timezone=True)
    columns. Everything stored here is UTC, so tag it as such.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
