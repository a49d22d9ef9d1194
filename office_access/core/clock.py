from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from SQLite; convert aware ones.
    All timestamps are stored in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None
