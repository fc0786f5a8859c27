from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def seconds_since(value: Optional[datetime], now: Optional[datetime] = None):
    if value is None:
        return None
    now = now or utcnow()
    return (now - ensure_aware(value)).total_seconds()
