"""UTC helpers. SQLite hands back naive datetimes; everything we store is UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Fractional hours from start to end (negative if end is earlier)."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0
