"""Timestamp helpers shared by the entity classes."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time, UTC-aware, truncated to milliseconds (Cassandra precision)."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt
