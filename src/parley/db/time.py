# src/parley/db/time.py
"""Time utilities for database models."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def isoformat(value: datetime) -> str:
    """Render a timestamp as ISO-8601 with a ``Z`` suffix for UTC."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
