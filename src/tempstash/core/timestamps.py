"""
UTC timestamp helpers shared by the query compiler and the backend.

Records store ``created_at`` as ISO-8601 text with millisecond precision and
a ``Z`` suffix (``2025-01-02T03:04:05.678Z``), so lexical order equals
chronological order. Filter bounds are rendered in exactly the same format
before comparison.
"""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_storage(dt: datetime) -> str:
    """Render a datetime in the stored ``created_at`` format."""
    dt = ensure_utc(dt)
    # %Y is not zero-padded below year 1000 on every platform.
    return f"{dt.year:04d}-{dt:%m-%dT%H:%M:%S}.{dt.microsecond // 1000:03d}Z"


def ceil_to_millisecond(dt: datetime) -> datetime:
    """Round up to the storage precision so ``>=`` never admits earlier rows."""
    remainder = dt.microsecond % 1000
    if remainder == 0:
        return dt
    return dt + timedelta(microseconds=1000 - remainder)


def from_storage(value: str | datetime) -> datetime:
    """Parse a stored ``created_at`` value into an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text.replace(" ", "T", 1)))


__all__ = ["utc_now", "ensure_utc", "to_storage", "ceil_to_millisecond", "from_storage"]
