"""UTC time helpers (timezone-aware calculation, naive storage)."""
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return a UTC timestamp without tzinfo for legacy DB columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime | str | None) -> datetime | None:
    """Coerce an aware/naive datetime or ISO string to naive UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        value = datetime.fromisoformat(text)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_local(value: datetime, tz_name: str) -> datetime:
    """Convert a naive UTC timestamp to the given display timezone."""
    return value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
