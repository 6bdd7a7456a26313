"""Day key calculation with a UTC cutoff hour.

A "day" starts at ``cutoff_hour_utc:00 UTC`` instead of midnight, so a visit at
00:30 UTC still counts towards the previous day's streak.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone

CUTOFF_HOUR_UTC = 1


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _to_datetime(timestamp: int | float | datetime) -> datetime:
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc)
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)


def _parse_day_key(key: str) -> date:
    """Parse a YYYY-MM-DD day key."""
    return date.fromisoformat(key)


def day_key(timestamp: int | float | datetime, cutoff_hour_utc: int = CUTOFF_HOUR_UTC) -> str:
    """Return the YYYY-MM-DD day key for a timestamp (ms since epoch or datetime)."""
    shifted = _to_datetime(timestamp) - timedelta(hours=cutoff_hour_utc)
    return shifted.date().isoformat()


def days_between(a: str, b: str) -> int:
    """Whole days from day key ``a`` to day key ``b`` (negative if b is earlier)."""
    return (_parse_day_key(b) - _parse_day_key(a)).days


def previous_day_key(key: str) -> str:
    """Day key of the calendar day before ``key``."""
    return (_parse_day_key(key) - timedelta(days=1)).isoformat()
