"""
Time utilities for the API.

Provides epoch-millisecond clocks, UTC normalization and human-readable
retry durations for rate-limit messages.
"""

import math
import time
from datetime import datetime, timezone

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Make a datetime timezone-aware, assuming naive values are UTC.

    SQLite drops tzinfo on round-trip, so values read back from the
    database need this before being compared with ``utc_now()``.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def format_retry_after(ms: int) -> str:
    """
    Format a retry delay in the coarsest sensible unit, rounding up.

    Seconds below one minute, minutes below one hour, hours otherwise.
    Rounding is always up so the caller is never told to retry too early.

    Args:
        ms: Delay in milliseconds

    Returns:
        A string like "1 second", "2 minutes" or "1 hour"
    """
    ms = max(ms, 1)
    if ms < MS_PER_MINUTE:
        return _plural(math.ceil(ms / MS_PER_SECOND), "second")
    if ms < MS_PER_HOUR:
        return _plural(math.ceil(ms / MS_PER_MINUTE), "minute")
    return _plural(math.ceil(ms / MS_PER_HOUR), "hour")
