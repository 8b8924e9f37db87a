"""Session duration arithmetic.

Formula: duration_minutes = floor((end_time - start_time) / 60s), clamped to >= 0

Durations are always wall-clock from start_time to end_time. Pausing a
session does not stop this clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def elapsed_seconds(start_time: datetime, now: datetime) -> int:
    """Whole seconds elapsed since start_time, never negative."""
    delta = (as_utc(now) - as_utc(start_time)).total_seconds()
    return max(0, int(math.floor(delta)))


def compute_duration_minutes(start_time: datetime, end_time: datetime) -> int:
    """Closed-session duration in whole minutes.

    Sub-minute sessions yield 0. A clock skew that puts end_time before
    start_time also yields 0 rather than a negative duration.
    """
    delta = (as_utc(end_time) - as_utc(start_time)).total_seconds()
    return max(0, math.floor(delta / 60))


def format_elapsed(seconds: int) -> str:
    """Render elapsed seconds as HH:MM:SS for the session timer."""
    seconds = max(0, seconds)
    hrs, rem = divmod(seconds, 3600)
    mins, secs = divmod(rem, 60)
    return f"{hrs:02d}:{mins:02d}:{secs:02d}"
