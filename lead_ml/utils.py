"""
lead_ml/utils.py — Small time and numeric helpers shared across the core.

All datetimes in this package are naive UTC, matching how they are stored
in the database.
"""

import math
from datetime import datetime, timezone

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Floor of the number of days from start to end, never negative."""
    delta = as_naive_utc(end) - as_naive_utc(start)
    return max(0, math.floor(delta.total_seconds() / SECONDS_PER_DAY))


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's rounding)."""
    return math.floor(value + 0.5)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
