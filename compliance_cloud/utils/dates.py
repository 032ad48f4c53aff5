"""
Compliance Cloud - Date helpers

All deadline arithmetic is done on timezone-aware UTC datetimes. Values read
back from backends without timezone support are assumed to be UTC.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(due: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days until ``due``, rounded up.

    A deadline 6 days and 1 hour away counts as 7 days; a deadline that has
    passed by less than a day counts as 0.
    """
    now = as_utc(now) or utcnow()
    delta = as_utc(due) - now
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def days_from(now: datetime, days: int) -> datetime:
    return as_utc(now) + timedelta(days=days)
