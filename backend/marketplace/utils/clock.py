"""
Time helpers

All timestamps are stored as naive UTC so that comparisons behave the same
on PostgreSQL and SQLite.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hours_from_now(hours: float, now: datetime = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=hours)
