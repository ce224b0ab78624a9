"""Datetime utilities.

Timestamps are stored timezone-aware (TIMESTAMPTZ). Calendar concepts such as
"this month" or "today" are evaluated in the collective's local zone.
"""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from config.settings import settings


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def local_today(now: datetime) -> date:
    """Calendar date of `now` in the local zone."""
    return now.astimezone(local_tz()).date()


def month_start(now: datetime) -> datetime:
    """First instant of the local calendar month containing `now`."""
    local = now.astimezone(local_tz())
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def combine_local(day: date, at: time) -> datetime:
    """Attach a local time-of-day to a calendar date (aware datetime)."""
    return datetime.combine(day, at, tzinfo=local_tz())
