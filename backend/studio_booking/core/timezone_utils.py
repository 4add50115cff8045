"""
Timezone utilities for the studio booking engine.

Plan validity and booking windows are calendar rules, so "today" is
always resolved in the studio's timezone rather than UTC.
"""

from datetime import date, datetime, timezone
from typing import Optional

import pytz

from .config import settings


def get_studio_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Return the configured studio timezone as a pytz timezone."""
    return pytz.timezone(tz_name or settings.studio_timezone)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_studio_now(tz_name: Optional[str] = None) -> datetime:
    """Current datetime in the studio timezone."""
    return datetime.now(get_studio_timezone(tz_name))


def get_studio_today(tz_name: Optional[str] = None) -> date:
    """Today's date in the studio timezone."""
    return get_studio_now(tz_name).date()


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are treated as UTC (SQLite returns naive datetimes for
    timezone-aware columns).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_studio_date(value: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of a timestamp as seen from the studio."""
    return ensure_utc(value).astimezone(get_studio_timezone(tz_name)).date()


def studio_start_of_day(day: date, tz_name: Optional[str] = None) -> datetime:
    """Midnight of ``day`` in the studio timezone, returned as aware UTC."""
    tz = get_studio_timezone(tz_name)
    local_midnight = tz.localize(datetime(day.year, day.month, day.day))
    return local_midnight.astimezone(timezone.utc)
