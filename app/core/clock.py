"""Time source for status derivation and schedule windows"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz

from app.core.config import GYM_TIMEZONE


class Clock:
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = Clock()


def get_clock() -> Clock:
    """FastAPI dependency, overridden in tests"""
    return system_clock


def gym_tz(tz_name: Optional[str] = None):
    return pytz.timezone(tz_name or GYM_TIMEZONE)


def to_gym_time(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(gym_tz(tz_name))


def gym_local_date(dt: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of `dt` as seen at the gym"""
    return to_gym_time(dt, tz_name).date()


def day_bounds_utc(
    day: date, days: int = 1, tz_name: Optional[str] = None
) -> Tuple[datetime, datetime]:
    """UTC [start, end) covering `days` local calendar days from `day`"""
    tz = gym_tz(tz_name)
    start_local = tz.localize(datetime.combine(day, time.min))
    end_local = tz.localize(datetime.combine(day + timedelta(days=days), time.min))
    return (
        start_local.astimezone(timezone.utc),
        end_local.astimezone(timezone.utc),
    )
