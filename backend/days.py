"""
Calendar day helpers.

Routine records are keyed by calendar day, and both the store lookup and the
consistency engine go through ``to_calendar_day`` so that a timestamp written
late in the evening and the ``YYYY-MM-DD`` string a client asks for land on
the same day.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend import config

DayLike = Union[date, datetime, str]


def reference_tz(name: Optional[str] = None):
    name = name or config.APP_TIMEZONE
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def check_timezone(name: str):
    """Raise ValueError if ``name`` is not a usable timezone."""
    try:
        return reference_tz(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown APP_TIMEZONE: {name!r}") from e


def to_calendar_day(value: DayLike, tz_name: Optional[str] = None) -> date:
    """Normalize a date, datetime or ISO string to a calendar day.

    Aware datetimes are converted to the reference timezone first. Naive
    datetimes are taken to already be in the reference timezone, so only
    their date part matters. Raises ValueError for unparseable strings.
    """
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty date")
        if len(text) == 10:
            return date.fromisoformat(text)
        value = datetime.fromisoformat(text.replace('Z', '+00:00'))

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(reference_tz(tz_name))
        return value.date()

    if isinstance(value, date):
        return value

    raise ValueError(f"Unsupported date value: {value!r}")


def day_key(value: DayLike, tz_name: Optional[str] = None) -> str:
    """ISO ``YYYY-MM-DD`` string of the calendar day, used as the storage key."""
    return to_calendar_day(value, tz_name).isoformat()


def today(tz_name: Optional[str] = None) -> date:
    return datetime.now(reference_tz(tz_name)).date()


def days_ago(day: date, offset: int) -> date:
    return day - timedelta(days=offset)
