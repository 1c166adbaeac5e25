"""
Helpers for converting between HH:mm strings, minute offsets and calendar days.

All booking times are wall-clock times in the deployment's reference
timezone; pendulum is used whenever a real instant is needed.
"""

import re
from datetime import date, timedelta
from typing import TYPE_CHECKING, Iterator

import pendulum
from pendulum import DateTime

if TYPE_CHECKING:
    from .models import AvailabilityConfig

DEFAULT_TIMEZONE = "Asia/Kolkata"

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_valid_time(value: str) -> bool:
    """Check whether a string is a valid HH:mm time."""
    return bool(TIME_PATTERN.match(value or ""))


def time_to_minutes(value: str) -> int:
    """Convert an HH:mm string to minutes since midnight."""
    if not is_valid_time(value):
        raise ValueError(f"Invalid time '{value}', expected HH:mm")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight to a zero-padded HH:mm string."""
    if minutes < 0:
        raise ValueError(f"Minutes must not be negative, got {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    if not DATE_PATTERN.match(value or ""):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")
    return date.fromisoformat(value)


def format_date(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def weekday_index(day: date) -> int:
    """Return the weekday with 0=Sunday ... 6=Saturday."""
    return day.isoweekday() % 7


def is_working_day(day: date, config: "AvailabilityConfig") -> bool:
    """Check if a date falls on one of the configured working days."""
    return weekday_index(day) in config.working_days


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end, both inclusive."""
    current = date(start.year, start.month, start.day)
    last = date(end.year, end.month, end.day)
    while current <= last:
        yield current
        current += timedelta(days=1)


def now_in(timezone: str = DEFAULT_TIMEZONE) -> DateTime:
    """Current time in the given timezone."""
    return pendulum.now(timezone)


def slot_datetime(day: date | str, time: str, timezone: str = DEFAULT_TIMEZONE) -> DateTime:
    """
    Build the instant of a wall-clock date and time in the reference timezone.

    Args:
        day: Date object or YYYY-MM-DD string
        time: HH:mm string
        timezone: IANA timezone identifier

    Returns:
        Timezone-aware pendulum DateTime
    """
    if isinstance(day, str):
        day = parse_date(day)
    minutes = time_to_minutes(time)
    return pendulum.datetime(
        day.year, day.month, day.day, minutes // 60, minutes % 60, tz=timezone
    )


def utc_timestamp() -> str:
    """ISO-8601 timestamp used for createdAt/updatedAt fields."""
    return pendulum.now("UTC").to_iso8601_string()
