"""
Timezone utilities for turning wall-clock entries (date + 12-hour time typed
by an employee or manager) into UTC instants in the deployment timezone.
"""

from datetime import date, datetime
from datetime import time as datetime_time
from datetime import timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

from core.errors import ValidationError


def to_24_hour(hour: str, ampm: str) -> int:
    """
    Convert a 12-hour clock reading to 0-23.

    Args:
        hour: Hour string "1".."12"
        ampm: "AM" or "PM"

    Returns:
        int: Hour of day
    """
    try:
        h = int(hour)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid hour: {hour!r}")

    if not 1 <= h <= 12:
        raise ValidationError(f"Hour must be between 1 and 12, got {h}")

    meridiem = ampm.upper()
    if meridiem not in ("AM", "PM"):
        raise ValidationError(f"Invalid AM/PM marker: {ampm!r}")

    if meridiem == "PM" and h != 12:
        h += 12
    if meridiem == "AM" and h == 12:
        h = 0
    return h


def build_local_datetime(
    local_date: date, hour: str, minute: str, ampm: str, tz: str
) -> datetime:
    """
    Combine a local date and 12-hour time into a UTC datetime.

    Args:
        local_date: Calendar date in the deployment timezone
        hour: Hour string "1".."12"
        minute: Minute string "0".."59"
        ampm: "AM" or "PM"
        tz: IANA timezone string

    Returns:
        datetime: UTC datetime (timezone-aware)
    """
    try:
        m = int(minute)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid minute: {minute!r}")
    if not 0 <= m <= 59:
        raise ValidationError(f"Minute must be between 0 and 59, got {m}")

    local_time = datetime_time(to_24_hour(hour, ampm), m)
    local_dt = datetime.combine(local_date, local_time, tzinfo=ZoneInfo(tz))
    return local_dt.astimezone(timezone.utc)


def build_local_range(
    local_date: date,
    start: Tuple[str, str, str],
    end: Tuple[str, str, str],
    tz: str,
) -> Tuple[datetime, datetime]:
    """
    Build a (start, end) UTC pair from two wall-clock readings on one date.

    An end at or before the start is taken to be on the following day
    (overnight entries). The rollover keeps the wall-clock reading, so an end
    equal to the start spans 23 or 25 hours on daylight saving change days.

    Args:
        local_date: Calendar date of the start reading
        start: (hour, minute, ampm)
        end: (hour, minute, ampm)
        tz: IANA timezone string

    Returns:
        Tuple[datetime, datetime]: UTC start and end
    """
    start_utc = build_local_datetime(local_date, *start, tz)
    end_utc = build_local_datetime(local_date, *end, tz)

    if end_utc <= start_utc:
        end_utc = build_local_datetime(local_date + timedelta(days=1), *end, tz)

    return start_utc, end_utc
