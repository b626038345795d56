import math
from datetime import datetime, timezone
from typing import Optional

MS_PER_MINUTE = 60_000


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime object to an ISO 8601 string with 'Z' suffix.

    If the datetime is naive, it is assumed to be in UTC and is made aware.
    If it is timezone-aware, it is converted to UTC.

    Args:
        dt: A datetime object or None

    Returns:
        An ISO 8601 formatted string with 'Z' suffix, or None if the input is None.
    """
    dt = ensure_utc(dt)
    if dt is None:
        return None

    # Format to ISO string and replace the +00:00 suffix with 'Z'.
    iso_string = dt.isoformat()

    if iso_string.endswith("+00:00"):
        return iso_string.replace("+00:00", "Z")

    return iso_string


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    return int(round(ensure_utc(dt).timestamp() * 1000))


def from_epoch_ms(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def round_minutes(delta_ms: float) -> int:
    """
    Round a millisecond delta to whole minutes, halves rounding up.

    Legal-minute accounting rounds rather than truncates, and .5 always goes
    up (Python's round() would send 2.5 to 2).
    """
    return int(math.floor(delta_ms / MS_PER_MINUTE + 0.5))


def duration_minutes(start: datetime, end: datetime) -> int:
    return round_minutes(to_epoch_ms(end) - to_epoch_ms(start))


def hours_between(start: datetime, end: datetime) -> float:
    return (to_epoch_ms(end) - to_epoch_ms(start)) / 3_600_000


# Injectable Time Source
class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
