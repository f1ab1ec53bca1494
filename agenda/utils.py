"""Shared date and time helpers used across the scheduling core."""

import re
from datetime import date, timedelta
from typing import Iterator, Optional, Union

from agenda.errors import ValidationError

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

DateLike = Union[date, str]


def is_valid_time(value: str) -> bool:
    """Check a 24-hour ``H:mm`` / ``HH:mm`` string.

    Examples:
        >>> is_valid_time("9:30")
        True
        >>> is_valid_time("24:00")
        False
    """
    return isinstance(value, str) and _TIME_RE.match(value.strip()) is not None


def normalize_time(value: str) -> str:
    """Zero-pad a valid time string to ``HH:mm``.

    Examples:
        >>> normalize_time("9:05")
        '09:05'
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValidationError(f"Invalid time {value!r}, expected HH:mm")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def time_to_minutes(value: str) -> int:
    hours, minutes = normalize_time(value).split(":")
    return int(hours) * 60 + int(minutes)


def parse_date(value: DateLike) -> date:
    """Accept a ``date`` or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar date in ``[start, end]``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def sunday_based_weekday(day: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def append_marker(text: Optional[str], marker: str) -> str:
    """Append an audit marker to free text without replacing it."""
    if not text or not text.strip():
        return marker
    return f"{text.rstrip()} {marker}"


def time_field(value: Optional[str]) -> Optional[str]:
    """Pydantic validator body: normalize ``time`` or fail with ValueError."""
    if value is None:
        return None
    if not is_valid_time(value):
        raise ValueError(f"Invalid time {value!r}, expected HH:mm")
    return normalize_time(value)
