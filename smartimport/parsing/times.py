"""
Clock-time normalization.

Schedule exports write times as "9am", "2:15pm", "12pm", "9:05 AM".
Everything downstream compares integer minutes since midnight, produced
only by :func:`parse_time`.
"""

import re

from smartimport.errors import INVALID_TIME, ParseError

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)\s*$", re.IGNORECASE)


def parse_time(text: str) -> int:
    """Convert a 12-hour clock string to minutes since midnight (0..1439).

    >>> parse_time("9:05am")
    545
    >>> parse_time("12pm")
    720
    """
    if text is None:
        raise ParseError(INVALID_TIME, "time is missing", raw=text)

    match = _TIME_RE.match(str(text))
    if not match:
        raise ParseError(INVALID_TIME, "expected H[:MM]am/pm", raw=text)

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = match.group(3).lower()

    if not 1 <= hour <= 12:
        raise ParseError(INVALID_TIME, "hour must be 1-12", raw=text)
    if minute > 59:
        raise ParseError(INVALID_TIME, "minute must be 0-59", raw=text)

    hour = hour % 12
    if meridiem == "pm":
        hour += 12
    return hour * 60 + minute


def _split(minutes: int):
    if not isinstance(minutes, int) or not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"minutes must be an int in 0..{MINUTES_PER_DAY - 1}, got {minutes!r}")
    hour, minute = divmod(minutes, 60)
    suffix = "pm" if hour >= 12 else "am"
    display_hour = hour % 12 or 12
    return display_hour, minute, suffix


def format_time(minutes: int) -> str:
    """Canonical display form, e.g. 545 -> "9:05am", 0 -> "12:00am"."""
    display_hour, minute, suffix = _split(minutes)
    return f"{display_hour}:{minute:02d}{suffix}"


def format_time_label(minutes: int) -> str:
    """Short label that drops ":00", e.g. 540 -> "9am", 570 -> "9:30am"."""
    display_hour, minute, suffix = _split(minutes)
    if minute == 0:
        return f"{display_hour}{suffix}"
    return f"{display_hour}:{minute:02d}{suffix}"
