"""
Meeting pattern parsing.

Parses ``"MWF 9:05am-9:55am; T 2pm-4pm"`` into one MeetingPattern per
day letter, or the sentinel ``"Does Not Meet"`` into an empty list.
Any clause that fails to parse fails the whole field so a schedule is
never saved with sessions silently missing.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from smartimport.errors import INVALID_MEETING_PATTERN, ParseError
from smartimport.parsing.times import format_time_label, parse_time

DAY_CODES = "MTWRFSU"
DOES_NOT_MEET = "does not meet"

# The range separator is the first hyphen directly after an am/pm suffix
_RANGE_SPLIT_RE = re.compile(r"(?<=[mM])\s*-\s*")


@dataclass(frozen=True)
class MeetingPattern:
    day: str
    start_minute: int
    end_minute: int

    def __post_init__(self):
        if self.day not in DAY_CODES or len(self.day) != 1:
            raise ValueError(f"day must be one of {DAY_CODES}, got {self.day!r}")
        if not self.start_minute < self.end_minute:
            raise ValueError(
                f"start_minute ({self.start_minute}) must be before "
                f"end_minute ({self.end_minute})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"day": self.day, "start_minute": self.start_minute,
                "end_minute": self.end_minute}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeetingPattern":
        return cls(data["day"], int(data["start_minute"]), int(data["end_minute"]))


def _fail(message: str, raw: str) -> ParseError:
    return ParseError(INVALID_MEETING_PATTERN, message, raw=raw)


def _parse_clause(clause: str, raw: str) -> List[MeetingPattern]:
    parts = clause.split(None, 1)
    if len(parts) != 2:
        raise _fail(f"clause '{clause}' needs day codes and a time range", raw)
    day_token, range_token = parts[0].upper(), parts[1].strip()

    bad_days = [c for c in day_token if c not in DAY_CODES]
    if bad_days:
        raise _fail(f"unknown day code(s) {''.join(bad_days)!r} in '{clause}'", raw)

    pieces = _RANGE_SPLIT_RE.split(range_token, maxsplit=1)
    if len(pieces) != 2:
        raise _fail(f"time range '{range_token}' has no start-end separator", raw)

    try:
        start = parse_time(pieces[0])
        end = parse_time(pieces[1])
    except ParseError as exc:
        raise _fail(f"bad time in '{clause}': {exc.detail}", raw) from exc

    if start >= end:
        raise _fail(f"range in '{clause}' ends before it starts", raw)

    return [MeetingPattern(day, start, end) for day in day_token]


def parse_meeting_patterns(text: str) -> List[MeetingPattern]:
    """Parse a meeting-pattern field into an ordered MeetingPattern list.

    >>> [p.day for p in parse_meeting_patterns("MWF 9:05am-9:55am")]
    ['M', 'W', 'F']
    >>> parse_meeting_patterns("Does Not Meet")
    []
    """
    raw = text
    cleaned = (text or "").strip()
    if not cleaned or cleaned.lower() == DOES_NOT_MEET:
        return []

    patterns: List[MeetingPattern] = []
    for clause in cleaned.split(";"):
        clause = clause.strip()
        if not clause:
            continue
        patterns.extend(_parse_clause(clause, raw))
    return patterns


def format_meeting_patterns(patterns: Iterable[MeetingPattern]) -> str:
    """Render patterns back to clause text, joining days that share a time range."""
    grouped: List[Tuple[Tuple[int, int], List[str]]] = []
    for p in patterns:
        key = (p.start_minute, p.end_minute)
        if grouped and grouped[-1][0] == key and p.day not in grouped[-1][1]:
            grouped[-1][1].append(p.day)
        else:
            grouped.append((key, [p.day]))
    if not grouped:
        return "Does Not Meet"
    return "; ".join(
        f"{''.join(days)} {format_time_label(start)}-{format_time_label(end)}"
        for (start, end), days in grouped
    )
