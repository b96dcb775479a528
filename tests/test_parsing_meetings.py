"""Tests for meeting pattern parsing."""

import pytest

from smartimport.errors import INVALID_MEETING_PATTERN, ParseError
from smartimport.parsing.meetings import (
    MeetingPattern,
    format_meeting_patterns,
    parse_meeting_patterns,
)


class TestParseMeetingPatterns:
    def test_does_not_meet(self):
        assert parse_meeting_patterns("Does Not Meet") == []
        assert parse_meeting_patterns("does not meet") == []

    def test_blank(self):
        assert parse_meeting_patterns("") == []

    def test_one_pattern_per_day(self):
        patterns = parse_meeting_patterns("MWF 9:05am-9:55am")
        assert [p.day for p in patterns] == ["M", "W", "F"]
        assert all(p.start_minute == 545 and p.end_minute == 595 for p in patterns)

    def test_multiple_clauses_same_day(self):
        patterns = parse_meeting_patterns("T 2pm-3:15pm; T 2pm-4pm")
        assert len(patterns) == 2
        assert [p.day for p in patterns] == ["T", "T"]
        assert patterns[0].end_minute == 915
        assert patterns[1].end_minute == 960

    def test_whitespace_in_range(self):
        patterns = parse_meeting_patterns("TR 9:30 am - 10:45 am")
        assert [(p.start_minute, p.end_minute) for p in patterns] == [(570, 645)] * 2

    def test_lowercase_days(self):
        assert [p.day for p in parse_meeting_patterns("mw 10am-11am")] == ["M", "W"]

    @pytest.mark.parametrize("text", [
        "MWF 9:05am",
        "MWF 9:05am-9:55",
        "MXF 9am-10am",
        "MWF",
        "T 3pm-2pm",
        "T 2pm-2pm",
        "MWF 9:05am-9:55am; T 25pm-26pm",
    ])
    def test_invalid_fails_whole_field(self, text):
        with pytest.raises(ParseError) as exc_info:
            parse_meeting_patterns(text)
        assert exc_info.value.kind == INVALID_MEETING_PATTERN
        assert exc_info.value.raw == text


class TestMeetingPattern:
    def test_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            MeetingPattern("M", 600, 540)

    def test_rejects_unknown_day(self):
        with pytest.raises(ValueError):
            MeetingPattern("X", 540, 600)

    def test_dict_round_trip(self):
        pattern = MeetingPattern("R", 570, 645)
        assert MeetingPattern.from_dict(pattern.to_dict()) == pattern


def test_format_groups_days_with_same_times():
    patterns = parse_meeting_patterns("MWF 9am-9:50am; T 2pm-4pm")
    assert format_meeting_patterns(patterns) == "MWF 9am-9:50am; T 2pm-4pm"
    assert format_meeting_patterns([]) == "Does Not Meet"
