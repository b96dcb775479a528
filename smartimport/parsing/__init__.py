"""
Text-to-structure parsers for schedule export fields.

Usage:
    from smartimport.parsing import parse_time, parse_meeting_patterns
"""

from smartimport.parsing.instructors import (
    InstructorReference,
    parse_instructor_field,
    parse_instructor_list,
)
from smartimport.parsing.meetings import MeetingPattern, parse_meeting_patterns
from smartimport.parsing.names import ParsedName, parse_name
from smartimport.parsing.roles import classify_roles
from smartimport.parsing.rooms import ParsedRoom, parse_room_field
from smartimport.parsing.times import format_time, parse_time

__all__ = [
    "InstructorReference",
    "MeetingPattern",
    "ParsedName",
    "ParsedRoom",
    "classify_roles",
    "format_time",
    "parse_instructor_field",
    "parse_instructor_list",
    "parse_meeting_patterns",
    "parse_name",
    "parse_room_field",
    "parse_time",
]
