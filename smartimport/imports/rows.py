"""
Per-row parsing: one ScheduleRow in, one fully structured ParsedRow out.

Runs every field parser over the row and re-raises their ParseErrors with
the row index and field name filled in, so a skipped row can be reported
without re-parsing it.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from smartimport.errors import MISSING_FIELD, ParseError
from smartimport.imports.specs import ScheduleRow
from smartimport.parsing.instructors import (
    InstructorReference,
    parse_instructor_list,
    primary_instructor,
    staff_placeholder,
)
from smartimport.parsing.meetings import MeetingPattern, parse_meeting_patterns
from smartimport.parsing.rooms import ParsedRoom, parse_room_field

POLICY_REJECT = "reject"
POLICY_STAFF = "staff"

# "01 (33038)" -> section "01", CRN "33038"
_SECTION_CRN_RE = re.compile(r"^(.*?)\s*\((\d+)\)\s*$")


def _norm_key_part(value: str) -> str:
    return re.sub(r"\s+", " ", (value or "").strip()).lower()


def split_section(section: str) -> Tuple[str, str]:
    """Return (section, embedded_crn). The CRN is "" when none is embedded."""
    text = (section or "").strip()
    match = _SECTION_CRN_RE.match(text)
    if match:
        return match.group(1).strip(), match.group(2)
    return text, ""


def schedule_identity_keys(term: str, crn: str, course_code: str, section: str) -> List[str]:
    """Identity keys for a course section, strongest first.

    >>> schedule_identity_keys("Fall 2025", "33038", "ADM 1241", "01")
    ['crn:fall 2025:33038', 'section:fall 2025:adm 1241:01']
    """
    term_key = _norm_key_part(term)
    keys = []
    if crn and crn.strip():
        keys.append(f"crn:{term_key}:{crn.strip()}")
    if course_code and course_code.strip() and section and section.strip():
        keys.append(
            f"section:{term_key}:{_norm_key_part(course_code)}:{_norm_key_part(section)}"
        )
    return keys


def row_identity_keys(row: ScheduleRow, semester: str) -> List[str]:
    """Identity keys straight from the raw row, without running the parsers."""
    section, embedded_crn = split_section(row.section)
    return schedule_identity_keys(
        row.term or semester, row.crn or embedded_crn, row.course_code, section
    )


def _coerce_credits(raw: str):
    text = (raw or "").strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return text  # variable credit, e.g. "1-3"
    return int(value) if value.is_integer() else value


@dataclass(frozen=True)
class ParsedRow:
    """Structured form of one ScheduleRow."""

    row: ScheduleRow
    term: str
    section: str
    crn: str
    credits: object
    instructors: Tuple[InstructorReference, ...]
    meeting_patterns: Tuple[MeetingPattern, ...]
    rooms: Tuple[ParsedRoom, ...]
    warnings: Tuple[str, ...] = ()

    @property
    def row_index(self) -> int:
        return self.row.row_index

    @property
    def group_key(self) -> str:
        return f"row:{self.row.row_index}"

    @property
    def identity_keys(self) -> List[str]:
        return schedule_identity_keys(self.term, self.crn, self.row.course_code, self.section)

    @property
    def identity_key(self) -> str:
        return self.identity_keys[0]

    @property
    def primary_instructor(self) -> Optional[InstructorReference]:
        return primary_instructor(list(self.instructors))

    @property
    def label(self) -> str:
        return f"{self.row.course_code} {self.section}".strip()


def parse_row(row: ScheduleRow, semester: str,
              instructor_policy: str = POLICY_REJECT) -> ParsedRow:
    """Parse every field of a row.

    Raises:
        ParseError: with ``row_index`` and ``field`` set. With
            ``instructor_policy="staff"`` a malformed instructor field is
            demoted to the Staff placeholder and reported as a warning
            instead.
    """
    if instructor_policy not in (POLICY_REJECT, POLICY_STAFF):
        raise ValueError(f"Unknown instructor policy: {instructor_policy}")

    warnings: List[str] = []
    section, embedded_crn = split_section(row.section)
    crn = row.crn or embedded_crn
    term = row.term or semester

    if not row.course_code:
        raise ParseError(MISSING_FIELD, "course code is empty", raw=row.course_code,
                         field="course_code", row_index=row.row_index)
    if not section and not crn:
        raise ParseError(MISSING_FIELD, "row has neither a section nor a CRN",
                         raw=row.section, field="section", row_index=row.row_index)

    try:
        instructors = parse_instructor_list(row.instructor_field)
    except ParseError as exc:
        if instructor_policy == POLICY_REJECT:
            raise exc.with_context(row.row_index, "instructor_field") from exc
        instructors = [staff_placeholder()]
        warnings.append(
            f"row {row.row_index + 1}: instructor '{row.instructor_field}' "
            f"imported as Staff ({exc.detail})"
        )

    try:
        patterns = parse_meeting_patterns(row.meeting_pattern_field)
    except ParseError as exc:
        raise exc.with_context(row.row_index, "meeting_pattern_field") from exc

    return ParsedRow(
        row=row,
        term=term,
        section=section,
        crn=crn,
        credits=_coerce_credits(row.credits),
        instructors=tuple(instructors),
        meeting_patterns=tuple(patterns),
        rooms=tuple(parse_room_field(row.room_field)),
        warnings=tuple(warnings),
    )
