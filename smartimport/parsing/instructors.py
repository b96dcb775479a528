"""
Instructor field parsing.

Course-section exports carry instructors as
``Last, First (ExternalId) [Role, Load%]``, e.g.
``"Dragoo, Sheri (892564540) [Primary, 100%]"``, or the unassigned
placeholder ``"Staff [Primary, 100%]"`` (or ``"TBA"``). Co-taught sections list several
instructors separated by ``;``.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from smartimport.errors import INVALID_INSTRUCTOR_FIELD, ParseError
from smartimport.parsing.names import ParsedName, parse_name

# Unassigned-instructor labels; both become the Staff placeholder
STAFF_SENTINELS = ("staff", "tba")
DEFAULT_COURSE_ROLE = "Primary"
DEFAULT_LOAD_PERCENT = 100

_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]\s*$")
_PAREN_RE = re.compile(r"\(([^()]*)\)\s*$")
_PERCENT_RE = re.compile(r"^(\d{1,3})\s*%$")


@dataclass(frozen=True)
class InstructorReference:
    display_name: str
    external_id: Optional[str] = None
    course_role: str = DEFAULT_COURSE_ROLE
    load_percent: int = DEFAULT_LOAD_PERCENT
    is_staff_placeholder: bool = False
    name: Optional[ParsedName] = None

    @property
    def is_primary(self) -> bool:
        return self.course_role.lower() == "primary"

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "external_id": self.external_id,
            "course_role": self.course_role,
            "load_percent": self.load_percent,
            "is_staff_placeholder": self.is_staff_placeholder,
            "name": None if self.name is None else {
                "title": self.name.title,
                "first": self.name.first,
                "middle": self.name.middle,
                "last": self.name.last,
            },
        }


def staff_placeholder(course_role: str = DEFAULT_COURSE_ROLE,
                      load_percent: int = DEFAULT_LOAD_PERCENT) -> InstructorReference:
    return InstructorReference(
        display_name="Staff",
        course_role=course_role,
        load_percent=load_percent,
        is_staff_placeholder=True,
    )


def _fail(message: str, raw: str) -> ParseError:
    return ParseError(INVALID_INSTRUCTOR_FIELD, message, raw=raw)


def _parse_bracket(contents: str, raw: str):
    parts = [p.strip() for p in contents.split(",")]
    if len(parts) != 2 or not parts[0]:
        raise _fail("bracket must hold 'Role, Load%'", raw)
    role, load = parts
    match = _PERCENT_RE.match(load)
    if not match:
        raise _fail(f"load '{load}' is not a percentage", raw)
    percent = int(match.group(1))
    if percent > 100:
        raise _fail(f"load {percent}% exceeds 100%", raw)
    return role, percent


def parse_instructor_field(text: str) -> InstructorReference:
    """Parse one instructor entry, left to right: [..] suffix, (..) id, name.

    >>> ref = parse_instructor_field("Dragoo, Sheri (892564540) [Primary, 100%]")
    >>> ref.external_id, ref.course_role, ref.load_percent
    ('892564540', 'Primary', 100)
    """
    raw = text
    remaining = (text or "").strip()
    if not remaining:
        raise _fail("instructor is empty", raw)

    course_role = DEFAULT_COURSE_ROLE
    load_percent = DEFAULT_LOAD_PERCENT

    bracket = _BRACKET_RE.search(remaining)
    if bracket:
        course_role, load_percent = _parse_bracket(bracket.group(1), raw)
        remaining = remaining[: bracket.start()].strip()
    elif "[" in remaining or "]" in remaining:
        raise _fail("unbalanced '[...]' suffix", raw)

    if remaining.lower() in STAFF_SENTINELS:
        return staff_placeholder(course_role, load_percent)

    external_id = None
    paren = _PAREN_RE.search(remaining)
    if paren:
        external_id = paren.group(1).strip()
        if not external_id.isdigit():
            raise _fail(f"external id '{external_id}' is not numeric", raw)
        remaining = remaining[: paren.start()].strip()

    if not remaining:
        raise _fail("instructor name is missing", raw)

    try:
        name = parse_name(remaining)
    except ParseError as exc:
        raise _fail(exc.detail, raw) from exc

    return InstructorReference(
        display_name=name.display_name,
        external_id=external_id,
        course_role=course_role,
        load_percent=load_percent,
        name=name,
    )


def parse_instructor_list(text: str) -> List[InstructorReference]:
    """Parse a ``;``-separated instructor field. Blank text yields ``[]``."""
    entries = [e.strip() for e in (text or "").split(";")]
    return [parse_instructor_field(e) for e in entries if e]


def primary_instructor(refs: List[InstructorReference]) -> Optional[InstructorReference]:
    """First ``Primary`` reference, else the first reference."""
    for ref in refs:
        if ref.is_primary:
            return ref
    return refs[0] if refs else None
