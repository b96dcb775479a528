"""
Change set building: resolved rows in, add / modify / delete Changes out.

Diffs are restricted to each collection's trackable fields, so unchanged
data produces no Change and re-importing the same file is a no-op. Every
Change built from one source row shares that row's group key.
"""

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from smartimport.core.config import get_config_value, get_trackable_fields
from smartimport.core.db import COLLECTIONS
from smartimport.core.logging import get_logger
from smartimport.imports.resolver import EntityResolver, Resolution, Snapshot
from smartimport.imports.rows import ParsedRow
from smartimport.imports.specs import (
    ACTION_ADD,
    ACTION_DELETE,
    ACTION_MODIFY,
    Change,
    DiffEntry,
)
from smartimport.parsing.instructors import InstructorReference
from smartimport.parsing.roles import FACULTY, classify_roles
from smartimport.parsing.rooms import ParsedRoom

logger = get_logger("smartimport.imports.changeset")


def _normalize(value: Any) -> Any:
    """Comparison form: blank strings and empty containers equal None."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (list, tuple)):
        items = [_normalize(v) for v in value]
        return items or None
    if isinstance(value, dict):
        normalized = {k: _normalize(v) for k, v in value.items()}
        return {k: v for k, v in normalized.items() if v is not None} or None
    return value


def diff_fields(existing: Dict[str, Any], proposed: Dict[str, Any],
                fields: Sequence[str]) -> List[DiffEntry]:
    """Compare proposed values against a stored document.

    Only fields in the allowlist that the proposal actually carries are
    compared. Entries keep the typed values; use ``DiffEntry.display()``
    for strings.
    """
    diff = []
    for field in fields:
        if field not in proposed:
            continue
        old_value = existing.get(field)
        new_value = proposed[field]
        if _normalize(old_value) != _normalize(new_value):
            diff.append(DiffEntry(field, old_value, new_value))
    return diff


def person_data(ref: InstructorReference) -> Dict[str, Any]:
    """New person document for an instructor reference."""
    name = ref.name
    return {
        "first_name": name.first if name else "",
        "last_name": name.last if name else "",
        "middle_name": name.middle if name else "",
        "title": name.title if name else "",
        "email": None,
        "external_id": ref.external_id,
        "roles": [FACULTY],
        "job_title": None,
    }


def merge_person(existing: Dict[str, Any], ref: InstructorReference) -> Dict[str, Any]:
    """Fields a schedule import may change on an existing person.

    Names are never overwritten from a schedule export. A blank external id
    or title is filled in, and the person gains the faculty role. Stored
    people without roles get them classified from their job title first.
    """
    proposed: Dict[str, Any] = {}
    if ref.external_id and not existing.get("external_id"):
        proposed["external_id"] = ref.external_id
    if ref.name and ref.name.title and not existing.get("title"):
        proposed["title"] = ref.name.title

    roles = list(existing.get("roles") or classify_roles(existing.get("job_title")))
    if FACULTY not in roles:
        roles.append(FACULTY)
    if roles != list(existing.get("roles") or []):
        proposed["roles"] = roles
    return proposed


class ChangeSetBuilder:
    """
    Accumulates Changes for one transaction, row by row.

    Each stored target (or pending ref) gets at most one Change. A new person
    or room shared by several rows is added once, and those rows are merged
    into one group so the add is always selected together with every
    schedule that points at it.

    Usage:
        builder = ChangeSetBuilder(snapshot, EntityResolver(snapshot))
        for parsed in rows:
            builder.add_row(parsed)
        builder.add_deletes()
        changes = builder.changes
    """

    def __init__(self, snapshot: Snapshot, resolver: EntityResolver,
                 semester: Optional[str] = None,
                 trackable: Optional[Dict[str, List[str]]] = None,
                 protected_field: Optional[str] = None):
        self.snapshot = snapshot
        self.resolver = resolver
        self.semester = semester or snapshot.semester
        self.trackable = trackable or {c: get_trackable_fields(c) for c in COLLECTIONS}
        self.protected_field = protected_field or get_config_value(
            "imports", "protected_field", default="protected"
        )
        self.changes: List[Change] = []
        self.warnings: List[str] = []
        self._emitted: Dict[str, Change] = {}
        self._schedule_rows: Dict[str, int] = {}
        self._present_schedule_ids: Set[str] = set()
        self._seq = 0

    # -- helpers -----------------------------------------------------------

    def _emit(self, **kwargs) -> Change:
        self._seq += 1
        change = Change(id=f"chg-{self._seq:04d}", **kwargs)
        self.changes.append(change)
        target = change.pending_ref or change.target_id
        if target:
            self._emitted[target] = change
        return change

    def mark_present(self, identity_keys: List[str]) -> None:
        """Keep a stored schedule out of the delete set (e.g. its row failed to parse)."""
        if not identity_keys:
            return
        found = self.resolver.find_schedule(identity_keys)
        if found:
            self._present_schedule_ids.add(found.existing["id"])

    # -- rows --------------------------------------------------------------

    def add_row(self, parsed: ParsedRow) -> List[Change]:
        """Build the Changes for one parsed row and return them.

        Raises:
            AmbiguousMatch: an instructor matched several people by name.
                Nothing is emitted for the row.
        """
        # Resolve everything first so an ambiguous person leaves no partial row
        people: List[Tuple[InstructorReference, Optional[Resolution]]] = []
        for ref in parsed.instructors:
            if ref.is_staff_placeholder:
                people.append((ref, None))
            else:
                people.append(
                    (ref, self.resolver.resolve_person(ref, row_index=parsed.row_index))
                )
        rooms = [(room, self.resolver.resolve_room(room)) for room in parsed.rooms]
        schedule = self.resolver.resolve_schedule(parsed.identity_keys)

        if not schedule.is_new:
            self._present_schedule_ids.add(schedule.ref)
        first_row = self._schedule_rows.setdefault(schedule.ref, parsed.row_index)
        if first_row != parsed.row_index:
            message = (f"row {parsed.row_index + 1}: {parsed.label} duplicates row "
                       f"{first_row + 1}; ignored")
            logger.warning(message)
            self.warnings.append(message)
            return []

        start = len(self.changes)
        group = self._row_group(
            parsed.group_key, [r for _, r in people] + [r for _, r in rooms]
        )

        for ref, resolution in people:
            if resolution is not None:
                self._person_change(ref, resolution, group, parsed.row_index)
        for room, resolution in rooms:
            self._room_change(room, resolution, group, parsed.row_index)
        self._schedule_change(parsed, people, rooms, schedule, group)

        return self.changes[start:]

    def _row_group(self, group: str, resolutions: List[Optional[Resolution]]) -> str:
        """Group for a row: the earliest group that already adds one of its new entities."""
        shared = set()
        for resolution in resolutions:
            if resolution is None or not resolution.is_new:
                continue
            emitted = self._emitted.get(resolution.pending_ref)
            if emitted is not None and emitted.group_key:
                shared.add(emitted.group_key)
        if not shared:
            return group

        target = next(c.group_key for c in self.changes if c.group_key in shared)
        for change in self.changes:
            if change.group_key in shared:
                change.group_key = target
        return target

    def _person_change(self, ref: InstructorReference, resolution: Resolution,
                       group: str, row_index: int) -> None:
        emitted = self._emitted.get(resolution.ref)
        if resolution.is_new:
            if emitted is None:
                label = ref.display_name + (f" ({ref.external_id})" if ref.external_id else "")
                self._emit(
                    collection="people", action=ACTION_ADD,
                    new_data=person_data(ref), group_key=group,
                    pending_ref=resolution.pending_ref, row_index=row_index,
                    summary=f"Add person {label}",
                )
            elif ref.external_id and not emitted.new_data.get("external_id"):
                emitted.new_data["external_id"] = ref.external_id
            return

        if emitted is not None:
            return
        diff = diff_fields(resolution.existing, merge_person(resolution.existing, ref),
                           self.trackable["people"])
        if diff:
            self._emit(
                collection="people", action=ACTION_MODIFY,
                target_id=resolution.ref, diff=diff, group_key=group,
                row_index=row_index,
                summary=f"Update person {ref.display_name}: "
                        f"{', '.join(d.key for d in diff)}",
            )

    def _room_change(self, room: ParsedRoom, resolution: Resolution,
                     group: str, row_index: int) -> None:
        if resolution.ref in self._emitted:
            return
        if resolution.is_new:
            self._emit(
                collection="rooms", action=ACTION_ADD, new_data=room.to_dict(),
                group_key=group, pending_ref=resolution.pending_ref,
                row_index=row_index, summary=f"Add room {room.name}",
            )
            return
        diff = diff_fields(resolution.existing, room.to_dict(), self.trackable["rooms"])
        if diff:
            self._emit(
                collection="rooms", action=ACTION_MODIFY, target_id=resolution.ref,
                diff=diff, group_key=group, row_index=row_index,
                summary=f"Update room {room.name}: {', '.join(d.key for d in diff)}",
            )

    def schedule_data(self, parsed: ParsedRow,
                      people: List[Tuple[InstructorReference, Optional[Resolution]]],
                      rooms: List[Tuple[ParsedRoom, Resolution]]) -> Dict[str, Any]:
        primary = parsed.primary_instructor
        primary_id = None
        for ref, resolution in people:
            if ref is primary and resolution is not None:
                primary_id = resolution.ref
        row = parsed.row
        return {
            "semester": self.semester,
            "term": parsed.term,
            "course_code": row.course_code,
            "course_title": row.course_title or None,
            "section": parsed.section or None,
            "crn": parsed.crn or None,
            "credits": parsed.credits,
            "instructor_id": primary_id,
            "instructor_name": primary.display_name if primary else None,
            "instructor_assignments": [
                {
                    "person_id": resolution.ref if resolution else None,
                    "display_name": ref.display_name,
                    "course_role": ref.course_role,
                    "load_percent": ref.load_percent,
                }
                for ref, resolution in people
            ],
            "meeting_patterns": [p.to_dict() for p in parsed.meeting_patterns],
            "room_ids": [resolution.ref for _, resolution in rooms],
            "room_names": [room.name for room, _ in rooms],
            "identity_key": parsed.identity_key,
            self.protected_field: False,
        }

    def _schedule_change(self, parsed: ParsedRow, people, rooms,
                         resolution: Resolution, group: str) -> None:
        data = self.schedule_data(parsed, people, rooms)
        label = f"{parsed.label} ({parsed.term})"
        if resolution.is_new:
            self._emit(
                collection="schedules", action=ACTION_ADD, new_data=data,
                group_key=group, pending_ref=resolution.pending_ref,
                row_index=parsed.row_index, summary=f"Add schedule {label}",
            )
            return

        diff = diff_fields(resolution.existing, data, self.trackable["schedules"])
        if diff:
            self._emit(
                collection="schedules", action=ACTION_MODIFY,
                target_id=resolution.ref, diff=diff, group_key=group,
                row_index=parsed.row_index,
                summary=f"Update schedule {label}: {', '.join(d.key for d in diff)}",
            )

    # -- deletes -----------------------------------------------------------

    def add_deletes(self) -> List[Change]:
        """Delete previously imported, unprotected schedules missing from this import.

        Schedules without an ``identity_key`` were entered by hand and are
        never deleted by an import.
        """
        start = len(self.changes)
        for doc in self.snapshot.schedules:
            if not doc.get("identity_key") or doc.get(self.protected_field):
                continue
            if doc["id"] in self._present_schedule_ids:
                continue
            label = f"{doc.get('course_code', '')} {doc.get('section') or ''}".strip()
            self._emit(
                collection="schedules", action=ACTION_DELETE, target_id=doc["id"],
                group_key=None, summary=f"Delete schedule {label} (not in import)",
            )
        return self.changes[start:]
