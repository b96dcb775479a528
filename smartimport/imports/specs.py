"""
Import data models.

Shared dataclasses used by the import engine: spreadsheet column
definitions, the schedule input row, and the change / transaction /
selection records reviewed before commit.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from smartimport.core.db import COLLECTIONS

ACTION_ADD = "add"
ACTION_MODIFY = "modify"
ACTION_DELETE = "delete"
ACTIONS = (ACTION_ADD, ACTION_MODIFY, ACTION_DELETE)

STATUS_PENDING = "pending"
STATUS_COMMITTING = "committing"
STATUS_COMMITTED = "committed"
STATUS_CANCELLED = "cancelled"


def timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def new_transaction_id() -> str:
    return f"import_{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


@dataclass
class ColumnDef:
    """Definition for a single importable column/field."""

    name: str                          # Internal field name (e.g. "course_code")
    label: str                         # Human-readable label
    required: bool = False
    aliases: List[str] = field(default_factory=list)  # Alternative header names

    def all_names(self) -> List[str]:
        """Return all possible names for header matching (lowercase)."""
        names = [self.name.lower(), self.label.lower()]
        names.extend(a.lower() for a in self.aliases)
        return list(dict.fromkeys(names))  # dedupe, preserve order


@dataclass(frozen=True)
class ScheduleRow:
    """One course-section row of a schedule export, all fields as exported."""

    course_code: str = ""
    course_title: str = ""
    section: str = ""
    term: str = ""
    credits: str = ""
    instructor_field: str = ""
    meeting_pattern_field: str = ""
    room_field: str = ""
    crn: str = ""
    row_index: int = 0

    @classmethod
    def from_record(cls, record: Dict[str, Any], row_index: int = 0) -> "ScheduleRow":
        def _s(key):
            value = record.get(key)
            return "" if value is None else str(value).strip()

        return cls(
            course_code=_s("course_code"),
            course_title=_s("course_title"),
            section=_s("section"),
            term=_s("term"),
            credits=_s("credits"),
            instructor_field=_s("instructor_field"),
            meeting_pattern_field=_s("meeting_pattern_field"),
            room_field=_s("room_field"),
            crn=_s("crn"),
            row_index=int(record.get("_row_index", row_index)),
        )


@dataclass(frozen=True)
class DiffEntry:
    """One differing field: stored value -> imported value (typed)."""

    key: str
    from_value: Any
    to_value: Any

    def display(self) -> Tuple[str, str]:
        return _display(self.from_value), _display(self.to_value)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "from": self.from_value, "to": self.to_value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiffEntry":
        return cls(data["key"], data.get("from"), data.get("to"))


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_display(v) for v in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}={_display(v)}" for k, v in value.items())
    return str(value)


@dataclass
class Change:
    """A single add / modify / delete against one record of one collection."""

    id: str
    collection: str
    action: str
    target_id: Optional[str] = None
    new_data: Optional[Dict[str, Any]] = None
    diff: List[DiffEntry] = field(default_factory=list)
    group_key: Optional[str] = None
    pending_ref: Optional[str] = None   # synthetic identity of an add
    row_index: Optional[int] = None     # source row, None for deletes
    summary: str = ""

    def __post_init__(self):
        if self.collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {self.collection}")
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown action: {self.action}")
        if self.action == ACTION_ADD:
            if self.target_id is not None or self.diff:
                raise ValueError("add changes carry no target_id and no diff")
            if self.new_data is None:
                raise ValueError("add changes need new_data")
        elif self.action == ACTION_DELETE:
            if self.new_data is not None:
                raise ValueError("delete changes carry no new_data")
            if not self.target_id:
                raise ValueError("delete changes need a target_id")
        else:
            if not self.diff:
                raise ValueError("modify changes need at least one diff entry")
            if not self.target_id:
                raise ValueError("modify changes need a target_id")

    @property
    def diff_keys(self) -> List[str]:
        return [d.key for d in self.diff]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "collection": self.collection,
            "action": self.action,
            "target_id": self.target_id,
            "new_data": self.new_data,
            "diff": [d.to_dict() for d in self.diff],
            "group_key": self.group_key,
            "pending_ref": self.pending_ref,
            "row_index": self.row_index,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Change":
        return cls(
            id=data["id"],
            collection=data["collection"],
            action=data["action"],
            target_id=data.get("target_id"),
            new_data=data.get("new_data"),
            diff=[DiffEntry.from_dict(d) for d in data.get("diff") or []],
            group_key=data.get("group_key"),
            pending_ref=data.get("pending_ref"),
            row_index=data.get("row_index"),
            summary=data.get("summary", ""),
        )


@dataclass
class Transaction:
    """All changes produced by one import run, held for review."""

    id: str
    semester: str
    created_at: str
    changes: List[Change] = field(default_factory=list)
    status: str = STATUS_PENDING
    row_errors: List[Dict[str, Any]] = field(default_factory=list)
    match_issues: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rows_total: int = 0
    filename: Optional[str] = None
    created_by: Optional[str] = None
    committed_at: Optional[str] = None
    applied_change_ids: List[str] = field(default_factory=list)
    last_error: Optional[str] = None

    def get_change(self, change_id: str) -> Optional[Change]:
        for change in self.changes:
            if change.id == change_id:
                return change
        return None

    @property
    def change_ids(self) -> List[str]:
        return [c.id for c in self.changes]

    @property
    def summary(self) -> Dict[str, int]:
        """Count changes by "collection.action" for the review screen."""
        counts: Dict[str, int] = {}
        for change in self.changes:
            key = f"{change.collection}.{change.action}"
            counts[key] = counts.get(key, 0) + 1
        return counts

    @property
    def by_group(self) -> Dict[str, List[Change]]:
        groups: Dict[str, List[Change]] = {}
        for change in self.changes:
            if change.group_key:
                groups.setdefault(change.group_key, []).append(change)
        return groups

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "semester": self.semester,
            "created_at": self.created_at,
            "status": self.status,
            "changes": [c.to_dict() for c in self.changes],
            "row_errors": self.row_errors,
            "match_issues": self.match_issues,
            "warnings": self.warnings,
            "rows_total": self.rows_total,
            "filename": self.filename,
            "created_by": self.created_by,
            "committed_at": self.committed_at,
            "applied_change_ids": self.applied_change_ids,
            "last_error": self.last_error,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            id=data["id"],
            semester=data["semester"],
            created_at=data["created_at"],
            changes=[Change.from_dict(c) for c in data.get("changes") or []],
            status=data.get("status", STATUS_PENDING),
            row_errors=list(data.get("row_errors") or []),
            match_issues=list(data.get("match_issues") or []),
            warnings=list(data.get("warnings") or []),
            rows_total=data.get("rows_total", 0),
            filename=data.get("filename"),
            created_by=data.get("created_by"),
            committed_at=data.get("committed_at"),
            applied_change_ids=list(data.get("applied_change_ids") or []),
            last_error=data.get("last_error"),
        )


@dataclass
class Selection:
    """Reviewer's choice: which changes apply, and which diff keys per modify."""

    change_ids: Set[str] = field(default_factory=set)
    field_map: Dict[str, List[str]] = field(default_factory=dict)

    def is_selected(self, change_id: str) -> bool:
        return change_id in self.change_ids

    def fields_for(self, change_id: str) -> Optional[List[str]]:
        """Selected diff keys for a modify, or None for "all of them"."""
        return self.field_map.get(change_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change_ids": sorted(self.change_ids),
            "field_map": {k: list(v) for k, v in self.field_map.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Selection":
        return cls(
            change_ids=set(data.get("change_ids") or []),
            field_map={k: list(v) for k, v in (data.get("field_map") or {}).items()},
        )


@dataclass
class CommitResult:
    """Outcome of one commit call."""

    transaction_id: str
    status: str
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    batches: int = 0
    audit_ids: List[int] = field(default_factory=list)
    document_ids: Dict[str, str] = field(default_factory=dict)
