"""
Entity resolution against an immutable store snapshot.

Matches parsed identities to stored documents in priority order:

    people     external_id  ->  name + email  ->  name only
    rooms      room_key     ->  display name
    schedules  crn key      ->  course/section key

Unmatched identities get a pending reference (``pending:people:1``) that
lives only inside the transaction and is replaced by a real document id
at commit. A name-only hit on several distinct people raises
AmbiguousMatch instead of guessing.
"""

import copy
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from smartimport.core.db import DocumentStore
from smartimport.core.logging import get_logger
from smartimport.errors import AmbiguousMatch
from smartimport.imports.rows import schedule_identity_keys
from smartimport.parsing.instructors import InstructorReference
from smartimport.parsing.names import normalize_name_key
from smartimport.parsing.rooms import ParsedRoom

logger = get_logger("smartimport.imports.resolver")

PENDING_PREFIX = "pending:"

STATUS_MATCHED = "matched"
STATUS_NEW = "new"


def is_pending_ref(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(PENDING_PREFIX)


@dataclass(frozen=True)
class Snapshot:
    """Store contents read once per build; never re-queried mid-build."""

    semester: str
    people: Tuple[Dict[str, Any], ...] = ()
    schedules: Tuple[Dict[str, Any], ...] = ()
    rooms: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_store(cls, store: DocumentStore, semester: str) -> "Snapshot":
        return cls(
            semester=semester,
            people=tuple(store.get_all("people")),
            schedules=tuple(store.get_all("schedules", semester=semester)),
            rooms=tuple(store.get_all("rooms")),
        )

    @classmethod
    def from_documents(cls, semester: str, people: Iterable[Dict] = (),
                       schedules: Iterable[Dict] = (), rooms: Iterable[Dict] = ()) -> "Snapshot":
        """Build from plain dicts (deep-copied so callers cannot mutate it)."""
        return cls(
            semester=semester,
            people=tuple(copy.deepcopy(list(people))),
            schedules=tuple(copy.deepcopy([s for s in schedules
                                           if s.get("semester", semester) == semester])),
            rooms=tuple(copy.deepcopy(list(rooms))),
        )

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        for doc in getattr(self, collection):
            if doc.get("id") == doc_id:
                return doc
        return None


@dataclass(frozen=True)
class Resolution:
    collection: str
    status: str
    match_key: str
    method: Optional[str] = None
    existing: Optional[Dict[str, Any]] = None
    pending_ref: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return self.status == STATUS_NEW

    @property
    def ref(self) -> str:
        """Stored document id, or the pending ref for a new entity."""
        return self.pending_ref if self.is_new else self.existing["id"]


def _norm_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _norm_room_name(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip()).lower()


def _index(docs: Iterable[Dict[str, Any]], key_fn) -> Dict[str, List[Dict[str, Any]]]:
    index: Dict[str, List[Dict[str, Any]]] = {}
    for doc in docs:
        for key in key_fn(doc):
            if key:
                bucket = index.setdefault(key, [])
                if doc not in bucket:
                    bucket.append(doc)
    return index


def _person_name_key(doc: Dict[str, Any]) -> str:
    return normalize_name_key(doc.get("first_name", ""), doc.get("last_name", ""))


def _candidate(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": doc.get("id"),
        "first_name": doc.get("first_name"),
        "last_name": doc.get("last_name"),
        "email": doc.get("email"),
        "external_id": doc.get("external_id"),
    }


def stored_schedule_keys(doc: Dict[str, Any]) -> List[str]:
    keys = []
    if doc.get("identity_key"):
        keys.append(doc["identity_key"])
    keys.extend(schedule_identity_keys(
        str(doc.get("term") or doc.get("semester") or ""),
        str(doc.get("crn") or ""),
        str(doc.get("course_code") or ""),
        str(doc.get("section") or ""),
    ))
    return keys


class EntityResolver:
    """
    Resolve parsed identities to stored documents or pending refs.

    The same new identity seen on several rows resolves to the same pending
    ref, so it is added once.

    Args:
        snapshot: Store contents to match against.
        resolutions: Manual answers to earlier AmbiguousMatch issues, keyed
            by the issue's ``match_key`` and naming the chosen person id.
    """

    def __init__(self, snapshot: Snapshot, resolutions: Optional[Dict[str, str]] = None):
        self.snapshot = snapshot
        self.resolutions = dict(resolutions or {})
        self._counters: Dict[str, int] = {}
        self._pending: Dict[Tuple[str, str], Resolution] = {}
        self._pending_external: Dict[str, Optional[str]] = {}

        self._people_by_external = _index(
            snapshot.people, lambda d: [str(d.get("external_id") or "").strip()]
        )
        self._people_by_name_email = _index(
            snapshot.people,
            lambda d: [f"{_person_name_key(d)}|{_norm_email(d.get('email'))}"]
            if d.get("email") else [],
        )
        self._people_by_name = _index(snapshot.people, lambda d: [_person_name_key(d)])
        self._rooms_by_key = _index(snapshot.rooms, lambda d: [d.get("room_key")])
        self._rooms_by_name = _index(snapshot.rooms, lambda d: [_norm_room_name(d.get("name"))])
        self._schedules_by_key = _index(snapshot.schedules, stored_schedule_keys)

    # -- pending refs --------------------------------------------------------

    def _new(self, collection: str, match_key: str, aliases: Iterable[str] = ()) -> Resolution:
        for key in [match_key, *aliases]:
            existing = self._pending.get((collection, key))
            if existing:
                return existing
        self._counters[collection] = self._counters.get(collection, 0) + 1
        resolution = Resolution(
            collection=collection,
            status=STATUS_NEW,
            match_key=match_key,
            pending_ref=f"{PENDING_PREFIX}{collection}:{self._counters[collection]}",
        )
        for key in [match_key, *aliases]:
            self._pending.setdefault((collection, key), resolution)
        return resolution

    @staticmethod
    def _first(collection: str, key: str, docs: List[Dict[str, Any]], method: str) -> Resolution:
        if len(docs) > 1:
            logger.warning(
                f"{len(docs)} {collection} share {method} '{key}'; "
                f"using {docs[0].get('id')}"
            )
        return Resolution(collection, STATUS_MATCHED, key, method, docs[0])

    # -- people ------------------------------------------------------------

    def resolve_person(self, ref: InstructorReference, email: Optional[str] = None,
                       row_index: Optional[int] = None) -> Resolution:
        """Resolve an instructor reference to a person.

        Raises:
            AmbiguousMatch: several distinct people share the name and no
                stronger key (external id, email) singles one out.
        """
        name = ref.name
        name_key = normalize_name_key(name.first, name.last) if name else ""
        external_id = (ref.external_id or "").strip()

        if external_id:
            docs = self._people_by_external.get(external_id)
            if docs:
                return self._first("people", external_id, docs, "external_id")

        if email and name_key:
            key = f"{name_key}|{_norm_email(email)}"
            docs = self._people_by_name_email.get(key)
            if docs:
                return self._first("people", key, docs, "name_email")

        if name_key in self.resolutions:
            person_id = self.resolutions[name_key]
            doc = self.snapshot.get("people", person_id)
            if doc is None:
                raise ValueError(f"Resolution for '{name_key}' names unknown person {person_id}")
            return Resolution("people", STATUS_MATCHED, name_key, "manual", doc)

        candidates = [
            d for d in self._people_by_name.get(name_key, [])
            if not (external_id and d.get("external_id")
                    and str(d["external_id"]).strip() != external_id)
        ]
        if len(candidates) == 1:
            return Resolution("people", STATUS_MATCHED, name_key, "name", candidates[0])
        if len(candidates) > 1:
            raise AmbiguousMatch(
                "people", name_key, [_candidate(d) for d in candidates],
                row_index=row_index, raw=ref.display_name,
            )

        return self._new_person(external_id, name_key)

    def _new_person(self, external_id: str, name_key: str) -> Resolution:
        if external_id:
            hit = self._pending.get(("people", f"id:{external_id}"))
            if hit:
                return hit
        by_name = self._pending.get(("people", f"name:{name_key}"))
        if by_name and (not external_id or self._pending_external.get(by_name.pending_ref)
                        in (None, external_id)):
            if external_id and self._pending_external.get(by_name.pending_ref) is None:
                self._pending_external[by_name.pending_ref] = external_id
                self._pending[("people", f"id:{external_id}")] = by_name
            return by_name

        match_key = f"id:{external_id}" if external_id else f"name:{name_key}"
        resolution = self._new("people", match_key)
        # First new person with this name keeps the name alias
        self._pending.setdefault(("people", f"name:{name_key}"), resolution)
        self._pending_external.setdefault(resolution.pending_ref, external_id or None)
        return resolution

    # -- rooms -------------------------------------------------------------

    def resolve_room(self, room: ParsedRoom) -> Resolution:
        docs = self._rooms_by_key.get(room.room_key)
        if docs:
            return self._first("rooms", room.room_key, docs, "room_key")
        name_key = _norm_room_name(room.name)
        docs = self._rooms_by_name.get(name_key)
        if docs:
            return self._first("rooms", name_key, docs, "name")
        return self._new("rooms", room.room_key)

    # -- schedules ---------------------------------------------------------

    def find_schedule(self, identity_keys: List[str]) -> Optional[Resolution]:
        """Stored schedule for the first key that hits, without allocating a pending ref."""
        for key in identity_keys:
            docs = self._schedules_by_key.get(key)
            if docs:
                return self._first("schedules", key, docs, key.split(":", 1)[0])
        return None

    def resolve_schedule(self, identity_keys: List[str]) -> Resolution:
        if not identity_keys:
            raise ValueError("schedule has no identity keys")
        return (self.find_schedule(identity_keys)
                or self._new("schedules", identity_keys[0], identity_keys[1:]))
