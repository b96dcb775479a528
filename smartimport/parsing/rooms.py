"""
Room field parsing.

Exports list rooms as "Goebel 101", "FCS 211; FCS 213" or
"Jones 205A and Jones 206". Non-physical locations ("No Room Needed",
"Online", "TBA") produce no rooms.
"""

import re
from dataclasses import dataclass
from typing import List

_SEPARATORS_RE = re.compile(r"\s*;\s*|\s*\n\s*|\s+and\s+", re.IGNORECASE)

NON_PHYSICAL_PATTERNS = (
    re.compile(r"^no room( needed)?$", re.IGNORECASE),
    re.compile(r"^(tba|tbd|arranged|to be (announced|arranged))$", re.IGNORECASE),
    re.compile(r"\bonline\b|\bvirtual\b|\bzoom\b|\bremote\b", re.IGNORECASE),
    re.compile(r"^general assignment room$", re.IGNORECASE),
)


@dataclass(frozen=True)
class ParsedRoom:
    name: str
    building: str
    room_number: str
    room_key: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "building": self.building,
            "room_number": self.room_number,
            "room_key": self.room_key,
        }


def is_non_physical(label: str) -> bool:
    text = (label or "").strip()
    return not text or any(p.search(text) for p in NON_PHYSICAL_PATTERNS)


def _slug(value: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", value.upper()).strip("_")


def parse_room_label(label: str) -> ParsedRoom:
    """Split "Building Number" into parts with a canonical BUILDING:NUMBER key.

    Labels without a trailing room number keep the whole label as the
    building and key off its slug.
    """
    name = re.sub(r"\s+", " ", label.strip())
    tokens = name.split(" ")
    if len(tokens) > 1 and any(ch.isdigit() for ch in tokens[-1]):
        building = " ".join(tokens[:-1])
        number = tokens[-1].upper()
        return ParsedRoom(name, building, number, f"{_slug(building)}:{number}")
    return ParsedRoom(name, name, "", _slug(name))


def parse_room_field(text: str) -> List[ParsedRoom]:
    """Parse a possibly multi-room field; duplicates are dropped, order kept."""
    if is_non_physical(text):
        return []
    rooms: List[ParsedRoom] = []
    seen = set()
    for part in _SEPARATORS_RE.split(text.strip()):
        if is_non_physical(part):
            continue
        room = parse_room_label(part)
        if room.room_key in seen:
            continue
        seen.add(room.room_key)
        rooms.append(room)
    return rooms
