"""
Person-name parsing.

Accepts "Title First Middle Last" and the registrar's "Last, First Middle"
order. Hyphenated surnames stay one token; multi-word surnames are only
recoverable from the comma form.
"""

import re
from dataclasses import dataclass

from smartimport.errors import INVALID_NAME, ParseError

HONORIFICS = frozenset({
    "dr", "mr", "mrs", "ms", "miss", "mx", "prof", "professor", "rev",
})


@dataclass(frozen=True)
class ParsedName:
    title: str = ""
    first: str = ""
    middle: str = ""
    last: str = ""

    @property
    def display_name(self) -> str:
        """Registrar order: "Last, First" (or whichever part exists)."""
        if self.first and self.last:
            return f"{self.last}, {self.first}"
        return self.last or self.first

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first, self.middle, self.last) if p)


def _is_honorific(token: str) -> bool:
    return token.rstrip(".").lower() in HONORIFICS


def _split_title(tokens):
    """Strip one leading honorific, but never the only remaining token."""
    if len(tokens) > 1 and _is_honorific(tokens[0]):
        return tokens[0], tokens[1:]
    return "", tokens


def parse_name(text: str) -> ParsedName:
    """Split a raw name string into title / first / middle / last.

    >>> parse_name("Dr. Jane Q. Public")
    ParsedName(title='Dr.', first='Jane', middle='Q.', last='Public')
    >>> parse_name("Dragoo, Sheri")
    ParsedName(title='', first='Sheri', middle='', last='Dragoo')
    """
    cleaned = re.sub(r"\s+", " ", (text or "")).strip()
    if not cleaned or not cleaned.strip(","):
        raise ParseError(INVALID_NAME, "name is empty", raw=text)

    if "," in cleaned:
        last_part, rest = cleaned.split(",", 1)
        last = last_part.strip()
        title, tokens = _split_title(rest.split())
        if not last and not tokens:
            raise ParseError(INVALID_NAME, "name has no parts", raw=text)
        first = tokens[0] if tokens else ""
        middle = " ".join(tokens[1:])
        return ParsedName(title=title, first=first, middle=middle, last=last)

    title, tokens = _split_title(cleaned.split(" "))

    if len(tokens) == 1:
        return ParsedName(title=title, first=tokens[0])

    return ParsedName(
        title=title,
        first=tokens[0],
        middle=" ".join(tokens[1:-1]),
        last=tokens[-1],
    )


def normalize_name_key(first: str, last: str) -> str:
    """Lowercase "first last" with punctuation folded, for identity matching."""
    def _norm(value: str) -> str:
        return re.sub(r"[^a-z0-9]+", " ", (value or "").lower()).strip()

    first_norm = _norm(first).split(" ")[0] if _norm(first) else ""
    return " ".join(p for p in (first_norm, _norm(last)) if p)
