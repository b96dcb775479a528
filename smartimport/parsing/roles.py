"""
Job-title role classification.

A keyword substring scan over an ordered rule list. Rules share a
``group``: inside a group the first matching rule wins, groups are
evaluated independently. A title therefore earns ``faculty`` only from an
academic-rank keyword, and can earn ``staff`` alongside it from the
administrative group.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

FACULTY = "faculty"
STAFF = "staff"
ADJUNCT = "adjunct"


@dataclass(frozen=True)
class RoleRule:
    group: str
    keywords: Tuple[str, ...]
    tags: Tuple[str, ...]

    def matches(self, title: str) -> bool:
        return any(k in title for k in self.keywords)


DEFAULT_RULES: Tuple[RoleRule, ...] = (
    RoleRule("rank", ("adjunct",), (FACULTY, ADJUNCT)),
    RoleRule(
        "rank",
        ("professor", "lecturer", "instructor", "faculty", "teacher", "chair",
         "clinical", "postdoc", "emeritus", "visiting"),
        (FACULTY,),
    ),
    RoleRule(
        "administrative",
        ("administrative", "administrator", "coordinator", "assistant", "associate",
         "director", "manager", "specialist", "analyst", "clerk", "secretary",
         "technician", "support"),
        (STAFF,),
    ),
)


def classify_roles(job_title: Optional[str],
                   rules: Sequence[RoleRule] = DEFAULT_RULES) -> Tuple[str, ...]:
    """Map a free-text job title to an ordered tuple of distinct role tags.

    An empty tuple means "unclassified"; callers must not guess a role.

    >>> classify_roles("Adjunct Professor")
    ('faculty', 'adjunct')
    >>> classify_roles("Director of Administrative Services, Lecturer")
    ('faculty', 'staff')
    """
    title = (job_title or "").strip().lower()
    if not title:
        return ()

    decided_groups = set()
    tags: List[str] = []
    for rule in rules:
        if rule.group in decided_groups:
            continue
        if rule.matches(title):
            decided_groups.add(rule.group)
            for tag in rule.tags:
                if tag not in tags:
                    tags.append(tag)
    return tuple(tags)
