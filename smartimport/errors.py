"""
Error hierarchy for SmartImport.

Typed exceptions so callers can tell row-level parse problems (skip the
row or abort the import) from entity ambiguity (needs a human), usage
errors (always fatal to the call) and store failures (retryable).

Hierarchy:
    ReconciliationError                 (base of all engine errors)
    ├── ParseError                      (InvalidTime, InvalidName,
    │                                    InvalidInstructorField,
    │                                    InvalidMeetingPattern, MissingField)
    ├── AmbiguousMatch                  (several stored entities fit one identity)
    ├── InvalidTransactionState         (commit/cancel/select in the wrong state)
    ├── InvalidSelection                (unknown change id or diff key)
    ├── TransactionNotFound
    └── CommitFailed                    (store batch failed mid-commit)
"""

from typing import Any, Dict, List, Optional, Sequence

INVALID_TIME = "InvalidTime"
INVALID_NAME = "InvalidName"
INVALID_INSTRUCTOR_FIELD = "InvalidInstructorField"
INVALID_MEETING_PATTERN = "InvalidMeetingPattern"
MISSING_FIELD = "MissingField"


class ReconciliationError(Exception):
    """Base exception for all SmartImport engine errors."""

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for logging / API responses."""
        return {"error_type": type(self).__name__, "message": str(self)}


# ── Parsing ──────────────────────────────────────────────────────────

class ParseError(ReconciliationError, ValueError):
    """A raw export field could not be parsed.

    ``row_index`` and ``field`` are filled in by the row layer when the
    parser itself is called without row context.
    """

    def __init__(self, kind: str, message: str, *, raw: Optional[str] = None,
                 field: Optional[str] = None, row_index: Optional[int] = None):
        self.kind = kind
        self.raw = raw
        self.field = field
        self.row_index = row_index
        self.detail = message
        super().__init__(message)

    def __str__(self) -> str:
        where = []
        if self.row_index is not None:
            where.append(f"row {self.row_index + 1}")
        if self.field:
            where.append(self.field)
        prefix = f"{', '.join(where)}: " if where else ""
        raw = f" (got {self.raw!r})" if self.raw is not None else ""
        return f"{prefix}{self.kind}: {self.detail}{raw}"

    def with_context(self, row_index: Optional[int] = None,
                     field: Optional[str] = None) -> "ParseError":
        """Copy of this error carrying row / field context."""
        return ParseError(
            self.kind, self.detail, raw=self.raw,
            field=field if field is not None else self.field,
            row_index=row_index if row_index is not None else self.row_index,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update({
            "kind": self.kind,
            "row_index": self.row_index,
            "field": self.field,
            "raw": self.raw,
        })
        return d


# ── Resolution ───────────────────────────────────────────────────────

class AmbiguousMatch(ReconciliationError):
    """Several distinct stored entities match one parsed identity by name only."""

    def __init__(self, collection: str, match_key: str, candidates: Sequence[Dict[str, Any]],
                 *, row_index: Optional[int] = None, raw: Optional[str] = None):
        self.collection = collection
        self.match_key = match_key
        self.candidates: List[Dict[str, Any]] = list(candidates)
        self.row_index = row_index
        self.raw = raw
        ids = ", ".join(str(c.get("id")) for c in self.candidates)
        super().__init__(
            f"{len(self.candidates)} {collection} match '{match_key}' ({ids}); "
            "resolve manually"
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update({
            "collection": self.collection,
            "match_key": self.match_key,
            "candidates": self.candidates,
            "row_index": self.row_index,
            "raw": self.raw,
        })
        return d


# ── Transactions ─────────────────────────────────────────────────────

class InvalidTransactionState(ReconciliationError):
    """Operation not allowed in the transaction's current status."""

    def __init__(self, transaction_id: str, status: str, operation: str):
        self.transaction_id = transaction_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} transaction {transaction_id}: status is '{status}'"
        )


class InvalidSelection(ReconciliationError, ValueError):
    """Selection names a change or diff key that the transaction does not have."""


class TransactionNotFound(ReconciliationError, KeyError):
    """No transaction with the given id."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")

    def __str__(self) -> str:
        return self.args[0]


class CommitFailed(ReconciliationError):
    """A store batch failed; remaining batches were not attempted."""

    def __init__(self, transaction_id: str, batch_index: int,
                 applied_change_ids: Sequence[str], cause: Exception):
        self.transaction_id = transaction_id
        self.batch_index = batch_index
        self.applied_change_ids = list(applied_change_ids)
        self.cause = cause
        super().__init__(
            f"Commit of {transaction_id} failed at batch {batch_index + 1}: "
            f"{type(cause).__name__}: {cause} "
            f"({len(self.applied_change_ids)} change(s) already applied)"
        )
        self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update({
            "transaction_id": self.transaction_id,
            "batch_index": self.batch_index,
            "applied_change_ids": self.applied_change_ids,
            "cause": f"{type(self.cause).__name__}: {self.cause}",
        })
        return d
