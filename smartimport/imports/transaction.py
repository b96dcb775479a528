"""
Transaction store and selection state.

Transactions are persisted as JSON in ``import_transactions`` together
with their selection. Selection is all-or-nothing per group key: the
cohort view is derived from the Changes themselves by ``group_index``.
"""

import json
import sqlite3
from typing import Dict, Iterable, List, Optional

from smartimport.core.logging import get_logger
from smartimport.errors import (
    InvalidSelection,
    InvalidTransactionState,
    TransactionNotFound,
)
from smartimport.imports.specs import (
    ACTION_MODIFY,
    STATUS_CANCELLED,
    STATUS_PENDING,
    Selection,
    Transaction,
    timestamp,
)

logger = get_logger("smartimport.imports.transaction")


def group_index(transaction: Transaction) -> Dict[str, List[str]]:
    """groupKey -> change ids, in change order. Ungrouped changes are omitted."""
    index: Dict[str, List[str]] = {}
    for change in transaction.changes:
        if change.group_key:
            index.setdefault(change.group_key, []).append(change.id)
    return index


def cohort(transaction: Transaction, change_id: str) -> List[str]:
    """All change ids that select and deselect together with ``change_id``."""
    change = transaction.get_change(change_id)
    if change is None:
        raise InvalidSelection(f"Unknown change id: {change_id}")
    if not change.group_key:
        return [change_id]
    return group_index(transaction)[change.group_key]


def default_selection(transaction: Transaction) -> Selection:
    return Selection(change_ids=set(transaction.change_ids))


class TransactionStore:
    """
    Persist and look up import transactions.

    Usage:
        with get_db() as conn:
            txns = TransactionStore(conn)
            txns.save(transaction)
            txns.toggle(transaction.id, "chg-0002", selected=False)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._cache: Dict[str, Transaction] = {}

    # -- persistence -------------------------------------------------------

    def save(self, transaction: Transaction, selection: Optional[Selection] = None) -> None:
        """Insert or update a transaction. New transactions start fully selected."""
        payload = json.dumps(transaction.to_dict(), default=str)
        now = timestamp()
        row = self.conn.execute(
            "SELECT selection FROM import_transactions WHERE id = ?", (transaction.id,)
        ).fetchone()

        if selection is None and row is None:
            selection = default_selection(transaction)

        with self.conn:
            if row is None:
                self.conn.execute(
                    """INSERT INTO import_transactions
                       (id, semester, status, filename, payload, selection,
                        created_by, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        transaction.id, transaction.semester, transaction.status,
                        transaction.filename, payload,
                        json.dumps(selection.to_dict()),
                        transaction.created_by, transaction.created_at, now,
                    ),
                )
            else:
                sets = ["status = ?", "payload = ?", "updated_at = ?"]
                vals: list = [transaction.status, payload, now]
                if selection is not None:
                    sets.append("selection = ?")
                    vals.append(json.dumps(selection.to_dict()))
                vals.append(transaction.id)
                self.conn.execute(
                    f"UPDATE import_transactions SET {', '.join(sets)} WHERE id = ?",
                    vals,
                )
        self._cache[transaction.id] = transaction

    def get(self, transaction_id: str) -> Transaction:
        if transaction_id in self._cache:
            return self._cache[transaction_id]
        row = self.conn.execute(
            "SELECT payload FROM import_transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        if row is None:
            raise TransactionNotFound(transaction_id)
        transaction = Transaction.from_dict(json.loads(row["payload"]))
        self._cache[transaction_id] = transaction
        return transaction

    def get_selection(self, transaction_id: str) -> Selection:
        row = self.conn.execute(
            "SELECT selection FROM import_transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        if row is None:
            raise TransactionNotFound(transaction_id)
        if not row["selection"]:
            return default_selection(self.get(transaction_id))
        return Selection.from_dict(json.loads(row["selection"]))

    def history(self, semester: Optional[str] = None, limit: int = 20) -> List[Dict]:
        """Recent transactions, newest first (summary columns only)."""
        sql = ("SELECT id, semester, status, filename, created_by, created_at, updated_at "
               "FROM import_transactions")
        params: list = []
        if semester:
            sql += " WHERE semester = ?"
            params.append(semester)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    # -- selection ---------------------------------------------------------

    def _require_pending(self, transaction: Transaction, operation: str) -> None:
        if transaction.status != STATUS_PENDING:
            raise InvalidTransactionState(transaction.id, transaction.status, operation)

    def set_selection(self, transaction_id: str, change_ids: Iterable[str],
                      field_map: Optional[Dict[str, List[str]]] = None) -> Selection:
        """Replace the selection.

        Each listed change brings its whole group with it. ``field_map``
        narrows ``modify`` changes to a subset of their diff keys.

        Raises:
            InvalidSelection: unknown change id, field map on a non-modify
                change, an empty key list, or a key not in the change's diff.
            InvalidTransactionState: the transaction is not pending.
        """
        transaction = self.get(transaction_id)
        self._require_pending(transaction, "select")

        selected = set()
        for change_id in change_ids:
            selected.update(cohort(transaction, change_id))

        fields = {}
        for change_id, keys in (field_map or {}).items():
            change = transaction.get_change(change_id)
            if change is None:
                raise InvalidSelection(f"Unknown change id in field map: {change_id}")
            if change.action != ACTION_MODIFY:
                raise InvalidSelection(
                    f"Field selection only applies to modify changes; "
                    f"{change_id} is '{change.action}'"
                )
            keys = list(dict.fromkeys(keys))
            if not keys:
                raise InvalidSelection(
                    f"Field selection for {change_id} is empty; deselect the change instead"
                )
            unknown = [k for k in keys if k not in change.diff_keys]
            if unknown:
                raise InvalidSelection(
                    f"{change_id} has no diff for: {', '.join(unknown)}"
                )
            fields[change_id] = keys

        selection = Selection(change_ids=selected, field_map=fields)
        self.save(transaction, selection)
        logger.info(
            f"Selection for {transaction_id}: {len(selected)}/{len(transaction.changes)} changes"
        )
        return selection

    def toggle(self, transaction_id: str, change_id: str, selected: bool) -> Selection:
        """Select or deselect a change together with its whole group."""
        transaction = self.get(transaction_id)
        self._require_pending(transaction, "select")
        current = self.get_selection(transaction_id)
        members = cohort(transaction, change_id)
        if selected:
            current.change_ids.update(members)
        else:
            current.change_ids.difference_update(members)
        self.save(transaction, current)
        return current

    def cancel(self, transaction_id: str) -> Transaction:
        transaction = self.get(transaction_id)
        self._require_pending(transaction, "cancel")
        transaction.status = STATUS_CANCELLED
        self.save(transaction)
        logger.info(f"Cancelled import transaction {transaction_id}")
        return transaction
