"""
Commit engine: apply a reviewed transaction to the document store.

State machine::

    pending --commit--> committing --all batches ok--> committed
    pending --cancel--> cancelled

Selected changes are turned into store ops and written in bounded atomic
batches, each together with one audit record per change. A failed batch
stops the commit with CommitFailed and leaves the transaction in
``committing``; ``retry=True`` resumes it, skipping changes whose batch
already landed.

Document ids for adds are derived from the transaction and change ids
(schedules: from their identity key), so every pending ref can be
resolved before the first write and no change depends on another change
having been written first.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from smartimport.core.config import get_batch_size, get_config_value
from smartimport.core.db import OP_DELETE, OP_SET, OP_UPDATE, DocumentStore
from smartimport.core.logging import get_logger
from smartimport.errors import CommitFailed, InvalidSelection, InvalidTransactionState
from smartimport.imports.resolver import is_pending_ref
from smartimport.imports.specs import (
    ACTION_ADD,
    ACTION_DELETE,
    ACTION_MODIFY,
    STATUS_COMMITTED,
    STATUS_COMMITTING,
    STATUS_PENDING,
    Change,
    CommitResult,
    Selection,
    Transaction,
    timestamp,
)
from smartimport.imports.transaction import TransactionStore

logger = get_logger("smartimport.imports.commit")

_OPS = {ACTION_ADD: OP_SET, ACTION_MODIFY: OP_UPDATE, ACTION_DELETE: OP_DELETE}


def schedule_document_id(identity_key: str) -> str:
    """Document id of an imported schedule; distinct keys never share an id."""
    return f"sched_{uuid.uuid5(uuid.NAMESPACE_URL, 'smartimport:schedule:' + identity_key).hex}"


def document_id_for(transaction: Transaction, change: Change) -> str:
    """Stable document id for an add (same id on every retry)."""
    if change.collection == "schedules" and change.new_data.get("identity_key"):
        return schedule_document_id(change.new_data["identity_key"])
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"smartimport:{transaction.id}:{change.id}"))


def build_id_map(transaction: Transaction, selection: Selection) -> Dict[str, str]:
    """pending ref -> document id, for every selected add.

    Raises:
        InvalidSelection: two selected adds would write the same document.
    """
    id_map: Dict[str, str] = {}
    owners: Dict[Tuple[str, str], str] = {}
    for change in transaction.changes:
        if change.action != ACTION_ADD or not change.pending_ref:
            continue
        if not selection.is_selected(change.id):
            continue
        doc_id = document_id_for(transaction, change)
        other = owners.setdefault((change.collection, doc_id), change.id)
        if other != change.id:
            raise InvalidSelection(
                f"{other} and {change.id} would both write {change.collection}/{doc_id}"
            )
        id_map[change.pending_ref] = doc_id
    return id_map


def _substitute(value: Any, id_map: Dict[str, str], dangling: List[str]) -> Any:
    if is_pending_ref(value):
        if value in id_map:
            return id_map[value]
        dangling.append(value)
        return None
    if isinstance(value, list):
        return [_substitute(v, id_map, dangling) for v in value]
    if isinstance(value, dict):
        return {k: _substitute(v, id_map, dangling) for k, v in value.items()}
    return value


def change_to_op(transaction: Transaction, change: Change, selection: Selection,
                 id_map: Dict[str, str]) -> Tuple[Dict[str, Any], List[str]]:
    """Store op for one change, plus any pending refs that had no selected add."""
    dangling: List[str] = []

    if change.action == ACTION_ADD:
        doc_id = id_map.get(change.pending_ref) or document_id_for(transaction, change)
        fields = _substitute(change.new_data, id_map, dangling)
    elif change.action == ACTION_MODIFY:
        doc_id = change.target_id
        keys = selection.fields_for(change.id) or change.diff_keys
        fields = {
            d.key: _substitute(d.to_value, id_map, dangling)
            for d in change.diff if d.key in keys
        }
    else:
        doc_id = change.target_id
        fields = None

    op = {
        "collection": change.collection,
        "id": doc_id,
        "action": _OPS[change.action],
        "fields": fields,
    }
    return op, dangling


def commit_transaction(
    store: DocumentStore,
    transactions: TransactionStore,
    transaction_id: str,
    retry: bool = False,
    user: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> CommitResult:
    """Apply the selected changes of a transaction.

    Args:
        store: Target document store.
        transactions: Where the transaction and its selection live.
        transaction_id: Transaction to commit.
        retry: Resume a transaction left in ``committing`` by CommitFailed.
        user: Recorded on audit records (default ``imports.default_user``).
        batch_size: Ops per batch (default ``imports.batch_size``, capped
            at the store's limit).

    Returns:
        CommitResult. ``skipped`` lists unselected changes and, on retry,
        changes applied by an earlier attempt.

    Raises:
        InvalidTransactionState: not pending (or, with retry, not committing).
        InvalidSelection: two selected adds would write the same document.
        CommitFailed: a batch write failed; later batches were not attempted.
    """
    transaction = transactions.get(transaction_id)
    allowed = (STATUS_PENDING, STATUS_COMMITTING) if retry else (STATUS_PENDING,)
    if transaction.status not in allowed:
        raise InvalidTransactionState(
            transaction_id, transaction.status, "retry commit of" if retry else "commit"
        )

    selection = transactions.get_selection(transaction_id)
    user = user or get_config_value("imports", "default_user", default="system")
    size = min(batch_size or get_batch_size(), store.max_batch_ops)
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")

    id_map = build_id_map(transaction, selection)
    already = set(transaction.applied_change_ids)
    selected = [c for c in transaction.changes if selection.is_selected(c.id)]
    to_apply = [c for c in selected if c.id not in already]
    skipped = [c.id for c in transaction.changes if c.id not in {s.id for s in to_apply}]

    transaction.status = STATUS_COMMITTING
    transaction.last_error = None
    transactions.save(transaction)

    result = CommitResult(transaction_id=transaction_id, status=STATUS_COMMITTING,
                          skipped=skipped)
    logger.info(
        f"Committing {transaction_id}: {len(to_apply)} change(s) in batches of {size}"
        + (f" ({len(already)} already applied)" if already else "")
    )

    for batch_index, start in enumerate(range(0, len(to_apply), size)):
        batch = to_apply[start:start + size]
        ops, audit = [], []
        for change in batch:
            op, dangling = change_to_op(transaction, change, selection, id_map)
            for ref in dangling:
                logger.warning(
                    f"{change.id}: {ref} refers to an add that is not selected; "
                    "writing an empty reference"
                )
            ops.append(op)
            audit.append({
                "transaction_id": transaction_id,
                "change_id": change.id,
                "collection": change.collection,
                "document_id": op["id"],
                "action": change.action,
                "fields": op["fields"],
                "created_by": user,
            })

        try:
            audit_ids = store.batch_write(ops, audit=audit)
        except Exception as exc:
            transaction.last_error = f"{type(exc).__name__}: {exc}"
            transactions.save(transaction)
            logger.error(f"Batch {batch_index + 1} of {transaction_id} failed: {exc}")
            raise CommitFailed(transaction_id, batch_index,
                               transaction.applied_change_ids, exc) from exc

        transaction.applied_change_ids.extend(c.id for c in batch)
        transactions.save(transaction)
        result.applied.extend(c.id for c in batch)
        result.audit_ids.extend(audit_ids)
        result.batches += 1
        for change, op in zip(batch, ops):
            result.document_ids[change.id] = op["id"]
        logger.info(f"Batch {batch_index + 1}: {len(batch)} change(s) written")

    transaction.status = STATUS_COMMITTED
    transaction.committed_at = timestamp()
    transactions.save(transaction)
    result.status = STATUS_COMMITTED
    logger.info(f"Committed {transaction_id}: {len(result.applied)} change(s) applied")
    return result
