"""
Database access for SmartImport.

Provides connection management, schema migration, and the document store
that the import engine reads snapshots from and commits batches to.
Single source of truth for all database operations.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional

from smartimport.core.config import SMARTIMPORT_PATHS

COLLECTIONS = ("people", "schedules", "rooms")

# Write actions understood by DocumentStore.batch_write
OP_SET = "set"
OP_UPDATE = "update"
OP_DELETE = "delete"
_OP_ACTIONS = (OP_SET, OP_UPDATE, OP_DELETE)

# Typical hosted document stores reject batches above this size
MAX_BATCH_OPERATIONS = 500


def get_db_path() -> Path:
    """Get database path from config."""
    return SMARTIMPORT_PATHS.database


@contextmanager
def get_db(readonly: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.

    Enables foreign keys and Row factory automatically.

    Args:
        readonly: Open in read-only mode (useful for queries)

    Yields:
        sqlite3.Connection with Row factory enabled
    """
    db_path = get_db_path()

    if readonly:
        uri = f"file:{db_path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))

    try:
        conn.execute("PRAGMA foreign_keys = ON")
        if not readonly:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.row_factory = sqlite3.Row
        yield conn
    finally:
        conn.close()


# Schema dependency order; foreign keys flow downhill through this list.
SCHEMA_ORDER = [
    "core",
    "imports",
]


def apply_schemas(conn: sqlite3.Connection) -> None:
    """Apply every module schema.sql to an open connection, in SCHEMA_ORDER."""
    package_dir = Path(__file__).parent.parent
    for module_name in SCHEMA_ORDER:
        schema_file = package_dir / module_name / "schema.sql"
        if schema_file.exists():
            conn.executescript(schema_file.read_text(encoding="utf-8"))


def migrate_all():
    """
    Run all module schemas in dependency order.

    Each module's schema.sql uses CREATE TABLE IF NOT EXISTS,
    making this safe to run repeatedly (idempotent).
    """
    from smartimport.core.logging import get_logger

    logger = get_logger("smartimport.migrate")
    package_dir = Path(__file__).parent.parent

    with get_db() as conn:
        for module_name in SCHEMA_ORDER:
            schema_file = package_dir / module_name / "schema.sql"
            if schema_file.exists():
                logger.info(f"Applying schema: {module_name}/schema.sql")
                conn.executescript(schema_file.read_text(encoding="utf-8"))
            else:
                logger.debug(f"No schema for module: {module_name}")

        conn.commit()
        logger.info("All schemas applied successfully")


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------

class DocumentStore:
    """
    JSON document store over the ``documents`` table.

    Mirrors the hosted document database the directory app talks to:
    whole-collection reads, get/upsert/delete by id, atomic write batches
    bounded at ``max_batch_ops``, and an append-only audit log.

    Usage:
        with get_db() as conn:
            store = DocumentStore(conn)
            people = store.get_all("people")
    """

    def __init__(self, conn: sqlite3.Connection, max_batch_ops: int = MAX_BATCH_OPERATIONS):
        self.conn = conn
        self.max_batch_ops = max_batch_ops

    # -- reads --------------------------------------------------------------

    @staticmethod
    def _row_to_doc(row) -> Dict[str, Any]:
        doc = json.loads(row["data"]) if row["data"] else {}
        doc["id"] = row["id"]
        doc["created_at"] = row["created_at"]
        doc["updated_at"] = row["updated_at"]
        return doc

    def get_all(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        """All documents in a collection, ordered by id.

        Keyword filters are exact-match on top-level fields,
        e.g. ``get_all("schedules", semester="Fall 2025")``.
        """
        _check_collection(collection)
        rows = self.conn.execute(
            "SELECT id, data, created_at, updated_at FROM documents "
            "WHERE collection = ? ORDER BY id",
            (collection,),
        ).fetchall()
        docs = [self._row_to_doc(r) for r in rows]
        if filters:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        return docs

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        _check_collection(collection)
        row = self.conn.execute(
            "SELECT id, data, created_at, updated_at FROM documents "
            "WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return self._row_to_doc(row) if row else None

    # -- single writes ------------------------------------------------------

    def upsert(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``fields`` into a document, creating it if absent."""
        with self.conn:
            self._apply({"collection": collection, "id": doc_id,
                         "action": OP_UPDATE, "fields": fields}, _now(), create=True)
        return self.get_by_id(collection, doc_id)

    def delete_by_id(self, collection: str, doc_id: str) -> bool:
        _check_collection(collection)
        with self.conn:
            cur = self.conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
        return cur.rowcount > 0

    # -- batches ------------------------------------------------------------

    def batch_write(self, ops: Iterable[Dict[str, Any]],
                    audit: Optional[Iterable[Dict[str, Any]]] = None) -> List[int]:
        """Apply a list of write ops atomically. Returns the new audit ids.

        Each op is ``{"collection", "id", "action", "fields"}`` where action
        is ``set`` (replace document), ``update`` (merge into an existing
        document) or ``delete``. ``audit`` records are written in the same
        transaction, so a batch and its audit trail land together. Any
        failure rolls back the whole batch and re-raises.
        """
        ops = list(ops)
        if len(ops) > self.max_batch_ops:
            raise ValueError(
                f"Batch of {len(ops)} operations exceeds limit of {self.max_batch_ops}"
            )
        now = _now()
        audit_ids = []
        with self.conn:
            for op in ops:
                self._apply(op, now)
            for record in audit or ():
                audit_ids.append(self._insert_audit(record, now))
        return audit_ids

    def _apply(self, op: Dict[str, Any], now: str, create: bool = False) -> None:
        collection = op["collection"]
        doc_id = op["id"]
        action = op["action"]
        fields = {k: v for k, v in (op.get("fields") or {}).items()
                  if k not in ("id", "created_at", "updated_at")}

        _check_collection(collection)
        if action not in _OP_ACTIONS:
            raise ValueError(f"Unknown write action: {action}")
        if not doc_id:
            raise ValueError(f"Write to {collection} is missing a document id")

        if action == OP_DELETE:
            self.conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
            return

        row = self.conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()

        if action == OP_UPDATE:
            if row is None and not create:
                raise LookupError(f"No document {collection}/{doc_id} to update")
            data = json.loads(row["data"]) if row else {}
            data.update(fields)
        else:
            data = fields

        payload = json.dumps(data, sort_keys=True, default=str)
        if row is None:
            self.conn.execute(
                "INSERT INTO documents (collection, id, data, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (collection, doc_id, payload, now, now),
            )
        else:
            self.conn.execute(
                "UPDATE documents SET data = ?, updated_at = ? "
                "WHERE collection = ? AND id = ?",
                (payload, now, collection, doc_id),
            )

    # -- audit --------------------------------------------------------------

    def append_audit(self, record: Dict[str, Any]) -> int:
        """Append one audit record. Returns its id."""
        with self.conn:
            return self._insert_audit(record, _now())

    def _insert_audit(self, record: Dict[str, Any], now: str) -> int:
        cur = self.conn.execute(
            """INSERT INTO import_audit
               (transaction_id, change_id, collection, document_id, action,
                fields, created_by, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record["transaction_id"],
                record["change_id"],
                record["collection"],
                record.get("document_id"),
                record["action"],
                json.dumps(record.get("fields"), default=str)
                if record.get("fields") is not None else None,
                record.get("created_by"),
                record.get("created_at") or now,
            ),
        )
        return cur.lastrowid

    def list_audit(self, transaction_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if transaction_id:
            rows = self.conn.execute(
                "SELECT * FROM import_audit WHERE transaction_id = ? ORDER BY id",
                (transaction_id,),
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT * FROM import_audit ORDER BY id").fetchall()
        records = []
        for r in rows:
            rec = dict(r)
            rec["fields"] = json.loads(rec["fields"]) if rec["fields"] else None
            records.append(rec)
        return records


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")
