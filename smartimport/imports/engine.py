"""
Core import engine: file parsing, column mapping, transaction building, commit.

Public operations:
    build_transaction(rows, snapshot)        -> Transaction (pure, no I/O)
    preview(conn, file_bytes, filename, ...)  -> Transaction (parsed + saved)
    set_selection(conn, transaction_id, ...)  -> Selection
    commit(conn, transaction_id)              -> CommitResult
    cancel(conn, transaction_id)              -> Transaction
"""

import csv
import io
import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

from smartimport.core.db import DocumentStore
from smartimport.core.logging import get_logger
from smartimport.errors import AmbiguousMatch, ParseError
from smartimport.imports.changeset import ChangeSetBuilder
from smartimport.imports.commit import commit_transaction
from smartimport.imports.resolver import EntityResolver, Snapshot
from smartimport.imports.rows import POLICY_REJECT, parse_row, row_identity_keys
from smartimport.imports.specs import (
    ColumnDef,
    CommitResult,
    ScheduleRow,
    Selection,
    Transaction,
    new_transaction_id,
    timestamp,
)
from smartimport.imports.transaction import TransactionStore

logger = get_logger("smartimport.imports.engine")

ON_ERROR_SKIP = "skip"
ON_ERROR_ABORT = "abort"


# ---------------------------------------------------------------------------
# Column definitions
# ---------------------------------------------------------------------------

SCHEDULE_COLUMNS = [
    ColumnDef(
        name="course_code", label="Course", required=True,
        aliases=["course code", "course_code", "course number", "course #"],
    ),
    ColumnDef(
        name="course_title", label="Course Title",
        aliases=["title", "long title", "course name", "course_title"],
    ),
    ColumnDef(
        name="section", label="Section #",
        aliases=["section", "section number", "sect", "sec"],
    ),
    ColumnDef(
        name="term", label="Term",
        aliases=["semester", "term code"],
    ),
    ColumnDef(
        name="credits", label="Credit Hrs",
        aliases=["credits", "credit hours", "credit hrs min", "hours", "cr"],
    ),
    ColumnDef(
        name="instructor_field", label="Instructor",
        aliases=["instructors", "instructor name", "faculty", "instructor_field"],
    ),
    ColumnDef(
        name="meeting_pattern_field", label="Meeting Pattern",
        aliases=["meeting patterns", "meetings", "days/times", "meeting_pattern_field"],
    ),
    ColumnDef(
        name="room_field", label="Room",
        aliases=["rooms", "location", "room_field", "building/room"],
    ),
    ColumnDef(
        name="crn", label="CRN",
        aliases=["course reference number", "crn #"],
    ),
    ColumnDef(
        name="subject_code", label="Subject Code",
        aliases=["subject", "subj"],
    ),
    ColumnDef(
        name="catalog_number", label="Catalog Number",
        aliases=["catalog #", "catalog", "catalog no"],
    ),
]


# ---------------------------------------------------------------------------
# File parsing
# ---------------------------------------------------------------------------

def parse_file(file_bytes: bytes, filename: str) -> Tuple[List[str], List[List[str]]]:
    """Parse CSV or XLSX bytes into (headers, rows).

    Returns:
        Tuple of (header_list, row_list) where each row is a list of strings.
    """
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""

    if ext == "csv":
        return _parse_csv(file_bytes)
    elif ext in ("xlsx", "xlsm"):
        return _parse_xlsx(file_bytes)
    else:
        raise ValueError(f"Unsupported file type: .{ext} (expected .csv or .xlsx)")


def _parse_csv(data: bytes) -> Tuple[List[str], List[List[str]]]:
    # Registrar exports are usually UTF-8 with a BOM, sometimes cp1252
    for enc in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            text = data.decode(enc)
            break
        except UnicodeDecodeError:
            continue
    else:
        text = data.decode("latin-1")

    reader = csv.reader(io.StringIO(text))
    rows_raw = list(reader)

    if not rows_raw:
        raise ValueError("CSV file is empty")

    headers = [h.strip() for h in rows_raw[0]]
    rows = []
    for r in rows_raw[1:]:
        if any(cell.strip() for cell in r):  # skip blank rows
            padded = r + [""] * max(0, len(headers) - len(r))
            rows.append([c.strip() for c in padded[: len(headers)]])

    return headers, rows


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))  # CRNs and credits come back as floats
    return str(value).strip()


def _parse_xlsx(data: bytes) -> Tuple[List[str], List[List[str]]]:
    from openpyxl import load_workbook

    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    ws = wb.active

    all_rows = []
    for row in ws.iter_rows(values_only=True):
        all_rows.append([_cell_text(c) for c in row])

    wb.close()

    if not all_rows:
        raise ValueError("XLSX file is empty")

    headers = all_rows[0]
    rows = [r for r in all_rows[1:] if any(c for c in r)]
    return headers, rows


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------

def auto_map_columns(headers: List[str],
                     columns: Sequence[ColumnDef] = SCHEDULE_COLUMNS) -> Dict[str, str]:
    """Auto-map file column indices to field names.

    Returns:
        Dict mapping str(column_index) -> field_name
    """
    mapping: Dict[str, str] = {}
    used_fields: set = set()

    for idx, header in enumerate(headers):
        h = header.lower().strip()
        if not h:
            continue

        for col_def in columns:
            if col_def.name in used_fields:
                continue
            if h in col_def.all_names():
                mapping[str(idx)] = col_def.name
                used_fields.add(col_def.name)
                break

    return mapping


def validate_mapping(mapping: Dict[str, str],
                     columns: Sequence[ColumnDef] = SCHEDULE_COLUMNS) -> List[str]:
    """Validate that all required columns are mapped.

    A course code can also be assembled from Subject Code + Catalog Number.

    Returns:
        List of error messages (empty = valid).
    """
    mapped_fields = set(mapping.values())
    errors = []
    for col in columns:
        if not col.required or col.name in mapped_fields:
            continue
        if col.name == "course_code" and {"subject_code", "catalog_number"} <= mapped_fields:
            continue
        errors.append(f"Required field '{col.label}' is not mapped")
    if not {"section", "crn"} & mapped_fields:
        errors.append("Map at least one of 'Section #' or 'CRN'")
    return errors


# ---------------------------------------------------------------------------
# Row transformation
# ---------------------------------------------------------------------------

def transform_rows(rows: List[List[str]], mapping: Dict[str, str]) -> List[ScheduleRow]:
    """Turn raw file rows into ScheduleRows using the column mapping."""
    result: List[ScheduleRow] = []
    for row_idx, row in enumerate(rows):
        record: Dict[str, Any] = {"_row_index": row_idx}
        for col_idx_str, field_name in mapping.items():
            col_idx = int(col_idx_str)
            if col_idx < len(row):
                record[field_name] = row[col_idx]

        if not record.get("course_code") and record.get("subject_code"):
            record["course_code"] = " ".join(
                p.strip() for p in (record.get("subject_code"), record.get("catalog_number"))
                if p and p.strip()
            )
        result.append(ScheduleRow.from_record(record, row_idx))
    return result


# ---------------------------------------------------------------------------
# Transaction building
# ---------------------------------------------------------------------------

def take_snapshot(store: DocumentStore, semester: str) -> Snapshot:
    return Snapshot.from_store(store, semester)


def build_transaction(
    rows: Sequence[ScheduleRow],
    snapshot: Snapshot,
    semester: Optional[str] = None,
    *,
    on_error: str = ON_ERROR_SKIP,
    instructor_policy: str = POLICY_REJECT,
    resolutions: Optional[Dict[str, str]] = None,
    detect_deletes: bool = True,
    filename: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Transaction:
    """Build a reviewable transaction from schedule rows. No store I/O.

    Args:
        rows: Input rows in file order.
        snapshot: Store contents to reconcile against.
        semester: Target semester (default: the snapshot's).
        on_error: ``"skip"`` records parse failures on the transaction and
            moves on; ``"abort"`` re-raises the first ParseError.
        instructor_policy: ``"reject"`` fails rows with a malformed
            instructor field; ``"staff"`` imports them with a Staff
            placeholder and a warning.
        resolutions: Answers to earlier AmbiguousMatch issues
            (match_key -> person id).
        detect_deletes: Emit deletes for previously imported schedules that
            are missing from ``rows``.

    Raises:
        ParseError: only with ``on_error="abort"``.
    """
    if on_error not in (ON_ERROR_SKIP, ON_ERROR_ABORT):
        raise ValueError(f"on_error must be 'skip' or 'abort', got {on_error!r}")

    semester = semester or snapshot.semester
    transaction = Transaction(
        id=new_transaction_id(),
        semester=semester,
        created_at=timestamp(),
        rows_total=len(rows),
        filename=filename,
        created_by=created_by,
    )
    resolver = EntityResolver(snapshot, resolutions)
    builder = ChangeSetBuilder(snapshot, resolver, semester)

    for row in rows:
        try:
            parsed = parse_row(row, semester, instructor_policy)
        except ParseError as exc:
            if on_error == ON_ERROR_ABORT:
                raise
            logger.warning(f"Skipping {exc}")
            transaction.row_errors.append(exc.to_dict())
            builder.mark_present(row_identity_keys(row, semester))
            continue

        transaction.warnings.extend(parsed.warnings)
        try:
            builder.add_row(parsed)
        except AmbiguousMatch as exc:
            logger.warning(f"Row {parsed.row_index + 1} needs review: {exc}")
            transaction.match_issues.append(exc.to_dict())
            builder.mark_present(parsed.identity_keys)

    if detect_deletes and rows:
        builder.add_deletes()

    transaction.changes = builder.changes
    transaction.warnings.extend(builder.warnings)
    logger.info(
        f"Built {transaction.id} for {semester}: {len(transaction.changes)} change(s), "
        f"{len(transaction.row_errors)} row error(s), "
        f"{len(transaction.match_issues)} match issue(s)"
    )
    return transaction


def preview(
    conn: sqlite3.Connection,
    file_bytes: bytes,
    filename: str,
    semester: str,
    mapping: Optional[Dict[str, str]] = None,
    **options: Any,
) -> Transaction:
    """Parse an uploaded export, build a transaction against the store and save it.

    Raises:
        ValueError: unreadable file or a column mapping missing required fields.
    """
    headers, raw_rows = parse_file(file_bytes, filename)
    mapping = mapping or auto_map_columns(headers)
    errors = validate_mapping(mapping)
    if errors:
        raise ValueError("; ".join(errors))

    rows = transform_rows(raw_rows, mapping)
    snapshot = take_snapshot(DocumentStore(conn), semester)
    transaction = build_transaction(rows, snapshot, semester, filename=filename, **options)
    TransactionStore(conn).save(transaction)
    return transaction


# ---------------------------------------------------------------------------
# Review and commit
# ---------------------------------------------------------------------------

def get_transaction(conn: sqlite3.Connection, transaction_id: str) -> Tuple[Transaction, Selection]:
    transactions = TransactionStore(conn)
    return transactions.get(transaction_id), transactions.get_selection(transaction_id)


def set_selection(conn: sqlite3.Connection, transaction_id: str, change_ids: Sequence[str],
                  field_map: Optional[Dict[str, List[str]]] = None) -> Selection:
    return TransactionStore(conn).set_selection(transaction_id, change_ids, field_map)


def commit(conn: sqlite3.Connection, transaction_id: str, retry: bool = False,
           user: Optional[str] = None, store: Optional[DocumentStore] = None) -> CommitResult:
    return commit_transaction(
        store or DocumentStore(conn), TransactionStore(conn), transaction_id,
        retry=retry, user=user,
    )


def cancel(conn: sqlite3.Connection, transaction_id: str) -> Transaction:
    return TransactionStore(conn).cancel(transaction_id)
