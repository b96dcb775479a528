"""Import CLI sub-commands: preview, review, select, commit."""

from pathlib import Path
from typing import Dict, List, Optional

import typer

from smartimport.core.output import OutputFormat, format_result, format_transaction

app = typer.Typer(no_args_is_help=True)


def _fail(message: str):
    typer.echo(f"ERROR: {message}")
    raise typer.Exit(1)


def _parse_field_options(values: List[str]) -> Dict[str, List[str]]:
    """``["chg-0003=credits,room_ids"]`` -> ``{"chg-0003": ["credits", "room_ids"]}``"""
    field_map: Dict[str, List[str]] = {}
    for value in values:
        change_id, sep, keys = value.partition("=")
        if not sep or not change_id.strip():
            _fail(f"--fields expects CHANGE=key,key (got '{value}')")
        field_map.setdefault(change_id.strip(), []).extend(
            k.strip() for k in keys.split(",") if k.strip()
        )
    return field_map


@app.command()
def preview(
    file: str = typer.Argument(..., help="Schedule export (.csv or .xlsx)"),
    semester: str = typer.Option(..., "--semester", "-s", help="Target semester, e.g. 'Fall 2025'"),
    abort: bool = typer.Option(False, "--abort", help="Stop at the first unparseable row"),
    staff_on_bad_instructor: bool = typer.Option(
        False, "--staff-on-bad-instructor",
        help="Import rows with a malformed instructor as 'Staff' instead of skipping them",
    ),
    no_deletes: bool = typer.Option(False, "--no-deletes", help="Do not propose deletes"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Recorded as the creator"),
    fmt: OutputFormat = typer.Option(OutputFormat.HUMAN, "--format", "-f"),
):
    """Parse an export and save a reviewable import transaction."""
    from smartimport.core import get_db
    from smartimport.errors import ReconciliationError
    from smartimport.imports.engine import preview as build_preview
    from smartimport.imports.transaction import TransactionStore

    path = Path(file)
    if not path.exists():
        _fail(f"File not found: {path}")

    with get_db() as conn:
        try:
            transaction = build_preview(
                conn, path.read_bytes(), path.name, semester,
                on_error="abort" if abort else "skip",
                instructor_policy="staff" if staff_on_bad_instructor else "reject",
                detect_deletes=not no_deletes,
                created_by=user,
            )
        except (ReconciliationError, ValueError) as exc:
            _fail(str(exc))
        selection = TransactionStore(conn).get_selection(transaction.id)

    typer.echo(format_transaction(transaction, selection, fmt))


@app.command()
def show(
    transaction_id: str = typer.Argument(..., help="Transaction id"),
    fmt: OutputFormat = typer.Option(OutputFormat.HUMAN, "--format", "-f"),
):
    """Show a transaction's changes and current selection."""
    from smartimport.core import get_db
    from smartimport.errors import TransactionNotFound
    from smartimport.imports.engine import get_transaction

    with get_db() as conn:
        try:
            transaction, selection = get_transaction(conn, transaction_id)
        except TransactionNotFound as exc:
            _fail(str(exc))

    typer.echo(format_transaction(transaction, selection, fmt))


@app.command()
def select(
    transaction_id: str = typer.Argument(..., help="Transaction id"),
    exclude: List[str] = typer.Option(
        [], "--exclude", "-x", help="Deselect a change (and its whole row group)"
    ),
    fields: List[str] = typer.Option(
        [], "--fields", help="Apply only some fields of a modify: CHANGE=key,key"
    ),
):
    """Reset the selection to all changes, then apply exclusions and field subsets."""
    from smartimport.core import get_db
    from smartimport.errors import ReconciliationError
    from smartimport.imports.transaction import TransactionStore

    field_map = _parse_field_options(fields)

    with get_db() as conn:
        txns = TransactionStore(conn)
        try:
            transaction = txns.get(transaction_id)
            selection = txns.set_selection(transaction_id, transaction.change_ids, field_map)
            for change_id in exclude:
                selection = txns.toggle(transaction_id, change_id, selected=False)
        except ReconciliationError as exc:
            _fail(str(exc))

    typer.echo(
        f"Selected {len(selection.change_ids)} of {len(transaction.changes)} change(s)"
    )
    for change_id, keys in sorted(selection.field_map.items()):
        typer.echo(f"  {change_id}: {', '.join(keys)}")


@app.command()
def commit(
    transaction_id: str = typer.Argument(..., help="Transaction id"),
    retry: bool = typer.Option(False, "--retry", help="Resume a commit that failed part-way"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Recorded on audit records"),
    fmt: OutputFormat = typer.Option(OutputFormat.HUMAN, "--format", "-f"),
):
    """Write the selected changes to the store."""
    from smartimport.core import get_db
    from smartimport.errors import ReconciliationError
    from smartimport.imports.engine import commit as commit_changes

    with get_db() as conn:
        try:
            result = commit_changes(conn, transaction_id, retry=retry, user=user)
        except ReconciliationError as exc:
            _fail(str(exc))

    if fmt != OutputFormat.HUMAN:
        typer.echo(format_result(result, fmt, title=f"Commit {transaction_id}"))
        return
    typer.echo(
        f"Committed {transaction_id}: {len(result.applied)} change(s) applied "
        f"in {result.batches} batch(es), {len(result.skipped)} skipped"
    )


@app.command()
def cancel(transaction_id: str = typer.Argument(..., help="Transaction id")):
    """Discard a pending transaction."""
    from smartimport.core import get_db
    from smartimport.errors import ReconciliationError
    from smartimport.imports.engine import cancel as cancel_transaction

    with get_db() as conn:
        try:
            cancel_transaction(conn, transaction_id)
        except ReconciliationError as exc:
            _fail(str(exc))

    typer.echo(f"Cancelled {transaction_id}")


@app.command()
def history(
    semester: Optional[str] = typer.Option(None, "--semester", "-s"),
    limit: int = typer.Option(20, "--limit", "-n"),
):
    """List recent import transactions."""
    from smartimport.core import get_db
    from smartimport.imports.transaction import TransactionStore

    with get_db() as conn:
        rows = TransactionStore(conn).history(semester=semester, limit=limit)

    if not rows:
        typer.echo("No imports found.")
        return

    typer.echo(f"{'Transaction':<34} {'Semester':<12} {'Status':<11} {'Created':<20} File")
    typer.echo("-" * 95)
    for r in rows:
        typer.echo(
            f"{r['id']:<34} {r['semester']:<12} {r['status']:<11} "
            f"{r['created_at']:<20} {r['filename'] or ''}"
        )
