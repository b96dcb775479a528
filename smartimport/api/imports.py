"""
Imports Blueprint: JSON routes for the import review flow.

Thin delivery layer: business logic lives in smartimport.imports.engine.
Upload -> preview transaction -> adjust selection -> commit (or cancel).
"""

from flask import Blueprint, jsonify, request

from smartimport.core import get_db
from smartimport.errors import (
    CommitFailed,
    InvalidSelection,
    InvalidTransactionState,
    ReconciliationError,
    TransactionNotFound,
)
from smartimport.imports import engine
from smartimport.imports.transaction import TransactionStore

bp = Blueprint("imports", __name__, url_prefix="/imports")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@bp.errorhandler(TransactionNotFound)
def _not_found(exc):
    return jsonify(exc.to_dict()), 404


@bp.errorhandler(InvalidSelection)
def _bad_selection(exc):
    return jsonify(exc.to_dict()), 400


@bp.errorhandler(InvalidTransactionState)
def _bad_state(exc):
    return jsonify(exc.to_dict()), 409


@bp.errorhandler(CommitFailed)
def _commit_failed(exc):
    return jsonify(exc.to_dict()), 502


def _transaction_payload(transaction, selection):
    data = transaction.to_dict()
    data["selection"] = selection.to_dict()
    data["groups"] = {
        key: [c.id for c in changes] for key, changes in transaction.by_group.items()
    }
    for change in data["changes"]:
        change["selected"] = selection.is_selected(change["id"])
    return data


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@bp.route("/api/preview", methods=["POST"])
def api_preview():
    """Parse an uploaded export and create a pending transaction."""
    if "file" not in request.files:
        return jsonify({"error": "No file uploaded"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "No file selected"}), 400

    semester = (request.form.get("semester") or "").strip()
    if not semester:
        return jsonify({"error": "semester is required"}), 400

    file_bytes = f.read()
    if not file_bytes:
        return jsonify({"error": "File is empty"}), 400

    options = {
        "on_error": request.form.get("on_error", engine.ON_ERROR_SKIP),
        "instructor_policy": request.form.get("instructor_policy", "reject"),
        "detect_deletes": request.form.get("detect_deletes", "true").lower() != "false",
        "created_by": request.form.get("user"),
    }

    with get_db() as conn:
        try:
            transaction = engine.preview(conn, file_bytes, f.filename, semester, **options)
        except ReconciliationError as exc:
            return jsonify(exc.to_dict()), 400
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        selection = TransactionStore(conn).get_selection(transaction.id)

    return jsonify(_transaction_payload(transaction, selection)), 201


@bp.route("/api/<transaction_id>", methods=["GET"])
def api_get(transaction_id):
    with get_db(readonly=True) as conn:
        transaction, selection = engine.get_transaction(conn, transaction_id)
    return jsonify(_transaction_payload(transaction, selection))


@bp.route("/api/<transaction_id>/selection", methods=["POST"])
def api_selection(transaction_id):
    """Replace the selection, or toggle one change's group.

    Body: ``{"change_ids": [...], "field_map": {...}}`` or
    ``{"toggle": "chg-0002", "selected": false}``.
    """
    data = _json_body()

    if "toggle" in data:
        if not isinstance(data["toggle"], str):
            return jsonify({"error": "toggle must be a change id"}), 400
    else:
        if not _is_str_list(data.get("change_ids")):
            return jsonify({"error": "change_ids must be a list of change ids"}), 400
        field_map = data.get("field_map") or {}
        if not isinstance(field_map, dict) or not all(
            isinstance(k, str) and _is_str_list(v) for k, v in field_map.items()
        ):
            return jsonify({"error": "field_map must map change ids to lists of keys"}), 400

    with get_db() as conn:
        txns = TransactionStore(conn)
        if "toggle" in data:
            selection = txns.toggle(transaction_id, data["toggle"],
                                    bool(data.get("selected", True)))
        else:
            selection = txns.set_selection(transaction_id, data["change_ids"], field_map)

    return jsonify(selection.to_dict())


@bp.route("/api/<transaction_id>/commit", methods=["POST"])
def api_commit(transaction_id):
    data = _json_body()
    with get_db() as conn:
        result = engine.commit(
            conn, transaction_id,
            retry=bool(data.get("retry", False)),
            user=data.get("user"),
        )
    return jsonify({
        "transaction_id": result.transaction_id,
        "status": result.status,
        "applied": result.applied,
        "skipped": result.skipped,
        "batches": result.batches,
        "document_ids": result.document_ids,
    })


@bp.route("/api/<transaction_id>/cancel", methods=["POST"])
def api_cancel(transaction_id):
    with get_db() as conn:
        transaction = engine.cancel(conn, transaction_id)
    return jsonify({"transaction_id": transaction.id, "status": transaction.status})


@bp.route("/api/history", methods=["GET"])
def api_history():
    semester = request.args.get("semester")
    limit = request.args.get("limit", 20, type=int)
    with get_db(readonly=True) as conn:
        rows = TransactionStore(conn).history(semester=semester, limit=limit)
    return jsonify({"transactions": rows})
