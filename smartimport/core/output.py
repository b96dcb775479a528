"""
Output formatters for CLI display.

Supports human-readable, JSON, and markdown output modes.
"""

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional


class OutputFormat(str, Enum):
    HUMAN = "human"
    JSON = "json"
    MARKDOWN = "markdown"


def format_result(
    result: Any,
    fmt: OutputFormat = OutputFormat.HUMAN,
    title: Optional[str] = None,
) -> str:
    """Format a result object for display."""
    if fmt == OutputFormat.JSON:
        return _format_json(result)
    elif fmt == OutputFormat.MARKDOWN:
        return _format_markdown(result, title)
    else:
        return _format_human(result, title)


def _to_dict(result: Any) -> Dict:
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if is_dataclass(result):
        return asdict(result)
    elif isinstance(result, dict):
        return result
    elif hasattr(result, "__dict__"):
        return result.__dict__
    return {"value": str(result)}


def _format_json(result: Any) -> str:
    return json.dumps(_to_dict(result), indent=2, default=str)


def _format_human(result: Any, title: Optional[str] = None) -> str:
    lines = []
    if title:
        lines.extend([title, "=" * len(title), ""])

    data = _to_dict(result)
    max_key_len = max(len(str(k)) for k in data.keys()) if data else 0

    for key, value in data.items():
        label = key.replace("_", " ").title()
        if isinstance(value, list):
            formatted = "\n".join(f"  - {v}" for v in value) if value else "(none)"
            if value:
                formatted = "\n" + formatted
        elif isinstance(value, dict):
            formatted = ", ".join(f"{k}={v}" for k, v in value.items()) or "(none)"
        else:
            formatted = "" if value is None else str(value)
        lines.append(f"{label:<{max_key_len + 2}}: {formatted}")

    return "\n".join(lines)


def _format_markdown(result: Any, title: Optional[str] = None) -> str:
    lines = []
    if title:
        lines.extend([f"# {title}", ""])

    data = _to_dict(result)
    lines.extend(["| Field | Value |", "|-------|-------|"])

    for key, value in data.items():
        label = key.replace("_", " ").title()
        if isinstance(value, list):
            formatted = ", ".join(str(v) for v in value) if value else "-"
        elif value is None:
            formatted = "-"
        else:
            formatted = str(value)
        lines.append(f"| {label} | {formatted} |")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

_ACTION_MARKERS = {"add": "+", "modify": "~", "delete": "-"}


def format_transaction(transaction, selection=None,
                       fmt: OutputFormat = OutputFormat.HUMAN) -> str:
    """Render a transaction as a grouped change list for review.

    Args:
        transaction: smartimport.imports.specs.Transaction
        selection: Optional Selection; unselected changes are marked ``[ ]``.
        fmt: Output mode.
    """
    if fmt == OutputFormat.JSON:
        data = transaction.to_dict()
        if selection is not None:
            data["selection"] = selection.to_dict()
        return json.dumps(data, indent=2, default=str)

    md = fmt == OutputFormat.MARKDOWN
    lines = []
    header = f"Import {transaction.id} ({transaction.semester}) - {transaction.status}"
    lines.extend([f"# {header}", ""] if md else [header, "=" * len(header)])
    summary = ", ".join(f"{k}: {v}" for k, v in sorted(transaction.summary.items()))
    lines.append(f"Rows: {transaction.rows_total}  Changes: {len(transaction.changes)}"
                 + (f"  ({summary})" if summary else ""))

    current_group = object()
    for change in transaction.changes:
        if change.group_key != current_group:
            current_group = change.group_key
            label = current_group or "Deletes (not in import)"
            lines.extend(["", f"## {label}" if md else f"[{label}]"])
        mark = ""
        if selection is not None:
            mark = "[x] " if selection.is_selected(change.id) else "[ ] "
        bullet = "- " if md else "  "
        lines.append(f"{bullet}{mark}{_ACTION_MARKERS[change.action]} "
                     f"{change.id}  {change.summary}")
        narrowed = selection.fields_for(change.id) if selection is not None else None
        for entry in change.diff:
            old, new = entry.display()
            skip = " (not selected)" if narrowed and entry.key not in narrowed else ""
            lines.append(f"{bullet}      {entry.key}: '{old}' -> '{new}'{skip}")

    for title, items in (("Row errors", transaction.row_errors),
                         ("Needs review", transaction.match_issues)):
        if items:
            lines.extend(["", f"## {title}" if md else f"{title}:"])
            lines.extend(f"  ! {item.get('message')}" for item in items)
    if transaction.warnings:
        lines.extend(["", "## Warnings" if md else "Warnings:"])
        lines.extend(f"  * {w}" for w in transaction.warnings)
    if transaction.last_error:
        lines.extend(["", f"Last error: {transaction.last_error}"])

    return "\n".join(lines)
