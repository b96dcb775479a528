"""
SmartImport reconciliation engine: parse schedule exports into reviewable
change transactions and commit the selected changes.

Usage:
    from smartimport.imports import Change, Transaction, Selection
    from smartimport.imports.engine import build_transaction, commit, set_selection
"""

from smartimport.imports.specs import (
    ColumnDef,
    Change,
    CommitResult,
    DiffEntry,
    ScheduleRow,
    Selection,
    Transaction,
)
