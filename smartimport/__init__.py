"""
SmartImport - Schedule Import Reconciliation

Parses university schedule exports and reconciles them against the
people / schedules / rooms directory as reviewable change transactions.

Modules:
    core        - Shared services (config, logging, db, document store, output)
    parsing     - Text-to-structure parsers (times, names, roles, instructors,
                  meeting patterns, rooms)
    imports     - Entity resolution, change sets, transactions, commit engine
    cli         - Typer command line
    api         - Flask JSON endpoints for the import review flow
"""

__version__ = "0.1.0"
