"""
Shared test fixtures for SmartImport.

Provides an in-memory database with all schemas, a document store over it,
a patched get_db, CLI runner, Flask test client, and small seed helpers.
"""

import sqlite3
from contextlib import contextmanager
from unittest.mock import patch

import pytest

from smartimport.core.db import DocumentStore, apply_schemas
from smartimport.imports.specs import ScheduleRow


@pytest.fixture
def memory_db():
    """Provide an in-memory SQLite database with ALL schemas applied in order."""
    conn = sqlite3.connect(":memory:")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    apply_schemas(conn)

    yield conn
    conn.close()


@pytest.fixture
def store(memory_db):
    """DocumentStore over the in-memory database."""
    return DocumentStore(memory_db)


@pytest.fixture
def mock_db(memory_db):
    """Patch get_db everywhere to return the in-memory database."""

    @contextmanager
    def _get_db(readonly=False):
        yield memory_db

    with patch("smartimport.core.db.get_db", _get_db), \
         patch("smartimport.core.get_db", _get_db), \
         patch("smartimport.api.imports.get_db", _get_db):
        yield memory_db


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def client(mock_db):
    """Flask test client wired to the in-memory database."""
    from smartimport.api import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_row():
    """Factory for ScheduleRows with sensible defaults."""

    def _make(row_index=0, **fields):
        defaults = {
            "course_code": "ADM 1241",
            "course_title": "Intro to Administration",
            "section": "01",
            "term": "Fall 2025",
            "credits": "3",
            "instructor_field": "Dragoo, Sheri (892564540) [Primary, 100%]",
            "meeting_pattern_field": "MWF 9:05am-9:55am",
            "room_field": "Goebel 101",
            "crn": "",
        }
        defaults.update(fields)
        return ScheduleRow(row_index=row_index, **defaults)

    return _make


SAMPLE_CSV = (
    "Course,Course Title,Section #,Term,Credit Hrs,Instructor,Meeting Pattern,Room,CRN\n"
    'ADM 1241,Intro to Administration,01,Fall 2025,3,'
    '"Dragoo, Sheri (892564540) [Primary, 100%]",MWF 9:05am-9:55am,Goebel 101,33038\n'
    'ADM 2350,Research Methods,02,Fall 2025,3,'
    '"Yoo, Jeongju (891178020) [Primary, 100%]",T 2pm-3:15pm; T 2pm-4pm,FCS 211,33039\n'
)


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV.encode("utf-8")


@pytest.fixture
def make_transaction():
    """Factory for a small transaction.

    row:0 adds a person and a schedule that points at them, row:1 modifies
    two fields of schedule ``s1``, and an ungrouped change deletes ``s2``.
    """
    from smartimport.imports.specs import Change, DiffEntry, Transaction

    def _make(tx_id="import_test_1", created_at="2025-08-01 09:00:00"):
        return Transaction(
            id=tx_id,
            semester="Fall 2025",
            created_at=created_at,
            rows_total=2,
            changes=[
                Change(id="chg-0001", collection="people", action="add",
                       new_data={"first_name": "Jeongju", "last_name": "Yoo"},
                       group_key="row:0", pending_ref="pending:people:1", row_index=0),
                Change(id="chg-0002", collection="schedules", action="add",
                       new_data={"course_code": "ADM 2350",
                                 "instructor_id": "pending:people:1",
                                 "identity_key": "crn:fall 2025:33039"},
                       group_key="row:0", pending_ref="pending:schedules:1", row_index=0),
                Change(id="chg-0003", collection="schedules", action="modify",
                       target_id="s1", group_key="row:1", row_index=1,
                       diff=[DiffEntry("credits", 3, 4),
                             DiffEntry("course_title", "Old", "New")]),
                Change(id="chg-0004", collection="schedules", action="delete",
                       target_id="s2"),
            ],
        )

    return _make
