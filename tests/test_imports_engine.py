"""End-to-end tests for the import engine: file in, transaction out, commit."""

import io

import pytest

from smartimport.core.db import DocumentStore
from smartimport.errors import ParseError
from smartimport.imports import engine
from smartimport.imports.commit import schedule_document_id
from smartimport.imports.resolver import Snapshot
from smartimport.imports.transaction import TransactionStore


def _empty():
    return Snapshot.from_documents("Fall 2025")


class TestBuildTransaction:
    def test_new_instructor_with_two_sessions_same_day(self, make_row):
        row = make_row(
            course_code="ADM 2350",
            instructor_field="Yoo, Jeongju (891178020) [Primary, 100%]",
            meeting_pattern_field="T 2pm-3:15pm; T 2pm-4pm",
            room_field="",
        )
        tx = engine.build_transaction([row], _empty())

        assert [(c.collection, c.action) for c in tx.changes] == [
            ("people", "add"), ("schedules", "add"),
        ]
        person, schedule = tx.changes
        assert person.summary == "Add person Yoo, Jeongju (891178020)"
        assert person.new_data["external_id"] == "891178020"
        assert person.new_data["roles"] == ["faculty"]
        assert schedule.new_data["meeting_patterns"] == [
            {"day": "T", "start_minute": 840, "end_minute": 915},
            {"day": "T", "start_minute": 840, "end_minute": 960},
        ]
        assert tx.status == "pending"
        assert tx.rows_total == 1
        assert tx.summary == {"people.add": 1, "schedules.add": 1}

    def test_parse_errors_are_recorded_and_skipped(self, make_row):
        rows = [make_row(0), make_row(1, section="02", meeting_pattern_field="MWF 9am")]
        tx = engine.build_transaction(rows, _empty())

        assert len(tx.row_errors) == 1
        error = tx.row_errors[0]
        assert error["kind"] == "InvalidMeetingPattern"
        assert error["row_index"] == 1
        assert error["field"] == "meeting_pattern_field"
        assert {c.row_index for c in tx.changes} == {0}

    def test_abort_on_first_parse_error(self, make_row):
        rows = [make_row(0, meeting_pattern_field="MWF 9am")]
        with pytest.raises(ParseError):
            engine.build_transaction(rows, _empty(), on_error="abort")

    def test_unknown_error_mode(self, make_row):
        with pytest.raises(ValueError):
            engine.build_transaction([make_row()], _empty(), on_error="ignore")

    def test_staff_policy_keeps_row(self, make_row):
        rows = [make_row(instructor_field="Smith, Ann [Primary, lots]", room_field="")]
        tx = engine.build_transaction(rows, _empty(), instructor_policy="staff")
        assert tx.row_errors == []
        assert len(tx.warnings) == 1
        assert [(c.collection, c.action) for c in tx.changes] == [("schedules", "add")]

    def test_unparseable_row_does_not_delete_its_schedule(self, make_row):
        stored = {"id": "s1", "semester": "Fall 2025", "course_code": "ADM 1241",
                  "section": "01", "identity_key": "section:fall 2025:adm 1241:01"}
        snapshot = Snapshot.from_documents("Fall 2025", schedules=[stored])
        rows = [make_row(0, meeting_pattern_field="MWF 9am")]
        tx = engine.build_transaction(rows, snapshot)
        assert [c for c in tx.changes if c.action == "delete"] == []

    def test_ambiguous_instructor_needs_review(self, make_row):
        people = [
            {"id": "p1", "first_name": "John", "last_name": "Smith", "roles": ["faculty"]},
            {"id": "p2", "first_name": "John", "last_name": "Smith", "roles": ["faculty"]},
        ]
        snapshot = Snapshot.from_documents("Fall 2025", people=people)
        row = make_row(instructor_field="Smith, John", room_field="")

        tx = engine.build_transaction([row], snapshot)
        assert tx.changes == []
        assert tx.match_issues[0]["match_key"] == "john smith"

        tx = engine.build_transaction([row], snapshot, resolutions={"john smith": "p2"})
        assert tx.match_issues == []
        assert tx.changes[-1].new_data["instructor_id"] == "p2"

    def test_deletes_can_be_turned_off(self, make_row):
        stored = {"id": "old", "semester": "Fall 2025", "course_code": "ADM 9999",
                  "section": "01", "identity_key": "section:fall 2025:adm 9999:01"}
        snapshot = Snapshot.from_documents("Fall 2025", schedules=[stored])
        tx = engine.build_transaction([make_row(room_field="")], snapshot,
                                      detect_deletes=False)
        assert all(c.action != "delete" for c in tx.changes)

    def test_empty_import_deletes_nothing(self):
        stored = {"id": "old", "semester": "Fall 2025", "course_code": "ADM 9999",
                  "section": "01", "identity_key": "section:fall 2025:adm 9999:01"}
        snapshot = Snapshot.from_documents("Fall 2025", schedules=[stored])
        assert engine.build_transaction([], snapshot).changes == []


class TestFiles:
    def test_parse_csv(self, sample_csv):
        headers, rows = engine.parse_file(sample_csv, "fall.csv")
        assert headers[0] == "Course"
        assert len(rows) == 2
        assert rows[1][5] == "Yoo, Jeongju (891178020) [Primary, 100%]"

    def test_parse_csv_with_bom_and_blank_rows(self):
        data = "\ufeffCourse,CRN\nADM 1241,33038\n,\n".encode("utf-8")
        headers, rows = engine.parse_file(data, "x.CSV")
        assert headers == ["Course", "CRN"]
        assert rows == [["ADM 1241", "33038"]]

    def test_parse_xlsx_normalizes_numbers(self):
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.append(["Course", "Section #", "CRN", "Credit Hrs"])
        ws.append(["ADM 1241", "01", 33038, 3.0])
        buf = io.BytesIO()
        wb.save(buf)

        headers, rows = engine.parse_file(buf.getvalue(), "fall.xlsx")
        assert headers == ["Course", "Section #", "CRN", "Credit Hrs"]
        assert rows == [["ADM 1241", "01", "33038", "3"]]

    def test_unsupported_extension(self):
        with pytest.raises(ValueError, match="Unsupported file type"):
            engine.parse_file(b"data", "fall.pdf")

    def test_auto_map_columns(self):
        mapping = engine.auto_map_columns(["Course", "Section #", "CRN", "Instructors", ""])
        assert mapping == {"0": "course_code", "1": "section", "2": "crn",
                           "3": "instructor_field"}

    def test_validate_mapping(self):
        assert engine.validate_mapping(
            {"0": "subject_code", "1": "catalog_number", "2": "crn"}
        ) == []
        errors = engine.validate_mapping({"0": "course_title"})
        assert len(errors) == 2

    def test_transform_rows_joins_subject_and_catalog(self):
        rows = engine.transform_rows([["ADM", "1241", "01"]],
                                     {"0": "subject_code", "1": "catalog_number",
                                      "2": "section"})
        assert rows[0].course_code == "ADM 1241"
        assert rows[0].section == "01"


class TestPreviewAndCommit:
    def test_preview_saves_pending_transaction(self, memory_db, sample_csv):
        tx = engine.preview(memory_db, sample_csv, "fall.csv", "Fall 2025", created_by="lee")
        loaded, selection = engine.get_transaction(memory_db, tx.id)
        assert loaded.status == "pending"
        assert loaded.filename == "fall.csv"
        assert loaded.created_by == "lee"
        assert selection.change_ids == set(tx.change_ids)
        assert tx.summary == {"people.add": 2, "rooms.add": 2, "schedules.add": 2}

    def test_preview_rejects_unmapped_file(self, memory_db):
        with pytest.raises(ValueError, match="Course"):
            engine.preview(memory_db, b"Title\nSomething\n", "x.csv", "Fall 2025")

    def test_reimport_after_commit_is_a_no_op(self, memory_db, sample_csv):
        tx = engine.preview(memory_db, sample_csv, "fall.csv", "Fall 2025")
        result = engine.commit(memory_db, tx.id)
        assert result.status == "committed"
        assert len(result.applied) == 6

        store = DocumentStore(memory_db)
        schedules = store.get_all("schedules", semester="Fall 2025")
        assert len(schedules) == 2
        people_ids = {p["id"] for p in store.get_all("people")}
        assert {s["instructor_id"] for s in schedules} == people_ids

        again = engine.preview(memory_db, sample_csv, "fall.csv", "Fall 2025")
        assert again.changes == []

    def test_dropped_row_becomes_delete(self, memory_db, sample_csv):
        tx = engine.preview(memory_db, sample_csv, "fall.csv", "Fall 2025")
        engine.commit(memory_db, tx.id)

        first_row_only = b"\n".join(sample_csv.splitlines()[:2]) + b"\n"
        again = engine.preview(memory_db, first_row_only, "fall.csv", "Fall 2025")
        assert [(c.collection, c.action) for c in again.changes] == [("schedules", "delete")]
        assert again.changes[0].target_id == schedule_document_id("crn:fall 2025:33039")

    def test_lookalike_course_codes_stay_separate(self, memory_db, make_row):
        rows = [make_row(0, course_code="ADM 1241"), make_row(1, course_code="ADM-1241")]
        tx = engine.build_transaction(rows, _empty())
        TransactionStore(memory_db).save(tx)

        result = engine.commit(memory_db, tx.id)

        assert len(DocumentStore(memory_db).get_all("schedules")) == 2
        assert len(set(result.document_ids.values())) == len(result.applied)

    def test_deselecting_shared_instructor_drops_its_schedules(self, memory_db, make_row):
        rows = [
            make_row(0, crn="1", room_field=""),
            make_row(1, crn="2", section="02", room_field=""),
        ]
        tx = engine.build_transaction(rows, _empty())
        txns = TransactionStore(memory_db)
        txns.save(tx)
        person = next(c for c in tx.changes if c.collection == "people")

        selection = txns.toggle(tx.id, person.id, selected=False)
        assert selection.change_ids == set()

        result = engine.commit(memory_db, tx.id)
        assert result.applied == []
        assert DocumentStore(memory_db).get_all("schedules") == []

    def test_shared_instructor_linked_from_every_schedule(self, memory_db, make_row):
        rows = [
            make_row(0, crn="1", room_field=""),
            make_row(1, crn="2", section="02", room_field=""),
        ]
        tx = engine.build_transaction(rows, _empty())
        TransactionStore(memory_db).save(tx)
        person = next(c for c in tx.changes if c.collection == "people")

        result = engine.commit(memory_db, tx.id)

        person_id = result.document_ids[person.id]
        schedules = DocumentStore(memory_db).get_all("schedules")
        assert [s["instructor_id"] for s in schedules] == [person_id, person_id]

    def test_cancel(self, memory_db, sample_csv):
        tx = engine.preview(memory_db, sample_csv, "fall.csv", "Fall 2025")
        assert engine.cancel(memory_db, tx.id).status == "cancelled"
        assert TransactionStore(memory_db).get(tx.id).status == "cancelled"
