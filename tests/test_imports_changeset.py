"""Tests for change set building: diffs, merge rules, groups, and deletes."""

from smartimport.imports.changeset import ChangeSetBuilder, diff_fields, merge_person
from smartimport.imports.resolver import EntityResolver, Snapshot
from smartimport.imports.rows import parse_row
from smartimport.parsing.instructors import parse_instructor_field


def _build(rows, people=(), schedules=(), rooms=()):
    snapshot = Snapshot.from_documents("Fall 2025", people=people,
                                       schedules=schedules, rooms=rooms)
    builder = ChangeSetBuilder(snapshot, EntityResolver(snapshot))
    for row in rows:
        builder.add_row(parse_row(row, "Fall 2025"))
    builder.add_deletes()
    return builder


def _actions(builder):
    return [(c.collection, c.action) for c in builder.changes]


class TestDiffFields:
    def test_blank_and_none_are_equal(self):
        assert diff_fields({"title": None, "roles": []}, {"title": "", "roles": None},
                           ["title", "roles"]) == []

    def test_only_allowlisted_fields(self):
        diff = diff_fields({"a": 1, "b": 1}, {"a": 2, "b": 2}, ["a"])
        assert [d.key for d in diff] == ["a"]

    def test_fields_missing_from_proposal_are_ignored(self):
        assert diff_fields({"email": "x@example.edu"}, {}, ["email"]) == []

    def test_keeps_typed_values(self):
        (entry,) = diff_fields({"credits": 3}, {"credits": 4}, ["credits"])
        assert (entry.from_value, entry.to_value) == (3, 4)
        assert entry.display() == ("3", "4")


class TestMergePerson:
    def test_never_overwrites_names(self):
        existing = {"first_name": "Sherri", "last_name": "Dragoo", "roles": ["faculty"],
                    "external_id": "892564540"}
        ref = parse_instructor_field("Dragoo, Sheri (892564540)")
        assert merge_person(existing, ref) == {}

    def test_fills_blank_external_id(self):
        existing = {"first_name": "Sheri", "last_name": "Dragoo", "roles": ["faculty"]}
        ref = parse_instructor_field("Dragoo, Sheri (892564540)")
        assert merge_person(existing, ref) == {"external_id": "892564540"}

    def test_unclassified_person_gets_roles_from_job_title(self):
        existing = {"first_name": "Ann", "last_name": "Lee", "roles": [],
                    "job_title": "Program Coordinator"}
        proposed = merge_person(existing, parse_instructor_field("Lee, Ann"))
        assert proposed["roles"] == ["staff", "faculty"]


class TestBuilder:
    def test_new_row_on_empty_store(self, make_row):
        builder = _build([make_row()])
        assert _actions(builder) == [
            ("people", "add"), ("rooms", "add"), ("schedules", "add"),
        ]
        assert {c.group_key for c in builder.changes} == {"row:0"}

        schedule = builder.changes[-1]
        assert schedule.new_data["instructor_id"] == "pending:people:1"
        assert schedule.new_data["room_ids"] == ["pending:rooms:1"]
        assert schedule.new_data["identity_key"] == "section:fall 2025:adm 1241:01"
        assert schedule.new_data["protected"] is False
        assert schedule.summary == "Add schedule ADM 1241 01 (Fall 2025)"

    def test_change_ids_are_sequential(self, make_row):
        builder = _build([make_row()])
        assert [c.id for c in builder.changes] == ["chg-0001", "chg-0002", "chg-0003"]

    def test_rows_sharing_new_person_share_one_group(self, make_row):
        builder = _build([
            make_row(0, room_field=""),
            make_row(1, section="02", room_field=""),
        ])
        people = [c for c in builder.changes if c.collection == "people"]
        assert len(people) == 1
        schedules = [c for c in builder.changes if c.collection == "schedules"]
        assert {s.new_data["instructor_id"] for s in schedules} == {"pending:people:1"}
        assert {c.group_key for c in builder.changes} == {"row:0"}
        assert [s.row_index for s in schedules] == [0, 1]

    def test_new_entities_chain_groups_together(self, make_row):
        builder = _build([
            make_row(0, room_field="Goebel 101"),
            make_row(1, section="02", room_field="FCS 211",
                     instructor_field="Yoo, Jeongju (891178020)"),
            make_row(2, section="03", room_field="FCS 211"),
            make_row(3, section="04", room_field="",
                     instructor_field="Lee, Ann (800000001)"),
        ])
        assert {c.group_key for c in builder.changes if c.row_index != 3} == {"row:0"}
        assert {c.group_key for c in builder.changes if c.row_index == 3} == {"row:3"}

    def test_existing_person_does_not_join_groups(self, make_row):
        person = {"id": "p1", "first_name": "Sheri", "last_name": "Dragoo",
                  "external_id": "892564540", "roles": ["faculty"]}
        builder = _build([
            make_row(0, room_field=""),
            make_row(1, section="02", room_field=""),
        ], people=[person])
        assert [c.group_key for c in builder.changes] == ["row:0", "row:1"]

    def test_existing_person_gains_faculty_role(self, make_row):
        person = {"id": "p1", "first_name": "Sheri", "last_name": "Dragoo",
                  "external_id": "892564540", "roles": ["staff"]}
        builder = _build([make_row(room_field="")], people=[person])
        modify = builder.changes[0]
        assert (modify.collection, modify.action) == ("people", "modify")
        assert modify.target_id == "p1"
        assert modify.diff_keys == ["roles"]
        assert modify.diff[0].to_value == ["staff", "faculty"]
        assert builder.changes[-1].new_data["instructor_id"] == "p1"

    def test_changed_schedule_becomes_modify(self, make_row):
        person = {"id": "p1", "first_name": "Sheri", "last_name": "Dragoo",
                  "external_id": "892564540", "roles": ["faculty"]}
        stored = {"id": "s1", "semester": "Fall 2025", "term": "Fall 2025",
                  "course_code": "ADM 1241", "section": "01", "course_title": "Old",
                  "identity_key": "section:fall 2025:adm 1241:01"}
        builder = _build([make_row(room_field="")], people=[person], schedules=[stored])
        (change,) = builder.changes
        assert change.action == "modify"
        assert change.target_id == "s1"
        assert "course_title" in change.diff_keys
        assert "section" not in change.diff_keys

    def test_duplicate_row_warned_and_ignored(self, make_row):
        builder = _build([make_row(0, room_field=""), make_row(1, room_field="")])
        assert [c.row_index for c in builder.changes if c.collection == "schedules"] == [0]
        assert len(builder.warnings) == 1
        assert "duplicates row 1" in builder.warnings[0]

    def test_duplicate_row_adds_nothing_for_its_other_fields(self, make_row):
        builder = _build([
            make_row(0, room_field=""),
            make_row(1, instructor_field="Yoo, Jeongju (891178020)", room_field="FCS 211"),
        ])
        assert _actions(builder) == [("people", "add"), ("schedules", "add")]
        assert {c.row_index for c in builder.changes} == {0}
        assert len(builder.warnings) == 1

    def test_staff_placeholder_creates_no_person(self, make_row):
        builder = _build([make_row(instructor_field="Staff", room_field="")])
        assert _actions(builder) == [("schedules", "add")]
        data = builder.changes[0].new_data
        assert data["instructor_id"] is None
        assert data["instructor_assignments"][0]["display_name"] == "Staff"


class TestDeletes:
    SCHEDULES = [
        {"id": "gone", "semester": "Fall 2025", "course_code": "ADM 9999", "section": "01",
         "identity_key": "section:fall 2025:adm 9999:01"},
        {"id": "manual", "semester": "Fall 2025", "course_code": "ADM 8888", "section": "01"},
        {"id": "locked", "semester": "Fall 2025", "course_code": "ADM 7777", "section": "01",
         "identity_key": "section:fall 2025:adm 7777:01", "protected": True},
    ]

    def test_only_unprotected_imported_schedules_are_deleted(self, make_row):
        builder = _build([make_row(room_field="")], schedules=self.SCHEDULES)
        deletes = [c for c in builder.changes if c.action == "delete"]
        assert [c.target_id for c in deletes] == ["gone"]
        assert deletes[0].group_key is None
        assert deletes[0].summary == "Delete schedule ADM 9999 01 (not in import)"

    def test_mark_present_keeps_schedule(self):
        snapshot = Snapshot.from_documents("Fall 2025", schedules=self.SCHEDULES)
        builder = ChangeSetBuilder(snapshot, EntityResolver(snapshot))
        builder.mark_present(["section:fall 2025:adm 9999:01"])
        assert builder.add_deletes() == []
