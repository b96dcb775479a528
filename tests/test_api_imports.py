"""Tests for the imports blueprint JSON API."""

import io
import sqlite3

import pytest

from smartimport.core.db import DocumentStore


def _upload(client, data: bytes, filename="fall.csv", semester="Fall 2025"):
    form = {"file": (io.BytesIO(data), filename)}
    if semester is not None:
        form["semester"] = semester
    return client.post("/imports/api/preview", data=form,
                       content_type="multipart/form-data")


@pytest.fixture
def preview(client, sample_csv):
    resp = _upload(client, sample_csv)
    assert resp.status_code == 201
    return resp.get_json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestPreview:
    def test_creates_pending_transaction(self, preview):
        assert preview["status"] == "pending"
        assert len(preview["changes"]) == 6
        assert all(c["selected"] for c in preview["changes"])
        assert preview["groups"]["row:0"] == ["chg-0001", "chg-0002", "chg-0003"]
        assert preview["summary"]["schedules.add"] == 2

    def test_missing_file(self, client):
        resp = client.post("/imports/api/preview", data={"semester": "Fall 2025"},
                           content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No file uploaded"

    def test_missing_semester(self, client, sample_csv):
        resp = _upload(client, sample_csv, semester=None)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "semester is required"

    def test_unsupported_file(self, client):
        resp = _upload(client, b"%PDF-1.4", filename="fall.pdf")
        assert resp.status_code == 400
        assert "Unsupported file type" in resp.get_json()["error"]


class TestReview:
    def test_get(self, client, preview):
        resp = client.get(f"/imports/api/{preview['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["id"] == preview["id"]

    def test_get_unknown(self, client):
        resp = client.get("/imports/api/import_missing")
        assert resp.status_code == 404
        assert resp.get_json()["error_type"] == "TransactionNotFound"

    def test_toggle_group(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/selection",
                           json={"toggle": "chg-0003", "selected": False})
        assert resp.status_code == 200
        assert resp.get_json()["change_ids"] == ["chg-0004", "chg-0005", "chg-0006"]

    def test_replace_selection(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/selection",
                           json={"change_ids": ["chg-0005"]})
        assert resp.get_json()["change_ids"] == ["chg-0004", "chg-0005", "chg-0006"]

    def test_invalid_field_map(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/selection",
                           json={"change_ids": [], "field_map": {"chg-0001": ["roles"]}})
        assert resp.status_code == 400
        assert resp.get_json()["error_type"] == "InvalidSelection"

    def test_change_ids_must_be_list(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/selection", json={})
        assert resp.status_code == 400

    @pytest.mark.parametrize("field_map", [
        ["chg-0001"],
        {"chg-0001": "roles"},
        {"chg-0001": [1, 2]},
        "chg-0001=roles",
    ])
    def test_malformed_field_map(self, client, preview, field_map):
        resp = client.post(f"/imports/api/{preview['id']}/selection",
                           json={"change_ids": ["chg-0001"], "field_map": field_map})
        assert resp.status_code == 400
        assert "field_map" in resp.get_json()["error"]

    def test_toggle_needs_change_id(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/selection",
                           json={"toggle": ["chg-0001"]})
        assert resp.status_code == 400


class TestCommit:
    def test_commit_then_conflict(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/commit", json={"user": "lee"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "committed"
        assert len(body["applied"]) == 6

        resp = client.post(f"/imports/api/{preview['id']}/commit")
        assert resp.status_code == 409
        assert resp.get_json()["error_type"] == "InvalidTransactionState"

    def test_store_failure(self, client, preview, monkeypatch):
        def fail(self, ops, audit=None):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(DocumentStore, "batch_write", fail)
        resp = client.post(f"/imports/api/{preview['id']}/commit")
        assert resp.status_code == 502
        body = resp.get_json()
        assert body["error_type"] == "CommitFailed"
        assert body["applied_change_ids"] == []

    def test_cancel_and_history(self, client, preview):
        resp = client.post(f"/imports/api/{preview['id']}/cancel")
        assert resp.get_json()["status"] == "cancelled"

        resp = client.get("/imports/api/history")
        (row,) = resp.get_json()["transactions"]
        assert row["id"] == preview["id"]
        assert row["status"] == "cancelled"
