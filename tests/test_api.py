"""
HTTP API tests - sessions, saves, conflicts, undo, drafts, storage and queue.
"""

import sqlite3

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from fieldguard.api import main
from fieldguard.api.main import AppContext, get_context


@pytest.fixture
def ctx(tmp_path):
    context = AppContext(db_path=str(tmp_path / "records.db"), storage_path=str(tmp_path / "local.db"))
    context.store.create_record("rec-1", {"category": "WORK", "urgency": "MEDIUM", "action": "FYI"})
    context.store.create_record("rec-2", {"category": "KIDS", "urgency": "LOW", "action": "IGNORE"})
    return context


@pytest.fixture
def client(ctx):
    """Create test client bound to a temporary context."""
    main.app.dependency_overrides[get_context] = lambda: ctx
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def offline():
    return patch("fieldguard.core.remote.get_db", side_effect=sqlite3.OperationalError("unable to open database"))


class TestHealthAndRecords:
    """Test health and record lookup endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["undo_available"] is False
        assert data["pending_count"] == 0

    def test_get_record(self, client):
        response = client.get("/records/rec-1")

        assert response.status_code == 200
        data = response.json()
        assert data["category"] == "WORK"
        assert data["version"] == 1

    def test_get_missing_record(self, client):
        response = client.get("/records/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "Record not found: nope"


class TestSessionsAndSaves:
    """Test session lifecycle and instant saves."""

    def test_begin_and_end_session(self, client):
        response = client.post("/records/rec-1/session")
        assert response.status_code == 200
        assert response.json()["status"] == "editing"
        assert response.json()["original_version"] == 1

        assert client.get("/records/rec-1/session").status_code == 200
        assert client.delete("/records/rec-1/session").status_code == 200
        assert client.delete("/records/rec-1/session").status_code == 404
        assert client.get("/records/rec-1/session").status_code == 404

    def test_save_field(self, client):
        client.post("/records/rec-1/session")

        response = client.put("/records/rec-1/fields/category", json={"value": "FINANCIAL"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "saved"
        assert data["new_version"] == 2
        assert client.get("/records/rec-1").json()["category"] == "FINANCIAL"

    def test_invalid_value_is_422(self, client, ctx):
        response = client.put("/records/rec-1/fields/urgency", json={"value": "URGENT"})

        assert response.status_code == 422
        data = response.json()
        assert data["field"] == "urgency"
        assert data["allowed"] == ["HIGH", "MEDIUM", "LOW"]
        assert client.get("/records/rec-1").json()["version"] == 1

    def test_unknown_field_is_422(self, client):
        response = client.put("/records/rec-1/fields/subject", json={"value": "hello"})
        assert response.status_code == 422

    def test_empty_value_is_422(self, client):
        response = client.put("/records/rec-1/fields/urgency", json={"value": "  "})
        assert response.status_code == 422

    def test_auto_merge(self, client, ctx):
        client.post("/records/rec-1/session")
        ctx.store.update_record("rec-1", "category", "SHOPPING")

        response = client.put("/records/rec-1/fields/urgency", json={"value": "HIGH"})

        assert response.status_code == 200
        assert response.json()["server_changes"] == [
            {"field": "category", "from_value": "WORK", "to_value": "SHOPPING"}
        ]
        record = client.get("/records/rec-1").json()
        assert (record["category"], record["urgency"]) == ("SHOPPING", "HIGH")


class TestConflicts:
    """Test conflict responses and resolution."""

    def create_conflict(self, client, ctx):
        client.post("/records/rec-2/session")
        ctx.store.update_record("rec-2", "action", "JUNK")
        return client.put("/records/rec-2/fields/action", json={"value": "NOTIFY"})

    def test_conflict_is_409(self, client, ctx):
        response = self.create_conflict(client, ctx)

        assert response.status_code == 409
        conflict = response.json()["conflicts"][0]
        assert conflict["field_name"] == "action"
        assert conflict["server_value"] == "JUNK"
        assert "someone else changed it" in conflict["description"]

        session = client.get("/records/rec-2/session").json()
        assert session["status"] == "conflict"
        assert session["current_fields"]["action"] == "IGNORE"

    def test_resolve_conflict(self, client, ctx):
        self.create_conflict(client, ctx)

        response = client.post("/records/rec-2/conflicts/resolve", json={"resolutions": {"action": "client"}})

        assert response.status_code == 200
        assert response.json()["results"][0]["success"] is True
        assert client.get("/records/rec-2").json()["action"] == "NOTIFY"

    def test_resolve_invalid_choice(self, client, ctx):
        self.create_conflict(client, ctx)

        response = client.post("/records/rec-2/conflicts/resolve", json={"resolutions": {"action": "mine"}})
        assert response.status_code == 422

    def test_resolve_without_conflict(self, client):
        client.post("/records/rec-1/session")

        response = client.post("/records/rec-1/conflicts/resolve", json={"resolutions": {"action": "client"}})
        assert response.status_code == 400

    def test_resolve_without_session(self, client):
        response = client.post("/records/rec-1/conflicts/resolve", json={"resolutions": {"action": "client"}})
        assert response.status_code == 404


class TestUndo:
    """Test undo endpoints."""

    def test_undo_cycle(self, client):
        client.put("/records/rec-1/fields/category", json={"value": "FINANCIAL"})

        status = client.get("/undo").json()
        assert status["can_undo"] is True
        assert status["state"] == "pending"
        assert 0 < status["time_remaining"] <= 30
        assert status["description"] == "Changed Category to Financial & Bills"

        response = client.post("/undo")
        assert response.status_code == 200
        assert response.json()["restored_records"] == ["rec-1"]
        assert client.get("/records/rec-1").json()["category"] == "WORK"

        again = client.post("/undo")
        assert again.status_code == 409
        assert again.json()["error"] == "Nothing to undo"

    def test_clear_undo(self, client):
        client.put("/records/rec-1/fields/category", json={"value": "FINANCIAL"})

        assert client.delete("/undo").status_code == 200
        assert client.get("/undo").json()["can_undo"] is False


class TestOfflineAndDrafts:
    """Test network failure mapping, drafts and the pending queue."""

    def test_offline_save_is_503_and_queued(self, client, ctx):
        client.post("/records/rec-1/session")

        with offline():
            response = client.put("/records/rec-1/fields/category", json={"value": "FINANCIAL"})

        assert response.status_code == 503
        assert response.json()["retryable"] is True

        draft = client.get("/drafts/rec-1")
        assert draft.status_code == 200
        assert draft.json()["data"]["category"] == "FINANCIAL"

        pending = client.get("/pending").json()
        assert pending["size"] == 1
        assert pending["submissions"][0]["updates"] == {"category": "FINANCIAL"}

        drained = client.post("/pending/drain").json()
        assert drained["results"][0]["success"] is True
        assert drained["remaining"] == 0
        assert client.get("/records/rec-1").json()["category"] == "FINANCIAL"
        assert client.get("/drafts/rec-1").status_code == 404

    def test_read_while_offline_is_503(self, client):
        with offline():
            response = client.get("/records/rec-1")

        assert response.status_code == 503
        assert response.json()["retryable"] is True

    def test_delete_draft(self, client, ctx):
        ctx.drafts.save_draft("rec-1", {"category": "WORK", "urgency": "HIGH", "action": "FYI"}, 1)

        assert client.delete("/drafts/rec-1").json()["success"] is True
        assert client.delete("/drafts/rec-1").json()["success"] is False

    def test_retry_and_remove_pending(self, client, ctx):
        submission = ctx.pending.enqueue("rec-1", {"urgency": "HIGH"}, 1)

        assert client.post(f"/pending/{submission.id}/retry").status_code == 200
        assert client.delete(f"/pending/{submission.id}").status_code == 200
        assert client.delete(f"/pending/{submission.id}").status_code == 404


class TestStorage:
    """Test storage statistics and cleanup."""

    def test_stats(self, client, ctx):
        ctx.drafts.save_draft("rec-1", {"category": "WORK", "urgency": "HIGH", "action": "FYI"}, 1)

        stats = client.get("/storage/stats").json()
        assert stats["draft_count"] == 1
        assert stats["app_keys"] == 1

    def test_cleanup(self, client, ctx):
        ctx.storage.set_item("correction-ui:v0:draft:old", "{}")

        result = client.post("/storage/cleanup").json()
        assert result["keys_removed"] == 1
        assert result["removed_keys"] == ["correction-ui:v0:draft:old"]

    def test_cleanup_runs_at_startup(self, ctx):
        ctx.storage.set_item("correction-ui:v0:draft:old", "{}")
        main.app.dependency_overrides[get_context] = lambda: ctx
        try:
            with TestClient(main.app):
                pass
        finally:
            main.app.dependency_overrides.clear()

        assert ctx.storage.get_item("correction-ui:v0:draft:old") is None
