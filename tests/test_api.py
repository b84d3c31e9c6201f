"""
Tests for the FastAPI application.
"""

import pytest
from fastapi.testclient import TestClient

from migration_engine.api.main import create_app


@pytest.fixture
def scenario(make_executor, confirm_mappings, profile, staff_rows):
    """A settled batch with one invalid email at source row 23."""
    rows = [dict(r) for r in staff_rows]
    rows[22]["email"] = "not-an-email"
    executor, loader = make_executor()
    confirmed, _ = confirm_mappings()
    batch = executor.execute(profile(rows), rows, confirmed)
    return executor, loader, batch


@pytest.fixture
def client(scenario):
    executor, _, _ = scenario
    return TestClient(create_app(executor))


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# =============================================================================
# Batches
# =============================================================================


class TestBatches:
    def test_list(self, client, scenario):
        _, _, batch = scenario
        data = client.get("/api/batches").json()
        assert data["total"] == 1
        assert data["batches"][0]["batch_id"] == batch.batch_id

    def test_get(self, client, scenario):
        _, _, batch = scenario
        data = client.get(f"/api/batches/{batch.batch_id}").json()
        assert data["status"] == "completed_with_errors"
        assert data["success_count"] == 49
        assert data["error_count"] == 1
        assert data["snapshot_id"] == batch.snapshot_id

    def test_unknown_batch(self, client):
        assert client.get("/api/batches/nope").status_code == 404
        assert client.get("/api/batches/nope/failures").status_code == 404
        assert client.post("/api/batches/nope/cancel").status_code == 404

    def test_failures(self, client, scenario):
        _, _, batch = scenario
        data = client.get(f"/api/batches/{batch.batch_id}/failures").json()
        assert data["total"] == 1
        failure = data["failures"][0]
        assert failure["source_row"] == 23
        assert failure["error_code"] == "validation_failed"
        assert [v["column"] for v in failure["violations"]] == ["email"]

    def test_quality(self, client, scenario):
        _, _, batch = scenario
        data = client.get(f"/api/batches/{batch.batch_id}/quality").json()
        assert data["batch_id"] == batch.batch_id
        assert data["ready_for_production"] is True
        assert 0 <= data["overall_score"] <= 100

    def test_lineage_filtered_by_row(self, client, scenario):
        _, _, batch = scenario
        data = client.get(f"/api/batches/{batch.batch_id}/lineage", params={"source_row": 23}).json()
        assert data["total"] == 5
        assert {r["source_row"] for r in data["records"]} == {23}
        email = next(r for r in data["records"] if r["source_column"] == "email")
        assert email["validation_passed"] is False

    def test_lineage_filtered_by_column(self, client, scenario):
        _, _, batch = scenario
        data = client.get(
            f"/api/batches/{batch.batch_id}/lineage", params={"source_column": "phone"}
        ).json()
        assert data["total"] == 50
        assert data["records"][0]["transformations"][0]["transform"] == "normalize_phone"


# =============================================================================
# Duplicates
# =============================================================================


class TestDedup:
    @pytest.fixture
    def candidate(self, scenario):
        executor, loader, batch = scenario
        existing_key = sorted(loader.read_table("hc_staff"))[0]
        return executor.dedup.record_conflict(
            batch.batch_id,
            "hc_staff",
            "late-row",
            {"first_name": "James", "last_name": "Anderson", "email": "user1@example.com"},
            existing_key,
        )

    def test_list_pending(self, client, candidate):
        data = client.get("/api/dedup", params={"pending_only": True}).json()
        assert data["total"] == 1
        assert data["candidates"][0]["candidate_id"] == candidate.candidate_id
        assert data["candidates"][0]["match_method"] == "unique_conflict"

    def test_resolve_once(self, client, candidate):
        url = f"/api/dedup/{candidate.candidate_id}/resolve"

        first = client.post(url, json={"resolution": "keep_both", "resolved_by": "dana"})
        assert first.status_code == 200
        assert first.json()["resolution"] == "keep_both"
        assert first.json()["resolved_by"] == "dana"

        second = client.post(url, json={"resolution": "merge_a", "resolved_by": "erin"})
        assert second.status_code == 409
        assert second.json()["detail"]["kind"] == "already_resolved"

    def test_pending_is_not_accepted(self, client, candidate):
        response = client.post(
            f"/api/dedup/{candidate.candidate_id}/resolve",
            json={"resolution": "pending", "resolved_by": "dana"},
        )
        assert response.status_code == 422

    def test_unknown_candidate(self, client):
        response = client.post("/api/dedup/nope/resolve", json={"resolution": "keep_both", "resolved_by": "dana"})
        assert response.status_code == 404


# =============================================================================
# Snapshots and rollbacks
# =============================================================================


class TestSnapshots:
    def test_list_for_batch(self, client, scenario):
        _, _, batch = scenario
        data = client.get("/api/snapshots", params={"batch_id": batch.batch_id}).json()
        assert data["total"] == 1
        assert data["snapshots"][0]["snapshot_id"] == batch.snapshot_id
        assert data["snapshots"][0]["tables_included"] == ["hc_staff"]
        assert "snapshot_data" not in data["snapshots"][0]

    def test_rollback_requires_approver(self, client, scenario):
        _, loader, batch = scenario
        response = client.post(f"/api/snapshots/{batch.snapshot_id}/rollback", json={"reason": "bad load"})
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "approver_required"
        assert loader.count_rows("hc_staff") == 49

    def test_rollback(self, client, scenario):
        _, loader, batch = scenario
        response = client.post(
            f"/api/snapshots/{batch.snapshot_id}/rollback",
            json={"reason": "bad load", "approved_by": "ops@example.com"},
        )
        assert response.status_code == 200
        assert response.json()["rows_deleted"] == 49
        assert loader.count_rows("hc_staff") == 0

        events = client.get("/api/rollbacks").json()
        assert events["total"] == 1
        assert events["rollbacks"][0]["approved_by"] == "ops@example.com"

    def test_unknown_snapshot(self, client):
        assert client.get("/api/snapshots/nope").status_code == 404
        response = client.post("/api/snapshots/nope/rollback", json={"approved_by": "ops@example.com"})
        assert response.status_code == 404


# =============================================================================
# Retries
# =============================================================================


class TestRetries:
    def test_empty_queue(self, client):
        assert client.get("/api/retries").json() == {"items": [], "total": 0}

    def test_process(self, client):
        response = client.post("/api/retries/process", json={})
        assert response.status_code == 200
        assert response.json() == {"processed": 0, "succeeded": 0, "rescheduled": 0, "exhausted": 0}

    def test_process_without_body(self, client):
        assert client.post("/api/retries/process").status_code == 200
