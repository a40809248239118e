"""Integration tests for /sync routes."""
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from creatorsync.api.main import create_app
from creatorsync.api.routes.sync import get_orchestrator
from creatorsync.db.engine import get_session
from creatorsync.models.connection import PassOutcome, SyncState
from creatorsync.models.sync import SyncLog


@pytest.fixture(name="client")
def client_fixture(engine, orchestrator):
    app = create_app(engine)

    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c


class TestTrigger:
    def test_trigger_runs_pass_in_background(self, client, make_connection, make_page, youtube_client, engine):
        cid = make_connection()
        youtube_client.list_page.return_value = make_page(2)

        resp = client.post(f"/sync/connections/{cid}/trigger")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Sync started", "connection_id": cid}
        # TestClient runs background tasks before returning
        youtube_client.list_page.assert_awaited_once()
        status = client.get(f"/sync/connections/{cid}").json()
        assert status["sync_state"] == "incremental"
        assert status["last_pass_outcome"] == PassOutcome.COMPLETED.value

    def test_trigger_while_running_is_coalesced(self, client, make_connection, orchestrator, youtube_client):
        cid = make_connection()
        with patch.object(orchestrator, "is_running", return_value=True):
            resp = client.post(f"/sync/connections/{cid}/trigger")

        assert resp.status_code == 200
        assert "already running" in resp.json()["message"].lower()
        youtube_client.list_page.assert_not_awaited()

    def test_trigger_unknown_connection(self, client):
        resp = client.post("/sync/connections/999/trigger")
        assert resp.status_code == 404


class TestStatus:
    def test_fresh_connection(self, client, make_connection):
        cid = make_connection()
        data = client.get(f"/sync/connections/{cid}").json()

        assert data["sync_state"] == "never_synced"
        assert data["provider"] == "youtube"
        assert data["signal"] == "ok"
        assert data["running"] is False
        assert data["has_cursor"] is False
        assert data["full_sync"] is None
        assert data["progress_percent"] == 0

    def test_mid_backfill(self, client, make_connection):
        cid = make_connection(
            sync_state=SyncState.IN_PROGRESS,
            page_cursor="tok-1",
            full_sync_active=True,
            synced_item_count=40,
            total_item_count=80,
        )
        data = client.get(f"/sync/connections/{cid}").json()

        assert data["has_cursor"] is True
        assert data["progress_percent"] == 50
        assert data["full_sync"] == {"active": True, "synced": 40, "remaining": 40, "percent": 50}

    def test_failed_connection_signal(self, client, make_connection, clock):
        cid = make_connection(
            sync_state=SyncState.FAILED,
            failed_from_state=SyncState.IN_PROGRESS,
            last_sync_error="timed out",
            next_retry_at=clock.now + timedelta(seconds=16),
        )
        data = client.get(f"/sync/connections/{cid}").json()

        assert data["signal"] == "sync_failed"
        assert data["last_sync_error"] == "timed out"
        assert data["next_retry_at"] == "2025-03-10T12:00:16"

    def test_unknown_connection(self, client):
        assert client.get("/sync/connections/999").status_code == 404


class TestLogsAndItems:
    def test_logs_most_recent_first(self, client, make_connection, engine, clock):
        cid = make_connection()
        with Session(engine) as s:
            s.add(SyncLog(connection_id=cid, started_at=clock.now - timedelta(hours=2), status="progressed"))
            s.add(SyncLog(connection_id=cid, started_at=clock.now, status="completed"))
            s.commit()

        resp = client.get(f"/sync/connections/{cid}/logs")

        assert resp.status_code == 200
        assert [log["status"] for log in resp.json()] == ["completed", "progressed"]

    def test_logs_limit(self, client, make_connection, engine, clock):
        cid = make_connection()
        with Session(engine) as s:
            for i in range(3):
                s.add(SyncLog(connection_id=cid, started_at=clock.now + timedelta(minutes=i)))
            s.commit()
        assert len(client.get(f"/sync/connections/{cid}/logs?limit=2").json()) == 2

    def test_item_counts(self, client, make_connection, orchestrator, engine):
        cid = make_connection()
        with Session(engine) as s:
            orchestrator.tracker.record_sync(s, cid, "v1", authorized=True)
            orchestrator.tracker.record_failure(s, cid, "v2", "missing title")
            s.commit()

        data = client.get(f"/sync/connections/{cid}/items").json()

        assert data["completed"] == 1
        assert data["failed"] == 1
        assert data["authorized"] == 1


class TestConsentAndReset:
    def test_revoke(self, client, make_connection):
        cid = make_connection(sync_state=SyncState.INCREMENTAL, data_consent_granted=True)

        resp = client.post(f"/sync/connections/{cid}/consent/revoke")

        assert resp.json() == {"connection_id": cid, "applied": True}
        data = client.get(f"/sync/connections/{cid}").json()
        assert data["sync_state"] == "consent_changed"
        assert data["signal"] == "needs_reconsent"

    def test_grant_after_revoke(self, client, make_connection):
        cid = make_connection(sync_state=SyncState.CONSENT_CHANGED)

        resp = client.post(f"/sync/connections/{cid}/consent/grant", json={"authorized": True})

        assert resp.status_code == 200
        data = client.get(f"/sync/connections/{cid}").json()
        assert data["sync_state"] == "initial_syncing"
        assert data["data_consent_granted"] is True

    def test_grant_without_revocation_conflicts(self, client, make_connection):
        cid = make_connection(sync_state=SyncState.INCREMENTAL)
        resp = client.post(f"/sync/connections/{cid}/consent/grant", json={})
        assert resp.status_code == 409

    def test_reset_failed_connection(self, client, make_connection):
        cid = make_connection(
            sync_state=SyncState.FAILED,
            failed_from_state=SyncState.IN_PROGRESS,
            failure_retryable=False,
        )
        resp = client.post(f"/sync/connections/{cid}/reset")
        assert resp.status_code == 200
        assert resp.json()["sync_state"] == "in_progress"

    def test_reset_healthy_connection_conflicts(self, client, make_connection):
        cid = make_connection()
        assert client.post(f"/sync/connections/{cid}/reset").status_code == 409


class TestQuotaRoute:
    def test_usage_summary(self, client, orchestrator):
        orchestrator.ledger.record_usage("youtube", "page_listing")
        orchestrator.ledger.record_usage("youtube", "search")

        data = client.get("/sync/quota/youtube").json()

        assert data["total_units"] == 101
        assert data["total_requests"] == 2
        assert data["remaining_units"] == 9899
        assert data["warning_level"] == "safe"
        assert data["operation_breakdown"]["search"] == {"requests": 1, "units": 100}

    def test_unknown_provider(self, client):
        assert client.get("/sync/quota/myspace").status_code == 422
