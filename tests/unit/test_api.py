"""
Tests for the HTTP surface: health, sync trigger and run history.

Supabase is swapped for the in-memory double via dependency overrides and
the dramatiq actor is replaced so nothing is enqueued. The connection check
runs against an httpx MockTransport.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from mattersync.api.v1.routes import sync as sync_routes
from mattersync.core.dependencies import get_supabase
from mattersync.models.schemas.sync import EntityStats, RunStatus, SyncAction, SyncRunSummary
from mattersync.services.sync.ledger import SyncLedger
from mattersync.services.sync.providers.practicepanther import PracticePantherFetcher
from tests.conftest import FakeTokenProvider

API_KEY = {"X-API-Key": "test-sync-key"}
T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _SentMessage:
    message_id = "msg-123"


class _FakeActor:
    def __init__(self):
        self.sent = []

    def send(self, **kwargs):
        self.sent.append(kwargs)
        return _SentMessage()


@pytest.fixture
def actor(monkeypatch):
    fake = _FakeActor()
    monkeypatch.setattr(sync_routes, "sync_practicepanther_task", fake)
    return fake


@pytest.fixture
def client(fake_supabase):
    main.app.dependency_overrides[get_supabase] = lambda: fake_supabase
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def _record(fake_supabase, run_id, status, completed_at):
    SyncLedger(fake_supabase).record_run(SyncRunSummary(
        run_id=run_id,
        source="practicepanther",
        action=SyncAction.FULL,
        status=status,
        started_at=completed_at - timedelta(minutes=1),
        completed_at=completed_at,
        stats={"cases": EntityStats(synced=4)},
    ))


@pytest.mark.unit
def test_health_reports_last_successful_sync(client, fake_supabase):
    _record(fake_supabase, "run-1", RunStatus.SUCCESS, T0)

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["last_successful_sync"] == T0.isoformat()


@pytest.mark.unit
def test_health_degrades_when_database_unavailable(client, fake_supabase):
    fake_supabase.fail("sync_logs")

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


@pytest.mark.unit
def test_trigger_requires_api_key(client, actor):
    response = client.post("/sync/practicepanther")

    assert response.status_code == 401
    assert actor.sent == []


@pytest.mark.unit
def test_trigger_rejects_wrong_api_key(client, actor):
    response = client.post("/sync/practicepanther", headers={"X-API-Key": "wrong"})

    assert response.status_code == 401
    assert actor.sent == []


@pytest.mark.unit
def test_trigger_queues_job(client, actor):
    response = client.post("/sync/practicepanther", headers=API_KEY)

    assert response.status_code == 202
    assert response.json() == {
        "status": "queued",
        "source": "practicepanther",
        "message_id": "msg-123",
        "triggered_by": "api",
    }
    assert actor.sent == [{"triggered_by": "api"}]


@pytest.mark.unit
def test_trigger_conflicts_while_run_holds_lease(client, actor, fake_supabase):
    SyncLedger(fake_supabase).acquire_lease("practicepanther", "live-run", ttl_seconds=3600)

    response = client.post("/sync/practicepanther", headers=API_KEY)

    assert response.status_code == 409
    assert actor.sent == []


@pytest.mark.unit
def test_latest_run_404_without_history(client):
    response = client.get("/sync/runs/latest", headers=API_KEY)
    assert response.status_code == 404


@pytest.mark.unit
def test_run_history_newest_first(client, fake_supabase):
    _record(fake_supabase, "run-1", RunStatus.SUCCESS, T0)
    _record(fake_supabase, "run-2", RunStatus.PARTIAL, T0 + timedelta(hours=1))

    runs = client.get("/sync/runs", headers=API_KEY).json()
    latest = client.get("/sync/runs/latest", headers=API_KEY).json()

    assert runs["total"] == 2
    assert [r["run_id"] for r in runs["runs"]] == ["run-2", "run-1"]
    assert runs["runs"][0]["records_synced"] == 4
    assert latest["run_id"] == "run-2"
    assert latest["status"] == "partial"


@pytest.mark.unit
def test_run_history_filters_by_status_and_pages(client, fake_supabase):
    _record(fake_supabase, "run-1", RunStatus.SUCCESS, T0)
    _record(fake_supabase, "run-2", RunStatus.PARTIAL, T0 + timedelta(hours=1))
    _record(fake_supabase, "run-3", RunStatus.SUCCESS, T0 + timedelta(hours=2))

    partial = client.get("/sync/runs", params={"status": "partial"}, headers=API_KEY).json()
    page_two = client.get("/sync/runs", params={"limit": 2, "page": 2}, headers=API_KEY).json()

    assert [r["run_id"] for r in partial["runs"]] == ["run-2"]
    assert partial["total"] == 1
    assert [r["run_id"] for r in page_two["runs"]] == ["run-1"]
    assert page_two["total"] == 3
    assert page_two["page"] == 2
    assert page_two["limit"] == 2


@pytest.mark.unit
def test_run_history_rejects_unknown_status(client):
    response = client.get("/sync/runs", params={"status": "exploded"}, headers=API_KEY)
    assert response.status_code == 422


@pytest.mark.unit
def test_statistics_summarize_recent_runs(client, fake_supabase):
    now = datetime.now(timezone.utc)
    _record(fake_supabase, "run-1", RunStatus.SUCCESS, now - timedelta(days=2))
    _record(fake_supabase, "run-2", RunStatus.PARTIAL, now - timedelta(days=1))
    _record(fake_supabase, "ancient", RunStatus.SUCCESS, now - timedelta(days=90))

    body = client.get("/sync/statistics", headers=API_KEY).json()

    assert body["period_days"] == 30
    assert body["total_runs"] == 2
    assert body["successful_runs"] == 1
    assert body["partial_runs"] == 1
    assert body["failed_runs"] == 0
    assert body["records_synced"] == 8
    assert body["average_duration_seconds"] == 60
    assert body["last_successful_sync"] is not None


@pytest.mark.unit
def test_statistics_require_api_key(client):
    assert client.get("/sync/statistics").status_code == 401


@pytest.mark.unit
def test_connection_check_reports_rate_limit_budget(client):
    def handler(request):
        return httpx.Response(200, json=[], headers={"x-ratelimit-remaining": "42"})

    async def _fetcher():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            yield PracticePantherFetcher(http_client, FakeTokenProvider(), base_url="https://pp.test/api/v2")

    main.app.dependency_overrides[sync_routes.get_practicepanther_fetcher] = _fetcher

    response = client.get("/sync/test-connection", headers=API_KEY)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["api_remaining"] == "42"
