"""
Sync Routes
Queue PracticePanther sync runs and read the run history
"""
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from supabase import Client

from mattersync.core.config import settings
from mattersync.core.dependencies import create_http_client, get_supabase
from mattersync.core.security import verify_api_key
from mattersync.middleware.rate_limit import limiter
from mattersync.models.schemas.sync import (
    ConnectionCheckResponse,
    RunStatus,
    SyncRunListResponse,
    SyncRunSummary,
    SyncStatisticsResponse,
    SyncTriggerResponse,
)
from mattersync.services.jobs.tasks import sync_practicepanther_task
from mattersync.services.sync.ledger import SyncLedger
from mattersync.services.sync.orchestration.practicepanther_sync import build_practicepanther_fetcher
from mattersync.services.sync.providers.practicepanther import PracticePantherFetcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


async def get_practicepanther_fetcher() -> AsyncGenerator[PracticePantherFetcher, None]:
    """PracticePanther fetcher on a per-request HTTP client (closed after the request)."""
    http_client = create_http_client()
    try:
        yield build_practicepanther_fetcher(http_client)
    finally:
        await http_client.aclose()


@router.post("/practicepanther", response_model=SyncTriggerResponse, status_code=202)
@limiter.limit("10/hour")
async def trigger_practicepanther_sync(
    request: Request,
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase)
):
    """
    Queue a PracticePanther sync run.

    The worker decides full vs incremental from the last successful run.
    Returns 409 while another run holds the lease.
    """
    ledger = SyncLedger(supabase)
    lease = ledger.active_lease(settings.sync_source)
    if lease:
        logger.info(f"Sync trigger refused: run {lease.get('run_id')} holds the lease until {lease.get('expires_at')}")
        raise HTTPException(
            status_code=409,
            detail=f"A {settings.sync_source} sync is already running (run {lease.get('run_id')})"
        )

    message = sync_practicepanther_task.send(triggered_by="api")
    logger.info(f"📤 Queued PracticePanther sync job {message.message_id}")

    return SyncTriggerResponse(
        status="queued",
        source=settings.sync_source,
        message_id=message.message_id,
        triggered_by="api"
    )


@router.get("/runs", response_model=SyncRunListResponse)
async def list_sync_runs(
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    status: Optional[RunStatus] = Query(None),
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase)
):
    """Sync runs, newest first. Filter by status; page through with page/limit."""
    ledger = SyncLedger(supabase)
    runs = ledger.recent_runs(settings.sync_source, limit=limit, offset=(page - 1) * limit, status=status)
    total = ledger.count_runs(settings.sync_source, status=status)
    return SyncRunListResponse(runs=runs, total=total, page=page, limit=limit)


@router.get("/runs/latest", response_model=SyncRunSummary)
async def latest_sync_run(
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase)
):
    """The most recent sync run, whatever its outcome."""
    runs = SyncLedger(supabase).recent_runs(settings.sync_source, limit=1)
    if not runs:
        raise HTTPException(status_code=404, detail="No sync runs recorded yet")
    return runs[0]


@router.get("/statistics", response_model=SyncStatisticsResponse)
async def sync_statistics(
    days: int = Query(30, ge=1, le=365),
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase)
):
    """Run counts by outcome, records synced and average duration over the last `days` days."""
    return SyncLedger(supabase).run_statistics(settings.sync_source, days=days)


@router.get("/test-connection", response_model=ConnectionCheckResponse)
@limiter.limit("30/hour")
async def test_practicepanther_connection(
    request: Request,
    _: bool = Depends(verify_api_key),
    fetcher: PracticePantherFetcher = Depends(get_practicepanther_fetcher)
):
    """
    Check that PracticePanther accepts our credentials.

    Always 200; success=False carries the failure. The x-ratelimit-* headers
    show how much API budget is left before a sync.
    """
    return await fetcher.test_connection()
