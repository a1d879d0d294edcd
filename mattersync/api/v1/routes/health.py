"""
Health Check Routes
System status and diagnostics
"""
import logging
from fastapi import APIRouter, Depends
from supabase import Client

from mattersync.core.config import settings
from mattersync.core.dependencies import get_supabase
from mattersync.models.schemas.health import HealthResponse
from mattersync.services.sync.ledger import SyncLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(supabase: Client = Depends(get_supabase)):
    """Health check endpoint. Reports the database as degraded rather than failing."""
    try:
        last_success = SyncLedger(supabase).last_successful_run(settings.sync_source)
        database = "connected"
    except Exception as e:
        logger.warning(f"Health check could not reach Supabase: {e}")
        last_success = None
        database = "unavailable"

    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        version=VERSION,
        database=database,
        last_successful_sync=last_success.isoformat() if last_success else None
    )


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Matter Sync API",
        "version": VERSION,
        "description": "PracticePanther → Supabase sync for cases, contacts, users, tasks, invoices and expenses",
        "endpoints": {
            "health": "/health",
            "sync": {
                "trigger": "/sync/practicepanther",
                "runs": "/sync/runs",
                "latest": "/sync/runs/latest"
            }
        }
    }
