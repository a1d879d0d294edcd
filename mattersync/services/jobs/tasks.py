"""
Dramatiq Background Tasks
Runs PracticePanther sync asynchronously, outside the request cycle
"""
import dramatiq
import asyncio
import logging
from typing import Any, Dict

from supabase import create_client

from mattersync.services.sync.errors import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


def get_sync_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from mattersync.core.config import settings
    from mattersync.core.dependencies import create_http_client

    http_client = create_http_client()
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)

    return http_client, supabase


async def _run_practicepanther_sync_with_cleanup(http_client, supabase, triggered_by: str) -> Dict[str, Any]:
    """
    Async wrapper that runs the sync and closes the HTTP client in the same event loop.
    """
    from mattersync.services.sync.orchestration.practicepanther_sync import run_practicepanther_sync

    try:
        return await run_practicepanther_sync(http_client, supabase, triggered_by=triggered_by)
    finally:
        await http_client.aclose()


def run_sync_blocking(triggered_by: str) -> Dict[str, Any]:
    """Run one sync to completion from synchronous code (actor, cron CLI)."""
    http_client, supabase = get_sync_dependencies()
    return asyncio.run(_run_practicepanther_sync_with_cleanup(http_client, supabase, triggered_by))


@dramatiq.actor(max_retries=3, throws=(SyncAlreadyRunningError,))
def sync_practicepanther_task(triggered_by: str = "worker"):
    """
    Background job for PracticePanther sync.

    Syncs cases, contacts, users, tasks, invoices and expenses; the run
    itself is recorded in sync_logs by the orchestrator.

    Args:
        triggered_by: Who queued the run (api, scheduler, ...)
    """
    logger.info(f"🚀 Starting PracticePanther sync job (triggered by {triggered_by})")

    try:
        result = run_sync_blocking(triggered_by)
        logger.info(
            f"✅ PracticePanther sync job complete: {result.get('status')} - "
            f"{result.get('records_synced', 0)} records, {result.get('errors_count', 0)} errors"
        )
        return result

    except SyncAlreadyRunningError as e:
        logger.warning(f"⚠️  {e}; dropping this job")
        raise

    except Exception as e:
        logger.error(f"❌ PracticePanther sync job failed: {e}")
        raise  # Re-raise for Dramatiq retry logic
