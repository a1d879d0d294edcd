"""
CLI Entry Point for Scheduled PracticePanther Sync
Called by cron, e.g. every 15 minutes: */15 * * * *

Runs inline (no queue) so the exit code reflects the run outcome:
0 success, 1 failed or crashed, 2 partial, 3 another run already in progress.
"""
import sys
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

EXIT_CODES = {
    "success": 0,
    "failed": 1,
    "partial": 2,
}


def main():
    """
    Run one PracticePanther sync (incremental when a previous run succeeded).
    """
    from mattersync.services.jobs.tasks import run_sync_blocking
    from mattersync.services.sync.errors import SyncAlreadyRunningError

    logger.info("⏰ Scheduled PracticePanther Sync Started")

    try:
        result = run_sync_blocking("scheduler")
    except SyncAlreadyRunningError as e:
        logger.warning(f"⚠️  {e}; skipping this tick")
        sys.exit(3)
    except Exception as e:
        logger.error(f"❌ Scheduled PracticePanther sync crashed: {e}", exc_info=True)
        sys.exit(1)

    status = result.get("status")
    logger.info(f"✅ Scheduled PracticePanther sync finished: {status} ({result.get('records_synced', 0)} records)")
    sys.exit(EXIT_CODES.get(status, 1))


if __name__ == "__main__":
    main()
