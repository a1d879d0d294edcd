"""
Dramatiq Background Worker
Processes PracticePanther sync jobs asynchronously

Usage:
    dramatiq worker -p 1 -t 1

Deployment:
    - Type: Background Worker
    - Start Command: dramatiq worker -p 1 -t 1
    - Environment: Same as main app (REDIS_URL, SUPABASE_URL, etc.)

One process, one thread: the run lease already refuses concurrent runs,
extra workers would only pick up jobs to drop them.
"""
import logging
import os

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (if configured)
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=os.getenv("ENVIRONMENT", "production"),
            traces_sample_rate=0.1,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry initialized in worker")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry in worker: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# Import tasks (this registers them with Dramatiq)
try:
    from mattersync.services.jobs.broker import broker
    from mattersync.services.jobs.tasks import sync_practicepanther_task

    logger.info("✅ Matter Sync worker initialized")
    logger.info("📋 Registered tasks: sync_practicepanther")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise

# This module is imported by Dramatiq CLI
# Dramatiq will find the broker and tasks automatically
