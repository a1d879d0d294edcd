"""
Matter Sync - PracticePanther → Supabase
========================================
Version: 1.0.0

FastAPI application entry point.

Architecture:
- mattersync/core/: Configuration, dependencies, security, retry
- mattersync/middleware/: Error handling, logging, rate limiting
- mattersync/models/: Pydantic schemas
- mattersync/services/sync/: Sync engine (fetch, resolve, transform, write, ledger)
- mattersync/services/jobs/: Dramatiq actor and cron entry point
- mattersync/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI

# Startup error handling
try:
    from mattersync.core.config import settings
    from mattersync.core.dependencies import initialize_clients, shutdown_clients

    from mattersync.middleware.error_handler import ErrorHandlerMiddleware
    from mattersync.middleware.logging import RequestLoggingMiddleware

    from mattersync.api.v1.routes.health import router as health_router
    from mattersync.api.v1.routes.sync import router as sync_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.environment == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# ============================================================================
# LIFECYCLE MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    logger.info("=" * 80)
    logger.info("Starting Matter Sync")
    logger.info("=" * 80)
    logger.info(f"Version: 1.0.0")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")
    logger.info(f"Debug: {settings.debug}")

    await initialize_clients()

    logger.info("=" * 80)
    logger.info("✅ Matter Sync started successfully")
    logger.info("=" * 80)

    yield

    logger.info("Shutting down Matter Sync...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title="Matter Sync API",
    description="PracticePanther → Supabase sync engine",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# ============================================================================
# RATE LIMITING
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from mattersync.middleware.rate_limit import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info("✅ Rate limiting enabled")

# ============================================================================
# MIDDLEWARE (order matters!)
# ============================================================================

# Request logging
app.add_middleware(RequestLoggingMiddleware)

# Global error handler (must be last)
app.add_middleware(ErrorHandlerMiddleware)

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(health_router)
app.include_router(sync_router)

logger.info("✅ All routes registered")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=settings.debug)
