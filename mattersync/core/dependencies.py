"""
Dependency Injection
Provides reusable dependencies for FastAPI routes

DEPENDENCIES:
- Supabase client (synced entities, run ledger, run leases)
- HTTP client (PracticePanther + Nango)
"""
import logging
import httpx
from supabase import create_client, Client

from mattersync.core.config import settings

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

# Supabase client (singleton)
_supabase_client: Client = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

async def initialize_clients():
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client

    logger.info("Initializing global clients...")

    try:
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key  # Backend uses service role
        )
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client

    logger.info("Shutting down global clients...")

    # Supabase doesn't need explicit cleanup
    _supabase_client = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Usage:
        @router.get("/sync/runs")
        async def runs(supabase: Client = Depends(get_supabase)):
            result = supabase.table("sync_logs").select("*").execute()
            return result.data

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def create_http_client() -> httpx.AsyncClient:
    """
    HTTP client for PracticePanther and Nango calls, with the configured timeout.
    Workers create one per job and close it when the run ends.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
    )
