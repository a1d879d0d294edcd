"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase database holds synced entities, the run ledger and run leases
- PracticePanther tokens come from Nango (Nango owns refresh)
- Redis only backs the dramatiq job queue

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
"""
from typing import Optional
import logging
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Unified application settings.
    Validates all environment variables at startup.
    """

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # ============================================================================
    # DATABASE (Supabase PostgreSQL)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # ============================================================================
    # OAUTH (Nango)
    # ============================================================================

    nango_secret: Optional[str] = Field(default=None, description="Nango API secret key")
    nango_base_url: str = Field(default="https://api.nango.dev", description="Nango API base URL")
    nango_provider_key_practicepanther: str = Field(default="practicepanther", description="Nango provider key for PracticePanther")
    nango_connection_id_practicepanther: Optional[str] = Field(default=None, description="Nango connection ID holding the PracticePanther grant")

    # ============================================================================
    # PRACTICEPANTHER SYNC
    # ============================================================================

    practicepanther_base_url: str = Field(default="https://app.practicepanther.com/api/v2", description="PracticePanther REST API base URL")
    sync_source: str = Field(default="practicepanther", description="Source label written to the run ledger")

    # Page sizes: small for high-cardinality contacts, large ceiling for tasks
    page_size_cases: int = Field(default=200)
    page_size_contacts: int = Field(default=100)
    page_size_users: int = Field(default=200)
    page_size_tasks: int = Field(default=1000)
    page_size_invoices: int = Field(default=200)
    page_size_expenses: int = Field(default=200)
    fetch_max_pages: int = Field(default=500, description="Hard ceiling on pages fetched per entity type")

    http_timeout_seconds: float = Field(default=30.0, description="Timeout for every outbound HTTP call")
    rate_limit_max_attempts: int = Field(default=4, description="Attempts per page when PracticePanther answers 429")

    upsert_chunk_size: int = Field(default=500, description="Rows per Supabase upsert request")
    sync_lease_seconds: int = Field(default=3600, description="Run lease lifetime; an expired lease can be taken over")

    # ============================================================================
    # JOBS & PRODUCTION INFRASTRUCTURE
    # ============================================================================

    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (dramatiq broker)")
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sync_api_key: Optional[str] = Field(default=None, description="API key required by the sync trigger endpoint")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        - Warn if debug mode enabled in production
        - Warn if the PracticePanther grant is not configured
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.nango_secret or not self.nango_connection_id_practicepanther:
            logger.warning("⚠️  Nango PracticePanther connection not configured. Sync runs will fail.")

        logger.info("=" * 80)
        logger.info("Matter Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"PracticePanther API: {self.practicepanther_base_url}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Nango: {'✅ Configured' if self.nango_secret else '❌ Not configured'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self

    def page_sizes(self) -> dict:
        """Per-entity page sizes keyed by entity type value."""
        return {
            "cases": self.page_size_cases,
            "contacts": self.page_size_contacts,
            "users": self.page_size_users,
            "tasks": self.page_size_tasks,
            "invoices": self.page_size_invoices,
            "expenses": self.page_size_expenses,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
