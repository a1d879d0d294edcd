"""
PracticePanther sync engine
Coordinates one sync run across all six entity types

Flow per run:
1. Take the per-source run lease (or refuse: another run is live)
2. Read the watermark once: last successful run's completed_at, None → full sync
3. Check credentials before touching any entity
4. Cases → Contacts → Users → Tasks → Invoices → Expenses, each step isolated
5. Record exactly one ledger row, release the lease

Flow per step:
fetch (since=watermark) → build resolver context → transform each record
→ upsert the batch → per-entity stats
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from supabase import Client

from mattersync.core.config import settings
from mattersync.models.schemas.sync import EntityStats, RunStatus, SyncAction, SyncRunSummary
from mattersync.services.sync.entities import SYNC_ORDER, EntityType
from mattersync.services.sync.errors import CredentialError, TransformError, WriteError
from mattersync.services.sync.ledger import SyncLedger
from mattersync.services.sync.oauth import AccessTokenProvider, NangoTokenProvider
from mattersync.services.sync.providers.practicepanther import PracticePantherFetcher
from mattersync.services.sync.resolver import IdentifierResolver
from mattersync.services.sync.transforms import transform_record
from mattersync.services.sync.writer import UpsertWriter

logger = logging.getLogger(__name__)

STEP_ICONS = {
    EntityType.CASE: "⚖️",
    EntityType.CONTACT: "👥",
    EntityType.USER: "👤",
    EntityType.TASK: "✅",
    EntityType.INVOICE: "💰",
    EntityType.EXPENSE: "💵",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Runs full or incremental PracticePanther syncs into Supabase."""

    def __init__(
        self,
        fetcher: PracticePantherFetcher,
        resolver: IdentifierResolver,
        writer: UpsertWriter,
        ledger: SyncLedger,
        token_provider: AccessTokenProvider,
        source: str = "practicepanther",
        lease_seconds: int = 3600,
        order: Sequence[EntityType] = SYNC_ORDER,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.fetcher = fetcher
        self.resolver = resolver
        self.writer = writer
        self.ledger = ledger
        self.token_provider = token_provider
        self.source = source
        self.lease_seconds = lease_seconds
        self.order = tuple(order)
        self.clock = clock

    async def run_sync(self, triggered_by: str = "manual") -> SyncRunSummary:
        """
        Run one sync.

        Args:
            triggered_by: Who asked for the run (scheduler, api, worker, manual)

        Returns:
            Run summary (also written to the ledger)

        Raises:
            SyncAlreadyRunningError: If another run holds the lease. Nothing
                is written to the ledger in that case.
        """
        run_id = str(uuid.uuid4())
        self.ledger.acquire_lease(self.source, run_id, self.lease_seconds)

        try:
            summary = SyncRunSummary(
                run_id=run_id,
                source=self.source,
                action=SyncAction.FULL,
                triggered_by=triggered_by,
                started_at=self.clock(),
            )

            try:
                watermark = self.ledger.last_successful_run(self.source)
                summary.watermark = watermark
                summary.action = SyncAction.INCREMENTAL if watermark else SyncAction.FULL

                logger.info(f"🚀 Starting PracticePanther {summary.action.value} (run {run_id}, triggered by {triggered_by})")
                if watermark:
                    logger.info(f"   Watermark: {watermark.isoformat()}")

                await self.token_provider.get_valid_access_token()
            except CredentialError as e:
                logger.error(f"❌ PracticePanther credentials unavailable, aborting run {run_id}: {e}")
                return self._finish(summary, RunStatus.FAILED, error_message=str(e))
            except Exception as e:
                logger.error(f"❌ Could not start sync run {run_id}: {e}", exc_info=True)
                return self._finish(summary, RunStatus.FAILED, error_message=str(e))

            for entity_type in self.order:
                summary.stats[entity_type.value] = await self._run_step(entity_type, watermark)

            status = RunStatus.SUCCESS if summary.errors_count == 0 else RunStatus.PARTIAL
            return self._finish(summary, status)

        finally:
            self.ledger.release_lease(self.source, run_id)

    async def _run_step(self, entity_type: EntityType, watermark: Optional[datetime]) -> EntityStats:
        """
        Sync one entity type. Never raises: any failure becomes one more error
        on top of whatever the step had already counted.
        """
        stats = EntityStats()
        icon = STEP_ICONS.get(entity_type, "📄")

        try:
            logger.info(f"{icon} Syncing PracticePanther {entity_type.value}...")
            raw_records = await self.fetcher.fetch(entity_type, since=watermark)

            context = self.resolver.build_context(entity_type, raw_records)

            rows: List[Dict[str, Any]] = []
            for record in raw_records:
                try:
                    rows.append(transform_record(entity_type, record, context))
                except TransformError as e:
                    stats.errors += 1
                    logger.warning(f"⚠️  Skipping {entity_type.value} record: {e}")

            result = self.writer.upsert(entity_type, rows)
            stats.synced += result.succeeded
            stats.errors += result.error_count
            stats.skipped += result.skipped

            if context.miss_count:
                unresolved = ", ".join(f"{len(ids)} {ref.value}" for ref, ids in context.misses.items())
                logger.info(f"   {entity_type.value}: unresolved references written as NULL ({unresolved})")

            logger.info(
                f"✅ Synced {stats.synced} {entity_type.value} "
                f"(errors: {stats.errors}, skipped: {stats.skipped})"
            )

        except Exception as e:
            stats.errors += 1
            logger.error(f"❌ {entity_type.value} step failed: {e}", exc_info=True)

        return stats

    def _finish(
        self,
        summary: SyncRunSummary,
        status: RunStatus,
        error_message: Optional[str] = None
    ) -> SyncRunSummary:
        summary.status = status
        summary.completed_at = self.clock()
        summary.error_message = error_message

        logger.info("=" * 80)
        logger.info(f"PracticePanther sync {status.value.upper()} (run {summary.run_id})")
        logger.info(f"Action: {summary.action.value}")
        logger.info(f"Total records synced: {summary.records_synced}")
        for name, entity_stats in summary.stats.items():
            logger.info(f"{name}: {entity_stats.synced} synced, {entity_stats.errors} errors, {entity_stats.skipped} skipped")
        logger.info(f"Errors: {summary.errors_count}")
        if error_message:
            logger.info(f"Error: {error_message}")
        logger.info("=" * 80)

        try:
            self.ledger.record_run(summary)
        except WriteError as e:
            logger.warning(
                f"⚠️  Run {summary.run_id} finished but was not recorded; "
                f"the next run will not use it as a watermark: {e}"
            )

        return summary


# ============================================================================
# WIRING
# ============================================================================

def build_practicepanther_fetcher(http_client: httpx.AsyncClient) -> PracticePantherFetcher:
    """PracticePanther fetcher with a Nango-backed token provider, from application settings."""
    token_provider = NangoTokenProvider(
        http_client,
        secret=settings.nango_secret,
        connection_id=settings.nango_connection_id_practicepanther,
        provider_key=settings.nango_provider_key_practicepanther,
        base_url=settings.nango_base_url,
    )
    return PracticePantherFetcher(
        http_client,
        token_provider,
        base_url=settings.practicepanther_base_url,
        page_sizes=settings.page_sizes(),
        max_pages=settings.fetch_max_pages,
        timeout=settings.http_timeout_seconds,
        rate_limit_max_attempts=settings.rate_limit_max_attempts,
    )


def build_practicepanther_orchestrator(
    http_client: httpx.AsyncClient,
    supabase: Client
) -> SyncOrchestrator:
    """Assemble an orchestrator from application settings."""
    fetcher = build_practicepanther_fetcher(http_client)
    return SyncOrchestrator(
        fetcher=fetcher,
        resolver=IdentifierResolver(supabase),
        writer=UpsertWriter(supabase, chunk_size=settings.upsert_chunk_size),
        ledger=SyncLedger(supabase),
        token_provider=fetcher.token_provider,
        source=settings.sync_source,
        lease_seconds=settings.sync_lease_seconds,
    )


async def run_practicepanther_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    triggered_by: str = "manual"
) -> Dict[str, Any]:
    """
    Run one PracticePanther sync and return its summary as a plain dict.

    Args:
        http_client: Async HTTP client (PracticePanther + Nango)
        supabase: Supabase client
        triggered_by: Who asked for the run

    Returns:
        Run summary dict (status, stats, records_synced, errors_count, ...)

    Raises:
        SyncAlreadyRunningError: If another run is in progress
    """
    orchestrator = build_practicepanther_orchestrator(http_client, supabase)
    summary = await orchestrator.run_sync(triggered_by=triggered_by)
    return summary.model_dump(mode="json")
