"""
Sync Ledger
Run history (sync_logs) and the per-source run lease (sync_locks)

The latest successful run's completed_at is the watermark for the next
incremental run. The lease row guarantees at most one live run per source;
an expired lease can be taken over by a single conditional UPDATE.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from mattersync.models.schemas.sync import RunStatus, SyncRunSummary, SyncStatisticsResponse
from mattersync.services.sync.errors import SyncAlreadyRunningError, WriteError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Supabase returns timestamptz as ISO strings; normalize to aware datetimes."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncLedger:
    """Reads and writes sync run bookkeeping in Supabase."""

    def __init__(
        self,
        supabase: Client,
        runs_table: str = "sync_logs",
        locks_table: str = "sync_locks",
        clock: Callable[[], datetime] = _utcnow
    ):
        self.supabase = supabase
        self.runs_table = runs_table
        self.locks_table = locks_table
        self.clock = clock

    # ========================================================================
    # RUN HISTORY
    # ========================================================================

    def record_run(self, summary: SyncRunSummary) -> None:
        """Insert exactly one row for a finished run."""
        try:
            self.supabase.table(self.runs_table).insert(summary.to_ledger_row()).execute()
        except Exception as e:
            logger.error(f"❌ Failed to record sync run {summary.run_id}: {e}")
            raise WriteError(f"Could not record sync run {summary.run_id}: {e}") from e

        logger.info(f"📝 Recorded sync run {summary.run_id} ({summary.status.value})")

    def last_successful_run(self, source: str) -> Optional[datetime]:
        """completed_at of the most recent successful run, or None (→ full sync)."""
        result = (
            self.supabase.table(self.runs_table)
            .select("completed_at")
            .eq("source", source)
            .eq("status", RunStatus.SUCCESS.value)
            .order("completed_at", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return parse_timestamp(result.data[0].get("completed_at"))

    def recent_runs(
        self,
        source: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[RunStatus] = None
    ) -> List[SyncRunSummary]:
        """Most recent runs for a source, newest first, optionally of one status."""
        query = self.supabase.table(self.runs_table).select("*").eq("source", source)
        if status:
            query = query.eq("status", RunStatus(status).value)

        result = query.order("started_at", desc=True).range(offset, offset + limit - 1).execute()
        return [SyncRunSummary.from_ledger_row(row) for row in result.data or []]

    def count_runs(self, source: str, status: Optional[RunStatus] = None) -> int:
        """Number of recorded runs for a source (for paging run history)."""
        query = self.supabase.table(self.runs_table).select("run_id", count="exact").eq("source", source)
        if status:
            query = query.eq("status", RunStatus(status).value)
        result = query.execute()
        return result.count or 0

    def run_statistics(self, source: str, days: int = 30) -> SyncStatisticsResponse:
        """
        Outcome counts, totals and average duration for runs started in
        the last `days` days.
        """
        since = self.clock() - timedelta(days=days)
        result = (
            self.supabase.table(self.runs_table)
            .select("status, started_at, completed_at, records_synced, errors_count")
            .eq("source", source)
            .gte("started_at", since.isoformat())
            .execute()
        )
        rows = result.data or []

        stats = SyncStatisticsResponse(source=source, period_days=days, total_runs=len(rows))
        durations = []
        for row in rows:
            status = row.get("status")
            if status == RunStatus.SUCCESS.value:
                stats.successful_runs += 1
            elif status == RunStatus.PARTIAL.value:
                stats.partial_runs += 1
            elif status == RunStatus.FAILED.value:
                stats.failed_runs += 1

            stats.records_synced += row.get("records_synced") or 0
            stats.errors_count += row.get("errors_count") or 0

            started_at = parse_timestamp(row.get("started_at"))
            completed_at = parse_timestamp(row.get("completed_at"))
            if started_at and completed_at:
                durations.append((completed_at - started_at).total_seconds())
            if status == RunStatus.SUCCESS.value and completed_at:
                if stats.last_successful_sync is None or completed_at > stats.last_successful_sync:
                    stats.last_successful_sync = completed_at

        if durations:
            stats.average_duration_seconds = round(sum(durations) / len(durations))

        return stats

    # ========================================================================
    # RUN LEASE
    # ========================================================================

    def acquire_lease(self, source: str, run_id: str, ttl_seconds: int) -> None:
        """
        Take the run lease for a source.

        Raises:
            SyncAlreadyRunningError: If a live lease is held by another run
            WriteError: If the lock table cannot be written
        """
        now = self.clock()
        lease = {
            "source": source,
            "run_id": run_id,
            "acquired_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat(),
        }

        try:
            self.supabase.table(self.locks_table).insert(lease).execute()
            logger.info(f"🔒 Acquired {source} sync lease for run {run_id}")
            return
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise WriteError(f"Could not acquire {source} sync lease: {e}") from e

        # Someone holds it; take over only if their lease already expired
        result = (
            self.supabase.table(self.locks_table)
            .update({k: v for k, v in lease.items() if k != "source"})
            .eq("source", source)
            .lt("expires_at", now.isoformat())
            .execute()
        )
        if result.data:
            logger.warning(f"⚠️  Took over expired {source} sync lease for run {run_id}")
            return

        raise SyncAlreadyRunningError(source)

    def active_lease(self, source: str) -> Optional[dict]:
        """The unexpired lease row for a source, if any run currently holds one."""
        result = (
            self.supabase.table(self.locks_table)
            .select("source, run_id, acquired_at, expires_at")
            .eq("source", source)
            .gte("expires_at", self.clock().isoformat())
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def release_lease(self, source: str, run_id: str) -> None:
        """Drop the lease if this run still owns it."""
        try:
            (
                self.supabase.table(self.locks_table)
                .delete()
                .eq("source", source)
                .eq("run_id", run_id)
                .execute()
            )
            logger.info(f"🔓 Released {source} sync lease for run {run_id}")
        except Exception as e:
            # The lease expires on its own; the next run can take it over
            logger.error(f"❌ Failed to release {source} sync lease for run {run_id}: {e}")
