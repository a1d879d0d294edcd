"""
Upsert Writer
Idempotent writes of transformed rows, keyed on the external id column

- Rows are stamped with synced_at and sent in chunks with on_conflict
- A rejected chunk is retried one record at a time so a single bad row
  cannot sink its neighbours
- Users are never inserted: matched rows are updated by internal id,
  unmatched rows are counted as skipped
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from supabase import Client

from mattersync.services.sync.entities import ENTITY_SPECS, EntityType

logger = logging.getLogger(__name__)


# ============================================================================
# BATCH RESULTS
# ============================================================================

@dataclass(frozen=True)
class RecordFailure:
    external_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class AllSucceeded:
    succeeded: int
    skipped: int = 0

    @property
    def failed_external_ids(self) -> List[str]:
        return []

    @property
    def error_count(self) -> int:
        return 0


@dataclass(frozen=True)
class PartiallyFailed:
    succeeded: int
    failed: Tuple[RecordFailure, ...] = field(default_factory=tuple)
    skipped: int = 0

    @property
    def failed_external_ids(self) -> List[str]:
        return [f.external_id for f in self.failed if f.external_id]

    @property
    def error_count(self) -> int:
        return len(self.failed)


BatchResult = Union[AllSucceeded, PartiallyFailed]


def _batch_result(succeeded: int, failures: List[RecordFailure], skipped: int) -> BatchResult:
    if failures:
        return PartiallyFailed(succeeded=succeeded, failed=tuple(failures), skipped=skipped)
    return AllSucceeded(succeeded=succeeded, skipped=skipped)


def _json_safe(value: Any) -> Any:
    # Money stays exact on the wire: numeric columns accept decimal strings
    if isinstance(value, Decimal):
        return str(value)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# WRITER
# ============================================================================

class UpsertWriter:
    """Writes transformed rows for one entity type into its Supabase table."""

    def __init__(
        self,
        supabase: Client,
        chunk_size: int = 500,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.supabase = supabase
        self.chunk_size = max(1, chunk_size)
        self.clock = clock

    def upsert(self, entity_type: EntityType, records: List[Dict[str, Any]]) -> BatchResult:
        """
        Write a batch of transformed rows.

        Args:
            entity_type: Entity type the rows belong to
            records: Output of the transformer for this type

        Returns:
            AllSucceeded or PartiallyFailed, with skipped counts for unmatched users
        """
        if not records:
            return AllSucceeded(succeeded=0)

        synced_at = self.clock().isoformat()

        if entity_type == EntityType.USER:
            return self._update_users(records, synced_at)

        spec = ENTITY_SPECS[entity_type]
        key = spec.external_id_column
        rows = self._prepare_rows(records, key, synced_at)

        succeeded = 0
        failures: List[RecordFailure] = []

        for start in range(0, len(rows), self.chunk_size):
            chunk = rows[start:start + self.chunk_size]
            try:
                self.supabase.table(spec.table).upsert(chunk, on_conflict=key).execute()
                succeeded += len(chunk)
            except Exception as e:
                logger.warning(
                    f"⚠️  {spec.table}: chunk of {len(chunk)} rejected ({e}); retrying records individually"
                )
                chunk_succeeded, chunk_failures = self._upsert_one_by_one(spec.table, key, chunk)
                succeeded += chunk_succeeded
                failures.extend(chunk_failures)

        if failures:
            logger.error(f"❌ {spec.table}: {len(failures)} of {len(rows)} rows failed to write")

        return _batch_result(succeeded, failures, skipped=0)

    def _prepare_rows(self, records: List[Dict[str, Any]], key: str, synced_at: str) -> List[Dict[str, Any]]:
        """
        Stamp, serialize and de-duplicate rows by external id (last one wins).

        One upsert statement cannot touch the same conflict key twice, and
        pages shifting under concurrent edits can repeat a record.
        """
        by_key: Dict[Any, Dict[str, Any]] = {}
        for record in records:
            row = {k: _json_safe(v) for k, v in record.items() if k != "id"}
            row["synced_at"] = synced_at
            by_key[row.get(key)] = row

        if len(by_key) < len(records):
            logger.debug(f"Collapsed {len(records) - len(by_key)} repeated {key} values in batch")

        return list(by_key.values())

    def _upsert_one_by_one(
        self,
        table: str,
        key: str,
        rows: List[Dict[str, Any]]
    ) -> Tuple[int, List[RecordFailure]]:
        succeeded = 0
        failures: List[RecordFailure] = []

        for row in rows:
            try:
                self.supabase.table(table).upsert([row], on_conflict=key).execute()
                succeeded += 1
            except Exception as e:
                external_id = row.get(key)
                logger.error(f"❌ {table}: failed to write {key}={external_id}: {e}")
                failures.append(RecordFailure(external_id=str(external_id) if external_id else None, reason=str(e)))

        return succeeded, failures

    def _update_users(self, records: List[Dict[str, Any]], synced_at: str) -> BatchResult:
        succeeded = 0
        skipped = 0
        failures: List[RecordFailure] = []

        for record in records:
            user_id = record.get("id")
            if not user_id:
                skipped += 1
                continue

            update = {k: _json_safe(v) for k, v in record.items() if k != "id"}
            update["synced_at"] = synced_at

            try:
                self.supabase.table("users").update(update).eq("id", user_id).execute()
                succeeded += 1
            except Exception as e:
                logger.error(f"❌ users: failed to update {user_id}: {e}")
                failures.append(RecordFailure(external_id=record.get("pp_user_id"), reason=str(e)))

        if skipped:
            logger.info(f"   {skipped} PracticePanther users have no matching internal user (skipped)")

        return _batch_result(succeeded, failures, skipped=skipped)
