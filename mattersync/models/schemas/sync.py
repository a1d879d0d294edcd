"""
Sync Schemas
Models for sync runs, the run ledger and the sync trigger endpoints
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, computed_field


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncAction(str, Enum):
    FULL = "full_sync"
    INCREMENTAL = "incremental_sync"


class EntityStats(BaseModel):
    """Per-entity-type outcome of one step."""
    synced: int = 0
    errors: int = 0
    skipped: int = 0


class SyncRunSummary(BaseModel):
    """
    One sync invocation, as returned to callers and stored in sync_logs.
    records_synced / errors_count are always the sums over stats.
    """
    run_id: str
    source: str
    action: SyncAction
    status: RunStatus = RunStatus.RUNNING
    triggered_by: str = "manual"
    started_at: datetime
    completed_at: Optional[datetime] = None
    watermark: Optional[datetime] = None
    stats: Dict[str, EntityStats] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @computed_field
    @property
    def records_synced(self) -> int:
        return sum(s.synced for s in self.stats.values())

    @computed_field
    @property
    def errors_count(self) -> int:
        return sum(s.errors for s in self.stats.values())

    def to_ledger_row(self) -> Dict[str, Any]:
        """Flatten to the sync_logs column layout."""
        return {
            "run_id": self.run_id,
            "source": self.source,
            "action": self.action.value,
            "status": self.status.value,
            "triggered_by": self.triggered_by,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "watermark": self.watermark.isoformat() if self.watermark else None,
            "details": {name: s.model_dump() for name, s in self.stats.items()},
            "records_synced": self.records_synced,
            "errors_count": self.errors_count,
            "error_message": self.error_message,
        }

    @classmethod
    def from_ledger_row(cls, row: Dict[str, Any]) -> "SyncRunSummary":
        return cls(
            run_id=str(row.get("run_id") or row.get("id")),
            source=row["source"],
            action=row.get("action") or SyncAction.FULL,
            status=row.get("status") or RunStatus.FAILED,
            triggered_by=row.get("triggered_by") or "manual",
            started_at=row["started_at"],
            completed_at=row.get("completed_at"),
            watermark=row.get("watermark"),
            stats={name: EntityStats(**values) for name, values in (row.get("details") or {}).items()},
            error_message=row.get("error_message"),
        )


class SyncTriggerResponse(BaseModel):
    """
    Response for the sync trigger endpoint.
    The run itself happens in a worker; poll /sync/runs/latest for the outcome.
    """
    status: str  # "queued"
    source: str
    message_id: str
    triggered_by: str


class SyncRunListResponse(BaseModel):
    runs: List[SyncRunSummary]
    total: int
    page: int = 1
    limit: int = 20


class SyncStatisticsResponse(BaseModel):
    """Run outcomes over a trailing window of days."""
    source: str
    period_days: int
    total_runs: int = 0
    successful_runs: int = 0
    partial_runs: int = 0
    failed_runs: int = 0
    records_synced: int = 0
    errors_count: int = 0
    last_successful_sync: Optional[datetime] = None
    average_duration_seconds: int = 0


class ConnectionCheckResponse(BaseModel):
    """Result of a one-record PracticePanther request, with its rate-limit headers."""
    success: bool
    message: str
    status_code: Optional[int] = None
    api_limit: Optional[str] = None
    api_remaining: Optional[str] = None
    api_reset: Optional[str] = None
