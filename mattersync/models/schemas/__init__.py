"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import (
    ConnectionCheckResponse,
    EntityStats,
    RunStatus,
    SyncAction,
    SyncRunListResponse,
    SyncRunSummary,
    SyncStatisticsResponse,
    SyncTriggerResponse,
)

__all__ = [
    # Health
    "HealthResponse",
    # Sync
    "ConnectionCheckResponse",
    "EntityStats",
    "RunStatus",
    "SyncAction",
    "SyncRunListResponse",
    "SyncRunSummary",
    "SyncStatisticsResponse",
    "SyncTriggerResponse",
]
