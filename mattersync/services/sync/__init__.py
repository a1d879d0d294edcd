"""
Data Sync System
PracticePanther → Supabase sync for cases, contacts, users, tasks, invoices and expenses
"""
from mattersync.services.sync.entities import EntityType, SYNC_ORDER
from mattersync.services.sync.errors import (
    MatterSyncError,
    CredentialError,
    FetchError,
    TransformError,
    WriteError,
    SyncAlreadyRunningError,
)
from mattersync.services.sync.ledger import SyncLedger
from mattersync.services.sync.orchestration.practicepanther_sync import (
    SyncOrchestrator,
    build_practicepanther_fetcher,
    build_practicepanther_orchestrator,
    run_practicepanther_sync,
)

__all__ = [
    "EntityType",
    "SYNC_ORDER",
    "MatterSyncError",
    "CredentialError",
    "FetchError",
    "TransformError",
    "WriteError",
    "SyncAlreadyRunningError",
    "SyncLedger",
    "SyncOrchestrator",
    "build_practicepanther_fetcher",
    "build_practicepanther_orchestrator",
    "run_practicepanther_sync",
]
