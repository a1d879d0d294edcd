"""
Sync Error Taxonomy
Only CredentialError is fatal to a run; everything else is absorbed
at the entity-step boundary and shows up as an error count.
"""
from typing import Optional


class MatterSyncError(Exception):
    """Base exception for all sync engine errors."""
    pass


class CredentialError(MatterSyncError):
    """No usable PracticePanther access token could be obtained."""
    pass


class FetchError(MatterSyncError):
    """Network, authentication or payload failure while listing one entity type."""

    def __init__(self, entity_type: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{entity_type}: {message}")
        self.entity_type = entity_type
        self.status_code = status_code


class TransformError(MatterSyncError):
    """A single external record cannot be mapped to the internal shape."""

    def __init__(self, entity_type: str, external_id: Optional[str], message: str):
        super().__init__(f"{entity_type} {external_id or '<no id>'}: {message}")
        self.entity_type = entity_type
        self.external_id = external_id


class WriteError(MatterSyncError):
    """The store rejected a write."""
    pass


class SyncAlreadyRunningError(MatterSyncError):
    """Another run holds the lease for this source."""

    def __init__(self, source: str):
        super().__init__(f"A sync run for '{source}' is already in progress")
        self.source = source
