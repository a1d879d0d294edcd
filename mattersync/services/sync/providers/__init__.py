"""
Data Source Providers
Paginated list clients for external APIs (PracticePanther)
"""
from mattersync.services.sync.providers.practicepanther import PracticePantherFetcher

__all__ = [
    "PracticePantherFetcher",
]
