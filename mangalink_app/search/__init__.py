"""
Provider search: stale-while-revalidate cache and concurrent orchestration.
"""

from .cache import ProviderSearchCache, CachedSearch
from .orchestrator import SearchOrchestrator, SearchState, ProviderSearchStatus

__all__ = [
    'ProviderSearchCache',
    'CachedSearch',
    'SearchOrchestrator',
    'SearchState',
    'ProviderSearchStatus',
]
