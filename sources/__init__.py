"""
================================================================================
MangaLink v1.0 - Source Manager
================================================================================
Registry of content provider adapters.

  - Auto-discovers every ContentProvider subclass in the sources/ package
  - Optionally restricted to an allow-list (MANGALINK_PROVIDERS)
  - Hands the link engine a name -> provider mapping

Unlike a reader app, the link engine never falls back from one provider to
another: a failed provider is reported per provider by the search
orchestrator.
================================================================================
"""

import os
import importlib
import logging
import pkgutil
import threading
from typing import Dict, Optional, Iterable

from .base import ContentProvider, ProviderEntry, Chapter, parse_chapter_number

logger = logging.getLogger(__name__)

__all__ = [
    'ContentProvider', 'ProviderEntry', 'Chapter', 'parse_chapter_number',
    'SourceManager', 'get_source_manager',
]


class SourceManager:
    """
    Name -> ContentProvider registry.

    Usage:
        manager = SourceManager()
        provider = manager.get("mangadex")
        results = await provider.search("one piece")
    """

    def __init__(self, enabled: Optional[Iterable[str]] = None, discover: bool = True):
        self._sources: Dict[str, ContentProvider] = {}
        self._enabled = {name.lower() for name in enabled} if enabled else None
        if discover:
            self._discover_sources()

    def _discover_sources(self) -> None:
        """Import every module in sources/ and register its provider classes."""
        sources_dir = os.path.dirname(__file__)

        for _, module_name, _ in pkgutil.iter_modules([sources_dir]):
            if module_name in ('base', '__init__'):
                continue
            try:
                module = importlib.import_module(f'.{module_name}', __name__)
            except ImportError as e:
                logger.warning(f"Failed to load source '{module_name}': {e}")
                continue

            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (isinstance(attr, type) and
                        issubclass(attr, ContentProvider) and
                        attr is not ContentProvider and
                        attr.__module__ == module.__name__):
                    self.register(attr())

        logger.info(f"Loaded {len(self._sources)} sources: {', '.join(self._sources)}")

    def register(self, provider: ContentProvider) -> None:
        """Add (or replace) a provider under its id."""
        if self._enabled is not None and provider.id.lower() not in self._enabled:
            return
        self._sources[provider.id] = provider

    @property
    def sources(self) -> Dict[str, ContentProvider]:
        return self._sources

    def get(self, name: str) -> Optional[ContentProvider]:
        return self._sources.get(name)


_manager: Optional[SourceManager] = None
_manager_lock = threading.Lock()


def get_source_manager(enabled: Optional[Iterable[str]] = None) -> SourceManager:
    """Get the global source manager (created on first access)."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = SourceManager(enabled=enabled)
        return _manager
