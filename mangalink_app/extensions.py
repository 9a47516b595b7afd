"""
================================================================================
MangaLink v1.0 - Application Extensions
================================================================================
The long-lived objects routes work with, built once per process:

  catalog     AniListCatalog (token from ANILIST_TOKEN)
  sources     SourceManager (MANGALINK_PROVIDERS filter)
  cache       ProviderSearchCache (SEARCH_CACHE_TTL / SEARCH_CACHE_MAX_ENTRIES)
  mappings    MappingStore
  ledger      HistoryLedger
  resolver    LinkResolver over all of the above
  pending     PendingReconciles

create_app(services=...) accepts a prebuilt Services so tests can swap in
fakes and an in-memory database.
================================================================================
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from sources import ContentProvider, get_source_manager

from .catalog.anilist import AniListCatalog
from .catalog.base import CatalogSource
from .config import Settings
from .database import get_session_factory
from .history.ledger import HistoryLedger
from .log import log
from .mapping.store import MappingStore
from .search.cache import ProviderSearchCache
from .services.registry import PendingReconciles
from .services.resolver import LinkResolver


@dataclass
class Services:
    settings: Settings
    catalog: CatalogSource
    providers: Dict[str, ContentProvider]
    cache: ProviderSearchCache
    mappings: MappingStore
    ledger: HistoryLedger
    resolver: LinkResolver
    pending: PendingReconciles = field(default_factory=PendingReconciles)


def build_services(
    settings: Optional[Settings] = None,
    catalog: Optional[CatalogSource] = None,
    providers: Optional[Dict[str, ContentProvider]] = None,
    session_factory: Optional[sessionmaker] = None,
    clock=None
) -> Services:
    """Wire the engine together. Anything passed in replaces the default."""
    settings = settings or Settings.from_env()
    if providers is None:
        providers = get_source_manager(settings.enabled_providers or None).sources
    catalog = catalog or AniListCatalog(access_token=settings.anilist_token)
    session_factory = session_factory or get_session_factory(settings.database_url)

    cache_kwargs = {'ttl': settings.search_cache_ttl, 'max_size': settings.search_cache_max_entries}
    if clock is not None:
        cache_kwargs['clock'] = clock
    cache = ProviderSearchCache(**cache_kwargs)
    mappings = MappingStore(session_factory=session_factory)
    ledger = HistoryLedger(session_factory=session_factory)
    resolver = LinkResolver(catalog, providers, mappings, ledger, cache=cache, settings=settings.match)

    return Services(
        settings=settings,
        catalog=catalog,
        providers=providers,
        cache=cache,
        mappings=mappings,
        ledger=ledger,
        resolver=resolver,
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Process-wide services (built on first access)."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
            log(f"Services ready: {len(_services.providers)} providers, catalog={_services.catalog.name}")
        return _services


def set_services(services: Optional[Services]) -> None:
    """Install (or with None, reset) the process-wide services."""
    global _services
    with _services_lock:
        _services = services
