"""
================================================================================
MangaLink v1.0 - Multi-Provider Search Orchestrator
================================================================================
Fans one query out to several content providers at once and merges results
as they arrive.

Flow:
  1. begin() bumps the generation counter and resets every provider to
     'pending'
  2. One concurrent search per provider (asyncio.gather, never serialized)
  3. Each completion is committed on its own: status -> success/failed, and
     results merged into one map keyed by (provider, provider id)
  4. Consumers read snapshot() at any time to render partial results

A newer search started before an older one finishes wins: the generation is
compared at the single commit point and straggling completions are dropped.
Providers are never cancelled, their answers are just ignored.
================================================================================
"""

import asyncio
import copy
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Any

from sources.base import ContentProvider, ProviderEntry

from ..errors import ProviderUnavailable, UnknownProvider
from .cache import ProviderSearchCache

logger = logging.getLogger(__name__)

ResultKey = Tuple[str, str]


class ProviderSearchStatus(str, Enum):
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILED = 'failed'


@dataclass
class SearchState:
    """Everything a consumer needs to render one orchestration."""
    query: str
    generation: int
    providers: List[str]
    page: int = 1
    statuses: Dict[str, ProviderSearchStatus] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    results: Dict[ResultKey, ProviderEntry] = field(default_factory=dict)
    positions: Dict[ResultKey, int] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return all(s != ProviderSearchStatus.PENDING for s in self.statuses.values())

    def merge(self, provider_name: str, entries: Sequence[ProviderEntry]) -> None:
        """
        Merge one provider's results. An existing entry is only ever filled
        in (fields it lacks), never overwritten.
        """
        for position, entry in enumerate(entries):
            key = (provider_name, entry.id)
            existing = self.results.get(key)
            if existing is None:
                self.results[key] = entry
                self.positions[key] = position
            else:
                self.results[key] = existing.merged_with(entry)

    def ordered_results(self) -> List[ProviderEntry]:
        """Merged results in provider request order, then provider rank."""
        order = {name: i for i, name in enumerate(self.providers)}
        keys = sorted(
            self.results,
            key=lambda k: (order.get(k[0], len(order)), self.positions.get(k, 0), k[1])
        )
        return [self.results[k] for k in keys]

    def results_for(self, provider_name: str) -> List[ProviderEntry]:
        keys = sorted((k for k in self.results if k[0] == provider_name), key=lambda k: self.positions.get(k, 0))
        return [self.results[k] for k in keys]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'query': self.query,
            'generation': self.generation,
            'page': self.page,
            'done': self.done,
            'statuses': {name: status.value for name, status in self.statuses.items()},
            'errors': dict(self.errors),
            'results': [r.to_dict() for r in self.ordered_results()],
        }


class SearchOrchestrator:
    """
    Concurrent provider search with incremental merging.

    Usage:
        orchestrator = SearchOrchestrator(manager.sources, cache=cache)
        state = await orchestrator.search("solo leveling", ["mangadex", "asurascans"])
        state.statuses   # {'mangadex': success, 'asurascans': failed}
    """

    def __init__(
        self,
        providers: Mapping[str, ContentProvider],
        cache: Optional[ProviderSearchCache] = None,
        timeout: Optional[float] = None
    ):
        """
        Args:
            providers: Provider name -> adapter
            cache: When set, live searches go through cache.refresh() so
                their results also warm the cache
            timeout: Optional ceiling per provider, in seconds. Without it
                the transport timeout of each adapter applies.
        """
        self.providers = providers
        self.cache = cache
        self.timeout = timeout
        self._lock = threading.Lock()
        self._generation = 0
        self._state: Optional[SearchState] = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def begin(self, query: str, provider_names: Sequence[str], page: int = 1) -> SearchState:
        """Start a new orchestration; every older one becomes stale."""
        with self._lock:
            self._generation += 1
            names = list(dict.fromkeys(provider_names))
            self._state = SearchState(
                query=query,
                generation=self._generation,
                providers=names,
                page=page,
                statuses={name: ProviderSearchStatus.PENDING for name in names},
            )
            return copy.deepcopy(self._state)

    def snapshot(self) -> Optional[SearchState]:
        """Copy of the current state, safe to hand to a renderer."""
        with self._lock:
            return copy.deepcopy(self._state) if self._state else None

    def _commit(
        self,
        generation: int,
        provider_name: str,
        results: Optional[Sequence[ProviderEntry]] = None,
        error: Optional[Exception] = None
    ) -> Optional[SearchState]:
        """Single point where provider completions touch state."""
        with self._lock:
            if generation != self._generation or self._state is None:
                logger.debug(f"Discarding {provider_name} result from generation {generation} (current {self._generation})")
                return None
            state = self._state
            if error is not None:
                state.statuses[provider_name] = ProviderSearchStatus.FAILED
                state.errors[provider_name] = str(error)
            else:
                state.statuses[provider_name] = ProviderSearchStatus.SUCCESS
                state.merge(provider_name, results or [])
            return copy.deepcopy(state)

    async def _bounded(self, call):
        if self.timeout:
            return await asyncio.wait_for(call, timeout=self.timeout)
        return await call

    async def _query(self, provider: ContentProvider, query: str, page: int) -> List[ProviderEntry]:
        if self.cache is not None:
            cached = await self._bounded(self.cache.refresh(query, provider, page))
            entries = cached.results
        else:
            entries = await self._bounded(provider.search(query, page))
        for entry in entries:
            if not entry.source:
                entry.source = provider.id
        return entries

    async def search(
        self,
        query: str,
        provider_names: Optional[Sequence[str]] = None,
        page: int = 1,
        on_update: Optional[Callable[[SearchState], None]] = None
    ) -> SearchState:
        """
        Search every named provider concurrently.

        Args:
            query: Search string, passed to providers as given
            provider_names: Providers to ask (default: all registered)
            page: Provider result page
            on_update: Called with a state snapshot after each provider
                completes (only while this search is still current)

        Returns:
            Final state of this orchestration. A provider failure shows up as
            its 'failed' status, never as an exception. A search superseded
            by a newer one returns its initial all-pending state.
        """
        names = list(provider_names) if provider_names else list(self.providers)
        state = self.begin(query, names, page)
        generation = state.generation
        logger.info(f"Search '{query}' across {len(state.providers)} providers (generation {generation})")

        async def run_one(name: str) -> None:
            provider = self.providers.get(name)
            try:
                if provider is None:
                    raise UnknownProvider(name)
                entries = await self._query(provider, query, page)
            except Exception as e:
                failure = e if isinstance(e, UnknownProvider) else ProviderUnavailable(name, e)
                logger.error(f"Provider search failed: {failure}")
                snapshot = self._commit(generation, name, error=failure)
            else:
                logger.debug(f"{name}: {len(entries)} results for '{query}'")
                snapshot = self._commit(generation, name, results=entries)

            if snapshot is not None and on_update is not None:
                try:
                    on_update(snapshot)
                except Exception as e:
                    logger.warning(f"Search update callback failed: {e}")

        await asyncio.gather(*(run_one(name) for name in state.providers))

        final = self.snapshot()
        if final is None or final.generation != generation:
            logger.info(f"Search '{query}' (generation {generation}) superseded")
            return state
        return final
