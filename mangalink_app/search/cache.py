"""
Stale-while-revalidate cache for provider search results.

Design:
  - Keyed by (normalized query, provider, page); the normalizer is the same
    one the matcher uses, so "Solo Leveling!" and "solo leveling" share a key
  - In-memory OrderedDict, session-scoped, bounded (oldest write evicted)
  - Thread-safe with a lock; entries are replaced whole, never mutated
  - peek() never does I/O and returns stale entries too; the caller decides
    whether to refresh()
  - Empty results are never stored: a refresh that finds nothing removes
    the key instead

Usage:
    cache = ProviderSearchCache(ttl=600, max_size=40)

    hit = cache.peek("solo leveling", "mangadex")
    if hit is None or hit.stale:
        hit = await cache.refresh("solo leveling", provider)

    cache.prefetch_in_background(["solo leveling", "only i level up"], provider)
"""

import asyncio
import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Any

from sources.base import ContentProvider, ProviderEntry

from ..matching.matcher import normalize_title

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, int]


@dataclass
class CachedSearch:
    """One cached provider search. `stale` is derived from the cache clock."""
    query: str
    provider: str
    page: int
    results: List[ProviderEntry]
    created_at: float
    ttl: float
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    @property
    def stale(self) -> bool:
        return self.clock() >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'query': self.query,
            'provider': self.provider,
            'page': self.page,
            'results': [r.to_dict() for r in self.results],
            'created_at': self.created_at,
            'stale': self.stale,
        }


class ProviderSearchCache:
    """Thread-safe stale-while-revalidate cache for provider searches."""

    def __init__(self, ttl: float = 600.0, max_size: int = 40, clock: Callable[[], float] = time.time):
        """
        Args:
            ttl: Seconds before an entry is stale (default: 10 minutes)
            max_size: Maximum entries kept (default: 40)
            clock: Time source (tests pass a fake)
        """
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._cache: "OrderedDict[CacheKey, CachedSearch]" = OrderedDict()
        self._lock = threading.Lock()
        self._in_flight: Dict[Tuple[int, CacheKey], asyncio.Task] = {}
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    @staticmethod
    def make_key(query: str, provider: str, page: int = 1) -> CacheKey:
        return (normalize_title(query), provider, int(page))

    def _copy(self, entry: CachedSearch) -> CachedSearch:
        # Callers get their own copy of the results, never the stored list
        return CachedSearch(
            query=entry.query,
            provider=entry.provider,
            page=entry.page,
            results=copy.deepcopy(entry.results),
            created_at=entry.created_at,
            ttl=entry.ttl,
            clock=self._clock,
        )

    # =========================================================================
    # READS
    # =========================================================================

    def peek(self, query: str, provider: str, page: int = 1) -> Optional[CachedSearch]:
        """Cached entry for the key, stale or not. Never performs I/O."""
        key = self.make_key(query, provider, page)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                logger.debug(f"Cache MISS: {key}")
                return None
            if entry.stale:
                self._stale_hits += 1
                logger.debug(f"Cache STALE: {key}")
            else:
                self._hits += 1
                logger.debug(f"Cache HIT: {key}")
            return self._copy(entry)

    # =========================================================================
    # WRITES
    # =========================================================================

    def store(self, query: str, provider: str, results: List[ProviderEntry], page: int = 1) -> CachedSearch:
        """Replace the entry for a key with fresh results (empty results remove it)."""
        key = self.make_key(query, provider, page)
        entry = CachedSearch(
            query=key[0],
            provider=provider,
            page=key[2],
            results=copy.deepcopy(list(results)),
            created_at=self._clock(),
            ttl=self.ttl,
            clock=self._clock,
        )
        with self._lock:
            if not entry.results:
                self._cache.pop(key, None)
                return self._copy(entry)
            self._cache.pop(key, None)
            if len(self._cache) >= self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Cache EVICT: {evicted}")
            self._cache[key] = entry
            return self._copy(entry)

    async def refresh(self, query: str, provider: ContentProvider, page: int = 1) -> CachedSearch:
        """
        Live provider search; the result supersedes any cached entry.

        Concurrent refreshes of one key on one event loop share a single
        provider request.

        Raises:
            Whatever the provider raises (httpx.HTTPError, ...)
        """
        key = self.make_key(query, provider.id, page)
        loop = asyncio.get_running_loop()
        flight_key = (id(loop), key)

        task = self._in_flight.get(flight_key)
        if task is None or task.get_loop() is not loop:
            task = loop.create_task(self._fetch(query, provider, page))
            self._in_flight[flight_key] = task
            task.add_done_callback(lambda _t: self._in_flight.pop(flight_key, None))
        return await asyncio.shield(task)

    async def _fetch(self, query: str, provider: ContentProvider, page: int) -> CachedSearch:
        results = await provider.search(query.strip(), page)
        for result in results:
            if not result.source:
                result.source = provider.id
        logger.debug(f"Refreshed {provider.id} '{query}' p{page}: {len(results)} results")
        return self.store(query, provider.id, results, page)

    async def prefetch(self, terms: Iterable[str], provider: ContentProvider, page: int = 1) -> int:
        """
        Warm the cache for a batch of terms. Best effort: failures are logged
        and skipped. Fresh entries are left alone.

        Returns:
            Number of terms refreshed successfully
        """
        pending = []
        for term in terms:
            hit = self.peek(term, provider.id, page)
            if hit is None or hit.stale:
                pending.append(term)
        if not pending:
            return 0

        outcomes = await asyncio.gather(
            *(self.refresh(term, provider, page) for term in pending),
            return_exceptions=True
        )
        refreshed = 0
        for term, outcome in zip(pending, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Prefetch failed for {provider.id} '{term}': {outcome}")
            else:
                refreshed += 1
        return refreshed

    def prefetch_in_background(self, terms: Iterable[str], provider: ContentProvider, page: int = 1) -> threading.Thread:
        """Fire-and-forget prefetch on a daemon thread (for sync callers)."""
        terms = list(terms)

        def worker():
            try:
                asyncio.run(self.prefetch(terms, provider, page))
            except Exception as e:
                logger.warning(f"Background prefetch for {provider.id} aborted: {e}")

        thread = threading.Thread(target=worker, name=f"prefetch-{provider.id}", daemon=True)
        thread.start()
        return thread

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def invalidate(self, query: str, provider: str, page: int = 1) -> None:
        with self._lock:
            self._cache.pop(self.make_key(query, provider, page), None)

    def clear(self):
        """Clear all cache entries and reset statistics."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._stale_hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self._hits + self._stale_hits + self._misses
            served = self._hits + self._stale_hits
            hit_rate = (served / total_requests * 100) if total_requests > 0 else 0.0
            return {
                'size': len(self._cache),
                'max_size': self.max_size,
                'ttl': self.ttl,
                'hits': self._hits,
                'stale_hits': self._stale_hits,
                'misses': self._misses,
                'hit_rate': round(hit_rate, 2),
            }
