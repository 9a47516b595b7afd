"""
================================================================================
MangaLink v1.0 - Link Resolver
================================================================================
Answers "which provider entry is this catalog entry?" and the reverse.

Catalog -> provider:
  1. A saved mapping wins outright
  2. Build search terms from every title variant
  3. Peek the search cache per provider (stale hits are used as-is and
     revalidated in the background)
  4. Providers with nothing cached are searched live, term by term, through
     the orchestrator
  5. Rank every candidate against every catalog title; link only when the
     matcher is confident, otherwise hand back the ranked list

Provider -> catalog runs the same way against catalog search.

A confident match goes through the reconcile engine: without a progress
conflict it is saved at once, with one the caller gets a pending context.
================================================================================
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping as MappingType, Optional, Sequence, Tuple

from sources.base import ContentProvider, ProviderEntry

from ..catalog.base import CatalogSource
from ..catalog.models import CatalogEntry, ListStatus
from ..config import MatchSettings
from ..errors import CatalogError, ProviderUnavailable, UnknownProvider
from ..history.ledger import HistoryLedger, HistoryKeys
from ..mapping.store import Mapping, MappingStore
from ..matching.matcher import ScoredCandidate, TitleMatcher
from ..matching.terms import build_search_terms, build_reverse_terms
from ..reconcile.engine import (
    ReconcileEngine, ReconcileContext, ReconcileOutcome, ReconcilePolicy, RemapKind
)
from ..search.cache import ProviderSearchCache
from ..search.orchestrator import SearchOrchestrator, SearchState, ProviderSearchStatus

logger = logging.getLogger(__name__)

STATUS_MAPPED = 'mapped'
STATUS_AMBIGUOUS = 'ambiguous'
STATUS_NONE = 'none'


@dataclass
class ResolveResult:
    status: str
    mapping: Optional[Mapping] = None
    candidates: List[ScoredCandidate] = field(default_factory=list)
    reconcile: Optional[ReconcileContext] = None
    provider_statuses: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    stale: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'mapping': self.mapping.to_dict() if self.mapping else None,
            'candidates': [c.to_dict() for c in self.candidates],
            'reconcile': self.reconcile.to_dict() if self.reconcile else None,
            'provider_statuses': dict(self.provider_statuses),
            'errors': dict(self.errors),
            'stale': self.stale,
        }


def _catalog_titles(entry: CatalogEntry) -> List[str]:
    return entry.all_titles()


def _merge_previous(fresh: Sequence[ProviderEntry], previous: Sequence[ProviderEntry]) -> List[ProviderEntry]:
    """
    Fold refreshed results into the set served before. A provider that
    answered again replaces its old candidates; the others keep theirs.
    """
    refreshed = {c.source for c in fresh}
    merged: Dict[Tuple[str, str], ProviderEntry] = {(c.source, c.id): c for c in fresh}
    for old in previous:
        key = (old.source, old.id)
        if key in merged:
            merged[key] = merged[key].merged_with(old)
        elif old.source not in refreshed:
            merged[key] = old
    return list(merged.values())


class LinkResolver:
    """
    Entry point for the surrounding UI.

    Usage:
        resolver = LinkResolver(catalog, manager.sources, MappingStore(), HistoryLedger(), cache)
        result = await resolver.resolve_for_catalog_entry(entry, ["mangadex"])
        if result.status == 'ambiguous':
            ...  # show result.candidates
    """

    def __init__(
        self,
        catalog: CatalogSource,
        providers: MappingType[str, ContentProvider],
        mappings: MappingStore,
        ledger: HistoryLedger,
        cache: Optional[ProviderSearchCache] = None,
        settings: Optional[MatchSettings] = None,
        provider_timeout: Optional[float] = None,
        background_revalidate: bool = True
    ):
        self.catalog = catalog
        self.providers = providers
        self.mappings = mappings
        self.ledger = ledger
        self.cache = cache or ProviderSearchCache()
        self.settings = settings or MatchSettings()
        self.matcher = TitleMatcher(self.settings)
        self.engine = ReconcileEngine(catalog, mappings, ledger)
        self.provider_timeout = provider_timeout
        self.background_revalidate = background_revalidate

    def orchestrator(self) -> SearchOrchestrator:
        """
        A new orchestrator per consumer session. Generations only order
        searches issued by the same consumer.
        """
        return SearchOrchestrator(self.providers, cache=self.cache, timeout=self.provider_timeout)

    def _provider(self, name: str) -> ContentProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise UnknownProvider(name)
        return provider

    def _provider_names(self, names: Optional[Sequence[str]]) -> List[str]:
        if not names:
            return list(self.providers)
        unknown = [n for n in names if n not in self.providers]
        if unknown:
            raise UnknownProvider(unknown[0])
        return list(dict.fromkeys(names))

    # =========================================================================
    # CATALOG -> PROVIDER
    # =========================================================================

    def _peek_cached(self, terms: Sequence[str], provider_name: str) -> Tuple[Optional[str], List[ProviderEntry], bool]:
        """First term with a cached hit for the provider: (term, results, stale)."""
        for term in terms:
            hit = self.cache.peek(term, provider_name)
            if hit is not None and hit.results:
                return term, hit.results, hit.stale
        return None, [], False

    async def _live_search(
        self,
        terms: Sequence[str],
        provider_names: Sequence[str],
        on_update: Optional[Callable[[SearchState], None]] = None
    ) -> Tuple[Dict[str, List[ProviderEntry]], Dict[str, str], Dict[str, str]]:
        """
        Search providers term by term until each has results. A provider that
        fails is not asked again with the next term.
        """
        orchestrator = self.orchestrator()
        remaining = list(provider_names)
        found: Dict[str, List[ProviderEntry]] = {}
        statuses: Dict[str, str] = {}
        errors: Dict[str, str] = {}

        for term in terms:
            if not remaining:
                break
            state = await orchestrator.search(term, remaining, on_update=on_update)
            for name in list(remaining):
                status = state.statuses.get(name, ProviderSearchStatus.PENDING)
                statuses[name] = status.value
                if status == ProviderSearchStatus.FAILED:
                    errors[name] = state.errors.get(name, 'failed')
                    remaining.remove(name)
                elif status == ProviderSearchStatus.SUCCESS:
                    entries = state.results_for(name)
                    if entries:
                        found[name] = entries
                        remaining.remove(name)
        return found, statuses, errors

    async def _search_providers(
        self,
        entry: CatalogEntry,
        provider_names: Sequence[str],
        live: bool = False,
        on_update: Optional[Callable[[SearchState], None]] = None
    ) -> Tuple[List[ProviderEntry], Dict[str, str], Dict[str, str], bool]:
        terms = build_search_terms(entry, self.settings)
        if not terms:
            return [], {}, {}, False

        by_provider: Dict[str, List[ProviderEntry]] = {}
        statuses: Dict[str, str] = {}
        stale_terms: Dict[str, str] = {}
        missing = []

        for name in provider_names:
            term, results, stale = (None, [], False) if live else self._peek_cached(terms, name)
            if term is None:
                missing.append(name)
                continue
            by_provider[name] = results
            statuses[name] = ProviderSearchStatus.SUCCESS.value
            if stale:
                stale_terms[name] = term

        errors: Dict[str, str] = {}
        if missing:
            found, live_statuses, errors = await self._live_search(terms, missing, on_update)
            by_provider.update(found)
            statuses.update(live_statuses)

        if stale_terms and self.background_revalidate:
            for name, term in stale_terms.items():
                self.cache.prefetch_in_background([term], self.providers[name])

        # One list in provider order; (provider, id) duplicates fill each other in
        merged: Dict[Tuple[str, str], ProviderEntry] = {}
        for name in provider_names:
            for candidate in by_provider.get(name, []):
                candidate.source = name
                key = (name, candidate.id)
                merged[key] = merged[key].merged_with(candidate) if key in merged else candidate
        return list(merged.values()), statuses, errors, bool(stale_terms)

    async def _details_for(self, provider_name: str, candidate: ProviderEntry) -> ProviderEntry:
        """Full entry (with chapters) for a search result; the result itself if that fails."""
        provider = self._provider(provider_name)
        try:
            details = await provider.get_details(provider.normalize_id(candidate.id))
        except Exception as e:
            logger.warning(f"Details for {provider_name}:{candidate.id} unavailable: {e}")
            return candidate
        if details is None:
            return candidate
        if not details.source:
            details.source = provider_name
        return details.merged_with(candidate)

    async def resolve_for_catalog_entry(
        self,
        entry: CatalogEntry,
        providers: Optional[Sequence[str]] = None,
        live: bool = False,
        on_update: Optional[Callable[[SearchState], None]] = None,
        previous: Optional[Sequence[ProviderEntry]] = None
    ) -> ResolveResult:
        """
        Find the provider entry for a catalog entry.

        Args:
            previous: Candidates served earlier; fresh results are merged
                into them by provider id before ranking

        Returns:
            ResolveResult with status 'mapped' (mapping, plus a reconcile
            context when progress conflicts), 'ambiguous' (ranked
            candidates) or 'none'
        """
        names = self._provider_names(providers)

        for name in names:
            mapping = self.mappings.get_by_catalog_id(entry.id, name)
            if mapping is not None:
                logger.info(f"Catalog {entry.id} already mapped to {name}:{mapping.provider_id}")
                return ResolveResult(status=STATUS_MAPPED, mapping=mapping)

        candidates, statuses, errors, stale = await self._search_providers(entry, names, live, on_update)
        if previous:
            candidates = _merge_previous(candidates, previous)
        ranked = self.matcher.rank(candidates, _catalog_titles(entry))
        result = ResolveResult(
            status=STATUS_NONE,
            candidates=ranked,
            provider_statuses=statuses,
            errors=errors,
            stale=stale,
        )
        if not ranked:
            logger.info(f"No provider candidates for catalog {entry.id} ({entry.title})")
            return result

        choice = self.matcher.pick(ranked)
        if choice is None:
            result.status = STATUS_AMBIGUOUS
            return result

        picked: ProviderEntry = choice.item
        provider_name = picked.source
        full = await self._details_for(provider_name, picked)
        keys = HistoryKeys(anilist_id=entry.id, provider_series_id=full.id, title=entry.title)
        context = await self.engine.begin_remap(
            entry.id, provider_name, full,
            kind=RemapKind.PROVIDER,
            catalog_entry=entry,
            history_keys=keys,
        )
        result.status = STATUS_MAPPED
        if context is None:
            result.mapping = self.mappings.get_by_catalog_id(entry.id, provider_name)
        else:
            result.reconcile = context
            result.mapping = Mapping(
                catalog_id=entry.id,
                provider_id=full.id,
                provider_name=provider_name,
                title=full.title,
                image=full.image,
                status=full.status,
                rating=full.rating,
                provider_internal_id=full.provider_internal_id,
            )
        return result

    async def revalidate(
        self,
        entry: CatalogEntry,
        providers: Optional[Sequence[str]] = None,
        previous: Optional[Sequence[ProviderEntry]] = None
    ) -> ResolveResult:
        """
        Resolve again from live provider results, merged by provider id into
        the candidates served before. A ranking that turned confident after
        the refresh advances to 'mapped'.
        """
        return await self.resolve_for_catalog_entry(entry, providers, live=True, previous=previous)

    # =========================================================================
    # PROVIDER -> CATALOG
    # =========================================================================

    async def resolve_for_provider_entry(self, provider_name: str, entry: ProviderEntry) -> ResolveResult:
        """
        Find the catalog entry for a provider entry.

        Raises:
            CatalogError: Catalog search failed
        """
        provider = self._provider(provider_name)
        provider_id = provider.normalize_id(entry.id)

        mapping = self.mappings.get_by_provider_id(provider_id, provider_name)
        if mapping is not None:
            logger.info(f"{provider_name}:{provider_id} already mapped to catalog {mapping.catalog_id}")
            return ResolveResult(status=STATUS_MAPPED, mapping=mapping)

        references = [entry.title] + [t for t in entry.alt_titles if t]
        candidates: Dict[str, CatalogEntry] = {}
        for term in build_reverse_terms(entry.title, entry.alt_titles, self.settings):
            for found in await self.catalog.search(term):
                candidates.setdefault(found.id, found)
            if candidates:
                break

        ranked = self.matcher.rank(candidates.values(), references, titles_of=_catalog_titles)
        result = ResolveResult(status=STATUS_NONE, candidates=ranked)
        if not ranked:
            return result

        choice = self.matcher.pick(ranked)
        if choice is None:
            result.status = STATUS_AMBIGUOUS
            return result

        picked: CatalogEntry = choice.item
        full = entry if entry.chapters else await self._details_for(provider_name, entry)
        full = replace(full, id=provider_id)
        keys = HistoryKeys(anilist_id=picked.id, provider_series_id=provider_id, title=entry.title)
        context = await self.engine.begin_remap(
            picked.id, provider_name, full,
            kind=RemapKind.CATALOG,
            catalog_entry=picked,
            history_keys=keys,
        )
        result.status = STATUS_MAPPED
        if context is None:
            result.mapping = self.mappings.get_by_catalog_id(picked.id, provider_name)
        else:
            result.reconcile = context
            result.mapping = Mapping(
                catalog_id=picked.id,
                provider_id=provider_id,
                provider_name=provider_name,
                title=full.title,
                image=full.image,
                status=full.status,
                rating=full.rating,
            )
        return result

    # =========================================================================
    # EXPLICIT REMAP
    # =========================================================================

    async def begin_remap(
        self,
        catalog_id: str,
        provider_name: str,
        provider_id: str,
        kind: RemapKind = RemapKind.PROVIDER,
        catalog_entry: Optional[CatalogEntry] = None,
        history_keys: Optional[HistoryKeys] = None
    ) -> Optional[ReconcileContext]:
        """
        Link a catalog entry to a provider entry chosen by the user.

        Returns None when there was no progress conflict (already saved),
        otherwise the context to apply or cancel.

        Raises:
            UnknownProvider, ProviderUnavailable, CatalogError
        """
        provider = self._provider(provider_name)
        normalized = provider.normalize_id(provider_id)
        try:
            details = await provider.get_details(normalized)
        except Exception as e:
            raise ProviderUnavailable(provider_name, e) from e
        if details is None:
            raise ProviderUnavailable(provider_name, LookupError(f"{normalized} not found"))
        details.id = normalized
        if not details.source:
            details.source = provider_name

        return await self.engine.begin_remap(
            str(catalog_id), provider_name, details,
            kind=kind,
            catalog_entry=catalog_entry,
            history_keys=history_keys,
        )

    async def apply_reconcile(self, context: ReconcileContext, policy: ReconcilePolicy) -> ReconcileOutcome:
        return await self.engine.apply_reconcile(context, policy)

    async def retry_sync(self, context: ReconcileContext) -> ReconcileOutcome:
        """Retry a failed sync, fetching the chapter list again if it was missing."""
        if not context.chapters and context.provider_name in self.providers:
            full = await self._details_for(context.provider_name, context.provider_entry)
            context.chapters = list(full.chapters)
        return await self.engine.retry_sync(context)

    def cancel_remap(self, context: ReconcileContext) -> Optional[Mapping]:
        return self.engine.cancel(context)

    # =========================================================================
    # CATALOG LIST STATUS
    # =========================================================================

    async def update_status(self, catalog_id: str, status: ListStatus) -> bool:
        """
        Raises:
            CatalogError: The catalog refused the update
        """
        ok = await self.catalog.update_status(str(catalog_id), ListStatus(status))
        if not ok:
            raise CatalogError(f"Catalog refused status '{ListStatus(status).value}'", catalog_id=str(catalog_id))
        logger.info(f"Catalog {catalog_id} status -> {ListStatus(status).value}")
        return True
