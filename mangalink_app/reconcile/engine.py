"""
================================================================================
MangaLink v1.0 - Reconciliation Engine
================================================================================
Runs when a mapping is created or replaced, and converges the two progress
counters that can disagree at that moment:

  local   last chapter read on this device (History Ledger)
  remote  progress counter on the catalog entry

One run per remap:

    IDLE -> AWAITING_CONTEXT -> PRESENTING_CHOICE -> APPLYING -> RESOLVED
                                       |
                                       +-> CANCELLED

Policies:
  higher    the larger value wins (ties favor local)
  provider  remote adopts local
  catalog   local adopts remote; the read set becomes exactly the chapters
            at or below it
  none      save the mapping, touch no progress

The mapping is saved before any progress moves. A failed progress push is a
partial success (mapping saved, progress not synced) and can be retried.
================================================================================
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sources.base import Chapter, ProviderEntry

from ..catalog.base import CatalogSource
from ..catalog.models import CatalogEntry
from ..errors import CatalogError, ReconcileStateError
from ..history.ledger import HistoryLedger, HistoryKeys
from ..mapping.store import Mapping, MappingStore

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    IDLE = 'idle'
    AWAITING_CONTEXT = 'awaiting_context'
    PRESENTING_CHOICE = 'presenting_choice'
    APPLYING = 'applying'
    RESOLVED = 'resolved'
    CANCELLED = 'cancelled'


class ReconcilePolicy(str, Enum):
    HIGHER = 'higher'
    PROVIDER = 'provider'
    CATALOG = 'catalog'
    NONE = 'none'


class RemapKind(str, Enum):
    PROVIDER = 'provider'   # same catalog entry, new provider entry
    CATALOG = 'catalog'     # same provider entry, new catalog entry


def _whole(progress: Optional[float]) -> int:
    """Catalog progress is a whole chapter count."""
    if progress is None or progress <= 0:
        return 0
    return int(math.floor(progress))


def has_conflict(local: Optional[float], remote: Optional[int]) -> bool:
    """Local and remote disagree and at least one of them says something."""
    local_value, remote_value = _whole(local), _whole(remote)
    return local_value != remote_value and (local_value > 0 or remote_value > 0)


@dataclass
class ReconcileOutcome:
    mapping: Mapping
    policy: ReconcilePolicy
    mapping_saved: bool = True
    progress_synced: bool = True
    error: Optional[str] = None
    local_progress: Optional[float] = None
    remote_progress: Optional[int] = None

    @property
    def partial(self) -> bool:
        return self.mapping_saved and not self.progress_synced

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mapping': self.mapping.to_dict(),
            'policy': self.policy.value,
            'mapping_saved': self.mapping_saved,
            'progress_synced': self.progress_synced,
            'error': self.error,
            'local_progress': self.local_progress,
            'remote_progress': self.remote_progress,
        }


@dataclass
class ReconcileContext:
    """Transient state of one remap. Never persisted."""
    kind: RemapKind
    catalog_id: str
    provider_name: str
    provider_entry: ProviderEntry
    history_keys: HistoryKeys
    chapters: List[Chapter] = field(default_factory=list)
    previous: Optional[Mapping] = None
    local_progress: Optional[float] = None
    remote_progress: Optional[int] = None
    state: ReconcileState = ReconcileState.IDLE
    policy: Optional[ReconcilePolicy] = None
    outcome: Optional[ReconcileOutcome] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def has_conflict(self) -> bool:
        return has_conflict(self.local_progress, self.remote_progress)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'state': self.state.value,
            'catalog_id': self.catalog_id,
            'provider_name': self.provider_name,
            'provider_id': self.provider_entry.id,
            'title': self.provider_entry.title,
            'previous': self.previous.to_dict() if self.previous else None,
            'local_progress': self.local_progress,
            'remote_progress': self.remote_progress,
            'policies': [p.value for p in ReconcilePolicy],
            'policy': self.policy.value if self.policy else None,
            'outcome': self.outcome.to_dict() if self.outcome else None,
        }


class ReconcileEngine:
    """
    Usage:
        context = await engine.begin_remap("151807", "mangadex", entry, catalog_entry=shown)
        if context is None:
            ...  # no conflict, mapping already saved
        else:
            outcome = await engine.apply_reconcile(context, ReconcilePolicy.HIGHER)
            if outcome.partial:
                outcome = await engine.retry_sync(context)
    """

    def __init__(self, catalog: CatalogSource, mappings: MappingStore, ledger: HistoryLedger):
        self.catalog = catalog
        self.mappings = mappings
        self.ledger = ledger

    # =========================================================================
    # CONTEXT
    # =========================================================================

    async def build_context(
        self,
        catalog_id: str,
        provider_name: str,
        provider_entry: ProviderEntry,
        kind: RemapKind = RemapKind.PROVIDER,
        catalog_entry: Optional[CatalogEntry] = None,
        history_keys: Optional[HistoryKeys] = None,
        chapters: Optional[List[Chapter]] = None
    ) -> ReconcileContext:
        """
        Gather both progress values for a remap.

        Raises:
            CatalogError: The target catalog entry could not be fetched
        """
        catalog_id = str(catalog_id)
        keys = history_keys or HistoryKeys(
            anilist_id=catalog_id,
            provider_series_id=provider_entry.id,
            title=provider_entry.title,
        )
        context = ReconcileContext(
            kind=RemapKind(kind),
            catalog_id=catalog_id,
            provider_name=provider_name,
            provider_entry=provider_entry,
            history_keys=keys,
            chapters=list(chapters if chapters is not None else provider_entry.chapters),
            state=ReconcileState.AWAITING_CONTEXT,
        )

        if context.kind == RemapKind.CATALOG:
            context.previous = self.mappings.get_by_provider_id(provider_entry.id, provider_name)
        else:
            context.previous = self.mappings.get_by_catalog_id(catalog_id, provider_name)

        context.local_progress = self.ledger.local_progress(keys)

        if catalog_entry is not None and str(catalog_entry.id) == catalog_id:
            context.remote_progress = catalog_entry.progress
        else:
            # The swap targets an entry that is not on screen; its counter may be stale
            fresh = await self.catalog.get_by_id(catalog_id)
            if fresh is None:
                raise CatalogError(f"Catalog entry {catalog_id} not found", catalog_id=catalog_id)
            context.remote_progress = fresh.progress

        context.state = ReconcileState.PRESENTING_CHOICE
        logger.info(
            f"Remap {context.kind.value} {catalog_id} <-> {provider_name}:{provider_entry.id} "
            f"(local={context.local_progress}, remote={context.remote_progress})"
        )
        return context

    async def begin_remap(self, *args, **kwargs) -> Optional[ReconcileContext]:
        """
        Start a remap. Returns the context when local and remote progress
        conflict; otherwise saves the mapping right away (policy 'none') and
        returns None.
        """
        context = await self.build_context(*args, **kwargs)
        if context.has_conflict:
            return context
        await self.apply_reconcile(context, ReconcilePolicy.NONE)
        return None

    # =========================================================================
    # APPLY
    # =========================================================================

    async def apply_reconcile(self, context: ReconcileContext, policy: ReconcilePolicy) -> ReconcileOutcome:
        """
        Save the mapping, then move progress one way under the policy.

        Raises:
            ReconcileStateError: The context is not awaiting a choice
        """
        if context.state != ReconcileState.PRESENTING_CHOICE:
            raise ReconcileStateError(f"Cannot apply a remap in state '{context.state.value}'")
        policy = ReconcilePolicy(policy)
        context.policy = policy
        context.state = ReconcileState.APPLYING

        entry = context.provider_entry
        try:
            mapping = self.mappings.put(
                context.catalog_id,
                entry.id,
                context.provider_name,
                {'title': entry.title, 'image': entry.image, 'status': entry.status, 'rating': entry.rating},
                entry.provider_internal_id,
            )
        except Exception:
            context.state = ReconcileState.PRESENTING_CHOICE
            raise

        self.ledger.attach_catalog_id(context.history_keys, context.catalog_id)

        synced, error, local, remote = await self._sync(context, policy)
        context.outcome = ReconcileOutcome(
            mapping=mapping,
            policy=policy,
            progress_synced=synced,
            error=error,
            local_progress=local,
            remote_progress=remote,
        )
        context.state = ReconcileState.RESOLVED
        if synced:
            logger.info(f"Remap resolved ({policy.value}): local={local}, remote={remote}")
        else:
            logger.warning(f"Remap saved but progress not synced ({policy.value}): {error}")
        return context.outcome

    async def retry_sync(self, context: ReconcileContext) -> ReconcileOutcome:
        """Re-run a failed progress push. The mapping is not written again."""
        outcome = context.outcome
        if context.state != ReconcileState.RESOLVED or outcome is None:
            raise ReconcileStateError(f"Nothing to retry in state '{context.state.value}'")
        if outcome.progress_synced:
            return outcome

        synced, error, local, remote = await self._sync(context, outcome.policy)
        outcome.progress_synced = synced
        outcome.error = error
        outcome.local_progress = local
        outcome.remote_progress = remote
        return outcome

    def cancel(self, context: ReconcileContext) -> Optional[Mapping]:
        """
        Abandon a remap before anything was written. Returns the mapping
        that was active before, for the caller to show again.
        """
        if context.state not in (ReconcileState.AWAITING_CONTEXT, ReconcileState.PRESENTING_CHOICE):
            raise ReconcileStateError(f"Cannot cancel a remap in state '{context.state.value}'")
        context.state = ReconcileState.CANCELLED
        logger.info(f"Remap cancelled: {context.catalog_id} <-> {context.provider_name}:{context.provider_entry.id}")
        return context.previous

    # =========================================================================
    # PROGRESS SYNC
    # =========================================================================

    async def _push(self, catalog_id: str, progress: int) -> Optional[str]:
        """Write remote progress. Returns an error message, or None on success."""
        try:
            ok = await self.catalog.update_progress(catalog_id, progress)
        except Exception as e:
            logger.error(f"Progress push to catalog {catalog_id} failed: {e}")
            return str(e) or type(e).__name__
        if not ok:
            return f"Catalog rejected progress {progress} for {catalog_id}"
        return None

    async def _sync(
        self,
        context: ReconcileContext,
        policy: ReconcilePolicy
    ) -> Tuple[bool, Optional[str], Optional[float], Optional[int]]:
        """(synced, error, final local, final remote)"""
        local = context.local_progress
        remote = context.remote_progress
        keys = context.history_keys
        title = context.provider_entry.title

        if policy == ReconcilePolicy.NONE:
            return True, None, local, remote

        # Policies that rewrite local history need the chapter list
        touches_history = policy == ReconcilePolicy.CATALOG or (
            policy == ReconcilePolicy.HIGHER and max(_whole(local), _whole(remote)) > 0
        )
        if touches_history and not context.chapters:
            return False, f"No chapter list for {context.provider_name}:{context.provider_entry.id}", local, remote

        if policy == ReconcilePolicy.CATALOG:
            target = _whole(remote)
            item = self.ledger.sync_to_progress(keys, target, context.chapters, exact=True, series_title=title)
            return True, None, item.progress, remote

        if policy == ReconcilePolicy.PROVIDER:
            target = _whole(local)
            error = None
            if target != remote:
                error = await self._push(context.catalog_id, target)
            return error is None, error, local, target if error is None else remote

        # HIGHER
        local_value, remote_value = _whole(local), _whole(remote)
        if local_value >= remote_value:
            if local_value > 0:
                self.ledger.sync_to_progress(keys, local_value, context.chapters, series_title=title)
            error = None
            if local_value != remote_value:
                error = await self._push(context.catalog_id, local_value)
            return error is None, error, local, local_value if error is None else remote

        item = self.ledger.sync_to_progress(keys, remote_value, context.chapters, series_title=title)
        return True, None, item.progress, remote
