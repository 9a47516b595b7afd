"""In-process holder for remaps waiting on a user's policy choice."""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..reconcile.engine import ReconcileContext, ReconcileState

PENDING_TTL = 3600  # seconds


class PendingReconciles:
    """
    Reconcile contexts live only for one remap. Between the request that
    starts a remap and the one that applies it they are parked here, keyed
    by context id. Nothing is persisted; a restart drops them.
    """

    def __init__(self, ttl: float = PENDING_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._items: Dict[str, Tuple[float, ReconcileContext]] = {}
        self._lock = threading.Lock()

    def _prune(self) -> None:
        cutoff = self._clock() - self.ttl
        expired = [key for key, (at, _) in self._items.items() if at < cutoff]
        for key in expired:
            del self._items[key]

    def add(self, context: ReconcileContext) -> str:
        with self._lock:
            self._prune()
            self._items[context.id] = (self._clock(), context)
            return context.id

    def get(self, context_id: str) -> Optional[ReconcileContext]:
        with self._lock:
            self._prune()
            item = self._items.get(context_id)
            return item[1] if item else None

    def release(self, context: ReconcileContext) -> None:
        """Forget a context once nothing more can happen to it."""
        finished = context.state == ReconcileState.CANCELLED or (
            context.state == ReconcileState.RESOLVED and context.outcome is not None and context.outcome.progress_synced
        )
        if finished:
            with self._lock:
                self._items.pop(context.id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
