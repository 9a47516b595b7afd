from .engine import (
    ReconcileEngine,
    ReconcileContext,
    ReconcileOutcome,
    ReconcilePolicy,
    ReconcileState,
    RemapKind,
    has_conflict,
)

__all__ = [
    'ReconcileEngine',
    'ReconcileContext',
    'ReconcileOutcome',
    'ReconcilePolicy',
    'ReconcileState',
    'RemapKind',
    'has_conflict',
]
