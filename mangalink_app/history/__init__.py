from .ledger import (
    HistoryLedger,
    HistoryKeys,
    HistoryItem,
    latest_chapter,
    chapters_up_to,
    chapters_in_range,
)

__all__ = [
    'HistoryLedger',
    'HistoryKeys',
    'HistoryItem',
    'latest_chapter',
    'chapters_up_to',
    'chapters_in_range',
]
