"""
================================================================================
MangaLink v1.0 - Local History Ledger
================================================================================
Per-device reading record, independent of any catalog account.

Identity is unreliable: the same series shows up under a local series id, a
catalog id, a provider series id, or only its title, and ids drift between
sessions. Every record is therefore reachable through an alias table:

    anilist:30013                      -> record 7f3c...
    provider:https://asuracomic.net/series/solo-leveling -> record 7f3c...
    title:solo leveling                -> record 7f3c...

Lookups try the id aliases first, then the title, and every successful
lookup registers the aliases it did not know yet.

Chapter numbers are free text. Numeric comparisons strip everything but
digits and dots first; chapters whose number cannot be read take no part in
range or up-to marking.
================================================================================
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy.orm import sessionmaker, Session

from sources.base import Chapter, parse_chapter_number

from ..database import get_db_session
from ..matching.matcher import normalize_title
from ..models import HistoryRecord, HistoryAlias, _utcnow

logger = logging.getLogger(__name__)

RECENT_LIMIT = 20


@dataclass
class HistoryKeys:
    """Every key a caller currently knows a series by."""
    series_id: Optional[str] = None
    anilist_id: Optional[str] = None
    provider_series_id: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryKeys':
        def text(name):
            value = data.get(name)
            return str(value).strip() if value not in (None, '') else None
        return cls(
            series_id=text('series_id'),
            anilist_id=text('anilist_id'),
            provider_series_id=text('provider_series_id'),
            title=text('title'),
        )

    def id_aliases(self) -> List[str]:
        aliases = []
        if self.anilist_id:
            aliases.append(f"anilist:{self.anilist_id}")
        if self.provider_series_id:
            aliases.append(f"provider:{self.provider_series_id}")
        if self.series_id:
            aliases.append(f"series:{self.series_id}")
        return aliases

    def title_alias(self) -> Optional[str]:
        normalized = normalize_title(self.title)
        return f"title:{normalized}" if normalized else None

    def aliases(self) -> List[str]:
        title = self.title_alias()
        return self.id_aliases() + ([title] if title else [])

    def is_empty(self) -> bool:
        return not self.aliases()


@dataclass
class HistoryItem:
    """A detached copy of one HistoryRecord."""
    id: str
    series_title: str
    series_id: Optional[str] = None
    anilist_id: Optional[str] = None
    provider_series_id: Optional[str] = None
    series_image: Optional[str] = None
    source: Optional[str] = None
    chapter_id: Optional[str] = None
    chapter_number: Optional[str] = None
    chapter_title: Optional[str] = None
    page: Optional[int] = None
    last_read_at: Optional[datetime] = None
    read_chapters: Set[str] = field(default_factory=set)

    @classmethod
    def from_record(cls, record: HistoryRecord) -> 'HistoryItem':
        return cls(
            id=record.id,
            series_title=record.series_title,
            series_id=record.series_id,
            anilist_id=record.anilist_id,
            provider_series_id=record.provider_series_id,
            series_image=record.series_image,
            source=record.source,
            chapter_id=record.chapter_id,
            chapter_number=record.chapter_number,
            chapter_title=record.chapter_title,
            page=record.page,
            last_read_at=record.last_read_at,
            read_chapters=set(record.read_chapters or []),
        )

    @property
    def progress(self) -> Optional[float]:
        return parse_chapter_number(self.chapter_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'series_title': self.series_title,
            'series_id': self.series_id,
            'anilist_id': self.anilist_id,
            'provider_series_id': self.provider_series_id,
            'series_image': self.series_image,
            'source': self.source,
            'chapter_id': self.chapter_id,
            'chapter_number': self.chapter_number,
            'chapter_title': self.chapter_title,
            'page': self.page,
            'last_read_at': self.last_read_at.isoformat() if self.last_read_at else None,
            'read_chapters': sorted(self.read_chapters),
        }


# =============================================================================
# CHAPTER LIST HELPERS
# =============================================================================

def latest_chapter(chapters: Sequence[Chapter]) -> Optional[Chapter]:
    """Highest-numbered chapter; the first one when none has a readable number."""
    if not chapters:
        return None
    best = chapters[0]
    best_number = parse_chapter_number(best.number)
    for chapter in chapters:
        number = parse_chapter_number(chapter.number)
        if number is not None and (best_number is None or number > best_number):
            best, best_number = chapter, number
    return best


def is_descending(chapters: Sequence[Chapter]) -> bool:
    """Whether the list runs newest first (providers usually do)."""
    numbers = [n for n in (parse_chapter_number(c.number) for c in chapters) if n is not None]
    if len(numbers) < 2:
        return True
    return numbers[0] >= numbers[-1]


def _numbered(chapters: Sequence[Chapter]):
    """(chapter, number) pairs for chapters whose number can be read."""
    for chapter in chapters:
        number = parse_chapter_number(chapter.number)
        if number is not None:
            yield chapter, number


def chapters_up_to(chapters: Sequence[Chapter], target: Chapter) -> List[Chapter]:
    """
    Every chapter at or before target.

    Compares numbers when the target has one, so list order does not
    matter. Otherwise falls back to list position, reading "before" as
    "after in the list" for a newest-first list.
    """
    target_number = parse_chapter_number(target.number)
    if target_number is not None:
        selected = [c for c, n in _numbered(chapters) if n <= target_number]
        if not any(c.id == target.id for c in selected):
            selected.append(target)
        return selected

    index = next((i for i, c in enumerate(chapters) if c.id == target.id), None)
    if index is None:
        return [target]
    if is_descending(chapters):
        return list(chapters[index:])
    return list(chapters[:index + 1])


def chapters_in_range(chapters: Sequence[Chapter], start: float, end: float) -> List[Chapter]:
    """Chapters whose number lies in [start, end] (bounds in either order)."""
    low, high = min(start, end), max(start, end)
    return [c for c, n in _numbered(chapters) if low <= n <= high]


def chapters_at_or_below(chapters: Sequence[Chapter], progress: float) -> List[Chapter]:
    return [c for c, n in _numbered(chapters) if n <= progress]


# =============================================================================
# LEDGER
# =============================================================================

class HistoryLedger:
    """
    Alias-indexed local history.

    Usage:
        ledger = HistoryLedger()
        keys = HistoryKeys(anilist_id="151807", title="Solo Leveling")
        ledger.record_open(keys, chapter)
        ledger.mark_up_to(keys, "ch-40", chapters)
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _lookup(self, session: Session, keys: HistoryKeys) -> Optional[HistoryRecord]:
        for alias in keys.id_aliases():
            found = session.get(HistoryAlias, alias)
            if found is not None:
                return found.record
        title_alias = keys.title_alias()
        if title_alias:
            found = session.get(HistoryAlias, title_alias)
            if found is not None:
                return found.record
        return None

    def _register(self, session: Session, record: HistoryRecord, keys: HistoryKeys) -> None:
        """Link every alias that no other record claims yet, and fill missing ids."""
        for alias in dict.fromkeys(keys.aliases()):
            if session.get(HistoryAlias, alias) is None:
                session.add(HistoryAlias(alias=alias, record_id=record.id))
        if keys.series_id and not record.series_id:
            record.series_id = keys.series_id
        if keys.anilist_id and not record.anilist_id:
            record.anilist_id = keys.anilist_id
        if keys.provider_series_id and not record.provider_series_id:
            record.provider_series_id = keys.provider_series_id
        session.flush()

    def _resolve(self, session: Session, keys: HistoryKeys) -> Optional[HistoryRecord]:
        record = self._lookup(session, keys)
        if record is not None:
            self._register(session, record, keys)
        return record

    def _resolve_or_create(
        self,
        session: Session,
        keys: HistoryKeys,
        series_title: Optional[str] = None,
        series_image: Optional[str] = None,
        source: Optional[str] = None
    ) -> HistoryRecord:
        record = self._resolve(session, keys)
        if record is not None:
            if series_image:
                record.series_image = series_image
            if source:
                record.source = source
            return record

        title = series_title or keys.title
        if not title:
            raise ValueError("A series title is required to start a history item")
        record = HistoryRecord(
            id=str(uuid.uuid4()),
            series_id=keys.series_id,
            anilist_id=keys.anilist_id,
            provider_series_id=keys.provider_series_id,
            series_title=title,
            series_image=series_image,
            source=source,
            read_chapters=[],
        )
        session.add(record)
        session.flush()
        if keys.title is None:
            keys = HistoryKeys(keys.series_id, keys.anilist_id, keys.provider_series_id, title)
        self._register(session, record, keys)
        logger.info(f"History item created: {title}")
        return record

    @staticmethod
    def _set_read(record: HistoryRecord, chapter_ids: Iterable[str]) -> None:
        # JSON columns only notice reassignment
        record.read_chapters = list(dict.fromkeys(chapter_ids))

    @staticmethod
    def _set_pointer(record: HistoryRecord, chapter: Optional[Chapter], page: Optional[int] = None) -> None:
        if chapter is None:
            record.chapter_id = None
            record.chapter_number = None
            record.chapter_title = None
            record.page = None
            return
        record.chapter_id = chapter.id
        record.chapter_number = chapter.number
        record.chapter_title = chapter.title
        record.page = page
        record.last_read_at = _utcnow()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_item(self, keys: HistoryKeys) -> Optional[HistoryItem]:
        """The item reachable through any of the keys, or None."""
        if keys.is_empty():
            return None
        with self._session() as session:
            record = self._resolve(session, keys)
            return HistoryItem.from_record(record) if record else None

    def peek_item(self, keys: HistoryKeys) -> Optional[HistoryItem]:
        """Like get_item, but never links the other keys to the item found."""
        if keys.is_empty():
            return None
        with self._session() as session:
            record = self._lookup(session, keys)
            return HistoryItem.from_record(record) if record else None

    def get_read_chapters(self, keys: HistoryKeys) -> Set[str]:
        item = self.get_item(keys)
        return set(item.read_chapters) if item else set()

    def local_progress(self, keys: HistoryKeys) -> Optional[float]:
        """Numeric value of the last-read chapter, if any."""
        item = self.peek_item(keys)
        return item.progress if item else None

    def get_page(self, keys: HistoryKeys, chapter_id: str) -> int:
        """Page to resume at: the saved page for the same chapter, else 1."""
        item = self.get_item(keys)
        if item and item.chapter_id == chapter_id:
            return item.page or 1
        return 1

    def recent(self, limit: int = RECENT_LIMIT) -> List[HistoryItem]:
        """Most recently read items, newest first."""
        with self._session() as session:
            rows = session.query(HistoryRecord).filter(
                HistoryRecord.chapter_id.isnot(None)
            ).order_by(HistoryRecord.last_read_at.desc()).limit(limit).all()
            return [HistoryItem.from_record(row) for row in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record_open(
        self,
        keys: HistoryKeys,
        chapter: Chapter,
        series_title: Optional[str] = None,
        series_image: Optional[str] = None,
        source: Optional[str] = None,
        page: Optional[int] = None
    ) -> HistoryItem:
        """A chapter was opened: move the pointer and count it as read."""
        with self._session() as session:
            record = self._resolve_or_create(session, keys, series_title, series_image, source)
            self._set_pointer(record, chapter, page)
            self._set_read(record, list(record.read_chapters or []) + [chapter.id])
            session.flush()
            return HistoryItem.from_record(record)

    def toggle_read(self, keys: HistoryKeys, chapter_id: str, series_title: Optional[str] = None) -> Set[str]:
        """Flip one chapter in or out of the read set; returns the new set."""
        with self._session() as session:
            record = self._resolve_or_create(session, keys, series_title)
            current = list(record.read_chapters or [])
            if chapter_id in current:
                current.remove(chapter_id)
            else:
                current.append(chapter_id)
            self._set_read(record, current)
            return set(current)

    def _union(self, keys: HistoryKeys, chapter_ids: Iterable[str], series_title: Optional[str] = None) -> Set[str]:
        with self._session() as session:
            record = self._resolve_or_create(session, keys, series_title)
            self._set_read(record, list(record.read_chapters or []) + list(chapter_ids))
            return set(record.read_chapters)

    def mark_up_to(
        self,
        keys: HistoryKeys,
        chapter_id: str,
        chapters: Sequence[Chapter],
        series_title: Optional[str] = None
    ) -> Set[str]:
        """Mark the chapter and everything before it as read in one write."""
        target = next((c for c in chapters if c.id == chapter_id), None)
        if target is None:
            raise ValueError(f"Chapter {chapter_id!r} is not in the chapter list")
        selected = chapters_up_to(chapters, target)
        logger.debug(f"Mark up to {target.number}: {len(selected)} chapters")
        return self._union(keys, (c.id for c in selected), series_title)

    def mark_range(
        self,
        keys: HistoryKeys,
        start: Any,
        end: Any,
        chapters: Sequence[Chapter],
        series_title: Optional[str] = None
    ) -> Set[str]:
        """Mark every chapter numbered within [start, end] as read."""
        low, high = parse_chapter_number(start), parse_chapter_number(end)
        if low is None or high is None:
            raise ValueError(f"Unreadable chapter range: {start!r} - {end!r}")
        selected = chapters_in_range(chapters, low, high)
        return self._union(keys, (c.id for c in selected), series_title)

    def mark_all(self, keys: HistoryKeys, chapters: Sequence[Chapter], series_title: Optional[str] = None) -> HistoryItem:
        """Mark the whole list read and point at its latest chapter."""
        with self._session() as session:
            record = self._resolve_or_create(session, keys, series_title)
            self._set_read(record, list(record.read_chapters or []) + [c.id for c in chapters])
            self._set_pointer(record, latest_chapter(chapters))
            session.flush()
            return HistoryItem.from_record(record)

    def sync_to_progress(
        self,
        keys: HistoryKeys,
        progress: float,
        chapters: Sequence[Chapter],
        exact: bool = False,
        series_title: Optional[str] = None
    ) -> HistoryItem:
        """
        Bring local history to a numeric progress value.

        exact=False unions every chapter at or below progress into the read
        set. exact=True makes the read set exactly those chapters. Either way
        the pointer moves to the highest of them; with exact=True and no
        chapter at or below progress, the pointer is dropped.
        """
        selected = chapters_at_or_below(chapters, progress)
        with self._session() as session:
            record = self._resolve_or_create(session, keys, series_title)
            ids = [c.id for c in selected]
            if not exact:
                ids = list(record.read_chapters or []) + ids
            self._set_read(record, ids)
            if selected:
                self._set_pointer(record, latest_chapter(selected))
            elif exact:
                self._set_pointer(record, None)
            session.flush()
            return HistoryItem.from_record(record)

    def attach_catalog_id(self, keys: HistoryKeys, catalog_id: str) -> Optional[HistoryItem]:
        """
        Record that a series is now linked to a catalog entry. The catalog
        alias moves to this record even if another record held it.
        """
        with self._session() as session:
            record = self._resolve(session, keys)
            if record is None:
                return None
            alias = f"anilist:{catalog_id}"
            existing = session.get(HistoryAlias, alias)
            if existing is None:
                session.add(HistoryAlias(alias=alias, record_id=record.id))
            elif existing.record_id != record.id:
                existing.record = record
            record.anilist_id = str(catalog_id)
            session.flush()
            return HistoryItem.from_record(record)

    def clear_series(self, keys: HistoryKeys) -> bool:
        """Empty the read set and drop the last-read pointer of one item."""
        with self._session() as session:
            record = self._resolve(session, keys)
            if record is None:
                return False
            self._set_read(record, [])
            self._set_pointer(record, None)
            logger.info(f"History cleared for {record.series_title}")
            return True

    def clear(self) -> int:
        """Delete all local history. Returns the number of items removed."""
        with self._session() as session:
            session.query(HistoryAlias).delete(synchronize_session=False)
            removed = session.query(HistoryRecord).delete(synchronize_session=False)
            logger.info(f"History cleared: {removed} items")
            return removed
