"""
================================================================================
MangaLink v1.0 - Catalog Models
================================================================================
A CatalogEntry is the authoritative record for a series: stable id, every
title variant the catalog knows, and the reader's list state (progress and
list status) when an account is attached.

The link engine treats entries as read-only, except that it may ask the
catalog to move the progress counter.
================================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


class ListStatus(str, Enum):
    """Reader's list status on the catalog."""
    READING = "reading"
    PLANNING = "planning"
    COMPLETED = "completed"
    PAUSED = "paused"
    DROPPED = "dropped"
    REPEATING = "repeating"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional['ListStatus']:
        """Accept our names or AniList's (CURRENT, PLANNING, ...)."""
        if not value:
            return None
        value = value.strip().lower()
        aliases = {'current': cls.READING, 'planning': cls.PLANNING}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class CatalogTitles:
    """Title variants (any may be missing)."""
    romaji: Optional[str] = None
    english: Optional[str] = None
    native: Optional[str] = None
    user_preferred: Optional[str] = None


@dataclass
class CatalogEntry:
    id: str
    titles: CatalogTitles = field(default_factory=CatalogTitles)
    synonyms: List[str] = field(default_factory=list)
    progress: Optional[int] = None
    list_status: Optional[ListStatus] = None
    image: Optional[str] = None
    status: Optional[str] = None
    chapters: Optional[int] = None

    @property
    def title(self) -> str:
        """Display title: user preference, then English, romaji, native."""
        t = self.titles
        return t.user_preferred or t.english or t.romaji or t.native or "Unknown"

    def all_titles(self) -> List[str]:
        """Every known title and synonym, display title first, no duplicates."""
        t = self.titles
        ordered = [self.title, t.english, t.romaji, t.native, t.user_preferred] + list(self.synonyms)
        seen = set()
        result = []
        for title in ordered:
            if title and title not in seen:
                seen.add(title)
                result.append(title)
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'titles': {
                'romaji': self.titles.romaji,
                'english': self.titles.english,
                'native': self.titles.native,
                'user_preferred': self.titles.user_preferred,
            },
            'synonyms': list(self.synonyms),
            'progress': self.progress,
            'list_status': self.list_status.value if self.list_status else None,
            'image': self.image,
            'status': self.status,
            'chapters': self.chapters,
        }
