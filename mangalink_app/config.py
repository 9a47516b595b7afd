"""
================================================================================
MangaLink v1.0 - Configuration
================================================================================
Environment-driven settings for the link engine.

Every knob is read from the environment (a .env file is loaded first by the
package). Matching constants are empirical; they trade false auto-links
against manual disambiguation, so they stay overridable.

    MATCH_AUTO_SELECT_SCORE=0.92
    MATCH_AUTO_SELECT_GAP=0.12
    TERM_ASCII_WEIGHT=0.6
    TERM_LENGTH_WEIGHT=0.35
    TERM_DIGIT_BONUS=0.05
    TERM_LIMIT=8
================================================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, '')
    return [item.strip() for item in raw.split(',') if item.strip()]


@dataclass
class MatchSettings:
    """Tunable constants for ranking, auto-selection and search terms."""
    auto_select_score: float = 0.92
    auto_select_gap: float = 0.12
    ascii_weight: float = 0.6
    length_weight: float = 0.35
    digit_bonus: float = 0.05
    term_limit: int = 8

    @classmethod
    def from_env(cls) -> 'MatchSettings':
        return cls(
            auto_select_score=_env_float('MATCH_AUTO_SELECT_SCORE', cls.auto_select_score),
            auto_select_gap=_env_float('MATCH_AUTO_SELECT_GAP', cls.auto_select_gap),
            ascii_weight=_env_float('TERM_ASCII_WEIGHT', cls.ascii_weight),
            length_weight=_env_float('TERM_LENGTH_WEIGHT', cls.length_weight),
            digit_bonus=_env_float('TERM_DIGIT_BONUS', cls.digit_bonus),
            term_limit=_env_int('TERM_LIMIT', cls.term_limit),
        )


def get_database_url() -> str:
    """
    Get database URL from environment or use SQLite fallback.

    Priority:
      1. DATABASE_URL environment variable
      2. Fallback to SQLite (mangalink.db)
    """
    db_url = os.environ.get('DATABASE_URL')
    if db_url:
        # Handle Heroku's postgres:// -> postgresql://
        if db_url.startswith('postgres://'):
            db_url = db_url.replace('postgres://', 'postgresql://', 1)
        return db_url
    return f"sqlite:///{os.path.join(BASE_DIR, 'mangalink.db')}"


@dataclass
class Settings:
    """Application settings gathered from the environment."""
    database_url: str = field(default_factory=get_database_url)
    search_cache_ttl: float = 600.0
    search_cache_max_entries: int = 40
    enabled_providers: List[str] = field(default_factory=list)
    anilist_token: Optional[str] = None
    match: MatchSettings = field(default_factory=MatchSettings)

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            database_url=get_database_url(),
            search_cache_ttl=_env_float('SEARCH_CACHE_TTL', 600.0),
            search_cache_max_entries=_env_int('SEARCH_CACHE_MAX_ENTRIES', 40),
            enabled_providers=_env_list('MANGALINK_PROVIDERS'),
            anilist_token=os.environ.get('ANILIST_TOKEN') or None,
            match=MatchSettings.from_env(),
        )
