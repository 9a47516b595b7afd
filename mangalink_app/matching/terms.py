"""
Search term builder.

Turns a catalog entry's title variants into a short, ordered list of
provider search queries. Mostly non-Latin titles and very short or very
long titles make poor queries on scraped sites, so they are pushed down
the list rather than dropped.
"""

import re
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..catalog.models import CatalogEntry
from ..config import MatchSettings
from .matcher import normalize_title

logger = logging.getLogger(__name__)

# Per-field bias added to the quality score. Synonyms rank highest: they are
# usually the disambiguating name a site actually uses.
FIELD_BIAS: Dict[str, float] = {
    'synonym': 0.20,
    'synonym_plain': 0.18,
    'english': 0.15,
    'title': 0.15,
    'romaji': 0.10,
    'native': 0.0,
    'alt': 0.05,
}

IDEAL_MIN_LENGTH = 6
IDEAL_MAX_LENGTH = 40


def _length_score(text: str) -> float:
    """1.0 for 6-40 characters, decaying linearly outside that range."""
    length = len(text)
    if length < IDEAL_MIN_LENGTH:
        return length / IDEAL_MIN_LENGTH
    if length > IDEAL_MAX_LENGTH:
        return max(0.0, 1.0 - (length - IDEAL_MAX_LENGTH) / IDEAL_MAX_LENGTH)
    return 1.0


def term_quality(text: str, settings: Optional[MatchSettings] = None) -> float:
    """
    How good a string is as a provider search query.

    0.6 * ASCII ratio + 0.35 * length score + 0.05 if it contains a digit
    (weights from MatchSettings).
    """
    settings = settings or MatchSettings()
    text = text.strip()
    if not text:
        return 0.0
    ascii_ratio = sum(1 for ch in text if ord(ch) < 128) / len(text)
    digit = settings.digit_bonus if any(ch.isdigit() for ch in text) else 0.0
    return settings.ascii_weight * ascii_ratio + settings.length_weight * _length_score(text) + digit


def _candidates(entry: CatalogEntry) -> List[Tuple[str, str]]:
    t = entry.titles
    pairs = [
        ('english', t.english),
        ('title', t.user_preferred),
        ('romaji', t.romaji),
        ('native', t.native),
    ]
    for synonym in entry.synonyms:
        pairs.append(('synonym', synonym))
    for synonym in entry.synonyms:
        plain = re.sub(r'\s+', ' ', re.sub(r'[,:]', ' ', synonym or '')).strip()
        if plain and plain != synonym:
            pairs.append(('synonym_plain', plain))
    return [(field, value.strip()) for field, value in pairs if value and value.strip()]


def rank_terms(pairs: Iterable[Tuple[str, str]], settings: Optional[MatchSettings] = None) -> List[str]:
    """De-duplicate by normalized key (highest score wins), sort, truncate."""
    settings = settings or MatchSettings()
    best: Dict[str, Tuple[float, int, str]] = {}
    for order, (field, text) in enumerate(pairs):
        key = normalize_title(text)
        if not key:
            continue
        score = FIELD_BIAS.get(field, 0.0) + term_quality(text, settings)
        current = best.get(key)
        if current is None or score > current[0]:
            best[key] = (score, order, text)

    ranked = sorted(best.values(), key=lambda item: (-item[0], item[1]))
    return [text for _, _, text in ranked[:settings.term_limit]]


def build_search_terms(entry: CatalogEntry, settings: Optional[MatchSettings] = None) -> List[str]:
    """
    Ordered provider search queries for a catalog entry, best first.

    Example:
        english "Solo Leveling", romaji "Ore dake Level Up na Ken",
        native "나 혼자만 레벨업", synonym "Only I Level Up"
        -> ["Only I Level Up", "Solo Leveling", "Ore dake Level Up na Ken", "나 혼자만 레벨업"]
    """
    terms = rank_terms(_candidates(entry), settings)
    logger.debug(f"Search terms for catalog {entry.id}: {terms}")
    return terms


def build_reverse_terms(title: str, alt_titles: Iterable[str] = (), settings: Optional[MatchSettings] = None) -> List[str]:
    """Catalog search queries for a provider entry (its title, then alternates)."""
    pairs = [('title', title)] + [('alt', alt) for alt in alt_titles if alt]
    return rank_terms([(f, v.strip()) for f, v in pairs if v and v.strip()], settings)
