"""
================================================================================
MangaLink v1.0 - Title Matcher
================================================================================
Scores provider search results against the titles a catalog entry is known
by, and decides when the best result is safe to link without asking.

Problem:
  The catalog calls it "Ore dake Level Up na Ken" (romaji), "Solo Leveling"
  (english) and 나 혼자만 레벨업 (native). A provider search returns
  "Solo Leveling", "Solo Leveling: Ragnarok" and "Solo Leveling Side Story".
  Which one, if any, can be linked automatically?

Solution:
  1. Normalize every title the same way (this is also the cache key form)
  2. Score each candidate against every reference title, keep the best:
       exact                       -> 1.0
       substring either direction  -> 0.9
       otherwise                   -> min(0.88, 0.5 + 0.35*overlap + prefix)
  3. Auto-select only when the top score is high AND clearly ahead of the
     runner-up, so a base series never silently links to its spin-off.
================================================================================
"""

import re
import logging
from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, Sequence, TypeVar

from rapidfuzz import fuzz

from ..config import MatchSettings

logger = logging.getLogger(__name__)

T = TypeVar('T')

_NON_ALNUM = re.compile(r'[^0-9a-z]+')


# =============================================================================
# TITLE NORMALIZATION
# =============================================================================

def normalize_title(title: Optional[str]) -> str:
    """
    Canonical form of a title or query.

    Lowercase, every run of non-alphanumeric characters collapsed to one
    space, trimmed. When that leaves nothing (an all-CJK title, say) the
    lowercased, trimmed original is used so the key is never empty for a
    non-empty input.

    Examples:
        "Solo Leveling: Ragnarok" -> "solo leveling ragnarok"
        "  One-Piece!! "          -> "one piece"
        "나 혼자만 레벨업"          -> "나 혼자만 레벨업"
    """
    if not title:
        return ""
    lowered = title.lower()
    normalized = _NON_ALNUM.sub(' ', lowered).strip()
    return normalized or lowered.strip()


# =============================================================================
# SCORING
# =============================================================================

EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.9
OVERLAP_CEILING = 0.88
OVERLAP_BASE = 0.5
OVERLAP_WEIGHT = 0.35
PREFIX_BONUS = 0.08


def _pair_score(candidate: str, reference: str) -> float:
    """Score one normalized candidate against one normalized reference."""
    if not candidate or not reference:
        return 0.0
    if candidate == reference:
        return EXACT_SCORE
    if candidate in reference or reference in candidate:
        return CONTAINS_SCORE

    candidate_tokens = set(candidate.split())
    reference_tokens = set(reference.split())
    shared = len(candidate_tokens & reference_tokens)
    overlap = shared / max(len(candidate_tokens), len(reference_tokens))

    # Prefix means a shared leading word, not a string prefix: a literal
    # prefix is a substring and already scored CONTAINS_SCORE above.
    prefix = PREFIX_BONUS if candidate.split()[0] == reference.split()[0] else 0.0
    return min(OVERLAP_CEILING, OVERLAP_BASE + OVERLAP_WEIGHT * overlap + prefix)


def score_title(candidate: Optional[str], references: Iterable[str]) -> float:
    """
    Best score in [0, 1] of a candidate title against any reference title.

    Examples:
        score_title("Solo Leveling", ["Solo Leveling"])             -> 1.0
        score_title("Solo Leveling Side Story", ["Solo Leveling"])  -> 0.9
        score_title("Leveling Solo Again", ["Solo Leveling"])       -> ~0.73
    """
    normalized_candidate = normalize_title(candidate)
    if not normalized_candidate:
        return 0.0
    best = 0.0
    for reference in references:
        score = _pair_score(normalized_candidate, normalize_title(reference))
        if score > best:
            best = score
            if best >= EXACT_SCORE:
                break
    return best


def score_titles(candidate_titles: Iterable[str], references: Sequence[str]) -> float:
    """Best score across several titles of one candidate (catalog entries have many)."""
    return max((score_title(title, references) for title in candidate_titles), default=0.0)


# =============================================================================
# RANKING
# =============================================================================

@dataclass
class ScoredCandidate(Generic[T]):
    """A candidate with its match score."""
    item: T
    title: str
    score: float

    def to_dict(self) -> dict:
        payload = self.item.to_dict() if hasattr(self.item, 'to_dict') else {'item': self.item}
        payload['score'] = round(self.score, 4)
        return payload


class TitleMatcher:
    """
    Ranks candidates and applies the auto-select rule.

    Thresholds come from MatchSettings so the trade-off between false
    auto-links and manual disambiguation can be tuned per deployment.
    """

    def __init__(self, settings: Optional[MatchSettings] = None):
        self.settings = settings or MatchSettings()

    def rank(self, candidates: Iterable[T], references: Sequence[str], titles_of=None) -> List[ScoredCandidate]:
        """
        Score and sort candidates, best first.

        Args:
            candidates: Provider or catalog entries
            references: Titles the target is known by
            titles_of: Callable returning the titles of a candidate
                (defaults to its `title` attribute)

        Ties on score are broken by rapidfuzz similarity to the first
        reference, then by original position.
        """
        titles_of = titles_of or (lambda c: [c.title])
        scored = []
        for candidate in candidates:
            titles = [t for t in titles_of(candidate) if t]
            if not titles:
                continue
            score = score_titles(titles, references)
            scored.append(ScoredCandidate(item=candidate, title=titles[0], score=score))

        primary = normalize_title(references[0]) if references else ""
        scored.sort(key=lambda s: (-s.score, -fuzz.ratio(normalize_title(s.title), primary)))
        return scored

    def is_confident(self, ranked: Sequence[ScoredCandidate]) -> bool:
        """
        True when the top candidate may be linked without asking.

        Exactly one candidate is always confident. Otherwise the top score
        must reach `auto_select_score` and lead the runner-up by at least
        `auto_select_gap`.
        """
        if not ranked:
            return False
        if len(ranked) == 1:
            return True
        top, runner_up = ranked[0].score, ranked[1].score
        return top >= self.settings.auto_select_score and (top - runner_up) >= self.settings.auto_select_gap

    def pick(self, ranked: Sequence[ScoredCandidate]) -> Optional[ScoredCandidate]:
        """The confident choice, or None when the user has to decide."""
        if self.is_confident(ranked):
            choice = ranked[0]
            logger.info(f"Auto-selected '{choice.title}' (score={choice.score:.2f}, candidates={len(ranked)})")
            return choice
        if ranked:
            logger.info(
                f"Ambiguous: top '{ranked[0].title}' score={ranked[0].score:.2f}, "
                f"runner-up={ranked[1].score if len(ranked) > 1 else 0:.2f}"
            )
        return None
