"""
Title matching: normalization, candidate scoring and search term building.
"""

from .matcher import (
    normalize_title, score_title, score_titles, TitleMatcher, ScoredCandidate
)
from .terms import build_search_terms, build_reverse_terms, term_quality

__all__ = [
    'normalize_title', 'score_title', 'score_titles', 'TitleMatcher', 'ScoredCandidate',
    'build_search_terms', 'build_reverse_terms', 'term_quality',
]
