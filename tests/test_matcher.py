import pytest

from mangalink_app.config import MatchSettings
from mangalink_app.matching import TitleMatcher, normalize_title, score_title
from sources.base import ProviderEntry

from conftest import solo_leveling


@pytest.mark.parametrize("raw", [
    "Solo Leveling: Ragnarok",
    "  One-Piece!! ",
    "나 혼자만 레벨업",
    "!!!",
    "",
    "Re:Zero kara Hajimeru Isekai Seikatsu",
    "ÉTOILE ~ v2.5",
])
def test_normalize_is_idempotent(raw):
    once = normalize_title(raw)
    assert normalize_title(once) == once


def test_normalize_collapses_punctuation():
    assert normalize_title("Solo Leveling: Ragnarok") == "solo leveling ragnarok"
    assert normalize_title("  One-Piece!! ") == "one piece"


def test_normalize_keeps_non_latin_titles():
    assert normalize_title("  나 혼자만 레벨업 ") == "나 혼자만 레벨업"


def test_exact_and_containment_scores():
    assert score_title("Solo Leveling", ["solo leveling!"]) == 1.0
    assert score_title("Solo Leveling Side Story", ["Solo Leveling"]) == 0.9
    assert score_title("Leveling", ["Solo Leveling"]) == 0.9


def test_token_overlap_score():
    # 2 of 3 tokens shared, different first word
    assert score_title("Leveling Solo Again", ["Solo Leveling"]) == pytest.approx(0.5 + 0.35 * 2 / 3)


def test_shared_leading_word_gets_bonus():
    assert score_title("Solo Adventures", ["Solo Leveling"]) == pytest.approx(0.5 + 0.35 * 0.5 + 0.08)


def test_prefix_bonus_is_word_level():
    # a literal prefix is containment
    assert score_title("Solo Lev", ["Solo Leveling"]) == 0.9
    # a leading word that only starts the same gets no bonus
    assert score_title("Sol Leveling", ["Solo Leveling"]) == pytest.approx(0.5 + 0.35 * 0.5)


def test_overlap_score_is_capped():
    assert score_title("One Piece Party", ["One Party Piece"]) == 0.88


def test_best_reference_wins():
    assert score_title("Only I Level Up", ["Solo Leveling", "Only I Level Up"]) == 1.0
    assert score_title("Berserk", ["Solo Leveling"]) == 0.5


def test_base_series_and_spin_off_are_ambiguous():
    matcher = TitleMatcher()
    candidates = [
        ProviderEntry(id="a", title="Solo Leveling Side Story"),
        ProviderEntry(id="b", title="Solo Leveling"),
    ]
    ranked = matcher.rank(candidates, ["Solo Leveling"])

    assert [c.item.id for c in ranked] == ["b", "a"]
    assert ranked[0].score - ranked[1].score < 0.12
    assert not matcher.is_confident(ranked)
    assert matcher.pick(ranked) is None


def test_single_candidate_always_auto_selects():
    matcher = TitleMatcher()
    ranked = matcher.rank([ProviderEntry(id="x", title="Something Else Entirely")], ["Solo Leveling"])

    assert matcher.is_confident(ranked)
    assert matcher.pick(ranked).item.id == "x"


def test_clear_winner_auto_selects():
    matcher = TitleMatcher()
    ranked = matcher.rank(
        [ProviderEntry(id="1", title="Solo Leveling"), ProviderEntry(id="2", title="Berserk")],
        ["Solo Leveling"],
    )
    assert matcher.pick(ranked).item.id == "1"


def test_no_candidates_is_not_confident():
    assert not TitleMatcher().is_confident([])


def test_thresholds_are_configurable():
    matcher = TitleMatcher(MatchSettings(auto_select_gap=0.05))
    ranked = matcher.rank(
        [ProviderEntry(id="a", title="Solo Leveling Side Story"), ProviderEntry(id="b", title="Solo Leveling")],
        ["Solo Leveling"],
    )
    assert matcher.is_confident(ranked)


def test_rank_catalog_entries_by_any_title():
    entry = solo_leveling()
    matcher = TitleMatcher()
    ranked = matcher.rank([entry], ["Only I Level Up"], titles_of=lambda e: e.all_titles())

    assert ranked[0].score == 1.0
    assert ranked[0].title == "Solo Leveling"
