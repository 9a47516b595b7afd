import pytest

from mangalink_app.history import HistoryKeys
from mangalink_app.history.ledger import chapters_up_to, is_descending, latest_chapter
from sources.base import Chapter

from conftest import make_chapters


KEYS = HistoryKeys(anilist_id="105398", provider_series_id="solo-leveling", title="Solo Leveling")


def test_mark_up_to_compares_numbers(ledger):
    chapters = make_chapters(["1", "2", "3.5", "4"])
    read = ledger.mark_up_to(KEYS, "ch-3.5", chapters)
    assert read == {"ch-1", "ch-2", "ch-3.5"}


def test_mark_up_to_ignores_list_order(ledger):
    chapters = make_chapters(["4", "3.5", "2", "1"])
    read = ledger.mark_up_to(KEYS, "ch-3.5", chapters)
    assert read == {"ch-1", "ch-2", "ch-3.5"}


def test_mark_up_to_skips_unnumbered_chapters(ledger):
    chapters = make_chapters(["1", "2", "Extra", "3"])
    read = ledger.mark_up_to(KEYS, "ch-2", chapters)
    assert read == {"ch-1", "ch-2"}


def test_mark_up_to_unknown_chapter_raises(ledger):
    with pytest.raises(ValueError):
        ledger.mark_up_to(KEYS, "ch-99", make_chapters(["1", "2"]))


def test_unnumbered_target_falls_back_to_position():
    newest_first = make_chapters(["3", "Extra", "2", "1"])
    target = newest_first[1]
    assert [c.id for c in chapters_up_to(newest_first, target)] == ["ch-Extra", "ch-2", "ch-1"]

    oldest_first = make_chapters(["1", "2", "Extra", "3"])
    target = oldest_first[2]
    assert [c.id for c in chapters_up_to(oldest_first, target)] == ["ch-1", "ch-2", "ch-Extra"]


def test_mark_up_to_merges_with_existing(ledger):
    chapters = make_chapters(["1", "2", "3", "4", "5"])
    ledger.toggle_read(KEYS, "ch-5")
    read = ledger.mark_up_to(KEYS, "ch-2", chapters)
    assert read == {"ch-1", "ch-2", "ch-5"}


def test_item_is_found_by_any_key(ledger):
    chapter = Chapter(id="ch-10", number="10", title="Chapter 10")
    ledger.record_open(HistoryKeys(provider_series_id="solo-leveling", title="Solo Leveling"), chapter, page=4)

    by_title = ledger.get_item(HistoryKeys(title="solo leveling!"))
    by_provider = ledger.get_item(HistoryKeys(provider_series_id="solo-leveling"))
    assert by_title.id == by_provider.id
    assert by_title.chapter_id == "ch-10"

    # A new key seen alongside a known one becomes an alias
    ledger.get_item(HistoryKeys(anilist_id="105398", title="Solo Leveling"))
    by_catalog = ledger.get_item(HistoryKeys(anilist_id="105398"))
    assert by_catalog.id == by_title.id
    assert by_catalog.anilist_id == "105398"


def test_unknown_keys_find_nothing(ledger):
    assert ledger.get_item(HistoryKeys(anilist_id="1")) is None
    assert ledger.get_item(HistoryKeys()) is None
    assert ledger.get_read_chapters(HistoryKeys(title="Berserk")) == set()


def test_record_open_needs_a_title(ledger):
    with pytest.raises(ValueError):
        ledger.record_open(HistoryKeys(anilist_id="1"), Chapter(id="c", number="1"))


def test_record_open_moves_pointer_and_marks_read(ledger):
    ledger.record_open(KEYS, Chapter(id="ch-1", number="1"), series_image="https://img/sl.jpg", source="asurascans")
    item = ledger.record_open(KEYS, Chapter(id="ch-2", number="2"), page=7)

    assert item.chapter_id == "ch-2"
    assert item.page == 7
    assert item.read_chapters == {"ch-1", "ch-2"}
    assert item.series_image == "https://img/sl.jpg"
    assert ledger.local_progress(KEYS) == 2.0


def test_get_page_only_resumes_same_chapter(ledger):
    ledger.record_open(KEYS, Chapter(id="ch-2", number="2"), page=7)

    assert ledger.get_page(KEYS, "ch-2") == 7
    assert ledger.get_page(KEYS, "ch-3") == 1
    assert ledger.get_page(HistoryKeys(title="Unknown"), "ch-2") == 1


def test_toggle_read(ledger):
    assert ledger.toggle_read(KEYS, "ch-3") == {"ch-3"}
    assert ledger.toggle_read(KEYS, "ch-4") == {"ch-3", "ch-4"}
    assert ledger.toggle_read(KEYS, "ch-3") == {"ch-4"}


def test_mark_range_accepts_bounds_in_any_order(ledger):
    chapters = make_chapters(["1", "2", "3", "4", "5", "Extra"])
    assert ledger.mark_range(KEYS, "4", 2, chapters) == {"ch-2", "ch-3", "ch-4"}

    with pytest.raises(ValueError):
        ledger.mark_range(KEYS, "Extra", "3", chapters)


def test_mark_all_points_at_latest(ledger):
    chapters = make_chapters(["3", "2", "1"])
    item = ledger.mark_all(KEYS, chapters)

    assert item.read_chapters == {"ch-1", "ch-2", "ch-3"}
    assert item.chapter_id == "ch-3"


def test_sync_to_progress_union_and_exact(ledger):
    chapters = make_chapters(range(1, 11))
    ledger.toggle_read(KEYS, "ch-9")

    item = ledger.sync_to_progress(KEYS, 3, chapters)
    assert item.read_chapters == {"ch-1", "ch-2", "ch-3", "ch-9"}
    assert item.chapter_id == "ch-3"

    item = ledger.sync_to_progress(KEYS, 2, chapters, exact=True)
    assert item.read_chapters == {"ch-1", "ch-2"}
    assert item.progress == 2.0

    item = ledger.sync_to_progress(KEYS, 0, chapters, exact=True)
    assert item.read_chapters == set()
    assert item.chapter_id is None


def test_attach_catalog_id_moves_alias(ledger):
    ledger.record_open(HistoryKeys(title="Other Series"), Chapter(id="x-1", number="1"))
    ledger.attach_catalog_id(HistoryKeys(title="Other Series"), "105398")

    ledger.record_open(HistoryKeys(title="Solo Leveling"), Chapter(id="ch-1", number="1"))
    item = ledger.attach_catalog_id(HistoryKeys(title="Solo Leveling"), "105398")

    assert item.anilist_id == "105398"
    assert ledger.get_item(HistoryKeys(anilist_id="105398")).series_title == "Solo Leveling"
    assert ledger.attach_catalog_id(HistoryKeys(title="Nothing Here"), "1") is None


def test_clear_series_and_clear(ledger):
    ledger.mark_all(KEYS, make_chapters(["1", "2"]))
    ledger.record_open(HistoryKeys(title="Berserk"), Chapter(id="b-1", number="1"))

    assert ledger.clear_series(KEYS) is True
    item = ledger.get_item(KEYS)
    assert item.read_chapters == set()
    assert item.chapter_id is None
    assert ledger.clear_series(HistoryKeys(title="Missing")) is False

    assert ledger.clear() == 2
    assert ledger.get_item(HistoryKeys(title="Berserk")) is None


def test_recent_lists_opened_items(ledger):
    ledger.record_open(HistoryKeys(title="Berserk"), Chapter(id="b-1", number="1"))
    ledger.record_open(KEYS, Chapter(id="ch-1", number="1"))
    ledger.toggle_read(HistoryKeys(title="Never Opened"), "n-1")

    recent = ledger.recent()
    assert [i.series_title for i in recent] == ["Solo Leveling", "Berserk"]
    assert len(ledger.recent(limit=1)) == 1


def test_chapter_list_helpers():
    chapters = make_chapters(["Extra", "10", "10.5", "9"])
    assert latest_chapter(chapters).id == "ch-10.5"
    assert latest_chapter(make_chapters(["Extra", "Bonus"])).id == "ch-Extra"
    assert latest_chapter([]) is None
    assert is_descending(make_chapters(["3", "2", "1"]))
    assert not is_descending(make_chapters(["1", "2", "3"]))


def test_peek_and_local_progress_do_not_link_new_keys(ledger):
    ledger.record_open(HistoryKeys(provider_series_id="solo-leveling", title="Solo Leveling"), Chapter(id="ch-7", number="7"))
    lookup_keys = HistoryKeys(anilist_id="999", provider_series_id="solo-leveling")

    assert ledger.peek_item(lookup_keys).chapter_id == "ch-7"
    assert ledger.local_progress(lookup_keys) == 7.0
    assert ledger.peek_item(HistoryKeys(anilist_id="999")) is None

    # get_item heals id drift by linking the keys it was given
    ledger.get_item(lookup_keys)
    assert ledger.peek_item(HistoryKeys(anilist_id="999")).chapter_id == "ch-7"
