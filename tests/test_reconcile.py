import asyncio

import pytest

from mangalink_app.errors import CatalogError, ReconcileStateError
from mangalink_app.history import HistoryKeys
from mangalink_app.reconcile import (
    ReconcileEngine, ReconcilePolicy, ReconcileState, RemapKind, has_conflict
)
from sources.base import Chapter, ProviderEntry

from conftest import FakeCatalog, make_chapters, solo_leveling


KEYS = HistoryKeys(anilist_id="105398", provider_series_id="solo-leveling", title="Solo Leveling")
CHAPTERS = make_chapters(range(1, 51))


def _entry():
    return ProviderEntry(id="solo-leveling", title="Solo Leveling", source="asurascans", chapters=list(CHAPTERS))


def _engine(mappings, ledger, remote=12, **catalog_kwargs):
    catalog = FakeCatalog(entries=[solo_leveling(progress=remote)], **catalog_kwargs)
    return ReconcileEngine(catalog, mappings, ledger), catalog


def _begin(engine, catalog, **kwargs):
    kwargs.setdefault("catalog_entry", catalog.entries["105398"])
    kwargs.setdefault("history_keys", KEYS)
    return asyncio.run(engine.begin_remap("105398", "asurascans", _entry(), **kwargs))


def _read_through(ledger, number):
    ledger.record_open(KEYS, Chapter(id=f"ch-{number}", number=str(number)))


def test_conflict_rules():
    assert has_conflict(40, 12)
    assert has_conflict(None, 12)
    assert not has_conflict(None, None)
    assert not has_conflict(0, 0)
    assert not has_conflict(12.5, 12)
    assert has_conflict(13, 12)


def test_no_conflict_saves_mapping_immediately(mappings, ledger):
    engine, catalog = _engine(mappings, ledger, remote=None)

    assert _begin(engine, catalog) is None
    assert mappings.get_by_catalog_id("105398", "asurascans").provider_id == "solo-leveling"
    assert catalog.progress_updates == []


def test_conflict_presents_choice_without_writing(mappings, ledger):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)

    context = _begin(engine, catalog)

    assert context.state == ReconcileState.PRESENTING_CHOICE
    assert context.local_progress == 40.0
    assert context.remote_progress == 12
    assert mappings.get_by_catalog_id("105398", "asurascans") is None
    assert catalog.fetches == []


def test_higher_pushes_local_and_fills_history(mappings, ledger):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.HIGHER))

    assert context.state == ReconcileState.RESOLVED
    assert outcome.progress_synced
    assert outcome.remote_progress == 40
    assert catalog.progress_updates == [("105398", 40)]
    assert ledger.get_read_chapters(KEYS) == {f"ch-{n}" for n in range(1, 41)}
    assert mappings.get_by_catalog_id("105398", "asurascans").provider_id == "solo-leveling"


def test_higher_adopts_remote_when_it_leads(mappings, ledger):
    _read_through(ledger, 5)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.HIGHER))

    assert catalog.progress_updates == []
    assert outcome.local_progress == 12.0
    assert ledger.get_read_chapters(KEYS) == {f"ch-{n}" for n in range(1, 13)}


def test_catalog_policy_makes_history_exact(mappings, ledger):
    _read_through(ledger, 40)
    ledger.toggle_read(KEYS, "ch-45")
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.CATALOG))

    assert catalog.progress_updates == []
    assert ledger.get_read_chapters(KEYS) == {f"ch-{n}" for n in range(1, 13)}
    assert ledger.local_progress(KEYS) == 12.0
    assert outcome.local_progress == 12.0


def test_provider_policy_pushes_local(mappings, ledger):
    _read_through(ledger, 5)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.PROVIDER))

    assert catalog.progress_updates == [("105398", 5)]
    assert outcome.remote_progress == 5
    assert ledger.get_read_chapters(KEYS) == {"ch-5"}


def test_none_policy_only_saves_mapping(mappings, ledger):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, "none"))

    assert outcome.policy == ReconcilePolicy.NONE
    assert catalog.progress_updates == []
    assert ledger.get_read_chapters(KEYS) == {"ch-40"}
    assert mappings.get_by_catalog_id("105398", "asurascans") is not None


@pytest.mark.parametrize("catalog_kwargs", [
    {"update_ok": False},
    {"update_error": RuntimeError("network down")},
])
def test_failed_push_is_partial_and_retryable(mappings, ledger, catalog_kwargs):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger, **catalog_kwargs)
    context = _begin(engine, catalog)

    outcome = asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.HIGHER))

    assert outcome.partial
    assert outcome.error
    assert outcome.remote_progress == 12
    assert mappings.get_by_catalog_id("105398", "asurascans") is not None

    catalog.update_ok = True
    catalog.update_error = None
    retried = asyncio.run(engine.retry_sync(context))

    assert not retried.partial
    assert retried.remote_progress == 40
    assert catalog.progress_updates[-1] == ("105398", 40)


def test_cancel_returns_previous_mapping(mappings, ledger):
    mappings.put("105398", "old-id", "asurascans", {"title": "Solo Leveling (old)"})
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)

    previous = engine.cancel(context)

    assert previous.provider_id == "old-id"
    assert context.state == ReconcileState.CANCELLED
    assert mappings.get_by_catalog_id("105398", "asurascans").provider_id == "old-id"
    with pytest.raises(ReconcileStateError):
        asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.HIGHER))


def test_apply_twice_is_rejected(mappings, ledger):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)
    context = _begin(engine, catalog)
    asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.NONE))

    with pytest.raises(ReconcileStateError):
        asyncio.run(engine.apply_reconcile(context, ReconcilePolicy.HIGHER))
    with pytest.raises(ReconcileStateError):
        engine.cancel(context)


def test_entry_not_on_screen_is_fetched_fresh(mappings, ledger):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger, remote=40)
    stale_other = solo_leveling(progress=3)
    stale_other.id = "999"

    context = _begin(engine, catalog, catalog_entry=stale_other)

    assert context is None
    assert catalog.fetches == ["105398"]


def test_missing_catalog_entry_raises(mappings, ledger):
    engine, _ = _engine(mappings, ledger)
    with pytest.raises(CatalogError):
        asyncio.run(engine.begin_remap("404", "asurascans", _entry(), history_keys=KEYS))


def test_catalog_remap_looks_up_previous_by_provider_id(mappings, ledger):
    mappings.put("777", "solo-leveling", "asurascans")
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)

    context = _begin(engine, catalog, kind=RemapKind.CATALOG)

    assert context.kind == RemapKind.CATALOG
    assert context.previous.catalog_id == "777"
    assert context.to_dict()["previous"]["catalog_id"] == "777"


def test_cancelled_remap_leaves_history_unlinked(mappings, ledger):
    provider_keys = HistoryKeys(provider_series_id="solo-leveling", title="Solo Leveling")
    ledger.record_open(provider_keys, Chapter(id="ch-40", number="40"))
    engine, catalog = _engine(mappings, ledger)
    other = solo_leveling(progress=12)
    other.id = "999"
    catalog.entries["999"] = other

    context = asyncio.run(engine.begin_remap("999", "asurascans", _entry()))
    assert context.local_progress == 40.0
    engine.cancel(context)

    assert ledger.get_item(HistoryKeys(anilist_id="999")) is None
    assert ledger.get_item(provider_keys).anilist_id is None


@pytest.mark.parametrize("policy", [ReconcilePolicy.CATALOG, ReconcilePolicy.HIGHER])
def test_sync_without_chapter_list_keeps_history(mappings, ledger, policy):
    _read_through(ledger, 40)
    engine, catalog = _engine(mappings, ledger)
    bare = ProviderEntry(id="solo-leveling", title="Solo Leveling", source="asurascans")
    context = asyncio.run(engine.begin_remap(
        "105398", "asurascans", bare,
        catalog_entry=catalog.entries["105398"],
        history_keys=KEYS,
    ))

    outcome = asyncio.run(engine.apply_reconcile(context, policy))

    assert outcome.partial
    assert "chapter list" in outcome.error
    assert catalog.progress_updates == []
    assert ledger.get_read_chapters(KEYS) == {"ch-40"}
    assert ledger.local_progress(KEYS) == 40.0
    assert mappings.get_by_catalog_id("105398", "asurascans") is not None

    context.chapters = list(CHAPTERS)
    retried = asyncio.run(engine.retry_sync(context))
    assert retried.progress_synced
