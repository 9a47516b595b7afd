import asyncio

import httpx

from sources import SourceManager
from sources.asurascans import AsuraScansProvider
from sources.mangadex import MangaDexProvider


MANGA_ID = "32d76d19-8a05-4db0-9fc2-e0b0648fe9d0"


def _manga(manga_id=MANGA_ID):
    return {
        "id": manga_id,
        "attributes": {
            "title": {"en": "Solo Leveling"},
            "altTitles": [{"ko": "나 혼자만 레벨업"}, {"en": "Only I Level Up"}, {"en": "Solo Leveling"}],
            "status": "completed",
        },
        "relationships": [{"type": "cover_art", "attributes": {"fileName": "cover.jpg"}}],
    }


def _chapter(chapter_id, number):
    return {"id": chapter_id, "attributes": {"chapter": number, "title": None, "publishAt": "2024-01-01T00:00:00+00:00"}}


def _mangadex(handler):
    provider = MangaDexProvider(transport=httpx.MockTransport(handler))
    provider.rate_limit = 1000.0
    return provider


def test_mangadex_normalizes_urls_and_uuids():
    provider = MangaDexProvider()
    url = f"https://mangadex.org/title/{MANGA_ID.upper()}/solo-leveling"
    assert provider.normalize_id(url) == MANGA_ID
    assert provider.normalize_id(MANGA_ID) == MANGA_ID
    assert provider.normalize_id(" not-a-uuid ") == "not-a-uuid"


def test_mangadex_search():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": [_manga(), {"attributes": {}}]})

    results = asyncio.run(_mangadex(handler).search("solo leveling", page=2))

    assert len(results) == 1
    entry = results[0]
    assert entry.title == "Solo Leveling"
    assert entry.source == "mangadex"
    assert entry.image == f"https://uploads.mangadex.org/covers/{MANGA_ID}/cover.jpg.256.jpg"
    assert entry.alt_titles == ["나 혼자만 레벨업", "Only I Level Up"]
    assert seen[0].url.path == "/manga"
    assert seen[0].url.params["offset"] == "15"


def test_mangadex_details_with_deduplicated_feed():
    def handler(request):
        if request.url.path.endswith("/feed"):
            return httpx.Response(200, json={
                "data": [_chapter("c2", "2"), _chapter("c2b", "2"), _chapter("c1", "1"), _chapter("c3", "3")],
                "total": 4,
            })
        return httpx.Response(200, json={"data": _manga()})

    entry = asyncio.run(_mangadex(handler).get_details(f"https://mangadex.org/title/{MANGA_ID}"))

    assert entry.id == MANGA_ID
    assert [c.id for c in entry.chapters] == ["c3", "c2", "c1"]


def test_mangadex_missing_manga_is_none():
    entry = asyncio.run(_mangadex(lambda request: httpx.Response(404)).get_details(MANGA_ID))
    assert entry is None


LISTING = """
<div class="listupd">
  <div class="bs"><div class="bsx">
    <a href="/series/solo-leveling" title="Solo Leveling">
      <img src="//cdn.asuracomic.net/solo.jpg"><div class="tt">Solo Leveling</div>
    </a>
  </div></div>
  <div class="bs"><div class="bsx">
    <a href="https://asuracomic.net/series/solo-leveling-ragnarok"><div class="tt">Solo Leveling: Ragnarok</div></a>
  </div></div>
  <div class="bs"><div class="bsx"><span>no link</span></div></div>
</div>
"""

DETAILS = """
<h1 class="entry-title">Solo Leveling</h1>
<div class="thumb"><img data-src="/covers/solo.jpg"></div>
<div class="imptdt">Status <i>Completed</i></div>
<div class="num" itemprop="ratingValue">9.6</div>
<span class="alternative">Only I Level Up, 나 혼자만 레벨업 / Na Honjaman Level Up</span>
<ul id="chapterlist">
  <li><a href="/series/solo-leveling/chapter/2"><span class="chapternum">Chapter 2</span><span class="chapterdate">March 2, 2024</span></a></li>
  <li><a href="/series/solo-leveling/chapter/1"><span class="chapternum">Chapter 1</span><span class="chapterdate">March 1, 2024</span></a></li>
  <li><a href="/series/solo-leveling/side"><span class="chapternum">Side Story</span></a></li>
</ul>
"""


def _asura(handler):
    provider = AsuraScansProvider(transport=httpx.MockTransport(handler))
    provider.rate_limit = 1000.0
    return provider


def test_asura_normalizes_slugs_and_mirror_urls():
    provider = AsuraScansProvider()
    expected = "https://asuracomic.net/series/solo-leveling"
    assert provider.normalize_id("Solo-Leveling") == expected
    assert provider.normalize_id("https://asurascans.com/series/solo-leveling") == expected
    assert provider.normalize_id("https://asuratoon.com/series/solo-leveling/") == expected
    assert provider.normalize_id("") == ""


def test_asura_search_parses_listing():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text=LISTING)

    results = asyncio.run(_asura(handler).search("solo leveling"))

    assert [r.title for r in results] == ["Solo Leveling", "Solo Leveling: Ragnarok"]
    assert results[0].id == "https://asuracomic.net/series/solo-leveling"
    assert results[0].image == "https://cdn.asuracomic.net/solo.jpg"
    assert results[1].image is None
    assert seen[0] == "https://asuracomic.net/?s=solo%20leveling"


def test_asura_details():
    entry = asyncio.run(_asura(lambda request: httpx.Response(200, text=DETAILS)).get_details("solo-leveling"))

    assert entry.title == "Solo Leveling"
    assert entry.status == "Completed"
    assert entry.rating == 9.6
    assert entry.image == "https://asuracomic.net/covers/solo.jpg"
    assert entry.alt_titles == ["Only I Level Up", "나 혼자만 레벨업", "Na Honjaman Level Up"]
    assert [c.number for c in entry.chapters] == ["2", "1", "Side Story"]
    assert entry.chapters[0].id == "https://asuracomic.net/series/solo-leveling/chapter/2"
    assert entry.chapters[1].date == "March 1, 2024"


def test_asura_missing_page_is_none():
    provider = _asura(lambda request: httpx.Response(404))
    assert asyncio.run(provider.get_details("gone")) is None

    empty = _asura(lambda request: httpx.Response(200, text="<html></html>"))
    assert asyncio.run(empty.get_details("gone")) is None


def test_manager_discovers_adapters():
    manager = SourceManager()
    assert {"mangadex", "asurascans"} <= set(manager.sources)


def test_manager_allow_list():
    manager = SourceManager(enabled=["MangaDex"])
    assert list(manager.sources) == ["mangadex"]
    assert manager.get("asurascans") is None
