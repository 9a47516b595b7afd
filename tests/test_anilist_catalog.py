import asyncio
import json

import httpx
import pytest

from mangalink_app.catalog import AniListCatalog
from mangalink_app.catalog.models import ListStatus
from mangalink_app.errors import CatalogError


MEDIA = {
    "id": 105398,
    "title": {
        "romaji": "Na Honjaman Level Up",
        "english": "Solo Leveling",
        "native": "나 혼자만 레벨업",
        "userPreferred": "Na Honjaman Level Up",
    },
    "synonyms": ["Only I Level Up", ""],
    "status": "FINISHED",
    "chapters": 201,
    "coverImage": {"large": "https://img.anili.st/105398.jpg"},
    "mediaListEntry": {"progress": 12, "status": "CURRENT"},
}


def _catalog(handler, token=None):
    catalog = AniListCatalog(access_token=token, transport=httpx.MockTransport(handler))
    catalog.rate_limiter.min_interval = 0
    catalog.retry_delay = 0
    return catalog


def test_search_parses_media():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"Page": {"media": [MEDIA]}}})

    results = asyncio.run(_catalog(handler).search("solo leveling"))

    assert len(results) == 1
    entry = results[0]
    assert entry.id == "105398"
    assert entry.title == "Na Honjaman Level Up"
    assert entry.synonyms == ["Only I Level Up"]
    assert entry.progress == 12
    assert entry.list_status == ListStatus.READING
    assert entry.status == "finished"
    assert bodies[0]["variables"]["search"] == "solo leveling"


def test_search_failure_raises_catalog_error():
    with pytest.raises(CatalogError):
        asyncio.run(_catalog(lambda request: httpx.Response(400)).search("solo leveling"))


def test_get_by_id():
    entry = asyncio.run(_catalog(lambda request: httpx.Response(200, json={"data": {"Media": MEDIA}})).get_by_id("105398"))
    assert entry.chapters == 201
    assert entry.image == "https://img.anili.st/105398.jpg"


def test_get_by_id_not_found():
    assert asyncio.run(_catalog(lambda request: httpx.Response(404)).get_by_id("1")) is None


def test_get_by_id_rejects_non_numeric_ids():
    with pytest.raises(CatalogError):
        asyncio.run(_catalog(lambda request: httpx.Response(200)).get_by_id("solo-leveling"))


def test_server_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(500)
        return httpx.Response(200, json={"data": {"Media": MEDIA}})

    entry = asyncio.run(_catalog(handler).get_by_id("105398"))

    assert entry.id == "105398"
    assert len(calls) == 3


def test_updates_need_a_token():
    calls = []
    catalog = _catalog(lambda request: calls.append(request) or httpx.Response(200))

    assert asyncio.run(catalog.update_progress("105398", 40)) is False
    assert calls == []


def test_update_progress_and_status():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer token-123"
        return httpx.Response(200, json={"data": {"SaveMediaListEntry": {"id": 1, "progress": 40}}})

    catalog = _catalog(handler, token="token-123")

    assert asyncio.run(catalog.update_progress("105398", 40)) is True
    assert asyncio.run(catalog.update_status("105398", ListStatus.PAUSED)) is True
    assert bodies[0]["variables"] == {"mediaId": 105398, "progress": 40}
    assert bodies[1]["variables"] == {"mediaId": 105398, "status": "PAUSED"}


def test_graphql_errors_fail_the_update():
    catalog = _catalog(
        lambda request: httpx.Response(200, json={"errors": [{"message": "Invalid token"}], "data": None}),
        token="bad",
    )
    assert asyncio.run(catalog.update_progress("105398", 40)) is False
