import asyncio
import os
import tempfile

import pytest

# Keep logs and the default database out of the working tree
os.environ.setdefault("MANGALINK_LOG_DIR", tempfile.mkdtemp(prefix="mangalink-logs-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from mangalink_app.catalog.base import CatalogSource
from mangalink_app.catalog.models import CatalogEntry, CatalogTitles
from mangalink_app.database import create_db_engine, create_session_factory
from mangalink_app.history.ledger import HistoryLedger
from mangalink_app.mapping.store import MappingStore
from mangalink_app.matching.matcher import normalize_title
from sources.base import Chapter, ContentProvider, ProviderEntry


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeProvider(ContentProvider):
    """Scripted provider: results per normalized query, optional delay or failure."""

    def __init__(self, provider_id, results=None, details=None, delay=0.0, error=None):
        super().__init__()
        self.id = provider_id
        self.name = provider_id.title()
        self.base_url = f"https://{provider_id}.example"
        self.results = {normalize_title(k): v for k, v in (results or {}).items()}
        self.default = self.results.pop("*", [])
        self.details = details or {}
        self.delay = delay
        self.error = error
        self.calls = []

    async def search(self, query, page=1):
        self.calls.append((query, page))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        found = self.results.get(normalize_title(query), self.default)
        return [ProviderEntry(**vars(e)) for e in found]

    async def get_details(self, provider_id):
        if self.error is not None:
            raise self.error
        return self.details.get(provider_id)


class FakeCatalog(CatalogSource):
    id = "fake"
    name = "Fake Catalog"

    def __init__(self, entries=None, search_results=None, update_ok=True, update_error=None):
        self.entries = {e.id: e for e in (entries or [])}
        self.search_results = {normalize_title(k): v for k, v in (search_results or {}).items()}
        self.update_ok = update_ok
        self.update_error = update_error
        self.progress_updates = []
        self.status_updates = []
        self.fetches = []

    async def search(self, query):
        return list(self.search_results.get(normalize_title(query), []))

    async def get_by_id(self, catalog_id):
        self.fetches.append(catalog_id)
        return self.entries.get(str(catalog_id))

    async def update_progress(self, catalog_id, progress):
        self.progress_updates.append((catalog_id, progress))
        if self.update_error is not None:
            raise self.update_error
        if self.update_ok and catalog_id in self.entries:
            self.entries[catalog_id].progress = progress
        return self.update_ok

    async def update_status(self, catalog_id, status):
        self.status_updates.append((catalog_id, status))
        return self.update_ok


def make_chapters(numbers, prefix="ch"):
    return [Chapter(id=f"{prefix}-{n}", number=str(n), title=f"Chapter {n}") for n in numbers]


def solo_leveling(progress=None):
    return CatalogEntry(
        id="105398",
        titles=CatalogTitles(
            romaji="Na Honjaman Level Up",
            english="Solo Leveling",
            native="나 혼자만 레벨업",
            user_preferred="Solo Leveling",
        ),
        synonyms=["Only I Level Up", "I Alone Level-Up"],
        progress=progress,
    )


@pytest.fixture
def session_factory():
    return create_session_factory(create_db_engine("sqlite://"))


@pytest.fixture
def mappings(session_factory):
    return MappingStore(session_factory=session_factory)


@pytest.fixture
def ledger(session_factory):
    return HistoryLedger(session_factory=session_factory)


@pytest.fixture
def clock():
    return FakeClock()
