"""
================================================================================
MangaLink v1.0 - AniList Catalog
================================================================================
GraphQL client for the AniList API, used as the catalog source.

AniList Features:
  - Stable numeric ids, romaji/english/native titles and synonyms
  - The reader's list entry (progress + status) when a token is attached
  - 90 requests/min rate limit

Reads work anonymously. Writes (SaveMediaListEntry) need an OAuth token;
obtaining one is the host application's job.

API Docs: https://anilist.gitbook.io/anilist-apiv2-docs/
================================================================================
"""

from typing import List, Optional, Dict, Any
import asyncio
import logging
import time

import httpx

from ..errors import CatalogError
from .base import CatalogSource
from .models import CatalogEntry, CatalogTitles, ListStatus

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum spacing between requests.

    The asyncio.Lock binds to the loop it is first used on, so a new lock is
    made whenever the running loop changes (sync routes spin short loops).
    """

    def __init__(self, requests_per_minute: int):
        self.min_interval = 60.0 / requests_per_minute
        self.last_request = 0.0
        self._lock: Optional[asyncio.Lock] = None
        self._loop = None

    async def acquire(self):
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        async with self._lock:
            now = time.time()
            time_since_last = now - self.last_request
            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
            self.last_request = time.time()


# AniList MediaListStatus <-> ListStatus
_TO_ANILIST = {
    ListStatus.READING: 'CURRENT',
    ListStatus.PLANNING: 'PLANNING',
    ListStatus.COMPLETED: 'COMPLETED',
    ListStatus.PAUSED: 'PAUSED',
    ListStatus.DROPPED: 'DROPPED',
    ListStatus.REPEATING: 'REPEATING',
}


class AniListCatalog(CatalogSource):
    """AniList GraphQL API as the catalog source."""

    id = "anilist"
    name = "AniList"
    base_url = "https://graphql.anilist.co"
    rate_limit = 90  # requests per minute
    timeout = 10
    max_retries = 3
    retry_delay = 1.0
    user_agent = "MangaLink/1.0"

    MEDIA_FIELDS = """
        id
        title {
          romaji
          english
          native
          userPreferred
        }
        synonyms
        status
        chapters
        coverImage {
          large
        }
        mediaListEntry {
          progress
          status
        }
    """

    SEARCH_QUERY = """
    query ($search: String, $page: Int, $perPage: Int) {
      Page(page: $page, perPage: $perPage) {
        media(search: $search, type: MANGA, sort: SEARCH_MATCH) {
          %s
        }
      }
    }
    """ % MEDIA_FIELDS

    GET_BY_ID_QUERY = """
    query ($id: Int) {
      Media(id: $id, type: MANGA) {
        %s
      }
    }
    """ % MEDIA_FIELDS

    SAVE_ENTRY_MUTATION = """
    mutation ($mediaId: Int, $progress: Int, $status: MediaListStatus) {
      SaveMediaListEntry(mediaId: $mediaId, progress: $progress, status: $status) {
        id
        progress
        status
      }
    }
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        search_limit: int = 10
    ):
        self.access_token = access_token
        self.search_limit = search_limit
        self.rate_limiter = RateLimiter(self.rate_limit)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {
            'User-Agent': self.user_agent,
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        if self.access_token:
            headers['Authorization'] = f"Bearer {self.access_token}"
        return httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self._transport)

    async def _request(self, query: str, variables: Dict[str, Any]) -> Dict:
        """
        Rate-limited GraphQL POST with retries on 429 and 5xx.

        Raises:
            httpx.HTTPError: On request failure after retries
        """
        async with self._client() as client:
            for attempt in range(self.max_retries):
                await self.rate_limiter.acquire()
                try:
                    response = await client.post(
                        self.base_url,
                        json={"query": query, "variables": variables}
                    )
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    if attempt < self.max_retries - 1 and (status == 429 or status >= 500):
                        wait_time = self.retry_delay * (2 ** attempt)
                        logger.warning(f"{self.id}: HTTP {status}, retry {attempt + 1}/{self.max_retries} in {wait_time}s")
                        await asyncio.sleep(wait_time)
                        continue
                    raise

                except httpx.RequestError as e:
                    if attempt < self.max_retries - 1:
                        logger.warning(f"{self.id}: Request error ({e}), retry {attempt + 1}/{self.max_retries}")
                        await asyncio.sleep(self.retry_delay)
                        continue
                    raise

        raise httpx.RequestError(f"{self.id}: Max retries exceeded")

    # =========================================================================
    # READS
    # =========================================================================

    async def search(self, query: str) -> List[CatalogEntry]:
        try:
            response = await self._request(
                self.SEARCH_QUERY,
                {"search": query, "page": 1, "perPage": self.search_limit}
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.id}: Search failed for '{query}': {e}")
            raise CatalogError(f"Catalog search failed: {e}") from e

        media_list = ((response.get('data') or {}).get('Page') or {}).get('media') or []
        return [self._parse_media(media) for media in media_list]

    async def get_by_id(self, catalog_id: str) -> Optional[CatalogEntry]:
        try:
            media_id = int(catalog_id)
        except (TypeError, ValueError):
            raise CatalogError(f"Invalid catalog id: {catalog_id!r}", catalog_id=str(catalog_id))

        try:
            response = await self._request(self.GET_BY_ID_QUERY, {"id": media_id})
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error(f"{self.id}: Get by ID failed for '{catalog_id}': {e}")
            raise CatalogError(f"Catalog fetch failed: {e}", catalog_id=str(catalog_id)) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.id}: Get by ID failed for '{catalog_id}': {e}")
            raise CatalogError(f"Catalog fetch failed: {e}", catalog_id=str(catalog_id)) from e

        media = (response.get('data') or {}).get('Media')
        return self._parse_media(media) if media else None

    def _parse_media(self, media: dict) -> CatalogEntry:
        titles = media.get('title') or {}
        list_entry = media.get('mediaListEntry') or {}
        cover = media.get('coverImage') or {}
        return CatalogEntry(
            id=str(media.get('id')),
            titles=CatalogTitles(
                romaji=titles.get('romaji'),
                english=titles.get('english'),
                native=titles.get('native'),
                user_preferred=titles.get('userPreferred'),
            ),
            synonyms=[s for s in (media.get('synonyms') or []) if s],
            progress=list_entry.get('progress'),
            list_status=ListStatus.parse(list_entry.get('status')),
            image=cover.get('large'),
            status=(media.get('status') or '').lower() or None,
            chapters=media.get('chapters'),
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def _save_entry(self, catalog_id: str, **variables) -> bool:
        if not self.access_token:
            logger.warning(f"{self.id}: No access token, cannot update {catalog_id}")
            return False
        try:
            response = await self._request(
                self.SAVE_ENTRY_MUTATION,
                {"mediaId": int(catalog_id), **variables}
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{self.id}: Update failed for {catalog_id}: {e}")
            return False

        if response.get('errors'):
            logger.error(f"{self.id}: Update rejected for {catalog_id}: {response['errors']}")
            return False
        return bool((response.get('data') or {}).get('SaveMediaListEntry'))

    async def update_progress(self, catalog_id: str, progress: int) -> bool:
        return await self._save_entry(catalog_id, progress=max(int(progress), 0))

    async def update_status(self, catalog_id: str, status: ListStatus) -> bool:
        return await self._save_entry(catalog_id, status=_TO_ANILIST[ListStatus(status)])
