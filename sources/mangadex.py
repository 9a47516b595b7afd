"""
================================================================================
MangaLink v1.0 - MangaDex Provider
================================================================================
MangaDex API v5 adapter.

MANGADEX API RULES:
  - 5 requests/second at the load balancer; we stay at 2
  - User-Agent must identify the app (no browser spoofing)
  - Chapter feeds page at 100 items; 500 with the feed endpoint

IDs:
  MangaDex ids are UUIDs. Users paste either the bare UUID or a title URL
  (https://mangadex.org/title/<uuid>/<slug>); both normalize to the UUID.
================================================================================
"""

import re
from typing import List, Optional, Dict, Any

import httpx

from .base import ContentProvider, ProviderEntry, Chapter, parse_chapter_number

UUID_PATTERN = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.I)


class MangaDexProvider(ContentProvider):
    """MangaDex JSON API adapter."""

    id = "mangadex"
    name = "MangaDex"
    base_url = "https://api.mangadex.org"
    site_url = "https://mangadex.org"

    rate_limit = 2.0
    request_timeout = 20.0
    user_agent = "MangaLink/1.0"

    CONTENT_RATINGS = ["safe", "suggestive", "erotica"]
    SEARCH_LIMIT = 15
    FEED_LIMIT = 500

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    def normalize_id(self, provider_id: str) -> str:
        match = UUID_PATTERN.search(provider_id or "")
        return match.group(0).lower() if match else (provider_id or "").strip()

    # =========================================================================
    # PARSING HELPERS
    # =========================================================================

    def _extract_cover(self, manga_data: Dict) -> Optional[str]:
        manga_id = manga_data.get("id", "")
        for rel in manga_data.get("relationships", []):
            if rel.get("type") == "cover_art":
                filename = (rel.get("attributes") or {}).get("fileName")
                if filename:
                    return f"https://uploads.mangadex.org/covers/{manga_id}/{filename}.256.jpg"
        return None

    def _parse_manga(self, data: Dict) -> ProviderEntry:
        attrs = data.get("attributes", {})

        # Prefer English, fallback to romaji, then Japanese
        titles = attrs.get("title", {})
        title = (
            titles.get("en") or
            titles.get("ja-ro") or
            titles.get("ja") or
            next(iter(titles.values()), "Unknown")
        )

        alt_titles = []
        for alt in attrs.get("altTitles", []):
            for value in alt.values():
                if value and value != title and value not in alt_titles:
                    alt_titles.append(value)

        return ProviderEntry(
            id=data.get("id", ""),
            title=title,
            source=self.id,
            image=self._extract_cover(data),
            status=attrs.get("status"),
            url=f"{self.site_url}/title/{data.get('id')}",
            alt_titles=alt_titles,
        )

    def _parse_chapter(self, data: Dict) -> Chapter:
        attrs = data.get("attributes", {})
        return Chapter(
            id=data.get("id", ""),
            number=attrs.get("chapter") or "0",
            title=attrs.get("title"),
            date=attrs.get("publishAt"),
        )

    # =========================================================================
    # PUBLIC API METHODS
    # =========================================================================

    async def search(self, query: str, page: int = 1) -> List[ProviderEntry]:
        self._log(f"Searching MangaDex: {query}")
        params = {
            "title": query,
            "limit": self.SEARCH_LIMIT,
            "offset": (max(page, 1) - 1) * self.SEARCH_LIMIT,
            "includes[]": ["cover_art"],
            "contentRating[]": self.CONTENT_RATINGS,
            "order[relevance]": "desc",
        }
        async with self._client() as client:
            response = await self._get(client, f"{self.base_url}/manga", params=params)
        data = response.json()

        results = [self._parse_manga(manga) for manga in data.get("data", []) if manga.get("id")]
        self._log(f"Found {len(results)} results")
        return results

    async def get_details(self, provider_id: str) -> Optional[ProviderEntry]:
        manga_id = self.normalize_id(provider_id)
        async with self._client() as client:
            try:
                response = await self._get(
                    client,
                    f"{self.base_url}/manga/{manga_id}",
                    params={"includes[]": ["cover_art"]},
                )
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    return None
                raise
            entry = self._parse_manga(response.json().get("data", {}))
            entry.chapters = await self._fetch_feed(client, manga_id)
        return entry

    async def _fetch_feed(self, client: httpx.AsyncClient, manga_id: str) -> List[Chapter]:
        """All English chapters, newest first, one per chapter number."""
        raw: List[Dict[str, Any]] = []
        offset = 0
        while True:
            params = {
                "translatedLanguage[]": ["en"],
                "limit": self.FEED_LIMIT,
                "offset": offset,
                "order[chapter]": "desc",
                "contentRating[]": self.CONTENT_RATINGS,
            }
            response = await self._get(client, f"{self.base_url}/manga/{manga_id}/feed", params=params)
            data = response.json()
            batch = data.get("data", [])
            raw.extend(batch)
            total = data.get("total", 0)
            if offset + len(batch) >= total or len(batch) < self.FEED_LIMIT:
                break
            offset += self.FEED_LIMIT

        # Several scanlation groups upload the same chapter; keep the first
        unique: Dict[str, Dict[str, Any]] = {}
        for item in raw:
            number = (item.get("attributes") or {}).get("chapter") or "0"
            if number not in unique:
                unique[number] = item

        chapters = [self._parse_chapter(item) for item in unique.values()]
        chapters.sort(key=lambda c: parse_chapter_number(c.number) or 0.0, reverse=True)
        self._log(f"Found {len(chapters)} unique chapters")
        return chapters
