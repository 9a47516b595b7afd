"""AsuraScans Provider - Popular scanlation site (HTML scraping)"""
import re
from typing import List, Optional
from urllib.parse import urljoin, quote

import httpx
from bs4 import BeautifulSoup

from .base import ContentProvider, ProviderEntry, Chapter


class AsuraScansProvider(ContentProvider):
    id = "asurascans"
    name = "AsuraScans"
    base_url = "https://asuracomic.net"

    # Older mirrors and the current domain all serve /series/<slug>
    url_patterns = [
        r'https?://(?:www\.)?asurascans\.com/series/([a-z0-9_-]+)',
        r'https?://(?:www\.)?(?:asura|asuratoon|asuracomic)\.(?:gg|com|net)/series/([a-z0-9_-]+)',
    ]
    rate_limit = 2.0
    request_timeout = 20.0

    def normalize_id(self, provider_id: str) -> str:
        """Bare slug or any known series URL -> canonical series URL."""
        value = (provider_id or "").strip()
        for pattern in self.url_patterns:
            match = re.match(pattern, value, re.I)
            if match:
                return f"{self.base_url}/series/{match.group(1).lower()}"
        slug = value.strip('/').split('/')[-1]
        return f"{self.base_url}/series/{slug.lower()}" if slug else ""

    def _extract_cover(self, img) -> Optional[str]:
        if not img:
            return None
        cover = img.get('data-src') or img.get('data-lazy-src') or img.get('src')
        if not cover:
            return None
        cover = cover.strip()
        if cover.startswith('//'):
            cover = f"https:{cover}"
        return urljoin(self.base_url, cover)

    def _parse_listing(self, html: str) -> List[ProviderEntry]:
        soup = BeautifulSoup(html, 'html.parser')
        results = []
        seen = set()
        for item in soup.select('.bsx, .listupd .bs'):
            link = item.select_one('a')
            if not link or not link.get('href'):
                continue
            url = urljoin(self.base_url, link.get('href', ''))
            series_id = self.normalize_id(url)
            # .bs wraps .bsx on most themes, so one card can match twice
            if series_id in seen:
                continue
            title_node = item.select_one('.tt, .title')
            title = link.get('title', '') or (title_node.get_text(strip=True) if title_node else '')
            if not title:
                continue
            seen.add(series_id)
            results.append(ProviderEntry(
                id=series_id,
                title=title,
                source=self.id,
                image=self._extract_cover(item.select_one('img')),
                url=url,
            ))
        return results

    def _parse_chapters(self, soup: BeautifulSoup) -> List[Chapter]:
        chapters = []
        for item in soup.select('#chapterlist li, .eplister li'):
            link = item.select_one('a')
            if not link:
                continue
            ch_url = urljoin(self.base_url, link.get('href', ''))
            num_node = item.select_one('.chapternum')
            ch_text = num_node.get_text(strip=True) if num_node else link.get_text(strip=True)
            match = re.search(r'[Cc]h(?:apter)?\.?\s*(\d+(?:\.\d+)?)', ch_text)
            date_node = item.select_one('.chapterdate')
            chapters.append(Chapter(
                id=ch_url,
                number=match.group(1) if match else ch_text,
                title=ch_text,
                date=date_node.get_text(strip=True) if date_node else None,
            ))
        return chapters

    async def search(self, query: str, page: int = 1) -> List[ProviderEntry]:
        self._log(f"Searching AsuraScans: {query}")
        url = f"{self.base_url}/page/{page}/?s={quote(query)}" if page > 1 else f"{self.base_url}/?s={quote(query)}"
        async with self._client() as client:
            response = await self._get(client, url)
        results = self._parse_listing(response.text)
        self._log(f"Found {len(results)} results")
        return results

    async def get_details(self, provider_id: str) -> Optional[ProviderEntry]:
        url = self.normalize_id(provider_id)
        if not url:
            return None
        async with self._client() as client:
            try:
                response = await self._get(client, url)
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    return None
                raise

        soup = BeautifulSoup(response.text, 'html.parser')
        title_node = soup.select_one('h1.entry-title, .entry-title')
        if not title_node:
            return None
        status_node = soup.select_one('.imptdt i, .tsinfo .imptdt i')
        rating_node = soup.select_one('.num[itemprop="ratingValue"], .rating .num')
        rating = None
        if rating_node:
            try:
                rating = float(rating_node.get_text(strip=True))
            except ValueError:
                rating = None
        alt_node = soup.select_one('.alternative, .wd-full .alter')
        alt_titles = []
        if alt_node:
            alt_titles = [t.strip() for t in re.split(r'[,;/]', alt_node.get_text()) if t.strip()]

        chapters = self._parse_chapters(soup)
        self._log(f"Found {len(chapters)} chapters")
        return ProviderEntry(
            id=url,
            title=title_node.get_text(strip=True),
            source=self.id,
            image=self._extract_cover(soup.select_one('.thumb img, .thumbook img')),
            status=status_node.get_text(strip=True) if status_node else None,
            rating=rating,
            url=url,
            alt_titles=alt_titles,
            chapters=chapters,
        )
