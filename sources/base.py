"""
================================================================================
MangaLink v1.0 - Content Provider Base
================================================================================
Abstract base class for all content provider adapters.

A provider is a scraped or public site with its own identifiers and no
relationship to the catalog. Each adapter implements:
  1. search(query, page) -> ProviderEntry[]
  2. get_details(id)     -> ProviderEntry with its chapter list
  3. normalize_id(id)    -> canonical id (a site may accept a bare slug or
                            a full URL for the same entry)

Adapters speak httpx. Tests inject an httpx transport instead of a network.
================================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from typing import List, Optional, Dict, Any
import asyncio
import math
import re
import logging
import time

import httpx

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Chapter:
    """One chapter as listed by a provider."""
    id: str
    number: str                      # Free text ("10", "10.5", "Extra")
    title: Optional[str] = None
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Chapter':
        return cls(
            id=str(data['id']),
            number=str(data.get('number') or ''),
            title=data.get('title'),
            date=data.get('date'),
        )


@dataclass
class ProviderEntry:
    """
    A series as one provider knows it.

    The id is only stable within its provider. Display fields (image,
    status, rating) may be missing from search results and present on a
    details page.
    """
    id: str
    title: str
    source: str = ""                 # Provider name
    image: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[float] = None
    url: Optional[str] = None
    alt_titles: List[str] = field(default_factory=list)
    chapters: List[Chapter] = field(default_factory=list)
    provider_internal_id: Optional[int] = None

    def missing_fields(self) -> List[str]:
        """Names of fields that carry no value."""
        return [f.name for f in fields(self) if getattr(self, f.name) in (None, "", [])]

    def merged_with(self, other: 'ProviderEntry') -> 'ProviderEntry':
        """Copy of self with empty fields filled from other. Never overwrites."""
        updates = {
            name: getattr(other, name)
            for name in self.missing_fields()
            if getattr(other, name) not in (None, "", [])
        }
        return replace(self, **updates) if updates else self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "image": self.image,
            "status": self.status,
            "rating": self.rating,
            "url": self.url,
            "alt_titles": list(self.alt_titles),
            "chapters": [c.to_dict() for c in self.chapters],
            "provider_internal_id": self.provider_internal_id,
        }


# =============================================================================
# RATE LIMITER
# =============================================================================

class AsyncRateLimiter:
    """Spaces requests to at most N per second."""

    def __init__(self, requests_per_second: float = 2.0):
        self.delay = 1.0 / requests_per_second
        self.lock = asyncio.Lock()
        self.last_request = 0.0

    async def wait(self) -> None:
        async with self.lock:
            now = time.time()
            wait_time = self.last_request + self.delay - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_request = time.time()


# =============================================================================
# BASE PROVIDER
# =============================================================================

class ContentProvider(ABC):
    """
    Async base class for content provider adapters.

    Transport timeouts live here, not in the search orchestrator: a provider
    that exceeds `request_timeout` raises httpx.TimeoutException and the
    orchestrator records it as failed.
    """

    # Provider identification
    id: str = "base"
    name: str = "Base Provider"
    base_url: str = ""

    rate_limit: float = 2.0  # Requests per second
    request_timeout: float = 20.0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self._transport = transport
        self._limiter = AsyncRateLimiter(self.rate_limit)
        self._limiter_loop = None

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent, "Referer": self.base_url}

    def _client(self) -> httpx.AsyncClient:
        """
        A fresh client per operation.

        Flask routes drive adapters from short-lived event loops, so a
        client cannot outlive the loop that created it.
        """
        return httpx.AsyncClient(
            timeout=self.request_timeout,
            headers=self._headers(),
            transport=self._transport,
            follow_redirects=True,
        )

    async def _throttle(self) -> None:
        loop = asyncio.get_running_loop()
        if self._limiter_loop is not loop:
            # asyncio.Lock binds to the loop it is first used on
            self._limiter = AsyncRateLimiter(self.rate_limit)
            self._limiter_loop = loop
        await self._limiter.wait()

    async def _get(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        await self._throttle()
        response = await client.get(url, **kwargs)
        response.raise_for_status()
        return response

    def _log(self, msg: str) -> None:
        logger.info(f"[{self.id}] {msg}")

    def normalize_id(self, provider_id: str) -> str:
        """Canonical form of an id. Default: trimmed as given."""
        return (provider_id or "").strip()

    @abstractmethod
    async def search(self, query: str, page: int = 1) -> List[ProviderEntry]:
        """
        Search for series by title.

        Raises:
            httpx.HTTPError: On transport or status failure
        """

    @abstractmethod
    async def get_details(self, provider_id: str) -> Optional[ProviderEntry]:
        """Fetch one series with its chapter list, or None when it does not exist."""

    def __repr__(self):
        return f"<{self.__class__.__name__}(id='{self.id}')>"


# =============================================================================
# CHAPTER NUMBERS
# =============================================================================

_LEADING_NUMBER = re.compile(r'\d+(?:\.\d*)?|\.\d+')


def parse_chapter_number(value: Any) -> Optional[float]:
    """
    Numeric value of a free-text chapter number.

    Non-numeric characters are stripped first, then the leading number is
    read ("Ch. 10.5" -> 10.5, "Extra" -> None). None means the chapter takes
    no part in numeric comparisons.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    cleaned = re.sub(r'[^0-9.]', '', str(value))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    return float(match.group(0))
