"""Abstract catalog source interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import CatalogEntry, ListStatus


class CatalogSource(ABC):
    """
    The authoritative catalog (stable ids, remote progress).

    Reads raise CatalogError on failure. Writes return False when the
    catalog refused or could not be reached; they never fail silently.
    """

    id: str = "catalog"
    name: str = "Catalog"

    @abstractmethod
    async def search(self, query: str) -> List[CatalogEntry]:
        """Search entries by title."""

    @abstractmethod
    async def get_by_id(self, catalog_id: str) -> Optional[CatalogEntry]:
        """Fetch one entry (with the reader's progress), None if it does not exist."""

    @abstractmethod
    async def update_progress(self, catalog_id: str, progress: int) -> bool:
        """Set the reader's chapter progress."""

    @abstractmethod
    async def update_status(self, catalog_id: str, status: ListStatus) -> bool:
        """Set the reader's list status."""
