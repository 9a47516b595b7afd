"""
================================================================================
MangaLink v1.0 - Mapping Store
================================================================================
Persists confirmed catalog entry <-> provider entry links.

  - One row per (catalog_id, provider_name). A put() with a different
    provider id for the same pair replaces the old link entirely.
  - Several providers may each link the same catalog entry.
  - Reverse lookup (provider id -> catalog id) serves readers who start
    from a provider page.
  - No delete: a link is only ever replaced by a user action.
================================================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..database import get_db_session
from ..models import ProviderMapping

logger = logging.getLogger(__name__)


@dataclass
class Mapping:
    """A detached copy of one ProviderMapping row."""
    catalog_id: str
    provider_id: str
    provider_name: str
    title: Optional[str] = None
    image: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[float] = None
    provider_internal_id: Optional[int] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: ProviderMapping) -> 'Mapping':
        return cls(
            catalog_id=row.catalog_id,
            provider_id=row.provider_id,
            provider_name=row.provider_name,
            title=row.title,
            image=row.image,
            status=row.status,
            rating=row.rating,
            provider_internal_id=row.provider_internal_id,
            updated_at=row.updated_at,
        )

    def display_fields(self) -> Dict[str, Any]:
        return {'title': self.title, 'image': self.image, 'status': self.status, 'rating': self.rating}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'catalog_id': self.catalog_id,
            'provider_id': self.provider_id,
            'provider_name': self.provider_name,
            'title': self.title,
            'image': self.image,
            'status': self.status,
            'rating': self.rating,
            'provider_internal_id': self.provider_internal_id,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


DISPLAY_FIELDS = ('title', 'image', 'status', 'rating')


class MappingStore:
    """SQLAlchemy-backed mapping persistence."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    def put(
        self,
        catalog_id: str,
        provider_id: str,
        provider_name: str,
        display_fields: Optional[Dict[str, Any]] = None,
        provider_internal_id: Optional[int] = None
    ) -> Mapping:
        """
        Create or replace the mapping for (catalog_id, provider_name).

        Idempotent: repeating the same put leaves one identical row.
        """
        catalog_id = str(catalog_id)
        display_fields = display_fields or {}
        try:
            return self._upsert(catalog_id, provider_id, provider_name, display_fields, provider_internal_id)
        except IntegrityError:
            # A concurrent writer inserted the same pair first; last put wins
            logger.info(f"Mapping insert raced for {catalog_id}/{provider_name}, retrying as update")
            return self._upsert(catalog_id, provider_id, provider_name, display_fields, provider_internal_id)

    def _upsert(self, catalog_id, provider_id, provider_name, display_fields, provider_internal_id) -> Mapping:
        with self._session() as session:
            row = session.query(ProviderMapping).filter_by(
                catalog_id=catalog_id,
                provider_name=provider_name
            ).first()

            if row is None:
                row = ProviderMapping(catalog_id=catalog_id, provider_name=provider_name, provider_id=provider_id)
                session.add(row)
                logger.info(f"Mapping created: catalog {catalog_id} -> {provider_name}:{provider_id}")
            elif row.provider_id != provider_id:
                logger.info(f"Mapping replaced: catalog {catalog_id} {provider_name}:{row.provider_id} -> {provider_id}")
                row.provider_id = provider_id
                # Display fields describe the old provider entry
                for name in DISPLAY_FIELDS:
                    setattr(row, name, None)
                row.provider_internal_id = None

            for name in DISPLAY_FIELDS:
                if name in display_fields:
                    setattr(row, name, display_fields[name])
            if provider_internal_id is not None:
                row.provider_internal_id = provider_internal_id

            session.flush()
            return Mapping.from_row(row)

    def get_by_catalog_id(self, catalog_id: str, provider_name: str) -> Optional[Mapping]:
        with self._session() as session:
            row = session.query(ProviderMapping).filter_by(
                catalog_id=str(catalog_id),
                provider_name=provider_name
            ).first()
            return Mapping.from_row(row) if row else None

    def get_by_provider_id(self, provider_id: str, provider_name: str) -> Optional[Mapping]:
        """
        Reverse lookup. Several catalog entries may point at one provider
        entry; the most recently written link wins.
        """
        with self._session() as session:
            row = session.query(ProviderMapping).filter_by(
                provider_id=provider_id,
                provider_name=provider_name
            ).order_by(ProviderMapping.updated_at.desc()).first()
            return Mapping.from_row(row) if row else None

    def list_for_catalog(self, catalog_id: str) -> List[Mapping]:
        """Every provider link of one catalog entry."""
        with self._session() as session:
            rows = session.query(ProviderMapping).filter_by(
                catalog_id=str(catalog_id)
            ).order_by(ProviderMapping.provider_name).all()
            return [Mapping.from_row(row) for row in rows]
