"""
================================================================================
MangaLink v1.0 - Database Models
================================================================================
SQLAlchemy models for the two durable tables of the link engine.

  - ProviderMapping: a confirmed catalog entry <-> provider entry link, one
    row per (catalog_id, provider_name). Display fields are denormalized so
    a linked series can be redrawn without a provider round trip.
  - HistoryRecord: the per-device reading record for one series. Holds the
    last-read pointer and the set of read chapter ids.
  - HistoryAlias: every key a HistoryRecord has been found under (catalog
    id, provider series id, local series id, normalized title). Ids drift
    between sessions, so a record is reachable through any of them.

The provider search cache is deliberately not a table: it is session data.
================================================================================
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, JSON, Float,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declarative_base, declared_attr

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


# =============================================================================
# MIXINS
# =============================================================================

class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""
    @declared_attr
    def created_at(cls):
        return Column(DateTime, default=_utcnow, nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


# =============================================================================
# MAPPINGS
# =============================================================================

class ProviderMapping(Base, TimestampMixin):
    """Catalog entry linked to one entry on one content provider."""
    __tablename__ = 'provider_mappings'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    catalog_id = Column(String(64), nullable=False)
    provider_name = Column(String(50), nullable=False)
    provider_id = Column(String(500), nullable=False)
    provider_internal_id = Column(Integer, nullable=True)

    # Display cache
    title = Column(String(500))
    image = Column(String(500))
    status = Column(String(50))
    rating = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint('catalog_id', 'provider_name', name='uq_mapping_catalog_provider'),
        Index('idx_mapping_provider_id', 'provider_name', 'provider_id'),
    )


# =============================================================================
# LOCAL HISTORY
# =============================================================================

class HistoryRecord(Base, TimestampMixin):
    """Local reading record for one series."""
    __tablename__ = 'history_records'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    series_id = Column(String(500))
    anilist_id = Column(String(64))
    provider_series_id = Column(String(500))
    series_title = Column(String(500), nullable=False)
    series_image = Column(String(500))
    source = Column(String(50))

    # Last-read pointer
    chapter_id = Column(String(500))
    chapter_number = Column(String(50))  # e.g., "1", "1.5", "Special"
    chapter_title = Column(String(500))
    page = Column(Integer)
    last_read_at = Column(DateTime, default=_utcnow, index=True)

    read_chapters = Column(JSON, default=list)

    aliases = relationship("HistoryAlias", back_populates="record", cascade="all, delete-orphan")


class HistoryAlias(Base):
    """One lookup key for a HistoryRecord ("anilist:30013", "title:one piece", ...)."""
    __tablename__ = 'history_aliases'

    alias = Column(String(600), primary_key=True)
    record_id = Column(String(36), ForeignKey('history_records.id', ondelete='CASCADE'), nullable=False, index=True)

    record = relationship("HistoryRecord", back_populates="aliases")
