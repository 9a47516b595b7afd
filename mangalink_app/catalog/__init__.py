from .models import CatalogEntry, CatalogTitles, ListStatus
from .base import CatalogSource
from .anilist import AniListCatalog

__all__ = ['CatalogEntry', 'CatalogTitles', 'ListStatus', 'CatalogSource', 'AniListCatalog']
