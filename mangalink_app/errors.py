"""
Typed failures for the link engine.

Only failures the caller has to decide about are raised. Expected outcomes
(no candidates, ambiguous matches, a progress push that failed after the
mapping was saved) are returned as results instead.
"""

from typing import Optional


class MangaLinkError(Exception):
    """Base class for all link engine errors."""


class CatalogError(MangaLinkError):
    """A catalog search, detail fetch or write failed."""

    def __init__(self, message: str, catalog_id: Optional[str] = None):
        super().__init__(message)
        self.catalog_id = catalog_id


class ProviderUnavailable(MangaLinkError):
    """One content provider failed to answer a query."""

    def __init__(self, provider_name: str, cause: Optional[BaseException] = None):
        detail = f"{type(cause).__name__}: {cause}" if cause else "unavailable"
        super().__init__(f"{provider_name}: {detail}")
        self.provider_name = provider_name
        self.cause = cause


class UnknownProvider(MangaLinkError):
    """A provider name that is not registered."""

    def __init__(self, provider_name: str):
        super().__init__(f"Unknown provider: {provider_name}")
        self.provider_name = provider_name


class ReconcileStateError(MangaLinkError):
    """An operation was attempted from the wrong reconcile state."""
