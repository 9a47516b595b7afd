"""
MangaLink Services Module

- LinkResolver: catalog <-> provider resolution and remapping
- PendingReconciles: remaps waiting for a policy choice
"""

from .resolver import LinkResolver, ResolveResult
from .registry import PendingReconciles

__all__ = ['LinkResolver', 'ResolveResult', 'PendingReconciles']
