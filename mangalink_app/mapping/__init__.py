from .store import Mapping, MappingStore

__all__ = ['Mapping', 'MappingStore']
