"""
In-process index cache over the tabular store.
"""

from .index_cache import CacheStats, IndexCache
from .rwlock import ReadWriteLock

__all__ = [
    "CacheStats",
    "IndexCache",
    "ReadWriteLock",
]
