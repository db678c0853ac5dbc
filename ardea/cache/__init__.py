"""
Ardea cache - optional read cache for model queries.
"""

from .core import CacheBackend, CacheEntry, build_cache_key
from .memory import MemoryCache

__all__ = ["CacheBackend", "CacheEntry", "MemoryCache", "build_cache_key"]
