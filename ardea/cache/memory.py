"""
Ardea cache — in-memory backend.

LRU eviction via OrderedDict, lazy TTL expiry and a tag → keys inverted
index for group invalidation.
"""

from __future__ import annotations

import copy
import logging
import time
from collections import OrderedDict, defaultdict
from typing import Any, Dict, Iterable, Optional, Set

from .core import CacheBackend, CacheEntry

logger = logging.getLogger("ardea.cache.memory")

__all__ = ["MemoryCache"]


class MemoryCache(CacheBackend):
    """
    In-memory cache backend.

    Values are deep-copied on the way in and out so cached rows cannot be
    mutated through a hydrated instance.
    """

    def __init__(self, max_size: int = 10000, default_ttl: Optional[int] = None):
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._tag_index: Dict[str, Set[str]] = defaultdict(set)
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired:
            self._remove(key)
            self.misses += 1
            return None
        self._store.move_to_end(key)
        self.hits += 1
        return copy.deepcopy(entry.value)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl if ttl else None
        if key in self._store:
            self._remove(key)
        tags = tuple(tags)
        self._store[key] = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=expires_at, tags=tags)
        for tag in tags:
            self._tag_index[tag].add(key)
        while len(self._store) > self._max_size:
            oldest = next(iter(self._store))
            self._remove(oldest)
            logger.debug("Evicted %s", oldest)

    async def delete(self, key: str) -> bool:
        return self._remove(key)

    async def delete_by_tags(self, tags: Iterable[str]) -> int:
        tags = list(tags)
        keys: Set[str] = set()
        for tag in tags:
            keys |= self._tag_index.pop(tag, set())
        removed = sum(1 for key in keys if self._remove(key))
        if removed:
            logger.debug("Invalidated %d entries for tags %s", removed, list(tags))
        return removed

    async def clear(self) -> None:
        self._store.clear()
        self._tag_index.clear()

    def __len__(self) -> int:
        return len(self._store)

    def _remove(self, key: str) -> bool:
        entry = self._store.pop(key, None)
        if entry is None:
            return False
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]
        return True
