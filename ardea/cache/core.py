"""
Ardea cache — backend contract and entry type.

Model classes may attach a cache backend (``Meta.cache``). Read results are
stored under a key derived from the compiled query and tagged with the
model's table, so any write to the table invalidates them in one call.
"""

from __future__ import annotations

import hashlib
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

__all__ = ["CacheBackend", "CacheEntry", "build_cache_key"]


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: Optional[float] = None
    tags: Tuple[str, ...] = ()
    created_at: float = field(default_factory=time.monotonic)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class CacheBackend(ABC):
    """
    Abstract cache backend — defines the storage contract.

    Backends are responsible for their own TTL enforcement.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store a value with optional TTL and tags.

        Args:
            key: Cache key
            value: Value to store
            ttl: Time-to-live in seconds (None = no expiry)
            tags: Tags for group invalidation
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def delete_by_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of ``tags``. Returns the count."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


def _tagged(value: Any) -> Dict[str, str]:
    # A UUID and its string form must not share a key
    kind = type(value)
    return {"__type__": f"{kind.__module__}.{kind.__qualname__}", "value": str(value)}


def build_cache_key(table: str, operation: str, *parts: Any) -> str:
    """Stable key for a read: ``<table>:<operation>:<digest>``."""
    payload = json.dumps(parts, sort_keys=True, default=_tagged)
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]
    return f"{table}:{operation}:{digest}"
