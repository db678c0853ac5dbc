"""
Ardea Model Relations — one query per call, no caching.

    class Post(Model):
        async def author(self):
            return await self.belongs_to(User, "user_id")

    class User(Model):
        async def posts(self):
            return await self.has_many(Post, "user_id", sort={"created": -1})

A missing key value resolves to ``None`` / ``[]`` without touching the
backend.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from .conditions import SoftDeleteMode

if TYPE_CHECKING:
    from .base import Model
    from .query import QueryBuilder

__all__ = ["belongs_to", "has_one", "has_many"]


def _builder(related: type, mode: SoftDeleteMode, condition: Any, fields: Optional[Sequence[str]]) -> "QueryBuilder":
    builder = related.query().find(condition, fields)
    if mode == SoftDeleteMode.INCLUDE_TRASHED:
        builder.with_trashed()
    elif mode == SoftDeleteMode.ONLY_TRASHED:
        builder.only_trashed()
    return builder


async def belongs_to(
    instance: "Model",
    related: type,
    foreign_key: str,
    local_key: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
) -> Optional["Model"]:
    """
    Many-to-one: ``instance.<foreign_key>`` holds the related record's
    ``local_key`` (its primary key unless given).
    """
    value = instance._data.get(foreign_key)
    if not value:
        return None
    condition = {local_key: value} if local_key else value
    return await _builder(related, mode, condition, fields).find_one()


async def has_one(
    instance: "Model",
    related: type,
    foreign_key: str,
    local_key: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
) -> Optional["Model"]:
    """One-to-one: the related record's ``foreign_key`` holds our key."""
    value = instance._data.get(local_key or type(instance)._meta.primary_key)
    if not value:
        return None
    return await _builder(related, mode, {foreign_key: value}, fields).find_one()


async def has_many(
    instance: "Model",
    related: type,
    foreign_key: str,
    local_key: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    sort: Any = None,
    skip: Optional[int] = None,
    limit: Optional[int] = None,
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
) -> List["Model"]:
    """One-to-many: every related record whose ``foreign_key`` holds our key."""
    value = instance._data.get(local_key or type(instance)._meta.primary_key)
    if not value:
        return []
    builder = _builder(related, mode, {foreign_key: value}, fields)
    if sort is not None:
        builder.sort(sort)
    if skip is not None:
        builder.skip(skip)
    if limit is not None:
        builder.limit(limit)
    return await builder.find_all()
