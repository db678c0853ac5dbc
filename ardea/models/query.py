"""
Ardea Query Builder — lazy, chainable, single-use query object.

Chain methods mutate the builder and return it; nothing touches the
backend until a terminal is awaited. A builder runs exactly one
terminal. Chaining onto it, or running a second terminal, raises
``QueryFault``.

Usage:
    users = await User.query().where({"age": {"gte": 18}}).sort({"name": 1}).limit(10).all()
    total = await User.query().where({"status": "active"}).count()
    user = await User.find({"email": "a@b.c"}).fields(["name"])
    page = await Post.query().only_trashed().paginate(page=2, page_size=20)

Model classmethods (``User.update(...)``, ``User.delete_many(...)``) are
thin shortcuts over the same terminals.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Generic, List, Mapping, NamedTuple, Optional, Sequence, TypeVar, Union

from ..cache.core import build_cache_key
from ..db.connections import get_config
from ..faults import QueryFault
from .backends.base import Changes, QuerySpec
from .conditions import SoftDeleteMode, is_operator_map, normalize_condition, normalize_sort
from .fields import MISSING
from . import policies

if TYPE_CHECKING:
    from .backends.base import Executor
    from .base import Model

logger = logging.getLogger("ardea.models.query")

__all__ = ["QueryBuilder", "Page", "BulkResult"]

M = TypeVar("M", bound="Model")

DEFAULT_CACHE_TTL = 3600


@dataclass
class Page(Generic[M]):
    """One page of results."""

    data: List[M] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10
    total_pages: int = 0


class BulkResult(NamedTuple):
    """Count plus the primary keys a bulk write touched."""

    count: int
    ids: List[Any]


class QueryBuilder(Generic[M]):
    """
    Query state for one model: condition, projection, sort, window,
    soft-delete mode and cache flag.
    """

    def __init__(self, model: type, condition: Any = None, fields: Optional[Sequence[str]] = None):
        self.model = model
        self._conditions: List[Any] = [] if condition is None else [condition]
        self._fields: Optional[List[str]] = list(fields) if fields else None
        self._sort: Any = None
        self._skip: Optional[int] = None
        self._limit: Optional[int] = None
        self._mode = SoftDeleteMode.DEFAULT
        self._use_cache = True
        self._executed = False

    def __repr__(self) -> str:
        state = "executed" if self._executed else "pending"
        return f"<QueryBuilder {self.model.__name__} {state} conditions={self._conditions!r}>"

    # ── Guards ───────────────────────────────────────────────────────

    @property
    def executed(self) -> bool:
        return self._executed

    def _ensure_pending(self, operation: str) -> None:
        if self._executed:
            raise QueryFault(
                self.model.__name__,
                operation,
                "query builder has already been executed; start a new query",
            )

    def _begin(self, operation: str) -> None:
        self._ensure_pending(operation)
        self._executed = True

    # ── Chain ────────────────────────────────────────────────────────

    def where(self, condition: Any) -> "QueryBuilder[M]":
        """AND ``condition`` into the current one."""
        self._ensure_pending("where")
        if condition is not None:
            self._conditions.append(condition)
        return self

    def find(self, condition: Any = None, fields: Optional[Sequence[str]] = None) -> "QueryBuilder[M]":
        """Replace the condition (and optionally the projection)."""
        self._ensure_pending("find")
        self._conditions = [] if condition is None else [condition]
        if fields is not None:
            self._fields = list(fields) or None
        return self

    def fields(self, fields: Optional[Sequence[str]]) -> "QueryBuilder[M]":
        self._ensure_pending("fields")
        self._fields = list(fields) if fields else None
        return self

    def sort(self, sort: Any) -> "QueryBuilder[M]":
        self._ensure_pending("sort")
        self._sort = sort
        return self

    def skip(self, n: Union[int, float]) -> "QueryBuilder[M]":
        self._ensure_pending("skip")
        self._skip = max(0, int(math.floor(n)))
        return self

    def limit(self, n: Union[int, float]) -> "QueryBuilder[M]":
        self._ensure_pending("limit")
        self._limit = max(1, int(math.floor(n)))
        return self

    def with_trashed(self) -> "QueryBuilder[M]":
        self._ensure_pending("with_trashed")
        self._mode = SoftDeleteMode.INCLUDE_TRASHED
        return self

    include_trashed = with_trashed

    def only_trashed(self) -> "QueryBuilder[M]":
        self._ensure_pending("only_trashed")
        self._mode = SoftDeleteMode.ONLY_TRASHED
        return self

    def scope(self, name: str) -> "QueryBuilder[M]":
        """AND a named scope from ``Meta.scopes`` into the condition."""
        self._ensure_pending("scope")
        factory = self.model._meta.scopes.get(name)
        if factory is None:
            raise QueryFault(self.model.__name__, "scope", f"Unknown scope {name!r}")
        return self.where(factory())

    def no_cache(self) -> "QueryBuilder[M]":
        self._ensure_pending("no_cache")
        self._use_cache = False
        return self

    def __await__(self):
        return self.find_one().__await__()

    # ── Plumbing ─────────────────────────────────────────────────────

    def _condition(self, primary_key: str) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for condition in self._conditions:
            for name, value in normalize_condition(condition, primary_key).items():
                existing = merged.get(name)
                if is_operator_map(existing) and is_operator_map(value):
                    merged[name] = {**existing, **value}
                else:
                    merged[name] = value
        return merged

    def _spec(
        self,
        executor: "Executor",
        *,
        mode: Optional[SoftDeleteMode] = None,
        window: bool = False,
        limit: Optional[int] = None,
    ) -> QuerySpec:
        pk = executor.pk
        return QuerySpec(
            condition=self._condition(pk),
            mode=self._mode if mode is None else mode,
            fields=self._fields,
            sort=normalize_sort(self._sort, pk),
            skip=self._skip if window else None,
            limit=limit if limit is not None else (self._limit if window else None),
        )

    def _by_pk(self, executor: "Executor", pk_value: Any) -> QuerySpec:
        return QuerySpec({executor.pk: pk_value}, SoftDeleteMode.INCLUDE_TRASHED)

    async def _cached(self, operation: str, spec: QuerySpec, load):
        meta = self.model._meta
        cache = meta.cache
        if cache is None or not self._use_cache:
            return await load()
        key = build_cache_key(meta.table, operation, spec.fingerprint())
        hit = await cache.get(key)
        if hit is not None:
            logger.debug("Cache hit %s", key)
            return hit
        value = await load()
        await cache.set(key, value, ttl=self._cache_ttl(), tags=[meta.cache_tag])
        return value

    def _cache_ttl(self) -> int:
        meta = self.model._meta
        if meta.cache_ttl is not None:
            return meta.cache_ttl
        config = get_config(meta.connection)
        return config.cache_ttl if config is not None else DEFAULT_CACHE_TTL

    async def _written(self) -> None:
        await self.model._invalidate_cache()

    def _hydrate(self, row: Optional[Dict[str, Any]]) -> Optional[M]:
        return self.model._hydrate(row) if row is not None else None

    # ── Reads ────────────────────────────────────────────────────────

    async def find_one(self) -> Optional[M]:
        self._begin("find_one")
        ex = await self.model._executor()
        spec = self._spec(ex, window=True, limit=1)
        rows = await self._cached("find_one", spec, lambda: ex.fetch(spec))
        return self._hydrate(rows[0]) if rows else None

    one = find_one

    async def find_all(self) -> List[M]:
        self._begin("find_all")
        ex = await self.model._executor()
        spec = self._spec(ex, window=True)
        rows = await self._cached("find_all", spec, lambda: ex.fetch(spec))
        return [self.model._hydrate(row) for row in rows]

    all = find_all

    async def count(self) -> int:
        self._begin("count")
        ex = await self.model._executor()
        spec = self._spec(ex)
        spec.sort = []
        return await self._cached("count", spec, lambda: ex.count(spec))

    async def exists(self) -> bool:
        self._begin("exists")
        ex = await self.model._executor()
        spec = self._spec(ex, limit=1)
        return await ex.exists(spec)

    async def distinct(self, field_name: str) -> List[Any]:
        self._begin("distinct")
        ex = await self.model._executor()
        return await ex.distinct(field_name, self._spec(ex))

    async def aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Run a document pipeline, prefixed by the builder's condition as ``$match``."""
        self._begin("aggregate")
        ex = await self.model._executor()
        if ex.kind != "document":
            raise QueryFault(self.model.__name__, "aggregate", "aggregation pipelines need a document backend")
        stages = [dict(stage) for stage in pipeline]
        match = ex.filter(self._spec(ex))
        if match:
            stages.insert(0, {"$match": match})
        return await ex.aggregate(stages)

    async def paginate(self, page: int = 1, page_size: int = 10) -> Page[M]:
        self._begin("paginate")
        page = max(1, int(page))
        page_size = max(1, int(page_size))
        ex = await self.model._executor()
        count_spec = self._spec(ex)
        count_spec.sort = []
        total = await self._cached("count", count_spec, lambda: ex.count(count_spec))
        spec = self._spec(ex)
        spec.skip = (page - 1) * page_size
        spec.limit = page_size
        rows = await self._cached("find_all", spec, lambda: ex.fetch(spec))
        return Page(
            data=[self.model._hydrate(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    # ── Single-record writes ─────────────────────────────────────────

    async def update(
        self,
        data: Mapping[str, Any],
        return_latest: bool = False,
    ) -> Union[int, Optional[M]]:
        """
        Update the first match, running the update hook chain.

        Returns 0/1, or the updated record (``None`` when nothing matched)
        with ``return_latest``.
        """
        self._begin("update")
        model = self.model
        ex = await model._executor()
        found = await ex.fetch(self._spec(ex, limit=1))
        if not found:
            return None if return_latest else 0
        current = model._hydrate(found[0])
        payload, _ = await model._prepare_write(dict(data), updating=True, base=current._data)
        payload.pop(ex.pk, None)
        policies.strip_live_marker(model._meta, payload)
        changes = policies.stamp_update(model._meta, Changes(set=payload))
        if not changes:
            return current if return_latest else 0
        row = await ex.update_first(self._by_pk(ex, current._data[ex.pk]), changes)
        if row is None:
            return None if return_latest else 0
        await self._written()
        instance = model._hydrate(row)
        await model._run_after("update", instance)
        if return_latest:
            if self._fields:
                return await model.query().with_trashed().fields(self._fields).find(instance._data[ex.pk])
            return instance
        return 1

    async def increment(
        self,
        field_name: str,
        amount: Union[int, float] = 1,
        return_latest: bool = False,
    ) -> Union[int, Optional[M]]:
        self._begin("increment")
        ex = await self.model._executor()
        changes = policies.stamp_update(self.model._meta, Changes(inc={field_name: amount}))
        row = await ex.update_first(self._spec(ex), changes)
        if row is None:
            return None if return_latest else 0
        await self._written()
        return self.model._hydrate(row) if return_latest else 1

    async def decrement(
        self,
        field_name: str,
        amount: Union[int, float] = 1,
        return_latest: bool = False,
    ) -> Union[int, Optional[M]]:
        return await self.increment(field_name, -amount, return_latest)

    async def delete(self) -> int:
        """Delete the first match (soft delete when enabled). Returns 0 or 1."""
        count, _ = await self._delete_one()
        return count

    async def _delete_one(self):
        self._begin("delete")
        model = self.model
        meta = model._meta
        ex = await model._executor()
        found = await ex.fetch(self._spec(ex, limit=1))
        if not found:
            return 0, None
        instance = model._hydrate(found[0])
        await meta.hooks.run("before_delete", instance)
        target = self._by_pk(ex, instance._data[ex.pk])
        if meta.soft_delete:
            row = await ex.update_first(target, policies.soft_delete_changes(meta))
        else:
            row = await ex.delete_first(target)
        if row is None:
            return 0, None
        await self._written()
        if meta.soft_delete:
            instance = model._hydrate(row)
        await meta.hooks.run_after("after_delete", instance)
        return 1, row

    async def find_one_and_update(
        self,
        data: Mapping[str, Any],
        return_document: str = "after",
    ) -> Optional[M]:
        self._begin("find_one_and_update")
        if return_document not in ("before", "after"):
            raise QueryFault(self.model.__name__, "find_one_and_update", f"Invalid return_document: {return_document!r}")
        model = self.model
        ex = await model._executor()
        payload = model._meta.schema.process(dict(data), partial=True)
        payload.pop(ex.pk, None)
        policies.strip_live_marker(model._meta, payload)
        changes = policies.stamp_update(model._meta, Changes(set=payload))
        if not changes:
            raise QueryFault(model.__name__, "find_one_and_update", "nothing to update")
        row = await ex.find_one_and_update(self._spec(ex), changes, return_document=return_document)
        if row is not None:
            await self._written()
        return self._hydrate(row)

    async def find_one_and_delete(self) -> Optional[M]:
        self._begin("find_one_and_delete")
        meta = self.model._meta
        ex = await self.model._executor()
        spec = self._spec(ex)
        if meta.soft_delete:
            row = await ex.find_one_and_update(spec, policies.soft_delete_changes(meta))
        else:
            row = await ex.delete_first(spec)
        if row is not None:
            await self._written()
        return self._hydrate(row)

    async def find_one_and_replace(
        self,
        replacement: Mapping[str, Any],
        return_latest: bool = True,
    ) -> Optional[M]:
        self._begin("find_one_and_replace")
        model = self.model
        meta = model._meta
        ex = await model._executor()
        data = meta.schema.process(dict(replacement))
        data.pop(ex.pk, None)
        if meta.updated_at_field:
            data[meta.updated_at_field] = policies.now()
        policies.strip_live_marker(meta, data)
        row = await ex.find_one_and_replace(
            self._spec(ex),
            data,
            return_document="after" if return_latest else "before",
        )
        if row is not None:
            await self._written()
        return self._hydrate(row)

    async def upsert(
        self,
        data: Mapping[str, Any],
        return_latest: bool = True,
        resurrect: bool = False,
    ) -> Optional[M]:
        """
        Update the first match or insert a new record.

        The inserted record is seeded from the condition's equality fields
        and the schema defaults. ``resurrect`` also matches trashed
        records and clears their deleted-at marker.
        """
        self._begin("upsert")
        model = self.model
        meta = model._meta
        ex = await model._executor()
        mode = SoftDeleteMode.INCLUDE_TRASHED if resurrect else None
        spec = self._spec(ex, mode=mode)
        payload = meta.schema.process(dict(data), partial=True)
        payload.pop(ex.pk, None)
        policies.strip_live_marker(meta, payload)
        changes = policies.stamp_update(meta, Changes(set=payload))
        if resurrect and meta.soft_delete:
            changes.unset.append(meta.deleted_at_field)
        seed = {
            name: fld.get_default()
            for name, fld in meta.schema.items()
            if fld.has_default() and name not in payload
        }
        seed.update(_equalities(spec.condition))
        policies.stamp_create(meta, seed)
        policies.strip_live_marker(meta, seed)
        row = await ex.find_one_and_update(
            spec,
            changes,
            upsert=True,
            return_document="after" if return_latest else "before",
            seed=seed,
        )
        await self._written()
        return self._hydrate(row)

    async def find_or_create(self, data: Mapping[str, Any], resurrect: bool = False) -> M:
        """
        Return the first match, trashed or not, or create one from
        the condition's equality fields overlaid with ``data``.
        """
        self._begin("find_or_create")
        model = self.model
        meta = model._meta
        ex = await model._executor()
        spec = self._spec(ex, mode=SoftDeleteMode.INCLUDE_TRASHED, limit=1)
        found = await ex.fetch(spec)
        if found:
            existing = model._hydrate(found[0])
            if resurrect and policies.is_trashed(meta, existing._data):
                pk_value = existing._data[ex.pk]
                row = await ex.update_first(self._by_pk(ex, pk_value), policies.restore_changes(meta))
                await self._written()
                if row is not None:
                    return model._hydrate(row)
            return existing
        return await model.create({**_equalities(spec.condition), **dict(data)})

    # ── Bulk writes ──────────────────────────────────────────────────

    async def update_many(self, data: Mapping[str, Any]) -> int:
        """Update every match. Hooks are not run for bulk updates."""
        self._begin("update_many")
        model = self.model
        ex = await model._executor()
        payload = model._meta.schema.process(dict(data), partial=True)
        payload.pop(ex.pk, None)
        policies.strip_live_marker(model._meta, payload)
        changes = policies.stamp_update(model._meta, Changes(set=payload))
        if not changes:
            return 0
        ids = await ex.update_where(self._spec(ex), changes)
        if ids:
            await self._written()
        return len(ids)

    async def increment_many(
        self,
        field_or_map: Union[str, Mapping[str, Union[int, float]]],
        amount: Union[int, float] = 1,
    ) -> int:
        self._begin("increment_many")
        increments = {field_or_map: amount} if isinstance(field_or_map, str) else dict(field_or_map)
        ex = await self.model._executor()
        changes = policies.stamp_update(self.model._meta, Changes(inc=increments))
        ids = await ex.update_where(self._spec(ex), changes)
        if ids:
            await self._written()
        return len(ids)

    async def decrement_many(
        self,
        field_or_map: Union[str, Mapping[str, Union[int, float]]],
        amount: Union[int, float] = 1,
    ) -> int:
        if isinstance(field_or_map, str):
            return await self.increment_many(field_or_map, -amount)
        return await self.increment_many({name: -abs(value) for name, value in field_or_map.items()})

    async def delete_many(self, return_ids: bool = False) -> Union[int, BulkResult]:
        """Delete every match (soft delete when enabled)."""
        self._begin("delete_many")
        meta = self.model._meta
        ex = await self.model._executor()
        if meta.soft_delete:
            ids = await ex.update_where(self._spec(ex), policies.soft_delete_changes(meta))
        else:
            ids = await ex.delete_where(self._spec(ex))
        return await self._bulk(ids, return_ids)

    async def restore(self, return_ids: bool = False) -> Union[int, BulkResult]:
        """Clear the deleted-at marker on every trashed match."""
        self._begin("restore")
        meta = self.model._meta
        policies.require_soft_delete(meta, "restore")
        ex = await self.model._executor()
        spec = self._spec(ex, mode=SoftDeleteMode.ONLY_TRASHED)
        ids = await ex.update_where(spec, policies.restore_changes(meta))
        return await self._bulk(ids, return_ids)

    async def force_delete(self, return_ids: bool = False) -> Union[int, BulkResult]:
        """Physically remove every match, trashed or not."""
        self._begin("force_delete")
        ex = await self.model._executor()
        ids = await ex.delete_where(self._spec(ex, mode=SoftDeleteMode.INCLUDE_TRASHED))
        return await self._bulk(ids, return_ids)

    async def _bulk(self, ids: List[Any], return_ids: bool) -> Union[int, BulkResult]:
        if ids:
            await self._written()
        if return_ids:
            return BulkResult(len(ids), list(ids))
        return len(ids)


def _equalities(condition: Mapping[str, Any]) -> Dict[str, Any]:
    """Plain equality entries of a condition (operators are dropped)."""
    return {
        name: value
        for name, value in condition.items()
        if value is not None and value is not MISSING and not isinstance(value, Mapping)
    }
