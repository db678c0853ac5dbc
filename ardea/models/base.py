"""
Ardea Model Base — metaclass-driven active record over any storage adapter.

Usage:
    from ardea.models import Model, StringField, NumberField, hook

    class User(Model):
        table = "users"

        name = StringField(required=True, max=80)
        email = StringField(pattern=r"^[^@]+@[^@]+$")
        age = NumberField(min=0)

        class Meta:
            soft_delete = True
            timestamps = True
            scopes = {"adults": lambda: {"age": {"gte": 18}}}

        async def before_save(self):
            self.email = self.email.lower()

    register_adapter(SQLiteAdapter("sqlite:///app.db"))

    user = await User.create({"name": "Ada", "email": "ADA@x.io", "age": 36})
    adults = await User.scope("adults").sort("-age").all()
    await User.update({"email": "ada@x.io"}, {"age": 37})
    await user.delete_instance()
    await User.restore({"email": "ada@x.io"})

A model without an adapter resolves one from the connection registry
(``Meta.connection``, "default" unless set) the first time it is used.
"""

from __future__ import annotations

import datetime
import decimal
import logging
import uuid
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from ..adapters.base import StorageAdapter
from ..db.connections import get_config, has_adapter, resolve_adapter
from ..faults import AdapterNotConfiguredFault, Fault, IndexFault, ModelInitFault, QueryFault, RecordNotFoundFault
from . import policies
from .backends import Executor, executor_for
from .conditions import SoftDeleteMode
from .fields import MISSING, Field, Schema
from .hooks import HookSet
from .indexes import IndexManager
from .options import ModelOptions
from .query import BulkResult, Page, QueryBuilder
from .relations import belongs_to, has_many, has_one

logger = logging.getLogger("ardea.models")

__all__ = ["Model", "ModelMeta", "ModelRegistry"]

M = TypeVar("M", bound="Model")
T = TypeVar("T")


# ── Model Registry ───────────────────────────────────────────────────────────


class ModelRegistry:
    """Global registry of concrete Model subclasses, keyed by class name."""

    _models: Dict[str, Type[Model]] = {}

    @classmethod
    def register(cls, model_cls: Type[Model]) -> None:
        cls._models[model_cls.__name__] = model_cls

    @classmethod
    def get(cls, name: str) -> Optional[Type[Model]]:
        return cls._models.get(name)

    @classmethod
    def all_models(cls) -> Dict[str, Type[Model]]:
        return dict(cls._models)

    @classmethod
    def reset(cls) -> None:
        """Clear registry (for testing)."""
        cls._models.clear()


# ── Model Metaclass ──────────────────────────────────────────────────────────


class ModelMeta(type):
    """
    Metaclass for Ardea models.

    Handles:
    - Field collection (parents first, then declaration order)
    - Meta class parsing into ``ModelOptions``
    - ``@hook`` receiver collection
    - Virtual attribute installation
    - Model registration and freezing of the options
    """

    def __new__(
        mcs,
        name: str,
        bases: Tuple[type, ...],
        namespace: Dict[str, Any],
        **kwargs,
    ) -> ModelMeta:
        # Don't process the base Model class itself
        parents = [b for b in bases if isinstance(b, ModelMeta)]
        if not parents:
            return super().__new__(mcs, name, bases, namespace)

        meta_class = namespace.pop("Meta", None)
        table_attr = namespace.pop("table", None) or namespace.pop("collection", None)

        parent_opts: Optional[ModelOptions] = next(
            (p._meta for p in parents if getattr(p, "_meta", None) is not None), None
        )

        fields: Dict[str, Field] = {}
        if parent_opts is not None:
            fields.update(parent_opts.schema.items())
        for key, value in namespace.items():
            if isinstance(value, Field):
                fields[key] = value

        hooks = parent_opts.hooks.copy(name) if parent_opts is not None else HookSet(name)
        for value in namespace.values():
            for slot, priority in getattr(value, "_ardea_hooks", ()):
                hooks.connect(slot, value, priority=priority)

        cls = super().__new__(mcs, name, bases, namespace)

        for fname, fld in fields.items():
            if fname in namespace:
                fld.__set_name__(cls, fname)
                fld.model = cls

        opts = ModelOptions(
            name,
            meta_class,
            table_attr,
            parent=parent_opts,
            schema=Schema(fields),
            hooks=hooks,
        )
        opts._model_cls = cls
        cls._meta = opts
        cls.hooks = hooks

        for vname, getter in opts.virtuals.items():
            if vname in fields:
                raise TypeError(f"{name}: virtual {vname!r} clashes with a declared field")
            setattr(cls, vname, property(lambda self, getter=getter: getter(self)))

        if not opts.abstract:
            ModelRegistry.register(cls)
        opts.freeze()
        return cls


# ── Model ────────────────────────────────────────────────────────────────────


class Model(metaclass=ModelMeta):
    """
    Ardea Model base class — async active record.

    Class-level API (each call is one independent query):
        await User.create({...}) / create_many([...])
        await User.find_one(cond) / find_all(cond) / find_by_id(pk)
        await User.find(cond)                      # awaitable builder
        await User.update(cond, data) / update_many / increment / ...
        await User.delete(cond) / delete_many / restore / force_delete
        await User.upsert(cond, data) / find_or_create(cond, data)
        await User.paginate(cond, page=1, page_size=10)

    Instance API:
        await user.save() / update_instance(data) / delete_instance()
        await user.restore_instance() / refresh()
        await post.belongs_to(User, "user_id")
    """

    _meta: ClassVar[ModelOptions]
    hooks: ClassVar[HookSet]

    def __init__(self, data: Optional[Mapping[str, Any]] = None, **fields: Any):
        """Create an in-memory, unsaved instance."""
        object.__setattr__(self, "_data", {**dict(data or {}), **fields})

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not class attributes
        data = self.__dict__.get("_data")
        if data is not None and name in data:
            return data[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self._data[name] = value

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} pk={self.pk!r}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, self.__class__):
            return False
        return self.pk is not None and self.pk == other.pk

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.pk))

    @property
    def pk(self) -> Any:
        return self._data.get(type(self)._meta.primary_key)

    # ── Adapter / initialization ─────────────────────────────────────

    @classmethod
    def set_adapter(cls, adapter: StorageAdapter) -> None:
        cls._meta.adapter = adapter

    @classmethod
    def get_adapter(cls) -> Optional[StorageAdapter]:
        return cls._meta.adapter

    @classmethod
    async def init(cls, connection: Optional[str] = None, *, create_indexes: Optional[bool] = None) -> None:
        """
        Bind the model to the adapter registered under ``connection`` and
        build its declared indexes.

        Raises:
            AdapterNotConfiguredFault: nothing is registered under the alias.
            ModelInitFault: the adapter could not be resolved or indexes failed.
        """
        meta = cls._meta
        if meta.abstract:
            raise ModelInitFault(meta.table, "abstract models cannot be initialized")
        alias = connection or meta.connection
        if meta.adapter is None:
            if not has_adapter(alias):
                raise AdapterNotConfiguredFault(cls.__name__)
            try:
                adapter = await resolve_adapter(alias)
            except Fault as exc:
                raise ModelInitFault(meta.table, exc.message) from exc
            except Exception as exc:
                raise ModelInitFault(meta.table, str(exc)) from exc
            meta.adapter = adapter
            logger.debug("Model %s bound to %s adapter %r", cls.__name__, adapter.name, alias)

        if create_indexes is None:
            config = get_config(alias)
            create_indexes = config.auto_create_indexes if config is not None else True
        if create_indexes and meta.indexes:
            try:
                await cls.create_indexes()
            except IndexFault as exc:
                raise ModelInitFault(meta.table, exc.message) from exc

    @classmethod
    async def _executor(cls) -> Executor:
        if cls._meta.adapter is None:
            await cls.init()
        return executor_for(cls._meta)

    @classmethod
    async def transaction(cls, callback: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        """Run ``callback(adapter)`` inside the adapter's transaction."""
        executor = await cls._executor()
        return await executor.adapter.transaction(callback)

    # ── Internals shared with the query builder ──────────────────────

    @classmethod
    def _stage(cls: Type[M], data: Mapping[str, Any]) -> M:
        instance = cls.__new__(cls)
        object.__setattr__(instance, "_data", dict(data))
        return instance

    @classmethod
    def _hydrate(cls: Type[M], row: Mapping[str, Any]) -> M:
        data = cls._meta.schema.to_python(dict(row))
        return cls._stage(policies.restore_datetimes(cls._meta, data))

    @staticmethod
    def _collect(staging: "Model", base: Optional[Mapping[str, Any]], touched: set) -> Dict[str, Any]:
        if base is None:
            return dict(staging._data)
        return {
            key: value
            for key, value in staging._data.items()
            if key in touched or base.get(key, MISSING) != value
        }

    @classmethod
    async def _prepare_write(
        cls,
        payload: Dict[str, Any],
        *,
        updating: bool,
        base: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], "Model"]:
        """
        Run the before-hook chain and the schema over a write payload.

        Hooks see a staging instance (the current record overlaid with the
        payload on updates); whatever they change is carried into the write.
        """
        meta = cls._meta
        hooks = meta.hooks
        staging = cls._stage({**dict(base or {}), **payload})
        touched = set(payload)

        await hooks.run("before_validate", staging)
        working = cls._collect(staging, base, touched)
        processed = meta.schema.process(working, partial=updating)
        staging._data.update(processed)
        touched.update(processed)

        await hooks.run("after_validate", staging)
        await hooks.run("before_update" if updating else "before_create", staging)
        await hooks.run("before_save", staging)

        final = cls._collect(staging, base, touched)
        meta.schema.validate(final, partial=updating)
        if not updating:
            policies.stamp_create(meta, final)
            policies.strip_live_marker(meta, final)
        return final, staging

    @classmethod
    async def _run_after(cls, event: str, instance: "Model") -> None:
        await cls._meta.hooks.run_after(f"after_{event}", instance)
        await cls._meta.hooks.run_after("after_save", instance)

    @classmethod
    async def _invalidate_cache(cls) -> None:
        cache = cls._meta.cache
        if cache is not None:
            await cache.delete_by_tags([cls._meta.cache_tag])

    # ── Query entry points ───────────────────────────────────────────

    @classmethod
    def query(cls: Type[M]) -> QueryBuilder[M]:
        return QueryBuilder(cls)

    @classmethod
    def find(cls: Type[M], condition: Any = None, fields: Optional[Sequence[str]] = None) -> QueryBuilder[M]:
        """
        Awaitable builder for a single record.

            user = await User.find(pk)
            user = await User.find({"email": e}).with_trashed()
            users = await User.find({"age": {"gt": 30}}).sort("-age").all()
        """
        return QueryBuilder(cls, condition, fields)

    @classmethod
    def with_trashed(cls: Type[M]) -> QueryBuilder[M]:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls: Type[M]) -> QueryBuilder[M]:
        return cls.query().only_trashed()

    @classmethod
    def scope(cls: Type[M], name: str) -> QueryBuilder[M]:
        return cls.query().scope(name)

    # ── Reads ────────────────────────────────────────────────────────

    @classmethod
    async def find_one(cls: Type[M], condition: Any = None, fields: Optional[Sequence[str]] = None) -> Optional[M]:
        return await cls.find(condition, fields).find_one()

    @classmethod
    async def find_by_id(cls: Type[M], pk: Any, fields: Optional[Sequence[str]] = None) -> Optional[M]:
        if pk is None:
            return None
        return await cls.find(pk, fields).find_one()

    @classmethod
    async def find_all(
        cls: Type[M],
        condition: Any = None,
        fields: Optional[Sequence[str]] = None,
        sort: Any = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[M]:
        builder = cls.find(condition, fields)
        if sort is not None:
            builder.sort(sort)
        if skip is not None:
            builder.skip(skip)
        if limit is not None:
            builder.limit(limit)
        return await builder.find_all()

    @classmethod
    async def count(cls, condition: Any = None) -> int:
        return await cls.find(condition).count()

    @classmethod
    async def exists(cls, condition: Any = None) -> bool:
        return await cls.find(condition).exists()

    @classmethod
    async def distinct(cls, field_name: str, condition: Any = None) -> List[Any]:
        return await cls.find(condition).distinct(field_name)

    @classmethod
    async def aggregate(cls, pipeline: Sequence[Mapping[str, Any]], condition: Any = None) -> List[Dict[str, Any]]:
        return await cls.find(condition).aggregate(pipeline)

    @classmethod
    async def paginate(
        cls: Type[M],
        condition: Any = None,
        page: int = 1,
        page_size: int = 10,
        sort: Any = None,
        fields: Optional[Sequence[str]] = None,
    ) -> Page[M]:
        builder = cls.find(condition, fields)
        if sort is not None:
            builder.sort(sort)
        return await builder.paginate(page, page_size)

    # ── Create ───────────────────────────────────────────────────────

    @classmethod
    async def create(cls: Type[M], data: Optional[Mapping[str, Any]] = None, **fields: Any) -> M:
        """
        Validate and persist a new record.

        Usage:
            user = await User.create({"name": "Ada"})
            user = await User.create(name="Ada")
        """
        executor = await cls._executor()
        payload, _ = await cls._prepare_write({**dict(data or {}), **fields}, updating=False)
        row = await executor.insert(payload)
        await cls._invalidate_cache()
        instance = cls._hydrate(row)
        await cls._run_after("create", instance)
        return instance

    @classmethod
    async def create_many(cls: Type[M], items: Sequence[Mapping[str, Any]]) -> List[M]:
        """Validate every item first, then insert them in one batch."""
        if not items:
            return []
        executor = await cls._executor()
        payloads = []
        for item in items:
            payload, _ = await cls._prepare_write(dict(item), updating=False)
            payloads.append(payload)
        rows = await executor.insert_many(payloads)
        await cls._invalidate_cache()
        instances = [cls._hydrate(row) for row in rows]
        for instance in instances:
            await cls._run_after("create", instance)
        return instances

    # ── Update ───────────────────────────────────────────────────────

    @classmethod
    async def update(
        cls: Type[M],
        condition: Any,
        data: Mapping[str, Any],
        return_latest: bool = False,
        fields: Optional[Sequence[str]] = None,
    ) -> Union[int, Optional[M]]:
        return await cls.find(condition, fields).update(data, return_latest)

    @classmethod
    async def update_by_id(cls, pk: Any, data: Mapping[str, Any]) -> int:
        return await cls.find(pk).update(data)

    @classmethod
    async def update_many(cls, condition: Any, data: Mapping[str, Any]) -> int:
        return await cls.find(condition).update_many(data)

    @classmethod
    async def increment(
        cls: Type[M],
        condition: Any,
        field_name: str,
        amount: Union[int, float] = 1,
        return_latest: bool = False,
    ) -> Union[int, Optional[M]]:
        return await cls.find(condition).increment(field_name, amount, return_latest)

    @classmethod
    async def decrement(
        cls: Type[M],
        condition: Any,
        field_name: str,
        amount: Union[int, float] = 1,
        return_latest: bool = False,
    ) -> Union[int, Optional[M]]:
        return await cls.find(condition).decrement(field_name, amount, return_latest)

    @classmethod
    async def increment_many(
        cls,
        condition: Any,
        field_or_map: Union[str, Mapping[str, Union[int, float]]],
        amount: Union[int, float] = 1,
    ) -> int:
        return await cls.find(condition).increment_many(field_or_map, amount)

    @classmethod
    async def decrement_many(
        cls,
        condition: Any,
        field_or_map: Union[str, Mapping[str, Union[int, float]]],
        amount: Union[int, float] = 1,
    ) -> int:
        return await cls.find(condition).decrement_many(field_or_map, amount)

    @classmethod
    async def find_one_and_update(
        cls: Type[M],
        condition: Any,
        data: Mapping[str, Any],
        return_document: str = "after",
        fields: Optional[Sequence[str]] = None,
    ) -> Optional[M]:
        return await cls.find(condition, fields).find_one_and_update(data, return_document)

    @classmethod
    async def find_one_and_replace(
        cls: Type[M],
        condition: Any,
        replacement: Mapping[str, Any],
        return_latest: bool = True,
    ) -> Optional[M]:
        return await cls.find(condition).find_one_and_replace(replacement, return_latest)

    @classmethod
    async def upsert(
        cls: Type[M],
        condition: Any,
        data: Mapping[str, Any],
        return_latest: bool = True,
        resurrect: bool = False,
    ) -> Optional[M]:
        return await cls.find(condition).upsert(data, return_latest, resurrect)

    @classmethod
    async def find_or_create(
        cls: Type[M],
        condition: Any,
        data: Optional[Mapping[str, Any]] = None,
        resurrect: bool = False,
    ) -> M:
        return await cls.find(condition).find_or_create(data or {}, resurrect)

    # ── Delete / restore ─────────────────────────────────────────────

    @classmethod
    async def delete(cls, condition: Any) -> int:
        return await cls.find(condition).delete()

    @classmethod
    async def delete_by_id(cls, pk: Any) -> int:
        return await cls.find(pk).delete()

    @classmethod
    async def delete_many(cls, condition: Any = None, return_ids: bool = False) -> Union[int, BulkResult]:
        return await cls.find(condition).delete_many(return_ids)

    @classmethod
    async def restore(cls, condition: Any = None, return_ids: bool = False) -> Union[int, BulkResult]:
        return await cls.find(condition).restore(return_ids)

    @classmethod
    async def restore_by_id(cls, pk: Any) -> int:
        return await cls.find(pk).restore()

    @classmethod
    async def force_delete(cls, condition: Any = None, return_ids: bool = False) -> Union[int, BulkResult]:
        return await cls.find(condition).force_delete(return_ids)

    @classmethod
    async def force_delete_by_id(cls, pk: Any) -> int:
        return await cls.find(pk).force_delete()

    @classmethod
    async def find_one_and_delete(cls: Type[M], condition: Any) -> Optional[M]:
        return await cls.find(condition).find_one_and_delete()

    @classmethod
    async def truncate(cls) -> int:
        """Remove every record, trashed ones included."""
        executor = await cls._executor()
        removed = await executor.truncate()
        await cls._invalidate_cache()
        return removed

    # ── Indexes ──────────────────────────────────────────────────────

    @classmethod
    async def create_indexes(cls, force: bool = False) -> List[str]:
        return await IndexManager(cls).create_indexes(force)

    @classmethod
    async def drop_indexes(cls) -> List[str]:
        return await IndexManager(cls).drop_indexes()

    @classmethod
    async def get_indexes(cls) -> List[Dict[str, Any]]:
        return await IndexManager(cls).get_indexes()

    # ── Instance methods ─────────────────────────────────────────────

    async def _pk_or_fail(self, operation: str) -> Any:
        executor = await type(self)._executor()
        value = self._data.get(executor.pk)
        if value is None:
            raise QueryFault(type(self).__name__, operation, "instance has no primary key")
        return value

    def _replace(self, fresh: "Model") -> "Model":
        object.__setattr__(self, "_data", dict(fresh._data))
        return self

    async def save(self: M) -> M:
        """Insert when the primary key is unset, otherwise update."""
        cls = type(self)
        executor = await cls._executor()
        pk_value = self._data.get(executor.pk)
        if pk_value is None:
            return self._replace(await cls.create(dict(self._data)))
        data = {k: v for k, v in self._data.items() if k != executor.pk}
        latest = await cls.find(pk_value).update(data, return_latest=True)
        if latest is None:
            raise RecordNotFoundFault(cls.__name__, pk_value)
        return self._replace(latest)

    async def update_instance(self: M, data: Mapping[str, Any]) -> M:
        pk_value = await self._pk_or_fail("update")
        latest = await type(self).find(pk_value).update(data, return_latest=True)
        if latest is None:
            raise RecordNotFoundFault(type(self).__name__, pk_value)
        return self._replace(latest)

    async def delete_instance(self) -> bool:
        """Delete this record; on soft-delete models the marker is reflected here."""
        cls = type(self)
        pk_value = await self._pk_or_fail("delete")
        count, row = await cls.find(pk_value)._delete_one()
        if count and cls._meta.soft_delete and row is not None:
            self._replace(cls._hydrate(row))
        return bool(count)

    async def restore_instance(self: M) -> M:
        cls = type(self)
        policies.require_soft_delete(cls._meta, "restore")
        pk_value = await self._pk_or_fail("restore")
        await cls.find(pk_value).restore()
        return await self.refresh()

    async def refresh(self: M) -> M:
        """Reload from storage, trashed or not."""
        cls = type(self)
        pk_value = await self._pk_or_fail("refresh")
        fresh = await cls.find(pk_value).with_trashed().no_cache().find_one()
        if fresh is None:
            raise RecordNotFoundFault(cls.__name__, pk_value)
        return self._replace(fresh)

    # ── Relations ────────────────────────────────────────────────────

    async def belongs_to(
        self,
        related: Type[M],
        foreign_key: str,
        local_key: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
    ) -> Optional[M]:
        return await belongs_to(self, related, foreign_key, local_key, fields, mode)

    async def has_one(
        self,
        related: Type[M],
        foreign_key: str,
        local_key: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
    ) -> Optional[M]:
        return await has_one(self, related, foreign_key, local_key, fields, mode)

    async def has_many(
        self,
        related: Type[M],
        foreign_key: str,
        local_key: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        sort: Any = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
    ) -> List[M]:
        return await has_many(self, related, foreign_key, local_key, fields, sort, skip, limit, mode)

    # ── Serialization ────────────────────────────────────────────────

    def virtual(self, name: str) -> Any:
        getter = type(self)._meta.virtuals.get(name)
        if getter is None:
            raise AttributeError(f"{type(self).__name__} has no virtual {name!r}")
        return getter(self)

    def to_dict(self, *, exclude: Optional[Sequence[str]] = None, virtuals: bool = False) -> Dict[str, Any]:
        """Serialize to JSON-friendly values."""
        skip = set(exclude or ())
        result: Dict[str, Any] = {}
        items = list(self._data.items())
        if virtuals:
            items.extend((name, self.virtual(name)) for name in type(self)._meta.virtuals)
        for key, value in items:
            if key in skip:
                continue
            if isinstance(value, (datetime.datetime, datetime.date)):
                value = value.isoformat()
            elif isinstance(value, (uuid.UUID, decimal.Decimal)):
                value = str(value)
            elif isinstance(value, bytes):
                value = value.hex()
            result[key] = value
        return result
