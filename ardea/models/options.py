"""
Ardea Model Options — parsed from the inner Meta class.

One ``ModelOptions`` exists per model class. It is built by the metaclass
and frozen once the class is registered; only the adapter reference may
change afterwards (``Model.set_adapter`` / ``Model.init``).

    class Post(Model):
        table = "posts"

        class Meta:
            soft_delete = True
            timestamps = {"created_at": "created", "updated_at": "modified"}
            scopes = {"published": lambda: {"status": "published"}}
            virtuals = {"slug": lambda post: post.title.lower().replace(" ", "-")}
            indexes = [{"field": "title", "unique": True}]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .fields import Schema
from .hooks import HookSet

if TYPE_CHECKING:
    from ..adapters.base import StorageAdapter
    from ..cache.core import CacheBackend


__all__ = ["ModelOptions"]

_INHERITED = (
    "primary_key",
    "soft_delete",
    "deleted_at_field",
    "timestamps",
    "scopes",
    "virtuals",
    "indexes",
    "cache",
    "cache_ttl",
    "connection",
)


def _parse_timestamps(value: Any) -> tuple:
    if not value:
        return None, None
    if value is True:
        return "createdAt", "updatedAt"
    if isinstance(value, dict):
        created = value.get("created_at", value.get("createdAt", "createdAt"))
        updated = value.get("updated_at", value.get("updatedAt", "updatedAt"))
        return created, updated
    raise TypeError(f"timestamps must be a bool or a mapping, got {type(value).__name__}")


class ModelOptions:
    """
    Parsed model descriptor.

    Attributes:
        model_name: Class name
        table: Table / collection name
        primary_key: Primary key field ("_id" on document backends, "id" otherwise,
            unless set explicitly)
        soft_delete: Whether deletes only set ``deleted_at_field``
        deleted_at_field: Soft-delete marker field
        created_at_field / updated_at_field: Timestamp fields (None when off)
        schema: Declared fields
        scopes: Named condition factories
        virtuals: Computed attributes
        indexes: Index descriptors
        hooks: Lifecycle hooks
        cache / cache_ttl: Optional read cache
        connection: Registry alias used for lazy initialization
        abstract: Abstract models have no table
    """

    __slots__ = (
        "model_name",
        "table",
        "_primary_key",
        "soft_delete",
        "deleted_at_field",
        "timestamps",
        "created_at_field",
        "updated_at_field",
        "schema",
        "scopes",
        "virtuals",
        "indexes",
        "hooks",
        "cache",
        "cache_ttl",
        "connection",
        "abstract",
        "adapter",
        "_model_cls",
        "_frozen",
    )

    def __init__(
        self,
        model_name: str,
        meta: Optional[type] = None,
        table_attr: Optional[str] = None,
        parent: Optional["ModelOptions"] = None,
        schema: Optional[Schema] = None,
        hooks: Optional[HookSet] = None,
    ):
        object.__setattr__(self, "_frozen", False)

        def option(name: str, default: Any) -> Any:
            if meta is not None and hasattr(meta, name):
                return getattr(meta, name)
            if parent is not None and name in _INHERITED:
                return parent._inherited(name)
            return default

        self.model_name = model_name
        self.abstract: bool = bool(getattr(meta, "abstract", False)) if meta else False
        self.table: str = table_attr or (
            getattr(meta, "table", None) or getattr(meta, "collection", None)
            if meta else None
        ) or model_name.lower()
        self._primary_key: Optional[str] = option("primary_key", None)
        self.soft_delete: bool = bool(option("soft_delete", False))
        self.deleted_at_field: str = option("deleted_at_field", "deletedAt")
        self.timestamps = option("timestamps", False)
        self.created_at_field, self.updated_at_field = _parse_timestamps(self.timestamps)
        self.schema: Schema = schema or Schema()
        self.scopes: Dict[str, Callable[[], Any]] = dict(option("scopes", {}) or {})
        self.virtuals: Dict[str, Callable[[Any], Any]] = dict(option("virtuals", {}) or {})
        self.indexes: List[Any] = list(option("indexes", []) or [])
        self.hooks: HookSet = hooks or HookSet(model_name)
        self.cache: Optional["CacheBackend"] = option("cache", None)
        ttl = option("cache_ttl", None)
        self.cache_ttl: Optional[int] = int(ttl) if ttl is not None else None
        self.connection: str = option("connection", "default")
        self.adapter: Optional["StorageAdapter"] = None
        self._model_cls = None

    def _inherited(self, name: str) -> Any:
        if name == "primary_key":
            return self._primary_key
        return getattr(self, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if self._frozen and name != "adapter":
            raise AttributeError(f"Options of {self.model_name} are read-only after registration")
        object.__setattr__(self, name, value)

    def freeze(self) -> None:
        object.__setattr__(self, "_frozen", True)

    @property
    def primary_key(self) -> str:
        if self._primary_key:
            return self._primary_key
        if self.adapter is not None and self.adapter.kind == "document":
            return "_id"
        return "id"

    @property
    def kind(self) -> Optional[str]:
        return self.adapter.kind if self.adapter is not None else None

    @property
    def soft_delete_field(self) -> Optional[str]:
        return self.deleted_at_field if self.soft_delete else None

    @property
    def timestamp_fields(self) -> List[str]:
        return [f for f in (self.created_at_field, self.updated_at_field) if f]

    @property
    def cache_tag(self) -> str:
        return f"model:{self.table}"

    def __repr__(self) -> str:
        return f"<ModelOptions: {self.table}>"
