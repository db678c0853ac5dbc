"""
Ardea Model Indexes — declarative index descriptors and their manager.

Descriptors are plain data on the model's Meta:

    class Place(Model):
        class Meta:
            indexes = [
                {"field": "email", "unique": True},
                {"fields": {"city": 1, "created": "desc"}},
                {"fields": {"title": 10, "body": 2}, "type": "text"},
                {"field": "location", "type": "2dsphere"},
                Index(["slug"], unique=True),
            ]

They are never applied implicitly; ``Model.init()`` or an explicit
``Model.create_indexes()`` builds them. On SQL backends text and geo
indexes fall back to a plain B-tree index over the same columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..faults import Fault, IndexFault
from .conditions import normalize_direction

if TYPE_CHECKING:
    from .base import Model

logger = logging.getLogger("ardea.models.indexes")

__all__ = [
    "Index",
    "TextIndex",
    "GeoIndex",
    "IndexSpec",
    "IndexManager",
    "normalize_index",
    "generate_index_name",
]

STANDARD = "standard"
TEXT = "text"
GEO_TYPES = ("2d", "2dsphere")


class Index:
    """Single-field or compound index."""

    index_type = STANDARD

    def __init__(
        self,
        fields: Union[Sequence[str], Mapping[str, Any], str],
        *,
        name: Optional[str] = None,
        unique: bool = False,
        sparse: bool = False,
    ):
        if isinstance(fields, str):
            fields = [fields]
        self.fields = fields
        self.name = name
        self.unique = unique
        self.sparse = sparse

    def keys(self) -> List[Tuple[str, Any]]:
        if isinstance(self.fields, Mapping):
            return [(f, normalize_direction(d)) for f, d in self.fields.items()]
        keys = []
        for item in self.fields:
            if item.startswith("-"):
                keys.append((item[1:], -1))
            else:
                keys.append((item, 1))
        return keys

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fields={self.fields!r}, name={self.name!r})"


class TextIndex(Index):
    """Full-text index; a mapping of fields gives per-field weights."""

    index_type = TEXT

    def __init__(
        self,
        fields: Union[Sequence[str], Mapping[str, int]],
        *,
        name: Optional[str] = None,
        default_language: Optional[str] = None,
    ):
        super().__init__(fields, name=name)
        self.default_language = default_language

    def keys(self) -> List[Tuple[str, Any]]:
        return [(f, TEXT) for f in self.fields]

    @property
    def weights(self) -> Optional[Dict[str, int]]:
        if isinstance(self.fields, Mapping):
            return dict(self.fields)
        return None


class GeoIndex(Index):
    """Geospatial index (``2d`` or ``2dsphere``)."""

    def __init__(self, field: str, *, type: str = "2dsphere", name: Optional[str] = None):
        if type not in GEO_TYPES:
            raise ValueError(f"Geo index type must be one of {GEO_TYPES}, got {type!r}")
        super().__init__([field], name=name)
        self.index_type = type

    def keys(self) -> List[Tuple[str, Any]]:
        return [(self.fields[0], self.index_type)]


@dataclass
class IndexSpec:
    """Backend-neutral, normalized index definition."""

    keys: List[Tuple[str, Any]]
    name: str
    index_type: str = STANDARD
    unique: bool = False
    sparse: bool = False
    weights: Optional[Dict[str, int]] = None
    default_language: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def fields(self) -> List[str]:
        return [name for name, _ in self.keys]


def generate_index_name(keys: Sequence[Tuple[str, Any]], table: str, kind: str) -> str:
    """
    Default index name.

    Document backends use ``<field>_<direction>`` pairs joined by ``_``
    (``email_1``, ``city_1_created_-1``); SQL backends use
    ``idx_<table>_<fields>``.
    """
    if kind == "document":
        return "_".join(f"{name}_{direction}" for name, direction in keys)
    return f"idx_{table}_{'_'.join(name for name, _ in keys)}"


def _from_mapping(descriptor: Mapping[str, Any]) -> Index:
    index_type = descriptor.get("type", STANDARD)
    name = descriptor.get("name")
    if index_type == TEXT:
        fields = descriptor.get("fields") or descriptor.get("field")
        if isinstance(fields, str):
            fields = [fields]
        return TextIndex(fields, name=name, default_language=descriptor.get("default_language"))
    if index_type in GEO_TYPES:
        return GeoIndex(descriptor["field"], type=index_type, name=name)
    if "fields" in descriptor:
        fields: Any = descriptor["fields"]
    elif "field" in descriptor:
        fields = {descriptor["field"]: descriptor.get("direction", 1)}
    else:
        raise IndexFault(f"descriptor needs 'field' or 'fields': {dict(descriptor)!r}")
    return Index(fields, name=name, unique=bool(descriptor.get("unique")), sparse=bool(descriptor.get("sparse")))


def normalize_index(descriptor: Any, table: str, kind: str) -> IndexSpec:
    """Turn a mapping or ``Index`` into an ``IndexSpec``."""
    index = _from_mapping(descriptor) if isinstance(descriptor, Mapping) else descriptor
    if not isinstance(index, Index):
        raise IndexFault(f"unsupported index descriptor: {descriptor!r}")
    keys = index.keys()
    if not keys:
        raise IndexFault(f"index without fields: {descriptor!r}")
    return IndexSpec(
        keys=keys,
        name=index.name or generate_index_name(keys, table, kind),
        index_type=index.index_type,
        unique=index.unique,
        sparse=index.sparse,
        weights=getattr(index, "weights", None),
        default_language=getattr(index, "default_language", None),
    )


class IndexManager:
    """Applies a model's index descriptors through its backend executor."""

    def __init__(self, model: type["Model"]):
        self.model = model

    def specs(self) -> List[IndexSpec]:
        meta = self.model._meta
        kind = meta.kind or "sql"
        return [normalize_index(d, meta.table, kind) for d in meta.indexes]

    async def create_indexes(self, force: bool = False) -> List[str]:
        """
        Create every declared index and return their names.

        With ``force`` an existing same-named index is dropped first.
        """
        executor = await self.model._executor()
        created: List[str] = []
        existing = {idx["name"] for idx in await executor.list_indexes()} if force else set()
        for spec in self.specs():
            try:
                if force and spec.name in existing:
                    await executor.drop_index(spec.name)
                    logger.debug("Dropped index %s on %s before re-creating", spec.name, self.model._meta.table)
                created.append(await executor.create_index(spec))
            except IndexFault:
                raise
            except Fault as exc:
                raise IndexFault(exc.message) from exc
        if created:
            logger.info("Created %d index(es) on %s: %s", len(created), self.model._meta.table, ", ".join(created))
        return created

    async def drop_indexes(self) -> List[str]:
        """Drop every index except the primary one."""
        executor = await self.model._executor()
        dropped: List[str] = []
        for idx in await executor.list_indexes():
            if idx.get("primary"):
                continue
            try:
                await executor.drop_index(idx["name"])
            except Fault as exc:
                raise IndexFault(exc.message, action="drop") from exc
            dropped.append(idx["name"])
        return dropped

    async def get_indexes(self) -> List[Dict[str, Any]]:
        executor = await self.model._executor()
        return await executor.list_indexes()
