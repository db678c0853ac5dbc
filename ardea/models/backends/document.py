"""
Ardea Model Backends — document executor.

Maps model operations onto the document adapter op vocabulary
(``insert``, ``updateMany``, ``findOneAndUpdate`` ...). Filters come from
``compile_document`` and updates are ``$set``/``$unset``/``$inc`` maps.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..conditions import compile_document, document_projection
from ..indexes import IndexSpec
from .base import Changes, Executor, QuerySpec

__all__ = ["DocumentExecutor"]


class DocumentExecutor(Executor):
    kind = "document"

    @property
    def collection(self) -> str:
        return self.options.table

    def filter(self, spec: QuerySpec) -> Dict[str, Any]:
        return compile_document(
            spec.condition,
            primary_key=self.pk,
            soft_delete_field=self.options.soft_delete_field,
            mode=spec.mode,
        )

    def _options(self, spec: QuerySpec) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if spec.sort:
            options["sort"] = dict(spec.sort)
        if spec.skip:
            options["skip"] = spec.skip
        if spec.limit is not None:
            options["limit"] = spec.limit
        projection = document_projection(spec.fields)
        if projection:
            options["projection"] = projection
        return options

    async def _ids(self, spec: QuerySpec) -> List[Any]:
        rows = await self._query("find", self.collection, self.filter(spec), {"projection": {self.pk: 1}})
        return [row[self.pk] for row in rows]

    # ── Reads ────────────────────────────────────────────────────────

    async def fetch(self, spec: QuerySpec) -> List[Dict[str, Any]]:
        return await self._query("find", self.collection, self.filter(spec), self._options(spec))

    async def count(self, spec: QuerySpec) -> int:
        result = await self._execute("count", "count", self.collection, {"filter": self.filter(spec)})
        return int(result.value or 0)

    async def exists(self, spec: QuerySpec) -> bool:
        rows = await self._query("exists", self.collection, self.filter(spec), {"limit": 1, "projection": {self.pk: 1}})
        return bool(rows)

    async def distinct(self, field_name: str, spec: QuerySpec) -> List[Any]:
        result = await self._execute("distinct", "distinct", self.collection, {"field": field_name, "filter": self.filter(spec)})
        return list(result.value or [])

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        result = await self._execute("aggregate", "aggregate", self.collection, {"pipeline": pipeline})
        return list(result.value if result.value is not None else result.rows)

    # ── Writes ───────────────────────────────────────────────────────

    async def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._execute("insert", "insert", self.collection, data)
        if result.rows:
            return result.rows[0]
        return {**data, self.pk: result.inserted_id}

    async def insert_many(self, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        result = await self._execute("insertMany", "insertMany", self.collection, list(rows))
        if result.rows:
            return result.rows
        return [{**row, self.pk: inserted} for row, inserted in zip(rows, result.inserted_ids)]

    async def update_first(self, spec: QuerySpec, changes: Changes) -> Optional[Dict[str, Any]]:
        return await self.find_one_and_update(spec, changes)

    async def update_where(self, spec: QuerySpec, changes: Changes) -> List[Any]:
        flt = self.filter(spec)
        ids = await self._ids(spec)
        if not ids:
            return []
        result = await self._execute("updateMany", "updateMany", self.collection, {"filter": flt, "update": changes.to_document()})
        # modified records only, as reported by the store
        if result.rows:
            return [row[self.pk] for row in result.rows]
        return ids[: result.affected]

    async def delete_first(self, spec: QuerySpec) -> Optional[Dict[str, Any]]:
        options: Dict[str, Any] = {}
        if spec.sort:
            options["sort"] = dict(spec.sort)
        result = await self._execute(
            "findOneAndDelete",
            "findOneAndDelete",
            self.collection,
            {"filter": self.filter(spec), "options": options},
        )
        return result.value

    async def delete_where(self, spec: QuerySpec) -> List[Any]:
        ids = await self._ids(spec)
        if not ids:
            return []
        await self._execute("deleteMany", "deleteMany", self.collection, {"filter": self.filter(spec)})
        return ids

    async def find_one_and_update(
        self,
        spec: QuerySpec,
        changes: Changes,
        *,
        upsert: bool = False,
        return_document: str = "after",
        seed: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        update = changes.to_document()
        if upsert and seed:
            update["$setOnInsert"] = {k: v for k, v in seed.items() if k not in changes.set}
        options: Dict[str, Any] = {"returnDocument": return_document, "upsert": upsert}
        if spec.sort:
            options["sort"] = dict(spec.sort)
        projection = document_projection(spec.fields)
        if projection:
            options["projection"] = projection
        result = await self._execute(
            "findOneAndUpdate",
            "findOneAndUpdate",
            self.collection,
            {"filter": self.filter(spec), "update": update, "options": options},
        )
        return result.value

    async def find_one_and_replace(
        self,
        spec: QuerySpec,
        replacement: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: str = "after",
    ) -> Optional[Dict[str, Any]]:
        options: Dict[str, Any] = {"returnDocument": return_document, "upsert": upsert}
        if spec.sort:
            options["sort"] = dict(spec.sort)
        result = await self._execute(
            "findOneAndReplace",
            "findOneAndReplace",
            self.collection,
            {"filter": self.filter(spec), "replacement": replacement, "options": options},
        )
        return result.value

    async def truncate(self) -> int:
        result = await self._execute("truncate", "deleteMany", self.collection, {"filter": {}})
        return result.affected

    # ── Indexes ──────────────────────────────────────────────────────

    async def create_index(self, index: IndexSpec) -> str:
        options: Dict[str, Any] = {"name": index.name}
        if index.unique:
            options["unique"] = True
        if index.sparse:
            options["sparse"] = True
        if index.weights:
            options["weights"] = dict(index.weights)
        if index.default_language:
            options["default_language"] = index.default_language
        result = await self._execute(
            "createIndex",
            "createIndex",
            self.collection,
            {"keys": dict(index.keys), "options": options},
        )
        return result.value or index.name

    async def drop_index(self, name: str) -> None:
        await self._execute("dropIndex", "dropIndex", self.collection, {"name": name})

    async def list_indexes(self) -> List[Dict[str, Any]]:
        result = await self._execute("listIndexes", "listIndexes", self.collection, {})
        listed = result.value if result.value is not None else result.rows
        return [
            {
                "name": idx["name"],
                "unique": bool(idx.get("unique")),
                "primary": idx["name"] == "_id_",
                "key": idx.get("key"),
            }
            for idx in listed
        ]
