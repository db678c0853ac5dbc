"""
Ardea Model Backends — SQL executor.

Renders model operations as parameterized SQL. Single-row mutations
address "the first match" through a primary-key sub-select:

    UPDATE "users" SET "name" = ? WHERE "id" IN (
        SELECT "id" FROM "users" WHERE "email" = ? AND "deletedAt" IS NULL LIMIT 1
    ) RETURNING *

Adapters without ``RETURNING`` get the same semantics with a follow-up
``SELECT``.
"""

from __future__ import annotations

import datetime
import decimal
import json
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ...faults import QueryFault
from ..conditions import (
    CompiledWhere,
    SoftDeleteMode,
    compile_sql,
    quote_ident,
    sql_columns,
    sql_order_by,
)
from ..fields import FieldType
from ..indexes import GEO_TYPES, TEXT, IndexSpec
from .base import Changes, Executor, QuerySpec

if TYPE_CHECKING:
    from ...adapters.base import ExecuteResult

__all__ = ["SQLExecutor", "from_db_loose", "to_db_loose", "to_db_value"]


def to_db_value(value: Any) -> Any:
    """Convert a Python value into something every SQL driver can bind."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return value


# Columns without a declared type (AnyField or undeclared keys) carry no
# hint for decoding, so structured values are stored behind a marker.
JSON_MARKER = "\x1ejson:"


def to_db_loose(value: Any) -> Any:
    """Like ``to_db_value`` but reversible for untyped columns."""
    if isinstance(value, (dict, list, tuple)) or (isinstance(value, str) and value.startswith(JSON_MARKER)):
        return JSON_MARKER + json.dumps(value, default=str)
    return to_db_value(value)


def from_db_loose(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(JSON_MARKER):
        return json.loads(value[len(JSON_MARKER):])
    return value


class SQLExecutor(Executor):
    kind = "sql"

    @property
    def table(self) -> str:
        return quote_ident(self.options.table)

    @property
    def returning(self) -> bool:
        return self.adapter.capabilities.supports_returning

    def where(self, spec: QuerySpec) -> CompiledWhere:
        return compile_sql(
            spec.condition,
            primary_key=self.pk,
            soft_delete_field=self.options.soft_delete_field,
            mode=spec.mode,
            regex_operator=self.adapter.capabilities.regex_operator,
            to_db=self.to_db,
        )

    # ── Value conversion ─────────────────────────────────────────────

    def _is_loose(self, name: str) -> bool:
        fld = self.options.schema.get(name)
        return name != self.pk and (fld is None or fld.field_type == FieldType.ANY)

    def to_db(self, name: str, value: Any) -> Any:
        return to_db_loose(value) if self._is_loose(name) else to_db_value(value)

    def from_db(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            name: from_db_loose(value) if self._is_loose(name) else value
            for name, value in row.items()
        }

    async def _query(self, operation: str, target: str, params: Any = None, options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        rows = await super()._query(operation, target, params, options)
        return [self.from_db(row) for row in rows]

    async def _execute(self, operation: str, command: str, params: Any = None, data: Any = None) -> "ExecuteResult":
        result = await super()._execute(operation, command, params, data)
        if result.rows:
            result.rows = [self.from_db(row) for row in result.rows]
        return result

    def _tail(self, spec: QuerySpec) -> str:
        sql = sql_order_by(spec.sort)
        if spec.limit is not None:
            sql += f" LIMIT {int(spec.limit)}"
        elif spec.skip:
            sql += " LIMIT -1"
        if spec.skip:
            sql += f" OFFSET {int(spec.skip)}"
        return sql

    def _first_pk_subquery(self, spec: QuerySpec) -> Tuple[str, Tuple[Any, ...]]:
        where = self.where(spec)
        pk = quote_ident(self.pk)
        sql = (
            f"{pk} IN (SELECT {pk} FROM {self.table}{where.clause}"
            f"{sql_order_by(spec.sort)} LIMIT 1)"
        )
        return sql, where.params

    def _set_clause(self, changes: Changes) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        for name, value in changes.set.items():
            parts.append(f"{quote_ident(name)} = ?")
            params.append(self.to_db(name, value))
        for name in changes.unset:
            parts.append(f"{quote_ident(name)} = NULL")
        for name, amount in changes.inc.items():
            col = quote_ident(name)
            parts.append(f"{col} = COALESCE({col}, 0) + ?")
            params.append(amount)
        if not parts:
            raise QueryFault(self.options.model_name, "update", "nothing to update")
        return ", ".join(parts), params

    async def _select_by_pk(self, pk_value: Any) -> Optional[Dict[str, Any]]:
        rows = await self._query(
            "select",
            f"SELECT * FROM {self.table} WHERE {quote_ident(self.pk)} = ? LIMIT 1",
            [to_db_value(pk_value)],
        )
        return rows[0] if rows else None

    # ── Reads ────────────────────────────────────────────────────────

    async def fetch(self, spec: QuerySpec) -> List[Dict[str, Any]]:
        where = self.where(spec)
        sql = f"SELECT {sql_columns(spec.fields, self.pk)} FROM {self.table}{where.clause}{self._tail(spec)}"
        return await self._query("select", sql, list(where.params))

    async def count(self, spec: QuerySpec) -> int:
        where = self.where(spec)
        rows = await self._query("count", f"SELECT COUNT(*) AS n FROM {self.table}{where.clause}", list(where.params))
        return int(rows[0]["n"]) if rows else 0

    async def exists(self, spec: QuerySpec) -> bool:
        where = self.where(spec)
        rows = await self._query("exists", f"SELECT 1 AS hit FROM {self.table}{where.clause} LIMIT 1", list(where.params))
        return bool(rows)

    async def distinct(self, field_name: str, spec: QuerySpec) -> List[Any]:
        where = self.where(spec)
        col = quote_ident(field_name)
        rows = await self._query(
            "distinct",
            f"SELECT DISTINCT {col} AS value FROM {self.table}{where.clause}",
            list(where.params),
        )
        return [row["value"] for row in rows]

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise QueryFault(self.options.model_name, "aggregate", "aggregation pipelines need a document backend")

    # ── Writes ───────────────────────────────────────────────────────

    async def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data:
            cols = ", ".join(quote_ident(name) for name in data)
            marks = ", ".join("?" for _ in data)
            sql = f"INSERT INTO {self.table} ({cols}) VALUES ({marks})"
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES"
        params = [self.to_db(name, v) for name, v in data.items()]
        if self.returning:
            result = await self._execute("insert", sql + " RETURNING *", params)
            if result.rows:
                return result.rows[0]
        else:
            result = await self._execute("insert", sql, params)
        pk_value = data.get(self.pk, result.inserted_id)
        row = await self._select_by_pk(pk_value)
        return row if row is not None else {**data, self.pk: pk_value}

    async def insert_many(self, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [await self.insert(row) for row in rows]

    async def update_first(self, spec: QuerySpec, changes: Changes) -> Optional[Dict[str, Any]]:
        assignments, params = self._set_clause(changes)
        locator, locator_params = self._first_pk_subquery(spec)
        sql = f"UPDATE {self.table} SET {assignments} WHERE {locator}"
        if self.returning:
            result = await self._execute("update", sql + " RETURNING *", params + list(locator_params))
            return result.rows[0] if result.rows else None
        found = await self.fetch(QuerySpec(spec.condition, spec.mode, [self.pk], spec.sort, None, 1))
        if not found:
            return None
        pk_value = found[0][self.pk]
        await self._execute(
            "update",
            f"UPDATE {self.table} SET {assignments} WHERE {quote_ident(self.pk)} = ?",
            params + [pk_value],
        )
        return await self._select_by_pk(pk_value)

    async def update_where(self, spec: QuerySpec, changes: Changes) -> List[Any]:
        assignments, params = self._set_clause(changes)
        where = self.where(spec)
        sql = f"UPDATE {self.table} SET {assignments}{where.clause}"
        all_params = params + list(where.params)
        if self.returning:
            result = await self._execute("updateMany", f"{sql} RETURNING {quote_ident(self.pk)}", all_params)
            return [row[self.pk] for row in result.rows]
        ids = [row[self.pk] for row in await self.fetch(QuerySpec(spec.condition, spec.mode, [self.pk]))]
        await self._execute("updateMany", sql, all_params)
        return ids

    async def delete_first(self, spec: QuerySpec) -> Optional[Dict[str, Any]]:
        locator, locator_params = self._first_pk_subquery(spec)
        sql = f"DELETE FROM {self.table} WHERE {locator}"
        if self.returning:
            result = await self._execute("delete", sql + " RETURNING *", list(locator_params))
            return result.rows[0] if result.rows else None
        found = await self.fetch(QuerySpec(spec.condition, spec.mode, None, spec.sort, None, 1))
        if not found:
            return None
        await self._execute(
            "delete",
            f"DELETE FROM {self.table} WHERE {quote_ident(self.pk)} = ?",
            [found[0][self.pk]],
        )
        return found[0]

    async def delete_where(self, spec: QuerySpec) -> List[Any]:
        where = self.where(spec)
        sql = f"DELETE FROM {self.table}{where.clause}"
        if self.returning:
            result = await self._execute("deleteMany", f"{sql} RETURNING {quote_ident(self.pk)}", list(where.params))
            return [row[self.pk] for row in result.rows]
        ids = [row[self.pk] for row in await self.fetch(QuerySpec(spec.condition, spec.mode, [self.pk]))]
        await self._execute("deleteMany", sql, list(where.params))
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
        if return_document == "before":
            before = await self.fetch(QuerySpec(spec.condition, spec.mode, None, spec.sort, None, 1))
            if before:
                await self.update_first(QuerySpec({self.pk: before[0][self.pk]}, SoftDeleteMode.INCLUDE_TRASHED), changes)
                return before[0]
        else:
            row = await self.update_first(spec, changes)
            if row is not None:
                return row
        if not upsert:
            return None
        data = {**(seed or {}), **changes.set}
        for name, amount in changes.inc.items():
            data[name] = (data.get(name) or 0) + amount
        for name in changes.unset:
            data.pop(name, None)
        row = await self.insert(data)
        return row if return_document == "after" else None

    async def find_one_and_replace(
        self,
        spec: QuerySpec,
        replacement: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: str = "after",
    ) -> Optional[Dict[str, Any]]:
        found = await self.fetch(QuerySpec(spec.condition, spec.mode, None, spec.sort, None, 1))
        if not found:
            if not upsert:
                return None
            row = await self.insert(replacement)
            return row if return_document == "after" else None
        before = found[0]
        data = {k: v for k, v in replacement.items() if k != self.pk}
        clear = [name for name in before if name not in data and name != self.pk]
        changes = Changes(set=data, unset=clear)
        after = await self.update_first(QuerySpec({self.pk: before[self.pk]}, SoftDeleteMode.INCLUDE_TRASHED), changes)
        return after if return_document == "after" else before

    async def truncate(self) -> int:
        result = await self._execute("truncate", f"DELETE FROM {self.table}")
        return result.affected

    # ── Indexes ──────────────────────────────────────────────────────

    async def create_index(self, index: IndexSpec) -> str:
        cols = []
        for name, direction in index.keys:
            col = quote_ident(name)
            if direction == TEXT or direction in GEO_TYPES:
                # no native text/geo index: plain B-tree over the same columns
                cols.append(col)
            else:
                cols.append(f"{col} {'DESC' if direction == -1 else 'ASC'}")
        unique = "UNIQUE " if index.unique else ""
        sql = f"CREATE {unique}INDEX IF NOT EXISTS {quote_ident(index.name)} ON {self.table} ({', '.join(cols)})"
        if index.sparse:
            sql += " WHERE " + " AND ".join(f"{quote_ident(n)} IS NOT NULL" for n in index.fields)
        await self._execute("createIndex", sql)
        return index.name

    async def drop_index(self, name: str) -> None:
        await self._execute("dropIndex", f"DROP INDEX IF EXISTS {quote_ident(name)}")

    async def list_indexes(self) -> List[Dict[str, Any]]:
        catalog = self.adapter.capabilities.list_indexes_sql
        if not catalog:
            raise QueryFault(self.options.model_name, "listIndexes", f"{self.backend} cannot list indexes")
        rows = await self._query("listIndexes", catalog, [self.options.table])
        return [
            {
                "name": row["name"],
                "unique": (row.get("sql") or "").upper().startswith("CREATE UNIQUE"),
                "primary": False,
                "sql": row.get("sql"),
            }
            for row in rows
        ]
