"""
Ardea Adapter — in-process document store.

Document-family adapter keeping collections as lists of dicts. It speaks
the same op vocabulary a document database driver does:

    await adapter.execute("insert", "users", {"name": "Ann"})
    await adapter.query("users", {"age": {"$gte": 18}}, {"sort": {"age": -1}})
    await adapter.execute("findOneAndUpdate", "users", {
        "filter": {"name": "Ann"},
        "update": {"$inc": {"visits": 1}},
        "options": {"returnDocument": "after"},
    })

Intended for development and tests; everything lives in memory and is
lost on ``close``.
"""

from __future__ import annotations

import copy
import logging
import re
import uuid
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .base import AdapterCapabilities, ExecuteResult, StorageAdapter, DOCUMENT

logger = logging.getLogger("ardea.adapters.memory")

__all__ = ["MemoryDocumentAdapter", "DuplicateKeyError", "match_document"]

T = TypeVar("T")

_MISSING = object()
_RE_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


class DuplicateKeyError(Exception):
    """A write violated a unique index."""


# ── Filter matching ──────────────────────────────────────────────────────


def _resolve(doc: Dict[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if value is _MISSING:
        return False
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _compare(value: Any, other: Any, op: str) -> bool:
    if value is _MISSING or value is None or other is None:
        return False
    try:
        if op == "$gt":
            return value > other
        if op == "$gte":
            return value >= other
        if op == "$lt":
            return value < other
        return value <= other
    except TypeError:
        return False


def _regex(pattern: Any, flags: str) -> re.Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    compiled = 0
    for flag in flags or "":
        compiled |= _RE_FLAGS.get(flag, 0)
    return re.compile(pattern, compiled)


def _is_operator_map(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def _match_ops(value: Any, ops: Dict[str, Any]) -> bool:
    for op, arg in ops.items():
        if op == "$eq":
            ok = _equals(value, arg)
        elif op == "$ne":
            ok = not _equals(value, arg)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(value, arg, op)
        elif op == "$in":
            ok = any(_equals(value, candidate) for candidate in arg)
        elif op == "$nin":
            ok = not any(_equals(value, candidate) for candidate in arg)
        elif op == "$exists":
            ok = (value is not _MISSING) == bool(arg)
        elif op == "$regex":
            ok = (
                isinstance(value, str)
                and _regex(arg, ops.get("$options", "")).search(value) is not None
            )
        elif op == "$options":
            continue
        elif op == "$not":
            ok = not _match_ops(value, arg)
        else:
            raise ValueError(f"unknown operator: {op}")
        if not ok:
            return False
    return True


def match_document(doc: Dict[str, Any], flt: Optional[Dict[str, Any]]) -> bool:
    """Return True when ``doc`` satisfies filter ``flt``."""
    for key, cond in (flt or {}).items():
        if key == "$and":
            if not all(match_document(doc, sub) for sub in cond):
                return False
            continue
        value = _resolve(doc, key)
        if _is_operator_map(cond):
            if not _match_ops(value, cond):
                return False
        elif not _equals(value, cond):
            return False
    return True


# ── Sorting / projection / updates ───────────────────────────────────────


def _sort_key(value: Any) -> Tuple:
    if value is _MISSING or value is None:
        return (0, "", 0)
    if isinstance(value, bool):
        return (3, "bool", value)
    if isinstance(value, (int, float, Decimal)):
        return (1, "number", value)
    if isinstance(value, str):
        return (2, "string", value)
    return (4, type(value).__name__, value)


def _sort_docs(docs: List[Dict[str, Any]], sort: Any) -> List[Dict[str, Any]]:
    if not sort:
        return docs
    items = list(sort.items()) if isinstance(sort, dict) else list(sort)
    result = list(docs)
    for field, direction in reversed(items):
        result.sort(key=lambda d: _sort_key(_resolve(d, field)), reverse=direction in (-1, "desc"))
    return result


def _project(doc: Dict[str, Any], projection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not projection:
        return doc
    include = {k for k, v in projection.items() if v}
    exclude = {k for k, v in projection.items() if not v}
    if include:
        keep = set(include)
        if "_id" not in exclude:
            keep.add("_id")
        return {k: v for k, v in doc.items() if k in keep}
    return {k: v for k, v in doc.items() if k not in exclude}


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _unset_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    target: Any = doc
    for part in parts[:-1]:
        target = target.get(part) if isinstance(target, dict) else None
        if target is None:
            return
    if isinstance(target, dict):
        target.pop(parts[-1], None)


def _apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> Dict[str, Any]:
    result = copy.deepcopy(doc)
    if not _is_operator_map(update):
        replacement = copy.deepcopy(update)
        if "_id" in doc:
            replacement["_id"] = doc["_id"]
        return replacement
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(result, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                _unset_path(result, path)
        elif op == "$inc":
            for path, amount in fields.items():
                current = _resolve(result, path)
                base = 0 if current is _MISSING or current is None else current
                _set_path(result, path, base + amount)
        elif op == "$setOnInsert":
            if inserting:
                for path, value in fields.items():
                    _set_path(result, path, copy.deepcopy(value))
        else:
            raise ValueError(f"unknown update operator: {op}")
    return result


def _seed_from_filter(flt: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    seed: Dict[str, Any] = {}
    for key, cond in (flt or {}).items():
        if key.startswith("$"):
            continue
        if _is_operator_map(cond):
            if "$eq" in cond:
                _set_path(seed, key, copy.deepcopy(cond["$eq"]))
            continue
        if cond is not None:
            _set_path(seed, key, copy.deepcopy(cond))
    return seed


# ── Aggregation ──────────────────────────────────────────────────────────


def _group_value(doc: Dict[str, Any], expr: Any) -> Any:
    if isinstance(expr, str) and expr.startswith("$"):
        value = _resolve(doc, expr[1:])
        return None if value is _MISSING else value
    return expr


def _group(docs: List[Dict[str, Any]], spec: Dict[str, Any]) -> List[Dict[str, Any]]:
    key_expr = spec.get("_id")
    groups: Dict[Any, List[Dict[str, Any]]] = {}
    for doc in docs:
        key = _group_value(doc, key_expr)
        groups.setdefault(_hashable(key), []).append(doc)
    out = []
    for key, members in groups.items():
        row: Dict[str, Any] = {"_id": _group_value(members[0], key_expr)}
        for name, acc in spec.items():
            if name == "_id":
                continue
            (op, expr), = acc.items()
            values = [_group_value(m, expr) for m in members]
            present = [v for v in values if v is not None]
            if op == "$sum":
                row[name] = sum(present)
            elif op == "$avg":
                row[name] = sum(present) / len(present) if present else None
            elif op == "$min":
                row[name] = min(present) if present else None
            elif op == "$max":
                row[name] = max(present) if present else None
            elif op == "$push":
                row[name] = values
            elif op == "$first":
                row[name] = values[0] if values else None
            else:
                raise ValueError(f"unknown group accumulator: {op}")
        out.append(row)
    return out


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return value


def run_pipeline(docs: List[Dict[str, Any]], pipeline: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Evaluate the supported aggregation stages over ``docs``."""
    current = list(docs)
    for stage in pipeline:
        (name, arg), = stage.items()
        if name == "$match":
            current = [d for d in current if match_document(d, arg)]
        elif name == "$sort":
            current = _sort_docs(current, arg)
        elif name == "$skip":
            current = current[int(arg):]
        elif name == "$limit":
            current = current[: int(arg)]
        elif name == "$project":
            current = [_project(d, arg) for d in current]
        elif name == "$count":
            current = [{arg: len(current)}] if current else []
        elif name == "$group":
            current = _group(current, arg)
        else:
            raise ValueError(f"Unrecognized pipeline stage name: '{name}'")
    return current


# ── Adapter ──────────────────────────────────────────────────────────────


class MemoryDocumentAdapter(StorageAdapter):
    """
    Document store held in process memory.

    Features:
    - Mongo-style filters for the supported operator subset
    - ``$set`` / ``$unset`` / ``$inc`` / ``$setOnInsert`` updates
    - Unique index enforcement
    - Snapshot-based ``transaction(callback)``
    """

    capabilities = AdapterCapabilities(
        kind=DOCUMENT,
        supports_returning=True,
        supports_transactions=True,
        regex_operator="$regex",
        param_style="document",
        name="MemoryStore",
    )

    def __init__(self, name: str = "memory"):
        self.database = name
        self._collections: Dict[str, List[Dict[str, Any]]] = {}
        self._indexes: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._connected = False
        self._in_transaction = False

    async def connect(self, config: Any = None) -> None:
        if self._connected:
            return
        if isinstance(config, dict) and config.get("database"):
            self.database = config["database"]
        self._connected = True
        logger.info("Memory store connected: %s", self.database)

    async def close(self) -> None:
        if not self._connected:
            return
        self._collections.clear()
        self._indexes.clear()
        self._connected = False
        logger.info("Memory store closed: %s", self.database)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _ensure(self) -> None:
        if not self._connected:
            raise RuntimeError("Not connected")

    def _collection(self, name: str) -> List[Dict[str, Any]]:
        return self._collections.setdefault(name, [])

    # ── Reads ────────────────────────────────────────────────────────

    def _find(self, collection: str, flt: Optional[Dict[str, Any]], options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        options = options or {}
        docs = [d for d in self._collection(collection) if match_document(d, flt)]
        docs = _sort_docs(docs, options.get("sort"))
        skip = int(options.get("skip") or 0)
        if skip:
            docs = docs[skip:]
        limit = options.get("limit")
        if limit:
            docs = docs[: int(limit)]
        return docs

    async def query(
        self,
        query_or_collection: str,
        params_or_filter: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        self._ensure()
        docs = self._find(query_or_collection, params_or_filter, options)
        projection = (options or {}).get("projection")
        return [_project(copy.deepcopy(d), projection) for d in docs]

    # ── Writes ───────────────────────────────────────────────────────

    async def execute(
        self,
        command_or_op: str,
        params_or_collection: Any = None,
        data: Any = None,
    ) -> ExecuteResult:
        self._ensure()
        handler = getattr(self, f"_op_{command_or_op}", None)
        if handler is None:
            raise ValueError(f"Unsupported operation: {command_or_op}")
        return handler(params_or_collection, data if data is not None else {})

    def _check_unique(self, collection: str, doc: Dict[str, Any]) -> None:
        for name, index in self._indexes.get(collection, {}).items():
            if not index.get("unique"):
                continue
            fields = list(index["key"])
            values = [_resolve(doc, f) for f in fields]
            if index.get("sparse") and any(v is _MISSING for v in values):
                continue
            key = tuple(None if v is _MISSING else v for v in values)
            for other in self._collection(collection):
                if other.get("_id") == doc.get("_id"):
                    continue
                other_key = tuple(
                    None if v is _MISSING else v for v in (_resolve(other, f) for f in fields)
                )
                if other_key == key:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.database}.{collection} "
                        f"index: {name} dup key: {dict(zip(fields, key))}"
                    )

    def _insert_doc(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        doc = copy.deepcopy(document)
        if doc.get("_id") is None:
            doc["_id"] = uuid.uuid4().hex
        self._check_unique(collection, doc)
        if any(d["_id"] == doc["_id"] for d in self._collection(collection)):
            raise DuplicateKeyError(f"E11000 duplicate key error: _id {doc['_id']!r}")
        self._collection(collection).append(doc)
        return doc

    def _replace_doc(self, collection: str, old: Dict[str, Any], new: Dict[str, Any]) -> None:
        self._check_unique(collection, new)
        docs = self._collection(collection)
        docs[docs.index(old)] = new

    def _op_insert(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        doc = self._insert_doc(collection, data)
        return ExecuteResult(inserted_id=doc["_id"], inserted_ids=[doc["_id"]], affected=1, rows=[copy.deepcopy(doc)])

    def _op_insertMany(self, collection: str, data: List[Dict[str, Any]]) -> ExecuteResult:
        docs = [self._insert_doc(collection, d) for d in data]
        ids = [d["_id"] for d in docs]
        return ExecuteResult(
            inserted_id=ids[0] if ids else None,
            inserted_ids=ids,
            affected=len(ids),
            rows=copy.deepcopy(docs),
        )

    def _update(self, collection: str, data: Dict[str, Any], many: bool) -> ExecuteResult:
        options = data.get("options") or {}
        matched = self._find(collection, data.get("filter"), {"sort": options.get("sort")})
        if not many:
            matched = matched[:1]
        rows = []
        for doc in matched:
            updated = _apply_update(doc, data.get("update") or {})
            if updated == doc:
                continue
            self._replace_doc(collection, doc, updated)
            rows.append(copy.deepcopy(updated))
        if not matched and options.get("upsert"):
            seed = _seed_from_filter(data.get("filter"))
            doc = self._insert_doc(collection, _apply_update(seed, data.get("update") or {}, inserting=True))
            return ExecuteResult(inserted_id=doc["_id"], inserted_ids=[doc["_id"]], affected=0, rows=[copy.deepcopy(doc)])
        return ExecuteResult(affected=len(rows), rows=rows)

    def _op_update(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        return self._update(collection, data, many=False)

    def _op_updateMany(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        return self._update(collection, data, many=True)

    def _delete(self, collection: str, data: Dict[str, Any], many: bool) -> ExecuteResult:
        matched = self._find(collection, data.get("filter"))
        if not many:
            matched = matched[:1]
        docs = self._collection(collection)
        for doc in matched:
            docs.remove(doc)
        return ExecuteResult(affected=len(matched), rows=copy.deepcopy(matched))

    def _op_delete(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        return self._delete(collection, data, many=False)

    def _op_deleteMany(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        return self._delete(collection, data, many=True)

    def _find_one_and(self, collection: str, data: Dict[str, Any], change: Dict[str, Any]) -> ExecuteResult:
        options = data.get("options") or {}
        projection = options.get("projection")
        after = options.get("returnDocument", "before") == "after"
        matched = self._find(collection, data.get("filter"), {"sort": options.get("sort"), "limit": 1})
        if matched:
            before = matched[0]
            updated = _apply_update(before, change)
            self._replace_doc(collection, before, updated)
            value = updated if after else before
            return ExecuteResult(affected=1, rows=[copy.deepcopy(updated)], value=_project(copy.deepcopy(value), projection))
        if options.get("upsert"):
            seed = _seed_from_filter(data.get("filter"))
            doc = self._insert_doc(collection, _apply_update(seed, change, inserting=True))
            value = _project(copy.deepcopy(doc), projection) if after else None
            return ExecuteResult(inserted_id=doc["_id"], inserted_ids=[doc["_id"]], rows=[copy.deepcopy(doc)], value=value)
        return ExecuteResult()

    def _op_findOneAndUpdate(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        return self._find_one_and(collection, data, data.get("update") or {})

    def _op_findOneAndReplace(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        replacement = dict(data.get("replacement") or {})
        replacement.pop("_id", None)
        return self._find_one_and(collection, data, replacement)

    def _op_findOneAndDelete(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        options = data.get("options") or {}
        matched = self._find(collection, data.get("filter"), {"sort": options.get("sort"), "limit": 1})
        if not matched:
            return ExecuteResult()
        self._collection(collection).remove(matched[0])
        return ExecuteResult(affected=1, rows=[copy.deepcopy(matched[0])], value=_project(copy.deepcopy(matched[0]), options.get("projection")))

    def _op_count(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        count = len(self._find(collection, data.get("filter"), data.get("options")))
        return ExecuteResult(value=count, affected=count)

    def _op_distinct(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        seen: List[Any] = []
        for doc in self._find(collection, data.get("filter")):
            value = _resolve(doc, data["field"])
            values = value if isinstance(value, list) else [value]
            for v in values:
                if v is not _MISSING and v not in seen:
                    seen.append(copy.deepcopy(v))
        return ExecuteResult(value=seen)

    def _op_aggregate(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        rows = run_pipeline(copy.deepcopy(self._collection(collection)), data.get("pipeline") or [])
        return ExecuteResult(value=rows, rows=rows)

    # ── Indexes ──────────────────────────────────────────────────────

    def _op_createIndex(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        keys = dict(data["keys"])
        options = dict(data.get("options") or {})
        name = options.get("name") or "_".join(f"{k}_{v}" for k, v in keys.items())
        indexes = self._indexes.setdefault(collection, {})
        spec = {"name": name, "key": keys, **{k: v for k, v in options.items() if k != "name"}}
        existing = indexes.get(name)
        if existing is not None:
            if existing != spec:
                raise ValueError(f"Index with name: {name} already exists with different options")
            return ExecuteResult(value=name)
        indexes[name] = spec
        if spec.get("unique"):
            try:
                for doc in self._collection(collection):
                    self._check_unique(collection, doc)
            except DuplicateKeyError:
                del indexes[name]
                raise
        return ExecuteResult(value=name, affected=1)

    def _op_dropIndex(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        name = data["name"]
        if name == "_id_":
            raise ValueError("cannot drop _id index")
        indexes = self._indexes.get(collection, {})
        if name not in indexes:
            raise ValueError(f"index not found with name [{name}]")
        del indexes[name]
        return ExecuteResult(value=name, affected=1)

    def _op_listIndexes(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        listed = [{"name": "_id_", "key": {"_id": 1}}]
        listed.extend(copy.deepcopy(list(self._indexes.get(collection, {}).values())))
        return ExecuteResult(value=listed, rows=listed)

    def _op_drop(self, collection: str, data: Dict[str, Any]) -> ExecuteResult:
        dropped = len(self._collections.pop(collection, []))
        self._indexes.pop(collection, None)
        return ExecuteResult(affected=dropped)

    # ── Transactions ─────────────────────────────────────────────────

    async def transaction(self, callback: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        self._ensure()
        if self._in_transaction:
            return await callback(self)
        snapshot = copy.deepcopy((self._collections, self._indexes))
        self._in_transaction = True
        try:
            result = await callback(self)
        except BaseException:
            self._collections, self._indexes = snapshot
            logger.debug("Memory store transaction rolled back")
            raise
        finally:
            self._in_transaction = False
        return result
