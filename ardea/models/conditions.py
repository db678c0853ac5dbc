"""
Ardea Conditions — compiles backend-neutral conditions.

A condition is a mapping ``field -> literal`` (equality) or
``field -> {operator: argument}``. Operators may be written bare or
``$``-prefixed; every field and operator is AND-ed:

    {"age": {"gte": 18, "lt": 65}, "status": "active"}

A bare scalar means "primary key equals". Two targets exist:

    compile_sql(...)       -> CompiledWhere('"age" >= ? AND ...', (18, ...))
    compile_document(...)  -> {"age": {"$gte": 18, "$lt": 65}, ...}

Output is deterministic: fields keep their insertion order and operators
are emitted in the fixed ``OPERATORS`` order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..faults import QueryFault
from .fields import MISSING

__all__ = [
    "OPERATORS",
    "SoftDeleteMode",
    "CompiledWhere",
    "quote_ident",
    "normalize_condition",
    "is_operator_map",
    "compile_sql",
    "compile_document",
    "like_to_regex",
    "normalize_direction",
    "normalize_sort",
    "sql_order_by",
    "document_projection",
    "sql_columns",
]

OPERATORS: Tuple[str, ...] = ("gt", "lt", "gte", "lte", "ne", "in", "nin", "exists", "like", "regex")
_MODIFIERS = ("options",)

_SQL_COMPARE = {"gt": ">", "lt": "<", "gte": ">=", "lte": "<="}

# Identifiers are quoted, never interpolated raw
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class SoftDeleteMode(str, Enum):
    DEFAULT = "default"
    INCLUDE_TRASHED = "includeTrashed"
    ONLY_TRASHED = "onlyTrashed"


@dataclass(frozen=True)
class CompiledWhere:
    """Parameterized SQL predicate. ``sql`` is empty when nothing filters."""

    sql: str
    params: Tuple[Any, ...] = ()

    @property
    def clause(self) -> str:
        return f" WHERE {self.sql}" if self.sql else ""


def quote_ident(name: str) -> str:
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise QueryFault("<condition>", "compile", f"Invalid identifier: {name!r}")
    return ".".join(f'"{part}"' for part in name.split("."))


def _operator(key: Any) -> Optional[str]:
    if not isinstance(key, str):
        return None
    name = key[1:] if key.startswith("$") else key
    return name if name in OPERATORS or name in _MODIFIERS else None


def is_operator_map(value: Any) -> bool:
    """True for a non-empty mapping whose keys are all operators."""
    return isinstance(value, Mapping) and bool(value) and all(_operator(k) for k in value)


def normalize_condition(condition: Any, primary_key: str) -> Dict[str, Any]:
    if condition is None:
        return {}
    if isinstance(condition, Mapping):
        return dict(condition)
    return {primary_key: condition}


def _operators(field: str, value: Mapping[str, Any]) -> Dict[str, Any]:
    ops: Dict[str, Any] = {}
    for key, arg in value.items():
        name = _operator(key)
        if name in ops:
            raise QueryFault("<condition>", "compile", f"Operator {name!r} given twice for {field!r}")
        ops[name] = arg
    return ops


def _regex_pattern(arg: Any, options: Optional[str]) -> str:
    pattern = arg.pattern if isinstance(arg, re.Pattern) else str(arg)
    flags = "".join(f for f in (options or "") if f in "imsx")
    return f"(?{flags}){pattern}" if flags else pattern


def like_to_regex(pattern: str) -> str:
    """Translate a SQL ``LIKE`` pattern into an anchored regular expression."""
    out = []
    for char in pattern:
        if char == "%":
            out.append(".*")
        elif char == "_":
            out.append(".")
        else:
            out.append(re.escape(char))
    return "^" + "".join(out) + "$"


# ── SQL ──────────────────────────────────────────────────────────────────────


def compile_sql(
    condition: Any,
    *,
    primary_key: str = "id",
    soft_delete_field: Optional[str] = None,
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
    regex_operator: str = "REGEXP",
    to_db: Optional[Callable[[str, Any], Any]] = None,
) -> CompiledWhere:
    """
    Compile ``condition`` into a qmark-parameterized predicate.

    ``to_db`` converts each bound value for its field (dates, JSON ...).
    """
    cond = normalize_condition(condition, primary_key)
    convert = to_db or (lambda _field, value: value)
    clauses: List[str] = []
    params: List[Any] = []

    for field, value in cond.items():
        col = quote_ident(field)
        if not is_operator_map(value):
            if value is None or value is MISSING:
                clauses.append(f"{col} IS NULL")
            else:
                clauses.append(f"{col} = ?")
                params.append(convert(field, value))
            continue

        ops = _operators(field, value)
        for op in OPERATORS:
            if op not in ops:
                continue
            arg = ops[op]
            if op in _SQL_COMPARE:
                clauses.append(f"{col} {_SQL_COMPARE[op]} ?")
                params.append(convert(field, arg))
            elif op == "ne":
                if arg is None:
                    clauses.append(f"{col} IS NOT NULL")
                else:
                    clauses.append(f"{col} != ?")
                    params.append(convert(field, arg))
            elif op in ("in", "nin"):
                values = list(arg)
                present = [v for v in values if v is not None]
                has_null = len(present) != len(values)
                if op == "in":
                    if not values:
                        clauses.append("1 = 0")
                        continue
                    parts = []
                    if present:
                        parts.append(f"{col} IN ({', '.join('?' for _ in present)})")
                        params.extend(convert(field, v) for v in present)
                    if has_null:
                        parts.append(f"{col} IS NULL")
                    clauses.append(parts[0] if len(parts) == 1 else f"({' OR '.join(parts)})")
                else:
                    if not values:
                        continue
                    parts = []
                    if present:
                        parts.append(f"{col} NOT IN ({', '.join('?' for _ in present)})")
                        params.extend(convert(field, v) for v in present)
                    if has_null:
                        parts.append(f"{col} IS NOT NULL")
                    clauses.append(" AND ".join(parts))
            elif op == "exists":
                clauses.append(f"{col} IS NOT NULL" if arg else f"{col} IS NULL")
            elif op == "like":
                clauses.append(f"{col} LIKE ?")
                params.append(arg)
            elif op == "regex":
                clauses.append(f"{col} {regex_operator} ?")
                params.append(_regex_pattern(arg, ops.get("options")))

    if soft_delete_field and mode != SoftDeleteMode.INCLUDE_TRASHED:
        col = quote_ident(soft_delete_field)
        clauses.append(f"{col} IS NULL" if mode == SoftDeleteMode.DEFAULT else f"{col} IS NOT NULL")

    return CompiledWhere(" AND ".join(clauses), tuple(params))


# ── Documents ────────────────────────────────────────────────────────────────


def compile_document(
    condition: Any,
    *,
    primary_key: str = "_id",
    soft_delete_field: Optional[str] = None,
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT,
) -> Dict[str, Any]:
    """Compile ``condition`` into a nested ``$``-operator filter."""
    cond = normalize_condition(condition, primary_key)
    out: Dict[str, Any] = {}

    for field, value in cond.items():
        if not isinstance(field, str) or not field or field.startswith("$"):
            raise QueryFault("<condition>", "compile", f"Invalid field name: {field!r}")
        if value is MISSING:
            out[field] = {"$exists": False}
            continue
        if not is_operator_map(value):
            out[field] = value
            continue

        ops = _operators(field, value)
        if "like" in ops and "regex" in ops:
            raise QueryFault("<condition>", "compile", f"'like' and 'regex' cannot be combined on {field!r}")
        compiled: Dict[str, Any] = {}
        for op in OPERATORS:
            if op not in ops:
                continue
            arg = ops[op]
            if op == "like":
                # LIKE matches case-insensitively on the SQL side as well
                compiled["$regex"] = like_to_regex(str(arg))
                compiled["$options"] = "i"
            elif op in ("in", "nin"):
                compiled[f"${op}"] = list(arg)
            elif op == "exists":
                compiled["$exists"] = bool(arg)
            else:
                compiled[f"${op}"] = arg
        if "regex" in ops and ops.get("options"):
            compiled["$options"] = ops["options"]
        out[field] = compiled

    if soft_delete_field and mode != SoftDeleteMode.INCLUDE_TRASHED:
        out[soft_delete_field] = {"$exists": mode == SoftDeleteMode.ONLY_TRASHED}

    return out


# ── Sort / projection ────────────────────────────────────────────────────────


def normalize_direction(direction: Any) -> int:
    if isinstance(direction, str):
        lowered = direction.lower()
        if lowered in ("asc", "ascending"):
            return 1
        if lowered in ("desc", "descending"):
            return -1
    elif not isinstance(direction, bool) and direction in (1, -1):
        return int(direction)
    raise QueryFault("<sort>", "normalize", f"Invalid sort direction: {direction!r}")


def normalize_sort(sort: Any, primary_key: str) -> List[Tuple[str, int]]:
    """
    Normalize a sort spec to ``[(field, 1 | -1), ...]``.

    Accepted forms: ``"asc"``/``"desc"`` (primary key), ``"-created"``,
    ``{"age": -1, "name": "asc"}`` or a sequence of names / pairs.
    """
    if not sort:
        return []
    if isinstance(sort, str):
        if sort.lower() in ("asc", "ascending", "desc", "descending"):
            return [(primary_key, normalize_direction(sort))]
        if sort.startswith("-"):
            return [(sort[1:], -1)]
        return [(sort, 1)]
    if isinstance(sort, Mapping):
        return [(field, normalize_direction(direction)) for field, direction in sort.items()]
    result: List[Tuple[str, int]] = []
    for item in sort:
        if isinstance(item, str):
            result.extend(normalize_sort(item, primary_key))
        else:
            field, direction = item
            result.append((field, normalize_direction(direction)))
    return result


def sql_order_by(sort: Sequence[Tuple[str, int]]) -> str:
    if not sort:
        return ""
    parts = [f"{quote_ident(field)} {'ASC' if direction > 0 else 'DESC'}" for field, direction in sort]
    return " ORDER BY " + ", ".join(parts)


def document_projection(fields: Optional[Sequence[str]]) -> Optional[Dict[str, int]]:
    if not fields:
        return None
    return {name: 1 for name in fields}


def sql_columns(fields: Optional[Sequence[str]], primary_key: str) -> str:
    if not fields:
        return "*"
    names = list(fields)
    if primary_key not in names:
        names.insert(0, primary_key)
    return ", ".join(quote_ident(name) for name in names)
