"""
Ardea Model Backends — shared executor plumbing.

An executor translates one model-level operation into adapter calls for
one backend family. Every adapter round trip goes through ``_query`` /
``_execute``, which time it in the query log and wrap driver errors as
``BackendFault("<Backend> <op> error: <reason>")``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ...db.query_log import get_query_log
from ...faults import BackendFault, Fault
from ..conditions import SoftDeleteMode

if TYPE_CHECKING:
    from ...adapters.base import ExecuteResult, StorageAdapter
    from ..options import ModelOptions

logger = logging.getLogger("ardea.models.backends")

__all__ = ["QuerySpec", "Changes", "Executor"]


@dataclass
class QuerySpec:
    """Everything a terminal needs to locate records."""

    condition: Dict[str, Any] = field(default_factory=dict)
    mode: SoftDeleteMode = SoftDeleteMode.DEFAULT
    fields: Optional[List[str]] = None
    sort: List[Tuple[str, int]] = field(default_factory=list)
    skip: Optional[int] = None
    limit: Optional[int] = None

    def fingerprint(self) -> Tuple:
        return (
            sorted(self.condition.items(), key=lambda item: item[0]),
            self.mode.value,
            self.fields,
            self.sort,
            self.skip,
            self.limit,
        )


@dataclass
class Changes:
    """A partial write: assignments, removals and numeric increments."""

    set: Dict[str, Any] = field(default_factory=dict)
    unset: List[str] = field(default_factory=list)
    inc: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.set or self.unset or self.inc)

    def to_document(self) -> Dict[str, Any]:
        update: Dict[str, Any] = {}
        if self.set:
            update["$set"] = dict(self.set)
        if self.unset:
            update["$unset"] = {name: "" for name in self.unset}
        if self.inc:
            update["$inc"] = dict(self.inc)
        return update


class Executor:
    """Base for backend executors bound to one model's options."""

    kind = ""

    def __init__(self, options: "ModelOptions"):
        self.options = options
        self.adapter: "StorageAdapter" = options.adapter

    @property
    def backend(self) -> str:
        return self.adapter.capabilities.name

    @property
    def pk(self) -> str:
        return self.options.primary_key

    async def _query(self, operation: str, target: str, params: Any = None, options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        statement = target if options is None else f"{target} {options}"
        try:
            with get_query_log().timed(self.kind, operation, statement, params):
                return await self.adapter.query(target, params, options)
        except Fault:
            raise
        except Exception as exc:
            raise BackendFault(self.backend, operation, str(exc)) from exc

    async def _execute(self, operation: str, command: str, params: Any = None, data: Any = None) -> "ExecuteResult":
        statement = command if data is None else f"{command} {params}"
        logged = params if data is None else data
        try:
            with get_query_log().timed(self.kind, operation, statement, logged):
                return await self.adapter.execute(command, params, data)
        except Fault:
            raise
        except Exception as exc:
            raise BackendFault(self.backend, operation, str(exc)) from exc

    # ── Contract ─────────────────────────────────────────────────────
    # Implemented by SQLExecutor and DocumentExecutor.

    async def fetch(self, spec: QuerySpec) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def count(self, spec: QuerySpec) -> int:
        raise NotImplementedError

    async def exists(self, spec: QuerySpec) -> bool:
        raise NotImplementedError

    async def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def insert_many(self, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update_first(self, spec: QuerySpec, changes: Changes) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update_where(self, spec: QuerySpec, changes: Changes) -> List[Any]:
        """
        Apply ``changes`` to every match; returns the affected primary keys.

        Document stores report records whose content changed. SQL reports
        every matched row, as the driver's row count does.
        """
        raise NotImplementedError

    async def delete_first(self, spec: QuerySpec) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def delete_where(self, spec: QuerySpec) -> List[Any]:
        raise NotImplementedError

    async def find_one_and_update(
        self,
        spec: QuerySpec,
        changes: Changes,
        *,
        upsert: bool = False,
        return_document: str = "after",
        seed: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one_and_replace(
        self,
        spec: QuerySpec,
        replacement: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: str = "after",
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def distinct(self, field_name: str, spec: QuerySpec) -> List[Any]:
        raise NotImplementedError

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def truncate(self) -> int:
        raise NotImplementedError

    async def create_index(self, index: Any) -> str:
        raise NotImplementedError

    async def drop_index(self, name: str) -> None:
        raise NotImplementedError

    async def list_indexes(self) -> List[Dict[str, Any]]:
        raise NotImplementedError
