"""
Ardea Adapter — SQLite via aiosqlite.

SQL-family adapter. Registers a ``REGEXP`` function so the ``regex``
operator works, and reports ``RETURNING`` support so single-row
mutations come back in one round trip.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import aiosqlite

from .base import AdapterCapabilities, ExecuteResult, StorageAdapter, SQL
from ..faults import DatabaseConnectionFault

logger = logging.getLogger("ardea.adapters.sqlite")

__all__ = ["SQLiteAdapter"]

T = TypeVar("T")


def _regexp(pattern: Optional[str], value: Any) -> bool:
    # SQLite evaluates ``X REGEXP Y`` as ``regexp(Y, X)``
    if pattern is None or value is None:
        return False
    return re.search(pattern, str(value)) is not None


class SQLiteAdapter(StorageAdapter):
    """
    SQLite adapter using aiosqlite.

    Features:
    - WAL journal mode for file databases
    - ``RETURNING`` rows surfaced through ``ExecuteResult.rows``
    - ``REGEXP`` operator backed by Python's ``re``
    - ``transaction(callback)`` with commit/rollback
    """

    capabilities = AdapterCapabilities(
        kind=SQL,
        supports_returning=True,
        supports_transactions=True,
        regex_operator="REGEXP",
        param_style="qmark",
        list_indexes_sql=(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL ORDER BY name"
        ),
        name="SQLite",
    )

    def __init__(self, url: str = "sqlite:///:memory:"):
        self.url = url
        self._connection: Any = None
        self._connected = False
        self._lock = asyncio.Lock()
        self._in_transaction = False

    async def connect(self, config: Any = None) -> None:
        if self._connected:
            return
        if isinstance(config, str):
            self.url = config
        elif isinstance(config, dict) and config.get("url"):
            self.url = config["url"]
        async with self._lock:
            if self._connected:
                return
            db_path = self._parse_url(self.url)
            try:
                self._connection = await aiosqlite.connect(db_path)
            except Exception as exc:
                raise DatabaseConnectionFault(self.url, str(exc)) from exc
            self._connection.row_factory = aiosqlite.Row
            if db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.create_function("REGEXP", 2, _regexp)
            self._connected = True
            logger.info("SQLite connected: %s", db_path)

    async def close(self) -> None:
        if not self._connected:
            return
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False
            logger.info("SQLite disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _ensure(self) -> None:
        if not self._connected:
            raise RuntimeError("Not connected")

    async def query(
        self,
        query_or_collection: str,
        params_or_filter: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        self._ensure()
        cursor = await self._connection.execute(query_or_collection, list(params_or_filter or []))
        rows = await cursor.fetchall()
        await cursor.close()
        return [dict(row) for row in rows]

    async def execute(
        self,
        command_or_op: str,
        params_or_collection: Any = None,
        data: Any = None,
    ) -> ExecuteResult:
        self._ensure()
        params: Sequence[Any] = list(params_or_collection or [])
        cursor = await self._connection.execute(command_or_op, params)
        rows: List[Dict[str, Any]] = []
        if cursor.description:
            rows = [dict(row) for row in await cursor.fetchall()]
            affected = len(rows)
        else:
            affected = cursor.rowcount if cursor.rowcount is not None and cursor.rowcount >= 0 else 0
        inserted_id = cursor.lastrowid
        await cursor.close()
        if not self._in_transaction:
            await self._connection.commit()
        return ExecuteResult(
            inserted_id=inserted_id,
            inserted_ids=[inserted_id] if inserted_id else [],
            affected=affected,
            rows=rows,
        )

    async def execute_script(self, script: str) -> None:
        """Run several statements at once (DDL setup)."""
        self._ensure()
        await self._connection.executescript(script)
        await self._connection.commit()

    # ── Transactions ─────────────────────────────────────────────────

    async def transaction(self, callback: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        self._ensure()
        if self._in_transaction:
            return await callback(self)
        await self._connection.execute("BEGIN")
        self._in_transaction = True
        try:
            result = await callback(self)
        except BaseException:
            await self._connection.rollback()
            self._in_transaction = False
            logger.debug("SQLite transaction rolled back")
            raise
        await self._connection.commit()
        self._in_transaction = False
        return result

    @staticmethod
    def _parse_url(url: str) -> str:
        """Extract file path from sqlite URL."""
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                path = url[len(prefix):]
                return path or ":memory:"
        return url.replace("sqlite:", "").lstrip("/") or ":memory:"
