"""
Shared test fixtures and helpers for the Ardea test suite.
"""

from typing import Iterable, Optional

import pytest
import pytest_asyncio

from ardea.adapters import MemoryDocumentAdapter, SQLiteAdapter
from ardea.db import QueryLog, reset_connections, set_query_log


# ============================================================================
# Registry isolation
# ============================================================================


@pytest.fixture(autouse=True)
def clean_registry():
    """Every test starts with an empty connection registry and query log."""
    reset_connections()
    set_query_log(QueryLog())
    yield
    reset_connections()


# ============================================================================
# Adapters
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_adapter():
    adapter = SQLiteAdapter("sqlite:///:memory:")
    await adapter.connect()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def memory_adapter():
    adapter = MemoryDocumentAdapter("test")
    await adapter.connect()
    yield adapter
    await adapter.close()


def table_ddl(model, extra: Iterable[str] = ()) -> str:
    """CREATE TABLE for a model: integer id plus one untyped column per field."""
    meta = model._meta
    columns = list(meta.schema.names)
    columns.extend(meta.timestamp_fields)
    if meta.soft_delete:
        columns.append(meta.deleted_at_field)
    columns.extend(extra)
    seen = []
    for name in columns:
        if name not in seen and name != "id":
            seen.append(name)
    body = ", ".join(['"id" INTEGER PRIMARY KEY AUTOINCREMENT'] + [f'"{name}"' for name in seen])
    return f'CREATE TABLE IF NOT EXISTS "{meta.table}" ({body});'


class Store:
    """One backend under test; ``bind`` prepares a model against it."""

    def __init__(self, adapter):
        self.adapter = adapter

    @property
    def kind(self) -> str:
        return self.adapter.kind

    @property
    def pk(self) -> str:
        return "_id" if self.kind == "document" else "id"

    async def create_table(self, model, extra: Optional[Iterable[str]] = None) -> None:
        if self.kind == "sql":
            await self.adapter.execute_script(table_ddl(model, extra or ()))

    async def bind(self, *models, extra: Optional[Iterable[str]] = None):
        for model in models:
            await self.create_table(model, extra)
            model.set_adapter(self.adapter)
        return models[0] if len(models) == 1 else models


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def store(request):
    """Runs the test once against SQLite and once against the document store."""
    if request.param == "sqlite":
        adapter = SQLiteAdapter("sqlite:///:memory:")
    else:
        adapter = MemoryDocumentAdapter("test")
    await adapter.connect()
    yield Store(adapter)
    await adapter.close()
