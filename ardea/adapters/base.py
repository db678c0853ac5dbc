"""
Ardea Adapters — Storage Adapter contract.

Every backend the model layer talks to implements this interface. Two
families exist:

- ``sql``: ``query(sql, params)`` / ``execute(sql, params)`` with qmark
  placeholders.
- ``document``: ``query(collection, filter, options)`` /
  ``execute(op, collection, data)`` with filter objects and
  ``$set``/``$unset``/``$inc`` update documents.

The model layer never inspects anything beyond this contract, so a new
backend only has to satisfy these methods.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger("ardea.adapters")

__all__ = [
    "StorageAdapter",
    "AdapterCapabilities",
    "ExecuteResult",
    "SQL",
    "DOCUMENT",
]

SQL = "sql"
DOCUMENT = "document"

T = TypeVar("T")


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    kind: str = SQL  # sql | document
    supports_returning: bool = False
    supports_transactions: bool = True
    regex_operator: str = "REGEXP"
    param_style: str = "qmark"
    # SQL family: catalog query listing a table's indexes (one ? for the table)
    list_indexes_sql: Optional[str] = None
    name: str = "base"


@dataclass
class ExecuteResult:
    """
    Uniform result of a single ``execute`` round trip.

    ``value`` carries op-specific payloads: the document returned by the
    ``findOneAnd*`` family, a count, a distinct list or aggregate output.
    """

    inserted_id: Any = None
    inserted_ids: List[Any] = field(default_factory=list)
    affected: int = 0
    rows: List[Dict[str, Any]] = field(default_factory=list)
    value: Any = None


class StorageAdapter(ABC):
    """
    Abstract storage adapter.

    Implementations must be safe to ``connect`` more than once; a
    connected adapter ignores further ``connect`` calls.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities()

    @property
    def kind(self) -> str:
        return self.capabilities.kind

    @property
    def name(self) -> str:
        return self.capabilities.name

    @abstractmethod
    async def connect(self, config: Any = None) -> None:
        """Open the underlying connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def query(
        self,
        query_or_collection: str,
        params_or_filter: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Run a read and return rows/documents as plain dicts."""
        ...

    @abstractmethod
    async def execute(
        self,
        command_or_op: str,
        params_or_collection: Any = None,
        data: Any = None,
    ) -> ExecuteResult:
        """Run a write (or a document op) and describe its effect."""
        ...

    async def transaction(self, callback: Callable[["StorageAdapter"], Awaitable[T]]) -> T:
        """
        Run ``callback`` inside a backend transaction.

        The default implementation has no isolation and simply awaits the
        callback; adapters with real transactions override it.
        """
        logger.debug("%s: transaction without isolation", self.name)
        return await callback(self)

    async def __aenter__(self) -> "StorageAdapter":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
