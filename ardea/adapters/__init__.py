"""
Ardea adapters - storage backends behind the model layer.
"""

from .base import AdapterCapabilities, ExecuteResult, StorageAdapter, SQL, DOCUMENT
from .memory import MemoryDocumentAdapter, DuplicateKeyError
from .sqlite import SQLiteAdapter

__all__ = [
    "AdapterCapabilities",
    "ExecuteResult",
    "StorageAdapter",
    "SQL",
    "DOCUMENT",
    "MemoryDocumentAdapter",
    "DuplicateKeyError",
    "SQLiteAdapter",
]
