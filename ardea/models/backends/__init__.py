"""
Ardea Model Backends — per-family executors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import Changes, Executor, QuerySpec
from .document import DocumentExecutor
from .sql import SQLExecutor, to_db_value

if TYPE_CHECKING:
    from ..options import ModelOptions

__all__ = [
    "Changes",
    "Executor",
    "QuerySpec",
    "DocumentExecutor",
    "SQLExecutor",
    "executor_for",
    "to_db_value",
]


def executor_for(options: "ModelOptions") -> Executor:
    """Pick the executor matching the bound adapter's family."""
    if options.adapter.kind == "document":
        return DocumentExecutor(options)
    return SQLExecutor(options)
