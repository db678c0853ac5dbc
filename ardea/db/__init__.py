"""
Ardea DB - connection registry and query log.
"""

from .connections import (
    configure,
    create_adapter,
    get_adapter,
    get_all_adapters,
    get_config,
    has_adapter,
    register_adapter,
    register_provider,
    reset_connections,
    resolve_adapter,
)
from .query_log import QueryLog, QueryLogEntry, get_query_log, set_query_log

__all__ = [
    "configure",
    "create_adapter",
    "get_adapter",
    "get_all_adapters",
    "get_config",
    "has_adapter",
    "register_adapter",
    "register_provider",
    "reset_connections",
    "resolve_adapter",
    "QueryLog",
    "QueryLogEntry",
    "get_query_log",
    "set_query_log",
]
