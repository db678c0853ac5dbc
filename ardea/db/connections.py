"""
Ardea connections - adapter registry and lazy resolution.

Adapters are registered under an alias ("default" unless stated). A
provider may be registered instead of a ready adapter; it is invoked the
first time the alias is resolved, which lets a dependency container own
adapter construction.

Usage:
    register_adapter(SQLiteAdapter("sqlite:///app.db"))
    register_provider(lambda: container.resolve(StorageAdapter), alias="docs")
    adapter = await resolve_adapter("docs")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..adapters.base import StorageAdapter
from ..config import ArdeaConfig
from ..faults import ConfigFault, DatabaseConnectionFault
from .query_log import QueryLog, set_query_log

logger = logging.getLogger("ardea.db")

__all__ = [
    "register_adapter",
    "register_provider",
    "get_adapter",
    "has_adapter",
    "resolve_adapter",
    "create_adapter",
    "configure",
    "get_all_adapters",
    "get_config",
    "reset_connections",
]

AdapterProvider = Callable[[], Union[StorageAdapter, Awaitable[StorageAdapter]]]

_adapter_registry: Dict[str, StorageAdapter] = {}
_providers: Dict[str, AdapterProvider] = {}
_configs: Dict[str, ArdeaConfig] = {}
_resolve_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _resolve_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _resolve_locks.get(loop)
    if lock is None:
        lock = _resolve_locks[loop] = asyncio.Lock()
    return lock


def register_adapter(adapter: StorageAdapter, *, alias: str = "default") -> None:
    """Register a ready adapter under ``alias``."""
    _adapter_registry[alias] = adapter
    logger.debug("Adapter %s registered as %r", adapter.name, alias)


def register_provider(provider: AdapterProvider, *, alias: str = "default") -> None:
    """Register a factory producing the adapter on first use."""
    _providers[alias] = provider


def has_adapter(alias: Optional[str] = None) -> bool:
    alias = alias or "default"
    return alias in _adapter_registry or alias in _providers


def get_adapter(alias: Optional[str] = None) -> StorageAdapter:
    """
    Get a registered adapter by alias, or the default.

    Raises:
        DatabaseConnectionFault: If nothing is registered under the alias.
    """
    alias = alias or "default"
    adapter = _adapter_registry.get(alias)
    if adapter is None:
        raise DatabaseConnectionFault(
            url=f"<alias:{alias}>",
            reason=f"No adapter configured with alias '{alias}'. "
                   f"Available: {list(_adapter_registry.keys())}",
        )
    return adapter


async def resolve_adapter(alias: Optional[str] = None) -> StorageAdapter:
    """
    Return a connected adapter for ``alias``, building it from a provider
    when necessary. Safe to call concurrently.
    """
    alias = alias or "default"
    async with _resolve_lock():
        adapter = _adapter_registry.get(alias)
        if adapter is None and alias in _providers:
            produced: Any = _providers[alias]()
            if inspect.isawaitable(produced):
                produced = await produced
            adapter = produced
            _adapter_registry[alias] = adapter
        if adapter is None:
            adapter = get_adapter(alias)
        if not adapter.is_connected:
            await adapter.connect()
        return adapter


def create_adapter(url: str) -> StorageAdapter:
    """Factory — instantiate the adapter matching the URL scheme."""
    scheme = url.split(":", 1)[0].lower()
    if scheme == "sqlite":
        from ..adapters.sqlite import SQLiteAdapter
        return SQLiteAdapter(url)
    if scheme == "memory":
        from ..adapters.memory import MemoryDocumentAdapter
        name = url.split("://", 1)[-1] or "memory"
        return MemoryDocumentAdapter(name)
    raise ConfigFault("url", f"No adapter available for scheme '{scheme}'")


async def configure(config: Optional[ArdeaConfig] = None) -> StorageAdapter:
    """Create, connect and register the adapter described by ``config``."""
    config = config or ArdeaConfig.from_env()
    set_query_log(QueryLog(
        max_entries=config.query_log_size,
        slow_threshold_ms=config.slow_query_ms,
        enabled=config.query_log_enabled,
    ))
    adapter = create_adapter(config.url)
    await adapter.connect()
    register_adapter(adapter, alias=config.alias)
    _configs[config.alias] = config
    logger.info("Configured %s adapter as %r", adapter.name, config.alias)
    return adapter


def get_all_adapters() -> Dict[str, StorageAdapter]:
    return dict(_adapter_registry)


def reset_connections() -> None:
    """Forget every registered adapter and provider (does not close them)."""
    _adapter_registry.clear()
    _providers.clear()
    _configs.clear()


def get_config(alias: Optional[str] = None) -> Optional[ArdeaConfig]:
    """The config an alias was configured from, if ``configure`` built it."""
    return _configs.get(alias or "default")
