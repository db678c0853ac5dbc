"""
Ardea query log - timing and bookkeeping for adapter round trips.

Every round trip issued by the model layer goes through ``QueryLog.timed``:

    with get_query_log().timed("sql", "select", sql, params):
        rows = await adapter.query(sql, params)

Entries are kept in a bounded in-memory buffer. Slow statements are
logged at WARNING, failures at ERROR.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Optional

logger = logging.getLogger("ardea.db.query_log")

__all__ = ["QueryLog", "QueryLogEntry", "get_query_log", "set_query_log"]


@dataclass
class QueryLogEntry:
    kind: str
    operation: str
    statement: str
    params: Any = None
    duration_ms: float = 0.0
    slow: bool = False
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class QueryLog:
    """Bounded log of adapter round trips with slow-query detection."""

    def __init__(
        self,
        max_entries: int = 1000,
        slow_threshold_ms: float = 1000.0,
        enabled: bool = True,
    ):
        self.max_entries = max_entries
        self.slow_threshold_ms = slow_threshold_ms
        self.enabled = enabled
        self._entries: Deque[QueryLogEntry] = deque(maxlen=max_entries)

    @contextmanager
    def timed(
        self,
        kind: str,
        operation: str,
        statement: str,
        params: Any = None,
    ) -> Iterator[None]:
        start = time.perf_counter()
        error: Optional[str] = None
        try:
            yield
        except Exception as exc:
            error = str(exc)
            raise
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            self.record(kind, operation, statement, params, elapsed, error)

    def record(
        self,
        kind: str,
        operation: str,
        statement: str,
        params: Any,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> QueryLogEntry:
        slow = duration_ms >= self.slow_threshold_ms
        entry = QueryLogEntry(
            kind=kind,
            operation=operation,
            statement=statement,
            params=params,
            duration_ms=duration_ms,
            slow=slow,
            error=error,
        )
        if error is not None:
            logger.error("%s %s failed after %.2fms: %s [%s]", kind, operation, duration_ms, statement, error)
        elif slow:
            logger.warning("Slow %s %s (%.2fms): %s", kind, operation, duration_ms, statement)
        else:
            logger.debug("%s %s (%.2fms): %s %r", kind, operation, duration_ms, statement, params)
        if self.enabled:
            self._entries.append(entry)
        return entry

    @property
    def entries(self) -> List[QueryLogEntry]:
        return list(self._entries)

    def slow_queries(self) -> List[QueryLogEntry]:
        return [e for e in self._entries if e.slow]

    def stats(self) -> Dict[str, Any]:
        entries = list(self._entries)
        durations = [e.duration_ms for e in entries]
        by_operation: Dict[str, int] = {}
        for entry in entries:
            by_operation[entry.operation] = by_operation.get(entry.operation, 0) + 1
        return {
            "total": len(entries),
            "slow": sum(1 for e in entries if e.slow),
            "errors": sum(1 for e in entries if e.error is not None),
            "avg_ms": sum(durations) / len(durations) if durations else 0.0,
            "max_ms": max(durations) if durations else 0.0,
            "by_operation": by_operation,
        }

    def clear(self) -> None:
        self._entries.clear()


_query_log = QueryLog()


def get_query_log() -> QueryLog:
    return _query_log


def set_query_log(log: QueryLog) -> None:
    global _query_log
    _query_log = log
