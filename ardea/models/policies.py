"""
Ardea Model Policies — timestamps and soft delete.

Both policies are driven by ``ModelOptions`` and applied by the query
builder around every write:

    created/updated  -> filled on create when absent
    updated          -> set on every update path
    deleted-at       -> set by delete, cleared by restore

Timestamps come from a clock that never runs backwards within the
process, so a record's ``updatedAt`` never decreases.
"""

from __future__ import annotations

import datetime
import threading
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..faults import SoftDeleteFault
from .backends.base import Changes
from .fields import parse_datetime, utcnow

if TYPE_CHECKING:
    from .options import ModelOptions

__all__ = [
    "now",
    "stamp_create",
    "stamp_update",
    "soft_delete_changes",
    "restore_changes",
    "require_soft_delete",
    "is_trashed",
    "strip_live_marker",
    "restore_datetimes",
]

_clock_lock = threading.Lock()
_last_tick: Optional[datetime.datetime] = None


def now() -> datetime.datetime:
    """Timezone-aware UTC now, never earlier than the previous call."""
    global _last_tick
    with _clock_lock:
        current = utcnow()
        if _last_tick is not None and current < _last_tick:
            current = _last_tick
        _last_tick = current
        return current


# ── Timestamps ───────────────────────────────────────────────────────────────


def stamp_create(options: "ModelOptions", data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill created/updated fields that the payload leaves empty."""
    if not options.timestamp_fields:
        return data
    moment = now()
    for name in options.timestamp_fields:
        if data.get(name) is None:
            data[name] = moment
    return data


def stamp_update(options: "ModelOptions", changes: Changes) -> Changes:
    if options.updated_at_field:
        changes.set[options.updated_at_field] = now()
    return changes


# ── Soft delete ──────────────────────────────────────────────────────────────


def require_soft_delete(options: "ModelOptions", operation: str) -> None:
    if not options.soft_delete:
        raise SoftDeleteFault(options.model_name, operation)


def soft_delete_changes(options: "ModelOptions") -> Changes:
    return Changes(set={options.deleted_at_field: now()})


def restore_changes(options: "ModelOptions") -> Changes:
    # SQL renders the unset as NULL, documents as $unset
    return Changes(unset=[options.deleted_at_field])


def is_trashed(options: "ModelOptions", data: Dict[str, Any]) -> bool:
    return bool(options.soft_delete and data.get(options.deleted_at_field) is not None)


def strip_live_marker(options: "ModelOptions", data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop an empty deleted-at value from a create payload.

    Document filters treat "live" as "field absent", so a stored ``None``
    would hide the record from default reads.
    """
    if options.soft_delete and options.deleted_at_field in data and data[options.deleted_at_field] is None:
        del data[options.deleted_at_field]
    return data


def restore_datetimes(options: "ModelOptions", row: Dict[str, Any]) -> Dict[str, Any]:
    """SQL rows carry policy datetimes as ISO strings; parse them back."""
    names = list(options.timestamp_fields)
    if options.soft_delete:
        names.append(options.deleted_at_field)
    for name in names:
        if isinstance(row.get(name), str):
            row[name] = parse_datetime(row[name])
    return row
