"""
Ardea Model Hooks — lifecycle callbacks around every mutation.

Slots, in the order a create runs them:

    before_validate -> after_validate -> before_create -> before_save
    -> (write) -> after_create -> after_save

Updates use ``before_update``/``after_update`` and deletes use
``before_delete``/``after_delete``.

Three ways to attach a hook:

    class User(Model):
        async def before_save(self):           # slot-named method
            self.email = self.email.lower()

        @hook("after_create", priority=10)     # decorated method
        def announce(self):
            ...

    @User.hooks.connect("before_delete")       # external receiver
    async def guard(instance):
        ...

Hooks run sequentially; sync and async callables are both accepted.
Before-hook errors propagate unchanged. After-hook errors are raised as
``HookFault`` because the write has already happened.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..faults import HookFault

logger = logging.getLogger("ardea.models.hooks")

__all__ = ["HOOK_SLOTS", "BEFORE_SLOTS", "AFTER_SLOTS", "HookSet", "hook"]

BEFORE_SLOTS = (
    "before_validate",
    "after_validate",
    "before_create",
    "before_update",
    "before_delete",
    "before_save",
)
AFTER_SLOTS = ("after_create", "after_update", "after_delete", "after_save")
HOOK_SLOTS = BEFORE_SLOTS + AFTER_SLOTS


def _check_slot(slot: str) -> None:
    if slot not in HOOK_SLOTS:
        raise ValueError(f"Unknown hook slot {slot!r}. Expected one of: {', '.join(HOOK_SLOTS)}")


def hook(slot: str, *, priority: int = 100) -> Callable:
    """Mark a model method as a receiver for ``slot``."""
    _check_slot(slot)

    def _decorator(fn: Callable) -> Callable:
        marks = list(getattr(fn, "_ardea_hooks", ()))
        marks.append((slot, priority))
        fn._ardea_hooks = marks
        return fn

    return _decorator


class HookSet:
    """
    Per-model hook registry.

    Receivers are ordered by priority (lower runs first); ties keep
    connection order. A slot-named method on the model always runs
    before connected receivers.
    """

    def __init__(self, owner: str = ""):
        self.owner = owner
        # slot -> [(receiver, priority)]
        self._receivers: Dict[str, List[Tuple[Callable, int]]] = {slot: [] for slot in HOOK_SLOTS}

    def connect(
        self,
        slot: str,
        receiver: Optional[Callable] = None,
        *,
        priority: int = 100,
    ):
        """Connect ``receiver(instance)`` to ``slot``. Usable as a decorator."""
        _check_slot(slot)

        def _decorator(fn: Callable) -> Callable:
            entries = self._receivers[slot]
            if not any(existing is fn for existing, _ in entries):
                entries.append((fn, priority))
                entries.sort(key=lambda entry: entry[1])
            return fn

        if receiver is not None:
            return _decorator(receiver)
        return _decorator

    def disconnect(self, slot: str, receiver: Callable) -> bool:
        _check_slot(slot)
        entries = self._receivers[slot]
        for i, (fn, _) in enumerate(entries):
            if fn is receiver:
                entries.pop(i)
                return True
        return False

    def receivers(self, slot: str) -> List[Callable]:
        _check_slot(slot)
        return [fn for fn, _ in self._receivers[slot]]

    def clear(self) -> None:
        for entries in self._receivers.values():
            entries.clear()

    def copy(self, owner: str) -> "HookSet":
        clone = HookSet(owner)
        for slot, entries in self._receivers.items():
            clone._receivers[slot] = list(entries)
        return clone

    def _callables(self, slot: str, instance: Any) -> List[Callable[[], Any]]:
        calls: List[Callable[[], Any]] = []
        method = getattr(type(instance), slot, None)
        if callable(method):
            calls.append(getattr(instance, slot))
        for fn, _ in self._receivers[slot]:
            calls.append(lambda fn=fn: fn(instance))
        return calls

    async def run(self, slot: str, instance: Any) -> None:
        """Run every hook for ``slot``; exceptions propagate."""
        for call in self._callables(slot, instance):
            result = call()
            if inspect.isawaitable(result):
                await result

    async def run_after(self, slot: str, instance: Any) -> None:
        """Run an after-hook; failures become ``HookFault`` carrying ``instance``."""
        try:
            await self.run(slot, instance)
        except HookFault:
            raise
        except Exception as exc:
            logger.error("%s.%s hook failed after write: %s", self.owner, slot, exc)
            raise HookFault(slot, str(exc), instance=instance) from exc
