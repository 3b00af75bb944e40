"""Slot arena anchoring host objects referenced from scripts.

A :class:`Handle` is an ``(index, generation)`` pair. Unpinning bumps the
slot's generation and returns it to the free list, so a stale handle never
resolves to whatever object reuses the slot later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Handle:
    index: int
    generation: int


class _Slot:
    __slots__ = ("generation", "value", "occupied")

    def __init__(self) -> None:
        self.generation = 0
        self.value: Any = None
        self.occupied = False


class HandleTable:
    def __init__(self) -> None:
        self._slots: List[_Slot] = []
        self._free: List[int] = []
        self._live = 0

    def pin(self, obj: Any) -> Handle:
        """Anchors ``obj``; pinning the same object twice yields two handles."""
        if self._free:
            index = self._free.pop()
            slot = self._slots[index]
        else:
            index = len(self._slots)
            slot = _Slot()
            self._slots.append(slot)
        slot.value = obj
        slot.occupied = True
        self._live += 1
        return Handle(index, slot.generation)

    def _slot(self, handle: Handle) -> Optional[_Slot]:
        if not 0 <= handle.index < len(self._slots):
            return None
        slot = self._slots[handle.index]
        if not slot.occupied or slot.generation != handle.generation:
            return None
        return slot

    def resolve(self, handle: Handle) -> Any:
        """The pinned object, or ``None`` once the handle was released."""
        slot = self._slot(handle)
        return None if slot is None else slot.value

    def unpin(self, handle: Handle) -> bool:
        slot = self._slot(handle)
        if slot is None:
            return False
        slot.value = None
        slot.occupied = False
        slot.generation += 1
        self._free.append(handle.index)
        self._live -= 1
        logger.debug("released handle %d/%d", handle.index, handle.generation)
        return True

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, Handle) and self._slot(handle) is not None

    def __len__(self) -> int:
        return self._live


# shared by every engine that is not given its own table
OBJECT_HANDLES = HandleTable()


__all__ = ["Handle", "HandleTable", "OBJECT_HANDLES"]
