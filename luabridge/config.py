from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from luart.constants import MAXSTACK

from .handles import HandleTable


@dataclass
class EngineOptions:
    """Settings of one :class:`~luabridge.engine.Engine`.

    ``handles`` isolates the engine's pinned objects from the process-wide
    table; ``debug_stack_dumps`` logs the stack at every dispatch entry.
    """

    open_libs: bool = True
    register_globals: bool = True
    max_stack: int = MAXSTACK
    debug_stack_dumps: bool = False
    echo_output: bool = False
    handles: Optional[HandleTable] = None


__all__ = ["EngineOptions"]
