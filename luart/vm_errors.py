from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class TraceFrame:
    """One traceback entry; ``coroutine_id`` is set for frames of a non-main thread."""

    function_name: str
    file: str
    line: int
    column: int
    pc: int
    coroutine_id: Optional[int] = None


class VMRuntimeError(RuntimeError):
    """Runtime error raised by the bytecode VM with attached traceback frames.

    ``value`` is the Lua error object seen by ``pcall``; for errors raised by
    the VM itself it is the message string.
    """

    def __init__(self, message: str, frames: Sequence[TraceFrame], value: Any = None):
        super().__init__(message)
        self.frames = list(frames)
        self.value = message if value is None else value


class LuaError(VMRuntimeError):
    """Error raised by ``error()`` or ``LuaState.error`` carrying any Lua value."""

    def __init__(self, value: Any, frames: Sequence[TraceFrame] = ()):
        message = value if isinstance(value, str) else _describe(value)
        super().__init__(message, frames, value)
        self.value = value


def _describe(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return f"(error object is a {type(value).__name__} value)"


__all__ = ["LuaError", "TraceFrame", "VMRuntimeError"]
