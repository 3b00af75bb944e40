from typing import Sequence

from ..vm_errors import TraceFrame, VMRuntimeError


def format_frame(frame: TraceFrame) -> str:
    location = f"{frame.file}:{frame.line}"
    name = frame.function_name
    if name == "main chunk":
        text = f"\t{location}: in main chunk"
    else:
        text = f"\t{location}: in function '{name}'"
    if frame.coroutine_id is not None:
        text += f" [coroutine 0x{frame.coroutine_id:08x}]"
    return text


def format_traceback(frames: Sequence[TraceFrame]) -> str:
    lines = ["stack traceback:"]
    lines.extend(format_frame(frame) for frame in frames)
    return "\n".join(lines)


def format_lua_error(error: VMRuntimeError, *, with_traceback: bool = True) -> str:
    """Renders ``error`` like the reference interpreter's error report."""
    message = str(error)
    if with_traceback and error.frames:
        message = f"{message}\n{format_traceback(error.frames)}"
    return message


__all__ = ["format_frame", "format_lua_error", "format_traceback"]
