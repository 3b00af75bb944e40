from __future__ import annotations

import logging

from luart.constants import TBOOLEAN, TNIL, TNUMBER, TSTRING, TUSERDATA
from luart.state import LuaState

logger = logging.getLogger(__name__)


def _describe(state: LuaState, index: int, kind: int) -> str:
    if kind == TNIL:
        return "nil"
    if kind == TBOOLEAN:
        return "true" if state.to_boolean(index) else "false"
    if kind == TNUMBER:
        return repr(state.to_integer(index) if state.is_integer(index) else state.to_number(index))
    if kind == TSTRING:
        return repr(state.to_string(index))
    if kind == TUSERDATA:
        return repr(state.to_userdata(index))
    return f"0x{state.to_pointer(index):08x}"


def format_stack(state: LuaState) -> str:
    """Renders the current frame of ``state`` as a three column table."""
    rows = [("Stack Index", "Type", "Value")]
    for index in range(1, state.get_top() + 1):
        kind = state.type_of(index)
        rows.append((str(index), LuaState.typename(kind), _describe(state, index, kind)))
    widths = [max(len(row[column]) for row in rows) for column in range(2)]
    return "\n".join(f"{row[0]:>{widths[0]}} | {row[1]:<{widths[1]}} | {row[2]}" for row in rows)


def dump_stack(state: LuaState, caller: str = "") -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("stack at %s:\n%s", caller or "<unknown>", format_stack(state))


__all__ = ["dump_stack", "format_stack"]
