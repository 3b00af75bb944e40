from __future__ import annotations

from dataclasses import dataclass

# hook masks
MASKCALL = 1
MASKRET = 2
MASKLINE = 4
MASKCOUNT = 8

# hook events
HOOKCALL = 0
HOOKRET = 1
HOOKLINE = 2
HOOKCOUNT = 3
HOOKTAILCALL = 4

_EVENT_MASKS = {
    HOOKCALL: MASKCALL,
    HOOKTAILCALL: MASKCALL,
    HOOKRET: MASKRET,
    HOOKLINE: MASKLINE,
    HOOKCOUNT: MASKCOUNT,
}


@dataclass
class LuaDebug:
    """Activation record handed to hooks and returned by ``LuaState.get_stack``."""

    event: int
    name: str | None = None
    what: str = "Lua"
    source: str = "?"
    short_src: str = "?"
    currentline: int = -1
    linedefined: int = -1
    lastlinedefined: int = -1


def mask_for(event: int) -> int:
    return _EVENT_MASKS.get(event, 0)


__all__ = [
    "HOOKCALL",
    "HOOKCOUNT",
    "HOOKLINE",
    "HOOKRET",
    "HOOKTAILCALL",
    "LuaDebug",
    "MASKCALL",
    "MASKCOUNT",
    "MASKLINE",
    "MASKRET",
    "mask_for",
]
