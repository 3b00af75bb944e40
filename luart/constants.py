"""Numeric constants of the C-API emulation."""

# thread status / call results
OK = 0
YIELD = 1
ERRRUN = 2
ERRSYNTAX = 3
ERRMEM = 4
ERRERR = 5

MULTRET = -1

# value types reported by LuaState.type_of
TNONE = -1
TNIL = 0
TBOOLEAN = 1
TLIGHTUSERDATA = 2
TNUMBER = 3
TSTRING = 4
TTABLE = 5
TFUNCTION = 6
TUSERDATA = 7
TTHREAD = 8

TYPE_NAMES = {
    TNONE: "no value",
    TNIL: "nil",
    TBOOLEAN: "boolean",
    TLIGHTUSERDATA: "userdata",
    TNUMBER: "number",
    TSTRING: "string",
    TTABLE: "table",
    TFUNCTION: "function",
    TUSERDATA: "userdata",
    TTHREAD: "thread",
}

MINSTACK = 20
MAXSTACK = 1000000

REGISTRYINDEX = -MAXSTACK - 1000
RIDX_MAINTHREAD = 1
RIDX_GLOBALS = 2

NOREF = -2
REFNIL = -1

# call depth limits
MAX_CALL_DEPTH = 7000
MAX_C_CALLS = 100


def upvalue_index(i: int) -> int:
    return REGISTRYINDEX - i


__all__ = [name for name in dir() if name.isupper()] + ["upvalue_index"]
