"""Embed Lua scripts in Python programs and expose Python objects to them."""

from .attributes import (
    BoundEvent,
    Event,
    Ref,
    indexed_property,
    lua_extension,
    lua_global,
    lua_hide,
    lua_name,
)
from .config import EngineOptions
from .engine import Engine, EventCode, EventMask
from .errors import (
    CoercionError,
    DeadCoroutine,
    HostInvocationError,
    InsufficientStackSpace,
    InvalidTypeArgument,
    LifecycleError,
    LuaException,
    LuaScriptException,
    NoMatchingOverload,
    OperatorNotSupported,
    ProtocolError,
    ReadOnlyMember,
    ResolutionError,
    StackImbalance,
    TypeMismatch,
    UnknownMember,
    UnsupportedValueKind,
)
from .handles import Handle, HandleTable
from .objects import CoroutineStatus, LuaCoroutine, LuaFunction, LuaObject, LuaTable, ResumeResult, ThreadStatus

__all__ = [
    "BoundEvent",
    "CoercionError",
    "CoroutineStatus",
    "DeadCoroutine",
    "Engine",
    "EngineOptions",
    "Event",
    "EventCode",
    "EventMask",
    "Handle",
    "HandleTable",
    "HostInvocationError",
    "InsufficientStackSpace",
    "InvalidTypeArgument",
    "LifecycleError",
    "LuaCoroutine",
    "LuaException",
    "LuaFunction",
    "LuaObject",
    "LuaScriptException",
    "LuaTable",
    "NoMatchingOverload",
    "OperatorNotSupported",
    "ProtocolError",
    "ReadOnlyMember",
    "Ref",
    "ResolutionError",
    "ResumeResult",
    "StackImbalance",
    "ThreadStatus",
    "TypeMismatch",
    "UnknownMember",
    "UnsupportedValueKind",
    "indexed_property",
    "lua_extension",
    "lua_global",
    "lua_hide",
    "lua_name",
]
