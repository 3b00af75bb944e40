"""Lua value representations shared by the VM, the standard library and the C API."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TYPE_CHECKING

from .bytecode import Prototype
from .table import LuaTable

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .runtime import LuaRuntime

MAX_INTEGER = 2**63 - 1
MIN_INTEGER = -(2**63)

_DEC_INT = re.compile(r"[0-9]+")
_DEC_FLOAT = re.compile(r"(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_HEX = re.compile(r"0[xX]([0-9a-fA-F]*)(?:\.([0-9a-fA-F]*))?(?:[pP]([+-]?[0-9]+))?")


class LuaFunction:
    """A Lua closure: compiled prototype plus captured upvalue cells."""

    __slots__ = ("proto", "upvalues", "__weakref__")

    def __init__(self, proto: Prototype, upvalues: Sequence[Any] = ()) -> None:
        self.proto = proto
        self.upvalues = list(upvalues)

    @property
    def name(self) -> str:
        return self.proto.name

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaFunction {self.proto.name}>"


class CFunction:
    """Host function following the stack protocol: ``function(state) -> nresults``."""

    __slots__ = ("function", "upvalues", "name", "__weakref__")

    def __init__(self, function: Callable[[Any], int], upvalues: Sequence[Any] = (), name: Optional[str] = None) -> None:
        self.function = function
        self.upvalues = list(upvalues)
        self.name = name or getattr(function, "__name__", "?")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<CFunction {self.name}>"


@dataclass
class LuaMultiReturn:
    values: Sequence[Any]


class BuiltinFunction:
    __slots__ = ("name", "func", "doc", "__lua_builtin__", "allow_yield", "__weakref__")

    def __init__(
        self,
        name: str,
        func: Callable[[Sequence[Any], Any], Any],
        doc: str = "",
        *,
        allow_yield: bool = False,
    ) -> None:
        self.name = name
        self.func = func
        self.doc = doc
        self.__lua_builtin__ = True  # marker for the VM
        self.allow_yield = allow_yield

    def __call__(self, args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401 - VM is dynamic
        return self.func(args, vm)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<BuiltinFunction {self.name}>"


class Userdata:
    """Full userdata: an opaque block plus an optional metatable.

    When the metatable carries ``__gc`` the userdata is marked for
    finalization; once unreachable it is queued on the runtime and the
    finalizer runs at the next safe point.
    """

    __slots__ = ("block", "metatable", "runtime", "marked", "finalized", "__weakref__")

    def __init__(self, block: Any = None, runtime: Optional["LuaRuntime"] = None) -> None:
        self.block = block
        self.metatable: Optional[LuaTable] = None
        self.runtime = runtime
        self.marked = False
        self.finalized = False

    def set_metatable(self, metatable: Optional[LuaTable]) -> None:
        self.metatable = metatable
        if metatable is not None and not self.marked and metatable.raw_get("__gc") is not None:
            self.marked = True
            if self.runtime is not None:
                self.runtime.track_finalizer(self)

    def __del__(self) -> None:
        runtime = self.runtime
        if runtime is None or not self.marked or self.finalized or runtime.closed:
            return
        # resurrect until the finalizer has run
        runtime.pending_finalizers.append(self)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Userdata {self.block!r}>"


def lua_type(value: Any) -> str:
    if value is None:
        return "nil"
    if value is True or value is False:
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, LuaTable):
        return "table"
    if isinstance(value, (LuaFunction, CFunction, BuiltinFunction)):
        return "function"
    if isinstance(value, Userdata):
        return "userdata"
    return getattr(type(value), "lua_type_name", "userdata")


def is_falsy(value: Any) -> bool:
    return value is None or value is False


def is_number(value: Any) -> bool:
    kind = type(value)
    return kind is int or kind is float


def is_callable(value: Any) -> bool:
    return isinstance(value, (LuaFunction, CFunction, BuiltinFunction))


def wrap_int(value: int) -> int:
    """Wraps an integer around the 64-bit range like Lua integer arithmetic."""
    if MIN_INTEGER <= value <= MAX_INTEGER:
        return value
    return ((value + 2**63) % 2**64) - 2**63


def float_to_int(value: float) -> Optional[int]:
    if not math.isfinite(value) or not value.is_integer():
        return None
    result = int(value)
    if MIN_INTEGER <= result <= MAX_INTEGER:
        return result
    return None


def to_integer(value: Any) -> Optional[int]:
    """Converts numbers and numeric strings with an exact integer value."""
    if type(value) is int:
        return value
    if type(value) is float:
        return float_to_int(value)
    if isinstance(value, str):
        number = str_to_number(value)
        if number is not None:
            return to_integer(number)
    return None


def to_number(value: Any) -> Optional[float | int]:
    if is_number(value):
        return value
    if isinstance(value, str):
        return str_to_number(value)
    return None


def str_to_number(text: str) -> Optional[float | int]:
    body = text.strip(" \t\n\r\f\v")
    negative = False
    if body.startswith("-") or body.startswith("+"):
        negative = body[0] == "-"
        body = body[1:]
    if not body:
        return None
    match = _HEX.fullmatch(body)
    if match is not None:
        int_part, frac_part, exponent = match.groups()
        if not int_part and not frac_part:
            return None
        if frac_part is None and exponent is None:
            value = wrap_int(int(int_part, 16) % 2**64)
            return wrap_int(-value) if negative else value
        mantissa = float(int(int_part or "0", 16))
        if frac_part:
            mantissa += int(frac_part, 16) / 16 ** len(frac_part)
        result = math.ldexp(mantissa, int(exponent or "0"))
        return -result if negative else result
    if _DEC_INT.fullmatch(body):
        value = int(body)
        if negative:
            value = -value
        if MIN_INTEGER <= value <= MAX_INTEGER:
            return value
        return float(value)
    if _DEC_FLOAT.fullmatch(body):
        result = float(body)
        return -result if negative else result
    return None


def format_number(value: float | int) -> str:
    if type(value) is int:
        return str(value)
    if math.isnan(value):
        return "nan" if math.copysign(1.0, value) > 0 else "-nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = "%.14g" % value
    if re.fullmatch(r"-?[0-9]+", text):
        text += ".0"
    return text


def raw_tostring(value: Any) -> str:
    """``tostring`` without metamethods."""
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if is_number(value):
        return format_number(value)
    if isinstance(value, str):
        return value
    return f"{lua_type(value)}: 0x{id(value):08x}"


__all__ = [
    "BuiltinFunction",
    "CFunction",
    "LuaFunction",
    "LuaMultiReturn",
    "MAX_INTEGER",
    "MIN_INTEGER",
    "Userdata",
    "float_to_int",
    "format_number",
    "is_callable",
    "is_falsy",
    "is_number",
    "lua_type",
    "raw_tostring",
    "str_to_number",
    "to_integer",
    "to_number",
    "wrap_int",
]
