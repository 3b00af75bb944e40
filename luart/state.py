"""Stack-based native call surface over the Python VM.

``LuaState`` mirrors the C API of the reference implementation: values are
exchanged through a per-thread stack addressed by 1-based positive indices
(from the bottom of the current C frame), negative indices (from the top) and
pseudo-indices (the registry and C-closure upvalues). Every operation keeps
the stack balanced on error paths.
"""

from __future__ import annotations

import gc
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .compiler import CompileError
from .constants import (
    ERRERR,
    ERRRUN,
    ERRSYNTAX,
    MULTRET,
    NOREF,
    OK,
    REFNIL,
    REGISTRYINDEX,
    TBOOLEAN,
    TFUNCTION,
    TNIL,
    TNONE,
    TNUMBER,
    TSTRING,
    TTABLE,
    TTHREAD,
    TUSERDATA,
    TYPE_NAMES,
    YIELD,
)
from .parser import ParserError
from .table import LuaTable
from .values import (
    CFunction,
    Userdata,
    format_number,
    is_falsy,
    is_number,
    lua_type,
    to_integer,
    to_number,
    wrap_int,
)
from .vm_errors import LuaError, VMRuntimeError

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .coroutines import LuaThread
    from .hooks import LuaDebug
    from .runtime import LuaRuntime

logger = logging.getLogger(__name__)

_NONE = object()

_TYPE_TAGS = {
    "nil": TNIL,
    "boolean": TBOOLEAN,
    "number": TNUMBER,
    "string": TSTRING,
    "table": TTABLE,
    "function": TFUNCTION,
    "userdata": TUSERDATA,
    "thread": TTHREAD,
}


class LuaState:
    def __init__(self, runtime: "LuaRuntime", thread: "LuaThread"):
        self.runtime = runtime
        self.thread = thread
        self.stack: List[object] = []
        self._frames: List[Tuple[int, CFunction]] = []
        self.last_error: Optional[VMRuntimeError] = None

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaState top={self.get_top()} {self.thread!r}>"

    # ------------------------------------------------------------------ indices
    @property
    def _base(self) -> int:
        return self._frames[-1][0] if self._frames else 0

    def _position(self, idx: int) -> Optional[int]:
        if idx > 0:
            pos = self._base + idx - 1
            return pos if pos < len(self.stack) else None
        if idx < 0 and idx > REGISTRYINDEX:
            pos = len(self.stack) + idx
            return pos if pos >= self._base else None
        return None

    def _get(self, idx: int) -> Any:
        if idx == REGISTRYINDEX:
            return self.runtime.registry
        if idx < REGISTRYINDEX:
            upvalue = REGISTRYINDEX - idx - 1
            if not self._frames:
                return _NONE
            upvalues = self._frames[-1][1].upvalues
            return upvalues[upvalue] if upvalue < len(upvalues) else _NONE
        pos = self._position(idx)
        return _NONE if pos is None else self.stack[pos]

    def _value(self, idx: int) -> Any:
        value = self._get(idx)
        return None if value is _NONE else value

    def _check(self, idx: int) -> Any:
        value = self._get(idx)
        if value is _NONE:
            raise IndexError(f"invalid stack index {idx}")
        return value

    def _table(self, idx: int) -> LuaTable:
        value = self._check(idx)
        if not isinstance(value, LuaTable):
            raise TypeError(f"table expected at index {idx}, got {lua_type(value)}")
        return value

    def _set(self, idx: int, value: Any) -> None:
        if idx < REGISTRYINDEX:
            upvalue = REGISTRYINDEX - idx - 1
            self._frames[-1][1].upvalues[upvalue] = value
            return
        pos = self._position(idx)
        if pos is None:
            raise IndexError(f"invalid stack index {idx}")
        self.stack[pos] = value

    def _pop_values(self, count: int) -> List[object]:
        if count > self.get_top():
            raise IndexError("not enough elements in the stack")
        if count <= 0:
            return []
        values = self.stack[-count:]
        del self.stack[-count:]
        return values

    def _push_results(self, results: Sequence[object], nresults: int) -> None:
        values = list(results)
        if nresults != MULTRET:
            values = (values + [None] * nresults)[:nresults]
        self.stack.extend(values)

    @property
    def vm(self):
        return self.thread.vm

    # ------------------------------------------------------------------ basic stack manipulation
    def get_top(self) -> int:
        return len(self.stack) - self._base

    def set_top(self, idx: int) -> None:
        if idx >= 0:
            new_len = self._base + idx
        else:
            new_len = len(self.stack) + idx + 1
        if new_len < self._base:
            raise IndexError(f"invalid new top {idx}")
        if new_len > len(self.stack):
            self.stack.extend([None] * (new_len - len(self.stack)))
        else:
            del self.stack[new_len:]

    def pop(self, n: int = 1) -> None:
        self.set_top(-n - 1)

    def push_value(self, idx: int) -> None:
        self.stack.append(self._check(idx))

    def insert(self, idx: int) -> None:
        pos = self._position(idx)
        if pos is None:
            raise IndexError(f"invalid stack index {idx}")
        self.stack.insert(pos, self.stack.pop())

    def remove(self, idx: int) -> None:
        pos = self._position(idx)
        if pos is None:
            raise IndexError(f"invalid stack index {idx}")
        del self.stack[pos]

    def replace(self, idx: int) -> None:
        value = self.stack.pop()
        self._set(idx, value)

    def check_stack(self, n: int) -> bool:
        return len(self.stack) + n <= self.runtime.max_stack

    def xmove(self, to: "LuaState", n: int) -> None:
        if to is self or n <= 0:
            return
        to.stack.extend(self._pop_values(n))

    # ------------------------------------------------------------------ push functions
    def push_nil(self) -> None:
        self.stack.append(None)

    def push_boolean(self, value: bool) -> None:
        self.stack.append(bool(value))

    def push_integer(self, value: int) -> None:
        self.stack.append(wrap_int(int(value)))

    def push_number(self, value: float) -> None:
        self.stack.append(float(value))

    def push_string(self, value: str) -> str:
        self.stack.append(value)
        return value

    def push_cfunction(self, function: Callable[["LuaState"], int], name: Optional[str] = None) -> None:
        self.stack.append(CFunction(function, (), name))

    def push_cclosure(self, function: Callable[["LuaState"], int], n: int, name: Optional[str] = None) -> None:
        upvalues = self._pop_values(n)
        self.stack.append(CFunction(function, upvalues, name))

    def push_thread(self) -> bool:
        self.stack.append(self.thread)
        return self.thread.is_main

    # ------------------------------------------------------------------ access functions
    def type_of(self, idx: int) -> int:
        value = self._get(idx)
        if value is _NONE:
            return TNONE
        return _TYPE_TAGS.get(lua_type(value), TUSERDATA)

    @staticmethod
    def typename(tag: int) -> str:
        return TYPE_NAMES[tag]

    def is_integer(self, idx: int) -> bool:
        return type(self._get(idx)) is int

    def is_number(self, idx: int) -> bool:
        return to_number(self._value(idx)) is not None

    def is_string(self, idx: int) -> bool:
        value = self._value(idx)
        return isinstance(value, str) or is_number(value)

    def is_none_or_nil(self, idx: int) -> bool:
        return self._get(idx) in (_NONE, None)

    def to_boolean(self, idx: int) -> bool:
        return not is_falsy(self._value(idx))

    def to_integer(self, idx: int) -> Optional[int]:
        """Integer value of the slot, or ``None`` if it has none."""
        return to_integer(self._value(idx))

    def to_number(self, idx: int):
        """Number value of the slot (numeric strings convert), or ``None``."""
        return to_number(self._value(idx))

    def to_string(self, idx: int) -> Optional[str]:
        """String value of the slot; numbers are converted in place."""
        value = self._value(idx)
        if isinstance(value, str):
            return value
        if is_number(value):
            text = format_number(value)
            self._set(idx, text)
            return text
        return None

    def to_userdata(self, idx: int) -> Any:
        value = self._value(idx)
        return value.block if isinstance(value, Userdata) else None

    def to_thread(self, idx: int) -> Optional["LuaState"]:
        value = self._value(idx)
        return value.state if lua_type(value) == "thread" else None

    def to_pointer(self, idx: int) -> int:
        value = self._value(idx)
        if value is None or isinstance(value, (bool, int, float, str)):
            return 0
        return id(value)

    def raw_equal(self, idx1: int, idx2: int) -> bool:
        a = self._get(idx1)
        b = self._get(idx2)
        if a is _NONE or b is _NONE:
            return False
        if is_number(a) and is_number(b):
            return a == b
        return a is b or (type(a) is type(b) and isinstance(a, str) and a == b)

    def raw_len(self, idx: int) -> int:
        value = self._value(idx)
        if isinstance(value, str):
            return len(value)
        if isinstance(value, LuaTable):
            return value.lua_len()
        return 0

    # ------------------------------------------------------------------ get functions
    def get_global(self, name: str) -> int:
        self.stack.append(self.vm.index(self.runtime.globals, name))
        return self.type_of(-1)

    def get_table(self, idx: int) -> int:
        target = self._check(idx)
        key = self.stack.pop()
        self.stack.append(self._protected(lambda: self.vm.index(target, key)))
        return self.type_of(-1)

    def get_field(self, idx: int, key: str) -> int:
        target = self._check(idx)
        self.stack.append(self._protected(lambda: self.vm.index(target, key)))
        return self.type_of(-1)

    def raw_get(self, idx: int) -> int:
        table = self._table(idx)
        key = self.stack.pop()
        self.stack.append(table.raw_get(key))
        return self.type_of(-1)

    def raw_geti(self, idx: int, n: int) -> int:
        table = self._table(idx)
        self.stack.append(table.raw_get(n))
        return self.type_of(-1)

    def create_table(self, narr: int = 0, nrec: int = 0) -> None:
        self.stack.append(LuaTable())

    def new_table(self) -> None:
        self.create_table(0, 0)

    def new_userdata(self, block: Any = None) -> Userdata:
        """Pushes a full userdata holding ``block`` and returns it."""
        udata = Userdata(block, self.runtime)
        self.stack.append(udata)
        return udata

    def get_metatable(self, idx: int) -> bool:
        metatable = self.vm.get_metatable(self._check(idx))
        if metatable is None:
            return False
        self.stack.append(metatable)
        return True

    # ------------------------------------------------------------------ set functions
    def set_global(self, name: str) -> None:
        value = self.stack.pop()
        self._protected(lambda: self.vm.newindex(self.runtime.globals, name, value))

    def set_table(self, idx: int) -> None:
        target = self._check(idx)
        key, value = self._pop_values(2)
        self._protected(lambda: self.vm.newindex(target, key, value))

    def set_field(self, idx: int, key: str) -> None:
        target = self._check(idx)
        value = self.stack.pop()
        self._protected(lambda: self.vm.newindex(target, key, value))

    def raw_set(self, idx: int) -> None:
        table = self._table(idx)
        key, value = self._pop_values(2)
        self._protected(lambda: table.raw_set(key, value))

    def raw_seti(self, idx: int, n: int) -> None:
        table = self._table(idx)
        value = self.stack.pop()
        table.raw_set(n, value)

    def set_metatable(self, idx: int) -> None:
        target = self._check(idx)
        metatable = self.stack.pop()
        if metatable is not None and not isinstance(metatable, LuaTable):
            raise TypeError("table expected")
        if isinstance(target, (LuaTable, Userdata)):
            target.set_metatable(metatable)
        elif isinstance(target, str):
            self.runtime.string_metatable = metatable
        else:
            raise TypeError(f"cannot set a metatable for a {lua_type(target)} value")

    # ------------------------------------------------------------------ auxiliary library
    def new_metatable(self, tname: str) -> bool:
        registry = self.runtime.registry
        existing = registry.raw_get(tname)
        if existing is not None:
            self.stack.append(existing)
            return False
        metatable = LuaTable()
        metatable.raw_set("__name", tname)
        registry.raw_set(tname, metatable)
        self.stack.append(metatable)
        return True

    def ref(self, t: int) -> int:
        """Stores the top value in table ``t`` under a fresh integer key."""
        table = self._table(t)
        value = self.stack.pop()
        if value is None:
            return REFNIL
        free = table.raw_get(0)
        if free:
            ref = free
            table.raw_set(0, table.raw_get(ref))
        else:
            ref = table.lua_len() + 1
        table.raw_set(ref, value)
        return ref

    def unref(self, t: int, ref: int) -> None:
        if ref < 0:
            return
        table = self._table(t)
        table.raw_set(ref, table.raw_get(0) or 0)
        table.raw_set(0, ref)

    # ------------------------------------------------------------------ traversal
    def next(self, idx: int) -> bool:
        table = self._table(idx)
        key = self.stack.pop()
        entry = self._protected(lambda: table.next(key))
        if entry is None:
            return False
        self.stack.extend(entry)
        return True

    # ------------------------------------------------------------------ load and call
    def load_string(self, source: str, chunk_name: Optional[str] = None) -> int:
        try:
            function = self.runtime.load(source, chunk_name)
        except (ParserError, CompileError) as exc:
            self.stack.append(str(exc))
            return ERRSYNTAX
        self.stack.append(function)
        return OK

    def _take_call(self, nargs: int) -> Tuple[object, List[object]]:
        if nargs + 1 > self.get_top():
            raise IndexError("not enough elements in the stack for call")
        func_pos = len(self.stack) - nargs - 1
        func = self.stack[func_pos]
        args = self.stack[func_pos + 1:]
        del self.stack[func_pos:]
        return func, args

    def call(self, nargs: int, nresults: int = MULTRET) -> None:
        func, args = self._take_call(nargs)
        results = self._protected(lambda: self.vm.call_callable(func, args))
        self._push_results(results, nresults)

    def pcall(self, nargs: int, nresults: int = MULTRET, msgh: int = 0) -> int:
        handler = self._check(msgh) if msgh else None
        func, args = self._take_call(nargs)
        depth = len(self.stack)
        try:
            results = self._protected(lambda: self.vm.call_callable(func, args))
        except VMRuntimeError as exc:
            del self.stack[depth:]
            self.last_error = exc
            value, status = exc.value, ERRRUN
            if handler is not None:
                try:
                    handled = self._protected(lambda: self.vm.call_callable(handler, [value]))
                    value = handled[0] if handled else None
                except VMRuntimeError as inner:
                    value, status = inner.value, ERRERR
            self.stack.append(value)
            return status
        self._push_results(results, nresults)
        return OK

    def call_c(self, func: CFunction, args: Sequence[object]) -> List[object]:
        """Runs a C function on a fresh frame holding ``args``; returns its results."""
        base = len(self.stack)
        if base + len(args) > self.runtime.max_stack:
            raise RuntimeError("stack overflow")
        self.stack.extend(args)
        self._frames.append((base, func))
        try:
            count = func.function(self) or 0
            available = len(self.stack) - base
            if count < 0 or count > available:
                raise RuntimeError(f"C function '{func.name}' returned {count} results, {available} on the stack")
            return self.stack[len(self.stack) - count:]
        finally:
            self._frames.pop()
            del self.stack[base:]

    def error(self):
        """Raises the value on top of the stack as a Lua error."""
        value = self.stack.pop() if self.get_top() > 0 else None
        raise LuaError(value, self.vm._capture_traceback())

    def _protected(self, action: Callable[[], Any]) -> Any:
        """Runs ``action`` converting stray host exceptions into Lua errors."""
        try:
            return action()
        except VMRuntimeError:
            raise
        except RecursionError as exc:
            raise self.vm._wrap_runtime_error(RuntimeError("stack overflow")) from exc
        except Exception as exc:
            raise self.vm._wrap_runtime_error(exc) from exc

    # ------------------------------------------------------------------ threads
    def new_thread(self) -> "LuaState":
        from .coroutines import LuaThread

        thread = LuaThread(self.runtime)
        self.stack.append(thread)
        return thread.state

    def resume(self, nargs: int, from_state: Optional["LuaState"] = None) -> int:
        """Starts or continues this thread; results replace its stack."""
        thread = self.thread
        args = self._pop_values(nargs)
        if thread.is_main or thread.status != "suspended":
            message = "cannot resume dead coroutine" if thread.status == "dead" else "cannot resume non-suspended coroutine"
            self.stack.append(message)
            return ERRRUN
        if not thread.started:
            thread.function = self.stack.pop() if self.stack else None
        result = thread.resume(args)
        if result.success:
            self.stack[:] = result.values
            return YIELD if thread.status == "suspended" else OK
        self.stack[:] = result.values[:1]
        return thread.error_status if thread.error_status is not None else ERRRUN

    def status(self) -> int:
        thread = self.thread
        if thread.error_status is not None:
            return thread.error_status
        if thread.started and thread.status == "suspended":
            return YIELD
        return OK

    # ------------------------------------------------------------------ debug and gc
    def get_stack(self, level: int) -> Optional["LuaDebug"]:
        return self.thread.vm.debug_info(level)

    def set_hook(self, hook: Optional[Callable[["LuaState", "LuaDebug"], None]], mask: int, count: int = 0) -> None:
        self.runtime.set_hook(hook, mask, count)

    def gc(self) -> int:
        collected = gc.collect()
        self.runtime.run_finalizers(self.vm)
        logger.debug("gc collected %d objects", collected)
        return OK


__all__ = ["LuaState", "NOREF", "REFNIL"]
