"""Host-side proxies for Lua tables, functions and coroutines.

Each proxy owns one registry reference. Dropping the proxy queues the
reference for release; the translator frees it at its next stack operation.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Tuple

from luart.constants import MULTRET, OK, REGISTRYINDEX, TNIL, YIELD
from luart.state import LuaState
from luart.vm_errors import VMRuntimeError

from .errors import DeadCoroutine, InsufficientStackSpace, LifecycleError

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .translator import ObjectTranslator

logger = logging.getLogger(__name__)


class ThreadStatus(enum.IntEnum):
    LUA_OK = 0
    LUA_YIELD = 1
    LUA_ERRRUN = 2
    LUA_ERRSYNTAX = 3
    LUA_ERRMEM = 4
    LUA_ERRERR = 5


class CoroutineStatus(enum.IntEnum):
    RUNNING = 0
    DEAD = 1
    SUSPENDED = 2
    NORMAL = 3


class LuaObject:
    """A Lua value anchored in the registry."""

    def __init__(self, translator: "ObjectTranslator", ref: int):
        self._translator = translator
        self._ref = ref

    @property
    def reference(self) -> int:
        return self._ref

    def push(self, state: Optional[LuaState] = None) -> None:
        if self._translator.closed:
            raise LifecycleError("Attempt to use a Lua object after its engine was closed.")
        state = state or self._translator.state
        state.raw_geti(REGISTRYINDEX, self._ref)

    def _state(self) -> LuaState:
        return self._translator.state

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LuaObject):
            return NotImplemented
        if other._translator is not self._translator:
            return False
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            other.push(state)
            return state.raw_equal(-1, -2)
        finally:
            state.set_top(top)

    def __hash__(self) -> int:
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            return hash(state.to_pointer(-1))
        finally:
            state.set_top(top)

    def __del__(self) -> None:
        translator = getattr(self, "_translator", None)
        if translator is not None:
            translator.release(self._ref)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} ref={self._ref}>"


class LuaTable(LuaObject, MutableMapping):
    """Mapping view of a Lua table.

    Reads and writes honour metamethods; iteration walks a snapshot taken
    with ``next`` and does not descend into nested tables.
    """

    def __getitem__(self, key: Any) -> Any:
        translator = self._translator
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            translator.push(state, key)
            if state.get_table(-2) == TNIL:
                raise KeyError(key)
            return translator.pull(state, -1)
        except VMRuntimeError as exc:
            raise translator.script_error(exc) from exc
        finally:
            state.set_top(top)

    def __setitem__(self, key: Any, value: Any) -> None:
        translator = self._translator
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            translator.push(state, key)
            translator.push(state, value)
            state.set_table(-3)
        except VMRuntimeError as exc:
            raise translator.script_error(exc) from exc
        finally:
            state.set_top(top)

    def __delitem__(self, key: Any) -> None:
        if key not in self:
            raise KeyError(key)
        self[key] = None

    def pairs(self) -> List[Tuple[Any, Any]]:
        """Raw key/value snapshot in traversal order."""
        translator = self._translator
        state = self._state()
        top = state.get_top()
        entries = []
        try:
            self.push(state)
            state.push_nil()
            while state.next(-2):
                entries.append((translator.pull(state, -2), translator.pull(state, -1)))
                state.pop(1)
        except VMRuntimeError as exc:
            raise translator.script_error(exc) from exc
        finally:
            state.set_top(top)
        return entries

    def __iter__(self) -> Iterator[Any]:
        return iter([key for key, _ in self.pairs()])

    def __len__(self) -> int:
        return len(self.pairs())

    @property
    def length(self) -> int:
        """The border ``#t`` without metamethods."""
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            return state.raw_len(-1)
        finally:
            state.set_top(top)

    @property
    def metatable(self) -> Optional["LuaTable"]:
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            if not state.get_metatable(-1):
                return None
            return self._translator.pull(state, -1)
        finally:
            state.set_top(top)

    @metatable.setter
    def metatable(self, metatable: Optional["LuaTable"]) -> None:
        state = self._state()
        top = state.get_top()
        try:
            self.push(state)
            if metatable is None:
                state.push_nil()
            else:
                metatable.push(state)
            state.set_metatable(-2)
        finally:
            state.set_top(top)

    def with_metatable(self, metatable: Optional["LuaTable"]) -> "LuaTable":
        self.metatable = metatable
        return self

    def add_range(self, values: Any) -> "LuaTable":
        """Copies a mapping's entries, or appends an iterable's items after the border."""
        if isinstance(values, Mapping):
            for key, value in values.items():
                self[key] = value
            return self
        if not isinstance(values, Iterable):
            raise TypeError(f"cannot add values from {type(values).__name__}")
        position = self.length
        for value in values:
            position += 1
            self[position] = value
        return self


class LuaFunction(LuaObject):
    def call(self, *arguments: Any, nresults: int = MULTRET) -> List[Any]:
        """Calls the function in protected mode and returns every result."""
        return self._translator.call_function(self, arguments, nresults)

    def __call__(self, *arguments: Any) -> List[Any]:
        return self.call(*arguments)


@dataclass
class ResumeResult:
    success: bool
    error: Any = None
    results: List[Any] = field(default_factory=list)


class LuaCoroutine(LuaObject):
    def __init__(self, translator: "ObjectTranslator", ref: int):
        super().__init__(translator, ref)
        self._thread: Optional[LuaState] = None

    @property
    def thread_state(self) -> LuaState:
        if self._thread is None:
            state = self._state()
            top = state.get_top()
            try:
                self.push(state)
                self._thread = state.to_thread(-1)
            finally:
                state.set_top(top)
        return self._thread

    @property
    def status(self) -> CoroutineStatus:
        thread = self.thread_state
        if thread.thread is thread.runtime.current_thread:
            return CoroutineStatus.RUNNING
        code = thread.status()
        if code == YIELD:
            return CoroutineStatus.SUSPENDED
        if code != OK:
            return CoroutineStatus.DEAD
        if thread.get_stack(0) is not None:
            return CoroutineStatus.NORMAL
        return CoroutineStatus.DEAD if thread.get_top() == 0 else CoroutineStatus.SUSPENDED

    def resume(self, *arguments: Any) -> ResumeResult:
        translator = self._translator
        caller = translator.state
        thread = self.thread_state
        if not thread.check_stack(len(arguments)):
            raise InsufficientStackSpace("The stack does not have enough space to fit that many arguments.")
        if thread.status() == OK and thread.get_top() == 0:
            raise DeadCoroutine("Cannot resume a dead coroutine.")
        top = caller.get_top()
        try:
            for argument in arguments:
                translator.push(caller, argument)
            caller.xmove(thread, len(arguments))
            status = thread.resume(len(arguments), caller)
            if status in (OK, YIELD):
                count = thread.get_top()
                if not caller.check_stack(count):
                    thread.set_top(0)
                    raise InsufficientStackSpace("The stack does not have enough space to fit that many results.")
                thread.xmove(caller, count)
                return ResumeResult(True, None, translator.pull_range(caller, top + 1, caller.get_top()))
            thread.xmove(caller, 1)
            error = translator.pull(caller, -1)
            logger.debug("coroutine resume failed with status %s", ThreadStatus(status).name)
            return ResumeResult(False, error, [])
        finally:
            caller.set_top(top)


__all__ = [
    "CoroutineStatus",
    "LuaCoroutine",
    "LuaFunction",
    "LuaObject",
    "LuaTable",
    "ResumeResult",
    "ThreadStatus",
]
