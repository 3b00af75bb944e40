from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, TYPE_CHECKING

from .bytecode_vm import BytecodeVM, LuaYield
from .constants import ERRRUN
from .values import LuaFunction
from .vm_errors import VMRuntimeError

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .runtime import LuaRuntime

logger = logging.getLogger(__name__)


@dataclass
class ResumeResult:
    success: bool
    values: List[object]
    error: Optional[VMRuntimeError] = None


class LuaThread:
    """A Lua thread: its own VM, call stack and C-API stack.

    ``status`` is one of ``"running"``, ``"suspended"``, ``"normal"`` or
    ``"dead"``, the strings ``coroutine.status`` reports.
    """

    lua_type_name = "thread"

    def __init__(self, runtime: "LuaRuntime", function: object = None, *, is_main: bool = False):
        from .state import LuaState

        self.runtime = runtime
        self.function = function
        self.is_main = is_main
        self.status = "running" if is_main else "suspended"
        self.started = is_main
        self.error_status: Optional[int] = None
        self.vm = BytecodeVM(runtime, self)
        self.state = LuaState(runtime, self)
        if function is not None:
            # the body waits on the thread stack until the first resume
            self.state.stack.append(function)
        self._native_pending = False

    def resume(self, args: Sequence[object]) -> ResumeResult:
        if self.status == "dead":
            return ResumeResult(False, ["cannot resume dead coroutine"])
        if self.status != "suspended":
            return ResumeResult(False, ["cannot resume non-suspended coroutine"])
        if not self.started and self.function is None:
            return ResumeResult(False, ["cannot resume dead coroutine"])

        runtime = self.runtime
        previous = runtime.current_thread
        previous.status = "normal"
        runtime.current_thread = self
        self.status = "running"
        logger.debug("resuming %r with %d argument(s)", self, len(args))
        try:
            values = self._run(list(args))
        except VMRuntimeError as exc:
            self.status = "dead"
            self.error_status = ERRRUN
            logger.debug("%r died with error: %s", self, exc)
            return ResumeResult(False, [exc.value], exc)
        finally:
            runtime.current_thread = previous
            previous.status = "running"
        return ResumeResult(True, values)

    def _run(self, args: List[object]) -> List[object]:
        vm = self.vm
        if not self.started:
            self.started = True
            self.state.stack.clear()
            try:
                func, args = vm._resolve_call(self.function, args)
                if isinstance(func, LuaFunction):
                    vm._activate(func, args)
                    return self._finish(vm.run())
                result = vm._call_native(func, args)
            except VMRuntimeError:
                raise
            except Exception as exc:
                raise vm._wrap_runtime_error(exc) from exc
            if isinstance(result, LuaYield):
                self._native_pending = True
                self.status = "suspended"
                return list(result.values)
            self.status = "dead"
            return vm._coerce_call_result(result)
        if self._native_pending:
            # a native body that yielded once returns the resume arguments
            self._native_pending = False
            self.status = "dead"
            return args
        vm.prepare_resume(args)
        return self._finish(vm.run())

    def _finish(self, outcome: str) -> List[object]:
        if outcome == "yield":
            self.status = "suspended"
            return list(self.vm.yield_values)
        self.status = "dead"
        return list(self.vm.last_return)

    @property
    def is_yieldable(self) -> bool:
        return self.vm.is_yieldable

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        kind = "main" if self.is_main else self.status
        return f"<LuaThread {kind} 0x{id(self):08x}>"


__all__ = ["LuaThread", "ResumeResult"]
