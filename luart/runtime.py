from __future__ import annotations

import itertools
import logging
import pathlib
import sys
import weakref
from typing import Callable, List, Optional, Sequence

from .bytecode import Prototype
from .compiler import LuaCompiler
from .constants import MAX_C_CALLS, MAX_CALL_DEPTH, MAXSTACK, RIDX_GLOBALS, RIDX_MAINTHREAD
from .coroutines import LuaThread
from .hooks import MASKCOUNT, LuaDebug
from .parser import LuaParser
from .table import LuaTable
from .values import LuaFunction, Userdata
from .vm_errors import VMRuntimeError

logger = logging.getLogger(__name__)

_CHUNK_ID_SIZE = 60


def chunk_id(chunk_name: Optional[str], source: str) -> str:
    """Display name of a chunk as used in error positions."""
    if chunk_name is not None and chunk_name[:1] in ("=", "@"):
        return chunk_name[1:]
    text = source if chunk_name is None else chunk_name
    first_line = text.split("\n", 1)[0]
    if len(first_line) > _CHUNK_ID_SIZE or first_line != text:
        first_line = first_line[:_CHUNK_ID_SIZE] + "..."
    return f'[string "{first_line}"]'


def compile_source(source: str, *, source_name: str = "<stdin>") -> Prototype:
    chunk = LuaParser.parse(source, source_name)
    return LuaCompiler.compile_chunk(chunk, source_name=source_name)


class LuaRuntime:
    """Global state shared by every thread of one Lua universe."""

    def __init__(
        self,
        *,
        open_libs: bool = True,
        max_call_depth: int = MAX_CALL_DEPTH,
        max_c_calls: int = MAX_C_CALLS,
        max_stack: int = MAXSTACK,
        echo_output: bool = False,
    ):
        self.max_call_depth = max_call_depth
        self.max_c_calls = max_c_calls
        self.max_stack = max_stack
        self.echo_output = echo_output
        self.globals = LuaTable()
        self.registry = LuaTable()
        self.string_metatable: Optional[LuaTable] = None
        self.hook: Optional[Callable] = None
        self.hook_mask = 0
        self.hook_count = 0
        self.pending_finalizers: List[Userdata] = []
        self._finalizable: "weakref.WeakValueDictionary[int, Userdata]" = weakref.WeakValueDictionary()
        self._serial = itertools.count()
        self.closed = False
        self.finalizing = False
        self.output: List[str] = []
        self.main_thread = LuaThread(self, is_main=True)
        self.current_thread = self.main_thread
        self.registry.raw_set(RIDX_MAINTHREAD, self.main_thread)
        self.registry.raw_set(RIDX_GLOBALS, self.globals)
        if open_libs:
            from .stdlib import install_stdlib

            install_stdlib(self)

    @property
    def state(self):
        return self.current_thread.state

    # ------------------------------------------------------------------ chunks
    def load(self, source: str, chunk_name: Optional[str] = None) -> LuaFunction:
        proto = compile_source(source, source_name=chunk_id(chunk_name, source))
        return LuaFunction(proto)

    def call(self, function, args: Sequence[object] = ()) -> List[object]:
        return self.current_thread.vm.call_callable(function, args)

    def execute(self, source: str, chunk_name: Optional[str] = None, args: Sequence[object] = ()) -> List[object]:
        return self.call(self.load(source, chunk_name), args)

    def execute_file(self, path: str) -> List[object]:
        data = pathlib.Path(path).read_text(encoding="utf-8")
        if data.startswith("#"):
            # skip a shebang line but keep line numbers
            data = "--" + data
        return self.execute(data, "@" + str(path))

    def write(self, text: str) -> None:
        self.output.append(text)
        if self.echo_output:
            sys.stdout.write(text + "\n")

    # ------------------------------------------------------------------ hooks
    def set_hook(self, hook: Optional[Callable], mask: int, count: int = 0) -> None:
        if hook is None or mask == 0:
            self.hook, self.hook_mask, self.hook_count = None, 0, 0
            return
        if count <= 0:
            mask &= ~MASKCOUNT
        self.hook = hook
        self.hook_mask = mask
        self.hook_count = max(count, 0)
        logger.debug("hook installed with mask %d count %d", mask, count)

    def dispatch_hook(self, vm, event: int, line: int, native: object = None) -> None:
        if native is not None:
            ar = LuaDebug(event, name=getattr(native, "name", None), what="C", source="=[C]", short_src="[C]")
        else:
            ar = vm.debug_info(0) or LuaDebug(event)
            ar.event = event
        if line >= 0:
            ar.currentline = line
        self.hook(vm.thread.state, ar)

    # ------------------------------------------------------------------ finalizers
    def track_finalizer(self, udata: Userdata) -> None:
        self._finalizable[next(self._serial)] = udata

    def run_finalizers(self, vm=None) -> None:
        if self.finalizing:
            return
        vm = vm or self.current_thread.vm
        self.finalizing = True
        try:
            while self.pending_finalizers:
                self._finalize(self.pending_finalizers.pop(0), vm)
        finally:
            self.finalizing = False

    def _finalize(self, udata: Userdata, vm) -> None:
        if udata.finalized:
            return
        udata.finalized = True
        metatable = udata.metatable
        handler = metatable.raw_get("__gc") if metatable is not None else None
        if handler is None:
            return
        logger.debug("finalizing %r", udata)
        try:
            vm.call_callable(handler, [udata])
        except VMRuntimeError as exc:
            logger.warning("error in __gc metamethod (%s)", exc)

    def close(self) -> None:
        """Runs every outstanding finalizer once and marks the runtime closed."""
        if self.closed:
            return
        vm = self.main_thread.vm
        self.run_finalizers(vm)
        remaining = [self._finalizable.get(key) for key in sorted(self._finalizable.keys(), reverse=True)]
        self.finalizing = True
        try:
            for udata in remaining:
                if udata is not None:
                    self._finalize(udata, vm)
        finally:
            self.finalizing = False
        self._finalizable.clear()
        self.closed = True
        logger.debug("runtime closed")


def run_source(source: str, *, chunk_name: Optional[str] = None, runtime: Optional[LuaRuntime] = None) -> List[object]:
    """Runs ``source`` on ``runtime`` (a fresh one by default) and returns its results."""
    runtime = runtime or LuaRuntime()
    return runtime.execute(source, chunk_name)


__all__ = ["LuaRuntime", "chunk_id", "compile_source", "run_source"]
