"""Entry point for hosts: one Lua universe plus the object translator."""

from __future__ import annotations

import builtins
import dataclasses
import enum
import importlib
import importlib.util
import inspect
import logging
import pathlib
import sys
import types
from typing import Any, Callable, List, Optional, Union

from luart import hooks
from luart.constants import MULTRET, OK
from luart.hooks import LuaDebug
from luart.runtime import LuaRuntime
from luart.state import LuaState

from .attributes import is_hidden, registered_globals
from .config import EngineOptions
from .errors import LifecycleError, LuaException, LuaScriptException
from .metadata import is_type_descriptor, type_name
from .objects import LuaCoroutine, LuaFunction, LuaTable, ThreadStatus
from .translator import ObjectTranslator

logger = logging.getLogger(__name__)

_DELEGATE_SHIM = "local delegate = ... return function(...) return delegate(...) end"


class EventMask(enum.IntFlag):
    NONE = 0
    CALL = hooks.MASKCALL
    RETURN = hooks.MASKRET
    LINE = hooks.MASKLINE
    COUNT = hooks.MASKCOUNT


class EventCode(enum.IntEnum):
    CALL = hooks.HOOKCALL
    RETURN = hooks.HOOKRET
    LINE = hooks.HOOKLINE
    COUNT = hooks.HOOKCOUNT
    TAIL_CALL = hooks.HOOKTAILCALL


class Engine:
    """A Lua state with host interop.

    Keyword overrides are applied on top of ``options``::

        with Engine(open_libs=True) as lua:
            lua["answer"] = 42
            lua.do_string("return answer + 1")  # [43]
    """

    def __init__(self, options: Optional[EngineOptions] = None, **overrides: Any):
        self.options = dataclasses.replace(options or EngineOptions(), **overrides)
        self.runtime = LuaRuntime(
            open_libs=self.options.open_libs,
            max_stack=self.options.max_stack,
            echo_output=self.options.echo_output,
        )
        self.translator = ObjectTranslator(self.runtime, self.options.handles, self.options.debug_stack_dumps)
        self._closed = False
        self._install_globals()
        logger.debug("engine created with %s", self.options)

    def _install_globals(self) -> None:
        def import_type(name: str, name_override: Optional[str] = None) -> None:
            self.import_type(name, name_override)

        def import_namespace(name: str) -> None:
            self.import_namespace(name)

        def load_module(name: str) -> None:
            self.load_module(name)

        for function in (import_type, import_namespace, load_module):
            self[function.__name__] = self.create_function(function)
        if self.options.register_globals:
            for name, obj in registered_globals():
                if is_type_descriptor(obj):
                    self.import_type(obj, name)
                else:
                    self[name] = self.create_function(obj)

    # ------------------------------------------------------------------ state
    @property
    def state(self) -> LuaState:
        return self.translator.state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def output(self) -> List[str]:
        """Lines written by ``print``."""
        return self.runtime.output

    def _check_open(self) -> None:
        if self._closed:
            raise LifecycleError("The engine has been closed.")

    @staticmethod
    def _check_name(name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Global name must not be null or empty.")

    def __getitem__(self, name: str) -> Any:
        self._check_name(name)
        self._check_open()
        state = self.state
        top = state.get_top()
        try:
            state.get_global(name)
            return self.translator.pull(state, -1)
        finally:
            state.set_top(top)

    def __setitem__(self, name: str, value: Any) -> None:
        self._check_name(name)
        self._check_open()
        state = self.state
        top = state.get_top()
        try:
            self.translator.push(state, value)
            state.set_global(name)
        finally:
            state.set_top(top)

    # ------------------------------------------------------------------ chunks
    def do_string(self, chunk: str, nresults: int = MULTRET, chunk_name: Optional[str] = None) -> List[Any]:
        """Runs ``chunk`` and returns its results."""
        self._check_open()
        state = self.state
        base = state.get_top()
        status = state.load_string(chunk, chunk_name)
        if status != OK:
            message = state.to_string(-1)
            state.set_top(base)
            raise LuaScriptException(f"[{ThreadStatus(status).name}]: {message}")
        return self.translator.protected_call(state, base, 0, nresults)

    def do_file(self, path: Union[str, pathlib.Path], nresults: int = MULTRET) -> List[Any]:
        path = pathlib.Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"File '{path}' does not exist.")
        if path.suffix != ".lua":
            raise LuaException("Cannot execute a non Lua file.")
        source = path.read_text(encoding="utf-8")
        if source.startswith("#"):
            # keep line numbers while dropping the shebang
            source = "--" + source
        return self.do_string(source, nresults, "@" + str(path))

    # ------------------------------------------------------------------ values
    def create_table(self, narr: int = 0, nrec: int = 0) -> LuaTable:
        if narr < 0 or nrec < 0:
            raise ValueError("Table sizes must not be negative.")
        self._check_open()
        state = self.state
        top = state.get_top()
        try:
            state.create_table(narr, nrec)
            return self.translator.pull(state, -1)
        finally:
            state.set_top(top)

    def create_function(self, function: Union[str, Callable[..., Any]]) -> LuaFunction:
        """Compiles a chunk, or wraps a host callable, as a Lua function."""
        self._check_open()
        state = self.state
        top = state.get_top()
        try:
            if isinstance(function, str):
                status = state.load_string(function)
                if status != OK:
                    raise LuaScriptException(
                        "An exception has occurred while creating a function: "
                        f"[{ThreadStatus(status).name}]: {state.to_string(-1)}"
                    )
            else:
                if not callable(function):
                    raise TypeError(f"{type(function).__name__} object is not callable")
                state.load_string(_DELEGATE_SHIM, "=luabridge.delegate")
                self.translator.push(state, function)
                state.call(1, 1)
            return self.translator.pull(state, -1)
        finally:
            state.set_top(top)

    def create_coroutine(self, function: Union[LuaFunction, Callable[..., Any]]) -> LuaCoroutine:
        if not isinstance(function, LuaFunction):
            function = self.create_function(function)
        state = self.state
        top = state.get_top()
        try:
            thread = state.new_thread()
            function.push(state)
            state.xmove(thread, 1)
            return self.translator.pull(state, -1)
        finally:
            state.set_top(top)

    # ------------------------------------------------------------------ host types
    @staticmethod
    def _find_type(name: str) -> Any:
        module_name, _, attribute = name.rpartition(".")
        if module_name:
            try:
                found = getattr(importlib.import_module(module_name), attribute, None)
            except ImportError:
                found = None
            if is_type_descriptor(found):
                return found
        found = getattr(builtins, name, None)
        if isinstance(found, type):
            return found
        for module in list(sys.modules.values()):
            found = getattr(module, name, None)
            if isinstance(found, type) and found.__name__ == name:
                return found
        raise LuaException(f"Type '{name}' could not be found.")

    def import_type(self, descriptor: Any, name_override: Optional[str] = None) -> Any:
        """Publishes a class (or its dotted name) as a global."""
        if isinstance(descriptor, str):
            descriptor = self._find_type(descriptor)
        if not is_type_descriptor(descriptor):
            raise LuaException(f"'{descriptor!r}' is not a type.")
        self[name_override or type_name(descriptor)] = descriptor
        return descriptor

    def import_namespace(self, module: Union[str, types.ModuleType]) -> List[str]:
        """Publishes every public class defined in ``module``."""
        if isinstance(module, str):
            try:
                module = importlib.import_module(module)
            except ImportError as exc:
                raise LuaException(f"Namespace '{module}' could not be found.") from exc
        imported = []
        for name, value in vars(module).items():
            if (
                inspect.isclass(value)
                and value.__module__ == module.__name__
                and not name.startswith("_")
                and not is_hidden(value)
            ):
                self.import_type(value, name)
                imported.append(name)
        logger.debug("imported %d types from %s", len(imported), module.__name__)
        return imported

    def load_module(self, name: Union[str, pathlib.Path]) -> types.ModuleType:
        """Imports a module by name or from a ``.py`` path so its types can be imported."""
        path = pathlib.Path(name)
        if path.suffix == ".py":
            if not path.is_file():
                raise FileNotFoundError(f"File '{path}' does not exist.")
            spec = importlib.util.spec_from_file_location(path.stem, path)
            if spec is None or spec.loader is None:
                raise LuaException(f"Module '{path}' could not be loaded.")
            module = importlib.util.module_from_spec(spec)
            sys.modules[path.stem] = module
            spec.loader.exec_module(module)
            return module
        try:
            return importlib.import_module(str(name))
        except ImportError as exc:
            raise LuaException(f"Module '{name}' could not be loaded.") from exc

    # ------------------------------------------------------------------ hooks and lifecycle
    def add_hook(self, hook: Callable[[LuaState, LuaDebug], Any], mask: EventMask, count: int = 0) -> None:
        """Installs ``hook(state, debug)`` for the events in ``mask``.

        Hooks are global to the engine: they fire for coroutines too.
        """
        if hook is None:
            raise ValueError("Hook must not be null.")
        self._check_open()
        self.state.set_hook(hook, int(mask), count)

    def remove_hook(self) -> None:
        self.state.set_hook(None, 0)

    def collect_garbage(self) -> None:
        self._check_open()
        self.state.gc()
        self.translator.drain(self.state)

    def close(self) -> None:
        """Runs outstanding finalizers once and releases the state."""
        if self._closed:
            return
        self._closed = True
        self.runtime.close()
        self.translator.close()
        logger.debug("engine closed")

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["Engine", "EventCode", "EventMask"]
