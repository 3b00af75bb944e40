"""Moves values between Python and the Lua stack and dispatches metamethods.

Host objects travel to scripts as userdata holding a :class:`Handle`; the
userdata metatables registered here route member access, calls and
arithmetic back to the host. Lua tables, functions and threads travel to the
host as registry-anchored proxies.
"""

from __future__ import annotations

import functools
import logging
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional, Sequence

from luart.constants import (
    MULTRET,
    OK,
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
)
from luart.runtime import LuaRuntime
from luart.state import LuaState
from luart.vm_errors import VMRuntimeError

from .coercion import coerce
from .debugging import dump_stack
from .errors import (
    HostInvocationError,
    InsufficientStackSpace,
    InvalidTypeArgument,
    LuaException,
    LuaScriptException,
    NoMatchingOverload,
    OperatorNotSupported,
    ReadOnlyMember,
    StackImbalance,
    UnknownMember,
    UnsupportedValueKind,
)
from .handles import OBJECT_HANDLES, Handle, HandleTable
from .metadata import (
    Member,
    MemberKind,
    callable_signature,
    constructor_signatures,
    is_abstract,
    is_open_generic,
    is_type_descriptor,
    metadata_for,
    owner_class,
    type_name,
)
from .objects import LuaCoroutine, LuaFunction, LuaObject, LuaTable, ThreadStatus
from .overloads import Candidate, leading_type_arguments, resolve, resolve_generic, satisfies
from .wrappers import EventWrapper, IndexerWrapper

logger = logging.getLogger(__name__)

OBJECT_METATABLE = "luabridge.object"
CLASS_METATABLE = "luabridge.class"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# memoizes cacheable __index results per userdata; weak keys let userdata die
_INDEX_CACHE = """
local cache = ...
return function(index)
    return function(object, key)
        local members = cache[object]
        if members == nil then
            members = {}
            cache[object] = members
        else
            local cached = members[key]
            if cached ~= nil then
                return cached
            end
        end
        local value, cacheable = index(object, key)
        if cacheable then
            members[key] = value
        end
        return value
    end
end
"""

_ARITHMETIC = {
    "__add": ("__add__", "__radd__", "+"),
    "__sub": ("__sub__", "__rsub__", "-"),
    "__mul": ("__mul__", "__rmul__", "*"),
    "__div": ("__truediv__", "__rtruediv__", "/"),
}

_PROXIES = {TTABLE: LuaTable, TFUNCTION: LuaFunction, TTHREAD: LuaCoroutine}


def _invoke(context: str, function: Callable[..., Any], *args: Any) -> Any:
    try:
        return function(*args)
    except VMRuntimeError:
        raise
    except Exception as exc:
        raise HostInvocationError(context, exc) from exc


def describe_error(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ObjectTranslator:
    def __init__(self, runtime: LuaRuntime, handles: Optional[HandleTable] = None, debug_stack_dumps: bool = False):
        self.runtime = runtime
        self.handles = handles if handles is not None else OBJECT_HANDLES
        self.debug_stack_dumps = debug_stack_dumps
        self.closed = False
        self._released: List[int] = []
        self._register_metatables(runtime.state)

    @property
    def state(self) -> LuaState:
        """The stack of the thread currently running."""
        return self.runtime.state

    # ------------------------------------------------------------------ metatables
    def _register_metatables(self, state: LuaState) -> None:
        top = state.get_top()
        status = state.load_string(_INDEX_CACHE, "=luabridge.index")
        if status != OK:
            message = state.to_string(-1)
            state.set_top(top)
            raise LuaScriptException(f"[{ThreadStatus(status).name}]: {message}")
        state.new_table()
        state.new_table()
        state.push_string("k")
        state.set_field(-2, "__mode")
        state.set_metatable(-2)
        state.call(1, 1)
        factory = state.get_top()
        object_events: Dict[str, Callable[[LuaState], int]] = {
            "__gc": self._collect,
            "__tostring": self._tostring,
            "__index": self._object_index,
            "__newindex": self._object_newindex,
            "__call": self._object_call,
            "__unm": self._negate,
        }
        for event, (forward, reverse, symbol) in _ARITHMETIC.items():
            object_events[event] = functools.partial(self._arithmetic, forward, reverse, symbol)
        class_events = {
            "__gc": self._collect,
            "__tostring": self._tostring,
            "__index": self._class_index,
            "__newindex": self._class_newindex,
            "__call": self._class_call,
        }
        for name, events in ((OBJECT_METATABLE, object_events), (CLASS_METATABLE, class_events)):
            state.new_metatable(name)
            for event, handler in events.items():
                if event == "__index":
                    state.push_value(factory)
                    state.push_cfunction(self._entry(handler, event), f"{name}.{event}")
                    state.call(1, 1)
                else:
                    state.push_cfunction(self._entry(handler, event), f"{name}.{event}")
                state.set_field(-2, event)
            state.pop(1)
        state.set_top(top)

    def _entry(self, handler: Callable[[LuaState], int], event: str) -> Callable[[LuaState], int]:
        """Runs a dispatch handler, raising host failures as script errors."""

        def entry(state: LuaState) -> int:
            if self.debug_stack_dumps:
                dump_stack(state, event)
            try:
                return handler(state)
            except VMRuntimeError:
                raise
            except Exception as exc:
                logger.debug("%s raised %s", event, type(exc).__name__)
                self.push(state, exc)
                state.error()

        entry.__name__ = event
        return entry

    # ------------------------------------------------------------------ push / pull
    def drain(self, state: LuaState) -> None:
        while self._released:
            state.unref(REGISTRYINDEX, self._released.pop())

    def release(self, ref: int) -> None:
        if not self.closed:
            self._released.append(ref)

    def push(self, state: LuaState, value: Any) -> None:
        self.drain(state)
        if value is None:
            state.push_nil()
        elif isinstance(value, LuaObject):
            if value._translator is not self:
                raise LuaException("Attempt to push a Lua object that belongs to another engine.")
            value.push(state)
        elif isinstance(value, bool):
            state.push_boolean(value)
        elif isinstance(value, int):
            if not _INT64_MIN <= value <= _INT64_MAX:
                raise UnsupportedValueKind(f"Integer {value} does not fit in 64 bits.")
            state.push_integer(int(value))
        elif isinstance(value, float):
            state.push_number(value)
        elif isinstance(value, str):
            state.push_string(str(value))
        elif isinstance(value, (Decimal, Fraction, complex)):
            raise UnsupportedValueKind(f"Values of type {type(value).__name__} cannot be pushed.")
        elif is_type_descriptor(value):
            self._push_userdata(state, value, CLASS_METATABLE)
        else:
            self._push_userdata(state, value, OBJECT_METATABLE)

    def _push_userdata(self, state: LuaState, value: Any, metatable: str) -> None:
        state.new_userdata(self.handles.pin(value))
        state.get_field(REGISTRYINDEX, metatable)
        state.set_metatable(-2)

    def pull(self, state: LuaState, index: int) -> Any:
        self.drain(state)
        kind = state.type_of(index)
        if kind == TNONE:
            raise LuaException("Invalid type.")
        if kind == TNIL:
            return None
        if kind == TBOOLEAN:
            return state.to_boolean(index)
        if kind == TNUMBER:
            return state.to_integer(index) if state.is_integer(index) else state.to_number(index)
        if kind == TSTRING:
            return state.to_string(index)
        if kind == TUSERDATA:
            block = state.to_userdata(index)
            return self.handles.resolve(block) if isinstance(block, Handle) else None
        proxy = _PROXIES.get(kind)
        if proxy is None:
            return None
        state.push_value(index)
        return proxy(self, state.ref(REGISTRYINDEX))

    def pull_range(self, state: LuaState, start: int, end: int) -> List[Any]:
        return [self.pull(state, index) for index in range(start, end + 1)]

    def _target(self, state: LuaState, index: int) -> Any:
        block = state.to_userdata(index)
        return self.handles.resolve(block) if isinstance(block, Handle) else None

    # ------------------------------------------------------------------ protected calls
    def script_error(self, exc: VMRuntimeError) -> LuaScriptException:
        inner = exc.value if isinstance(exc.value, BaseException) else None
        return LuaScriptException(str(exc), inner, exc.frames)

    def call_function(self, function: LuaObject, arguments: Sequence[Any], nresults: int = MULTRET) -> List[Any]:
        state = self.state
        base = state.get_top()
        if not state.check_stack(len(arguments) + 1):
            raise InsufficientStackSpace("The stack does not have enough space to allocate that many arguments.")
        try:
            function.push(state)
            for argument in arguments:
                self.push(state, argument)
        except Exception:
            state.set_top(base)
            raise
        return self.protected_call(state, base, len(arguments), nresults)

    def protected_call(self, state: LuaState, base: int, nargs: int, nresults: int = MULTRET) -> List[Any]:
        """Calls the function at ``base + 1`` and pops it with its results."""
        status = state.pcall(nargs, nresults)
        if state.get_top() < base or (status != OK and state.get_top() == base):
            raise StackImbalance("A protected call left fewer values on the stack than it started with.")
        try:
            if status != OK:
                value = self.pull(state, -1)
                frames = state.last_error.frames if state.last_error is not None else ()
                raise LuaScriptException(
                    f"An exception has occurred while calling a function: "
                    f"[{ThreadStatus(status).name}]: {describe_error(value)}",
                    value if isinstance(value, BaseException) else None,
                    frames,
                )
            return self.pull_range(state, base + 1, state.get_top())
        finally:
            state.set_top(base)

    def close(self) -> None:
        self.closed = True
        self._released.clear()

    # ------------------------------------------------------------------ member access
    def _object_index(self, state: LuaState) -> int:
        target = self._target(state, 1)
        if target is None:
            raise LuaException("Attempt to index a null object.")
        return self._index(state, target, metadata_for(type(target)).member, True)

    def _class_index(self, state: LuaState) -> int:
        descriptor = self._target(state, 1)
        if descriptor is None:
            raise LuaException("Attempt to index a null object.")
        if is_abstract(descriptor):
            raise LuaException("Attempt to index an abstract class or interface.")
        return self._index(state, descriptor, metadata_for(descriptor).member, False)

    def _lookup(self, state: LuaState, find: Callable[[str, bool], Member], instance: bool) -> Member:
        name = state.to_string(2)
        member = find(name, instance) if name is not None else None
        if member is None:
            raise UnknownMember(f"Attempt to index invalid member '{name}'.")
        return member

    def _owner(self, target: Any, instance: bool) -> Any:
        return target if instance else owner_class(target)

    def _index(self, state: LuaState, target: Any, find: Callable[[str, bool], Member], instance: bool) -> int:
        member = self._lookup(state, find, instance)
        kind = member.kind
        if kind is MemberKind.EVENT:
            self.push(state, EventWrapper(target, member))
            cacheable = False
        elif kind is MemberKind.FIELD:
            value = _invoke(
                "An exception has occurred while reading a field", getattr, self._owner(target, instance), member.attribute
            )
            self.push(state, value)
            cacheable = member.constant
        elif kind is MemberKind.METHOD:
            first = 2 if instance else 1

            def method(state: LuaState) -> int:
                return self._call_method(state, target, member, first)

            state.push_cfunction(self._entry(method, member.name), member.name)
            cacheable = True
        elif kind is MemberKind.PROPERTY:
            if member.indexed:
                self.push(state, IndexerWrapper(target, member))
                cacheable = False
            elif not member.readable:
                raise LuaException("Attempt to access a property without a valid getter.")
            else:
                value = _invoke(
                    "An exception has occurred while reading a property", getattr, target, member.attribute
                )
                self.push(state, value)
                cacheable = member.read_only
        else:
            self.push(state, member.descriptor)
            cacheable = True
        state.push_boolean(cacheable)
        return 2

    def _object_newindex(self, state: LuaState) -> int:
        target = self._target(state, 1)
        if target is None:
            raise LuaException("Attempt to index a null object.")
        return self._newindex(state, target, metadata_for(type(target)).member, True)

    def _class_newindex(self, state: LuaState) -> int:
        descriptor = self._target(state, 1)
        if descriptor is None:
            raise LuaException("Attempt to index a null object.")
        if is_abstract(descriptor):
            raise LuaException("Attempt to index an abstract class or interface.")
        return self._newindex(state, descriptor, metadata_for(descriptor).member, False)

    def _newindex(self, state: LuaState, target: Any, find: Callable[[str, bool], Member], instance: bool) -> int:
        member = self._lookup(state, find, instance)
        value = self.pull(state, 3)
        kind = member.kind
        if kind is MemberKind.EVENT:
            raise ReadOnlyMember("Attempt to set an event.")
        if kind is MemberKind.METHOD:
            raise ReadOnlyMember("Attempt to set a method.")
        if kind is MemberKind.NESTED:
            raise ReadOnlyMember("Attempt to set a nested type.")
        if kind is MemberKind.FIELD:
            if member.constant:
                raise ReadOnlyMember("Attempt to set a constant.")
            value = coerce(member.annotation, value, "Attempt to set field to invalid value.")
            _invoke(
                "An exception has occurred while setting a field",
                setattr,
                self._owner(target, instance),
                member.attribute,
                value,
            )
            return 0
        if member.indexed:
            raise ReadOnlyMember("Attempt to set an indexed property. Use a :set(value, ...) call instead.")
        if member.read_only:
            raise ReadOnlyMember("Attempt to set a read-only property.")
        value = coerce(member.annotation, value, "Attempt to set property to invalid value.")
        _invoke("An exception has occurred while setting a property", setattr, target, member.attribute, value)
        return 0

    # ------------------------------------------------------------------ calls
    def _push_results(self, state: LuaState, candidate: Candidate, result: Any) -> int:
        count = 0
        if not candidate.signature.returns_none:
            self.push(state, result)
            count += 1
        for cell in candidate.refs:
            self.push(state, cell.value)
            count += 1
        return count

    def _call_method(self, state: LuaState, target: Any, member: Member, first: int) -> int:
        arguments = self.pull_range(state, first, state.get_top())
        if not member.signatures:
            raise UnknownMember(f"Attempt to call invalid method '{member.name}'.")
        candidate = resolve(member.signatures, arguments)
        if candidate is None:
            candidate = resolve_generic(member.signatures, arguments)
        result = _invoke("An exception has occurred while executing a host method", candidate.invoke, target)
        return self._push_results(state, candidate, result)

    def _class_call(self, state: LuaState) -> int:
        descriptor = self._target(state, 1)
        if descriptor is None:
            raise LuaException("Attempt to call a nil object.")
        if is_abstract(descriptor):
            raise LuaException("Attempt to create an instance of an abstract class or an interface.")
        arguments = self.pull_range(state, 2, state.get_top())
        if is_open_generic(descriptor):
            self.push(state, self._close_generic(descriptor, arguments))
            return 1
        candidate = resolve(constructor_signatures(descriptor), arguments)
        if candidate is None:
            raise NoMatchingOverload(
                f"Type {type_name(descriptor)} does not contain a constructor that contains the provided arguments."
            )
        instance = _invoke("An exception has occurred while constructing a type", candidate.invoke, descriptor)
        self.push(state, instance)
        return 1

    @staticmethod
    def _close_generic(descriptor: Any, arguments: List[Any]) -> Any:
        parameters = descriptor.__parameters__
        supplied = leading_type_arguments(arguments[: len(parameters)])
        if len(supplied) < len(parameters):
            raise InvalidTypeArgument("Attempt to construct a generic type with a non-type argument.")
        if any(is_open_generic(argument) for argument in supplied):
            raise InvalidTypeArgument("Attempt to construct a generic type with an invalid type argument.")
        constraints = (
            "An error has occurred while constructing a generic type: "
            "generic type arguments do not satisfy the type constraints."
        )
        if not all(satisfies(variable, argument) for variable, argument in zip(parameters, supplied)):
            raise InvalidTypeArgument(constraints)
        try:
            return descriptor[tuple(supplied)]
        except TypeError as exc:
            raise InvalidTypeArgument(constraints) from exc

    def _object_call(self, state: LuaState) -> int:
        target = self._target(state, 1)
        if target is None:
            raise LuaException("Attempt to call a nil object.")
        if not callable(target):
            raise LuaException("Attempt to call a non-delegate.")
        arguments = self.pull_range(state, 2, state.get_top())
        signature = callable_signature(target)
        parameters = list(signature.parameters)
        bound = []
        for position, argument in enumerate(arguments):
            if position < len(parameters):
                param = parameters[position]
            elif parameters and parameters[-1].variadic:
                param = parameters[-1]
            else:
                raise NoMatchingOverload("Attempt to call a delegate with too many arguments.")
            bound.append(coerce(param.annotation, argument, "Attempt to call a delegate with invalid arguments."))
        result = _invoke("An exception has occurred while executing a host delegate", target, *bound)
        if signature.returns_none:
            return 0
        self.push(state, result)
        return 1

    # ------------------------------------------------------------------ operators
    def _arithmetic(self, forward: str, reverse: str, symbol: str, state: LuaState) -> int:
        left = self.pull(state, 1)
        right = self.pull(state, 2)
        if left is None and right is None:
            raise LuaException("Cannot perform arithmetic operations on nil objects.")
        for operand, other, name in ((left, right, forward), (right, left, reverse)):
            if operand is None or is_type_descriptor(operand):
                continue
            candidate = resolve(metadata_for(type(operand)).operator(name), [other])
            if candidate is None:
                continue
            result = _invoke(
                "An exception has occurred while executing an operator method", candidate.invoke, operand
            )
            if result is NotImplemented:
                continue
            self.push(state, result)
            return 1
        raise OperatorNotSupported(
            f"Attempt to perform an arithmetic operation on operands that do not overload the '{symbol}' operator."
        )

    def _negate(self, state: LuaState) -> int:
        operand = self.pull(state, 1)
        if operand is None:
            raise LuaException("Cannot perform negation on a nil object.")
        candidate = resolve(metadata_for(type(operand)).operator("__neg__"), [])
        result = NotImplemented
        if candidate is not None:
            result = _invoke(
                "An exception has occurred while executing an operator method", candidate.invoke, operand
            )
        if result is NotImplemented:
            raise OperatorNotSupported(
                "Attempt to perform negation on an object that does not overload the negation operator."
            )
        self.push(state, result)
        return 1

    # ------------------------------------------------------------------ lifetime and display
    def _tostring(self, state: LuaState) -> int:
        target = self._target(state, 1)
        if target is None:
            state.push_nil()
        else:
            state.push_string(_invoke("An exception has occurred while executing a host method", str, target))
        return 1

    def _collect(self, state: LuaState) -> int:
        block = state.to_userdata(1)
        if isinstance(block, Handle):
            self.handles.unpin(block)
        return 0


__all__ = ["CLASS_METATABLE", "OBJECT_METATABLE", "ObjectTranslator", "describe_error"]
