"""Markers and descriptors host classes use to shape what scripts see."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_GLOBALS: List[Tuple[Optional[str], Any]] = []
_EXTENSIONS: List[Callable[..., Any]] = []
_extensions_frozen = False


def _underlying(member: Any) -> Any:
    if isinstance(member, property):
        return member.fget
    if isinstance(member, (staticmethod, classmethod)):
        return member.__func__
    return member


def lua_hide(member: T) -> T:
    """Keeps ``member`` (a function, property, class or event) away from scripts."""
    if isinstance(member, (Event, indexed_property)):
        member.hidden = True
    else:
        setattr(_underlying(member), "__lua_hide__", True)
    return member


def is_hidden(member: Any) -> bool:
    if isinstance(member, (Event, indexed_property)):
        return member.hidden
    target = _underlying(member)
    if isinstance(target, type):
        return target.__dict__.get("__lua_hide__", False)
    return getattr(target, "__lua_hide__", False) is True


def lua_name(name: str) -> Callable[[T], T]:
    """Exposes a method under ``name``; functions sharing a name form one overload group."""

    def decorate(member: T) -> T:
        setattr(_underlying(member), "__lua_name__", name)
        return member

    return decorate


def exposed_name(member: Any, default: str) -> str:
    return getattr(_underlying(member), "__lua_name__", None) or default


def lua_global(target: Any = None, *, name: Optional[str] = None) -> Any:
    """Registers a class or function as a script global of every new engine.

    Usable bare (``@lua_global``) or with a name override
    (``@lua_global(name="vec")``).
    """

    def register(obj: Any) -> Any:
        _GLOBALS.append((name, obj))
        return obj

    if target is None:
        return register
    return register(target)


def registered_globals() -> List[Tuple[str, Any]]:
    return [(name or obj.__name__, obj) for name, obj in _GLOBALS]


def lua_extension(function: Callable[..., Any]) -> Callable[..., Any]:
    """Adds ``function`` to the instance methods of its first parameter's class."""
    if _extensions_frozen:
        logger.warning(
            "extension %s registered after type metadata was built; already cached types will not see it",
            getattr(function, "__qualname__", function),
        )
    _EXTENSIONS.append(function)
    return function


def freeze_extensions() -> Tuple[Callable[..., Any], ...]:
    global _extensions_frozen
    _extensions_frozen = True
    return tuple(_EXTENSIONS)


class Ref(Generic[T]):
    """Cell standing in for a by-reference or out parameter.

    Parameters annotated ``Ref[...]`` take no script argument; the callee
    receives a fresh cell and whatever it stores in ``value`` is returned to
    the script after the regular return value.
    """

    __slots__ = ("value",)

    def __init__(self, value: Optional[T] = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"Ref({self.value!r})"


class BoundEvent:
    """Handler list of one event on one sender."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.handlers: List[Callable[[Any, Any], Any]] = []

    def add(self, handler: Callable[[Any, Any], Any]) -> None:
        self.handlers.append(handler)

    def remove(self, handler: Callable[[Any, Any], Any]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def fire(self, sender: Any, args: Any = None) -> None:
        for handler in list(self.handlers):
            handler(sender, args)

    __call__ = fire

    def __len__(self) -> int:
        return len(self.handlers)


class Event:
    """Declares a ``(sender, args)`` event on a class.

    Instance events keep a separate handler list per object; ``static=True``
    shares one list through the class.
    """

    def __init__(self, *, static: bool = False) -> None:
        self.static = static
        self.hidden = False
        self.name = "event"
        self._shared: Optional[BoundEvent] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if self.static:
            if self._shared is None:
                self._shared = BoundEvent(self.name)
            return self._shared
        if instance is None:
            return self
        slot = f"_event_{self.name}"
        bound = instance.__dict__.get(slot)
        if bound is None:
            bound = BoundEvent(self.name)
            instance.__dict__[slot] = bound
        return bound


class _BoundIndexer:
    __slots__ = ("_descriptor", "_instance")

    def __init__(self, descriptor: "indexed_property", instance: Any) -> None:
        self._descriptor = descriptor
        self._instance = instance

    def __getitem__(self, index: Any) -> Any:
        indices = index if isinstance(index, tuple) else (index,)
        return self._descriptor.get(self._instance, *indices)

    def __setitem__(self, index: Any, value: Any) -> None:
        indices = index if isinstance(index, tuple) else (index,)
        self._descriptor.set(self._instance, value, *indices)


class indexed_property:  # noqa: N801 - reads like ``property``
    """A property taking index arguments: ``obj.cells[1, 2]`` in Python,
    ``obj.cells:get(1, 2)`` and ``obj.cells:set(value, 1, 2)`` in scripts."""

    def __init__(self, fget: Callable[..., Any], fset: Optional[Callable[..., Any]] = None) -> None:
        self.fget = fget
        self.fset = fset
        self.hidden = False
        self.__doc__ = fget.__doc__

    def setter(self, fset: Callable[..., Any]) -> "indexed_property":
        self.fset = fset
        return self

    def get(self, instance: Any, *indices: Any) -> Any:
        return self.fget(instance, *indices)

    def set(self, instance: Any, value: Any, *indices: Any) -> None:
        if self.fset is None:
            raise AttributeError("indexed property has no setter")
        self.fset(instance, *indices, value)

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        return _BoundIndexer(self, instance)


__all__ = [
    "BoundEvent",
    "Event",
    "Ref",
    "exposed_name",
    "freeze_extensions",
    "indexed_property",
    "is_hidden",
    "lua_extension",
    "lua_global",
    "lua_hide",
    "lua_name",
    "registered_globals",
]
