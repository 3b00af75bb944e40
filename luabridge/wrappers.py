"""Host objects handed to scripts in place of events and indexed properties."""

from __future__ import annotations

import logging
import weakref
from typing import Any, Dict

from .attributes import BoundEvent
from .metadata import Member, owner_class
from .objects import LuaFunction

logger = logging.getLogger(__name__)

# handlers registered from scripts, per bound event
_REGISTRATIONS: "weakref.WeakKeyDictionary[BoundEvent, Dict[LuaFunction, FunctionWrapper]]" = weakref.WeakKeyDictionary()


class FunctionWrapper:
    """Adapts a Lua function to the ``(sender, args)`` handler shape."""

    def __init__(self, function: LuaFunction):
        self.function = function

    def __call__(self, sender: Any, args: Any = None) -> None:
        self.function.call(sender, args)


class EventWrapper:
    def __init__(self, instance: Any, member: Member):
        self.name = member.name
        self._event: BoundEvent
        if member.static:
            self._event = member.descriptor.__get__(None, owner_class(instance))
        else:
            self._event = member.descriptor.__get__(instance, type(instance))

    def register(self, function: LuaFunction) -> None:
        """Adds ``function`` as a handler; registering it twice has no effect."""
        handlers = _REGISTRATIONS.setdefault(self._event, {})
        if function in handlers:
            return
        wrapper = FunctionWrapper(function)
        handlers[function] = wrapper
        self._event.add(wrapper)
        logger.debug("registered script handler on event %s", self.name)

    def deregister(self, function: LuaFunction) -> None:
        handlers = _REGISTRATIONS.get(self._event)
        wrapper = handlers.pop(function, None) if handlers else None
        if wrapper is not None:
            self._event.remove(wrapper)

    def __str__(self) -> str:
        return f"event {self.name}"


class IndexerWrapper:
    """``get(...)``/``set(value, ...)`` access to an indexed property."""

    def __init__(self, instance: Any, member: Member):
        self._instance = instance
        self._member = member

    def get(self, *indices: Any) -> Any:
        descriptor = self._member.descriptor
        if descriptor is None:
            return self._instance[indices[0] if len(indices) == 1 else indices]
        return descriptor.get(self._instance, *indices)

    def set(self, value: Any, *indices: Any) -> None:
        descriptor = self._member.descriptor
        if descriptor is None:
            self._instance[indices[0] if len(indices) == 1 else indices] = value
        else:
            descriptor.set(self._instance, value, *indices)

    def __str__(self) -> str:
        return f"indexer {self._member.name}"


__all__ = ["EventWrapper", "FunctionWrapper", "IndexerWrapper"]
