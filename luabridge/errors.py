"""Exception taxonomy of the bridge.

Every exception raised by the bridge derives from :class:`LuaException`.
Resolution and coercion failures raised inside a dispatch handler are turned
into script-level errors; the host sees them again, wrapped in
:class:`LuaScriptException`, only when the script does not catch them.
"""

from __future__ import annotations

import traceback
from typing import Any, Optional, Sequence


class LuaException(Exception):
    """Base class of every bridge error."""


class LuaScriptException(LuaException):
    """A script failed to load or to run.

    ``inner_exception`` is set when the script error value was a host
    exception object; ``frames`` holds the Lua traceback when one is known.
    """

    def __init__(self, message: str, inner_exception: Optional[BaseException] = None, frames: Sequence[Any] = ()):
        super().__init__(message)
        self.inner_exception = inner_exception
        self.frames = list(frames)


class ProtocolError(LuaException):
    pass


class StackImbalance(ProtocolError):
    pass


class InsufficientStackSpace(ProtocolError):
    pass


class ResolutionError(LuaException):
    pass


class UnknownMember(ResolutionError):
    pass


class NoMatchingOverload(ResolutionError):
    pass


class InvalidTypeArgument(ResolutionError):
    pass


class OperatorNotSupported(ResolutionError):
    pass


class ReadOnlyMember(ResolutionError):
    pass


class CoercionError(LuaException):
    pass


class TypeMismatch(CoercionError):
    pass


class UnsupportedValueKind(CoercionError):
    pass


class HostInvocationError(LuaException):
    """An invoked host member raised; the message carries the host traceback."""

    def __init__(self, context: str, exc: BaseException):
        details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        super().__init__(f"{context}: {details}")
        self.context = context
        self.__cause__ = exc


class LifecycleError(LuaException):
    pass


class DeadCoroutine(LifecycleError):
    pass


__all__ = [
    "CoercionError",
    "DeadCoroutine",
    "HostInvocationError",
    "InsufficientStackSpace",
    "InvalidTypeArgument",
    "LifecycleError",
    "LuaException",
    "LuaScriptException",
    "NoMatchingOverload",
    "OperatorNotSupported",
    "ProtocolError",
    "ReadOnlyMember",
    "ResolutionError",
    "StackImbalance",
    "TypeMismatch",
    "UnknownMember",
    "UnsupportedValueKind",
]
