"""Conversion of pulled script values to annotated host parameter types."""

from __future__ import annotations

import collections.abc
import math
import types
import typing
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Optional, Tuple, TypeVar

from .errors import TypeMismatch
from .metadata import EMPTY
from .objects import LuaTable

_UNIONS = (typing.Union, types.UnionType)
_NONE_TYPE = type(None)
_SEQUENCES = (list, tuple, collections.abc.Sequence, collections.abc.MutableSequence, collections.abc.Iterable)

Coerced = Tuple[bool, Any]


def _parse_number(target: type, text: str) -> Coerced:
    text = text.strip()
    try:
        if target is Decimal:
            value = Decimal(text)
            return (True, value) if value.is_finite() else (False, text)
        if target is float:
            value = float(text)
            return (True, value) if math.isfinite(value) else (False, text)
        if target is Fraction:
            return True, Fraction(text)
        return True, int(text, 0) if text[:2].lower() in ("0x", "0o", "0b") else int(text)
    except (ValueError, ArithmeticError, InvalidOperation):
        return False, text


def _coerce_number(target: type, value: Any) -> Coerced:
    if isinstance(value, bool):
        return False, value
    if isinstance(value, float):
        if target is float:
            return True, value
        if target is Decimal:
            return True, Decimal(repr(value))
        return False, value
    if issubclass(target, int) and target is not bool:
        try:
            return True, value if target is int else target(value)
        except (ValueError, TypeError):
            return False, value
    if target in (float, Decimal, Fraction, complex):
        return True, target(value)
    return False, value


def _coerce_sequence(annotation: Any, target: type, table: LuaTable) -> Coerced:
    args = typing.get_args(annotation)
    values = [value for _, value in table.pairs()]
    if target is tuple and args and not (len(args) == 2 and args[1] is Ellipsis):
        if len(args) != len(values):
            return False, table
        annotations = list(args)
    else:
        annotations = [args[0] if args else EMPTY] * len(values)
    converted = []
    for element, value in zip(annotations, values):
        ok, value = try_coerce(element, value)
        if not ok:
            return False, table
        converted.append(value)
    return True, tuple(converted) if target is tuple else converted


def _coerce_mapping(annotation: Any, table: LuaTable) -> Coerced:
    args = typing.get_args(annotation)
    key_type, value_type = args if len(args) == 2 else (EMPTY, EMPTY)
    converted = {}
    for key, value in table.pairs():
        ok_key, key = try_coerce(key_type, key)
        ok_value, value = try_coerce(value_type, value)
        if not (ok_key and ok_value):
            return False, table
        converted[key] = value
    return True, converted


def try_coerce(annotation: Any, value: Any) -> Coerced:
    """Converts ``value`` for a slot annotated ``annotation``.

    Returns ``(True, converted)`` on success and ``(False, value)`` when the
    value cannot be represented as the annotated type.
    """
    if annotation is EMPTY or annotation is Any or annotation is object or isinstance(annotation, str):
        return True, value
    if isinstance(annotation, TypeVar):
        if annotation.__constraints__:
            for constraint in annotation.__constraints__:
                ok, converted = try_coerce(constraint, value)
                if ok:
                    return True, converted
            return False, value
        if annotation.__bound__ is not None:
            return try_coerce(annotation.__bound__, value)
        return True, value

    origin = typing.get_origin(annotation)
    if origin in _UNIONS:
        members = typing.get_args(annotation)
        if value is None:
            return _NONE_TYPE in members, None
        for member in members:
            if member is _NONE_TYPE:
                continue
            ok, converted = try_coerce(member, value)
            if ok:
                return True, converted
        return False, value
    if annotation is None or annotation is _NONE_TYPE:
        return value is None, value
    if value is None:
        return False, None
    if origin is typing.Literal:
        return value in typing.get_args(annotation), value
    if origin is typing.Annotated:
        return try_coerce(typing.get_args(annotation)[0], value)

    target = origin if isinstance(origin, type) else annotation
    if not isinstance(target, type):
        return True, value

    if target in (int, float, Decimal, Fraction, complex) or (issubclass(target, int) and target is not bool):
        if isinstance(value, str):
            return _parse_number(target, value)
        if isinstance(value, (int, float)):
            return _coerce_number(target, value)
        return isinstance(value, target), value
    if isinstance(value, LuaTable):
        if target in _SEQUENCES:
            return _coerce_sequence(annotation, target if target is tuple else list, value)
        if target is dict:
            return _coerce_mapping(annotation, value)
    return isinstance(value, target), value


def coerce(annotation: Any, value: Any, message: Optional[str] = None) -> Any:
    """Like :func:`try_coerce` but raises :class:`TypeMismatch` on failure."""
    ok, converted = try_coerce(annotation, value)
    if not ok:
        raise TypeMismatch(message or f"Cannot convert a {type(value).__name__} value to {annotation!r}.")
    return converted


__all__ = ["coerce", "try_coerce"]
