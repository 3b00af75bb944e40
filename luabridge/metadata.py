"""Per-class snapshot of the members scripts may reach.

Metadata is built on first use and cached for the life of the process; a
class never gains or loses script-visible members afterwards.
"""

from __future__ import annotations

import enum
import inspect
import logging
import types
import typing
from dataclasses import dataclass, field, replace
from typing import Any, Callable, ClassVar, Dict, Final, List, Mapping, Optional, Tuple, TypeVar

from .attributes import Event, Ref, exposed_name, freeze_extensions, indexed_property, is_hidden

logger = logging.getLogger(__name__)

EMPTY = inspect.Parameter.empty

_DENY_LIST = frozenset({"copy", "clone", "dispose"})
OPERATORS = (
    "__add__",
    "__radd__",
    "__sub__",
    "__rsub__",
    "__mul__",
    "__rmul__",
    "__truediv__",
    "__rtruediv__",
    "__neg__",
)
_UNIONS = (typing.Union, types.UnionType)


class MemberKind(enum.Enum):
    EVENT = "event"
    FIELD = "field"
    METHOD = "method"
    PROPERTY = "property"
    NESTED = "nested"


class Binding(enum.Enum):
    INSTANCE = "instance"
    STATIC = "static"
    CLASS = "class"
    EXTENSION = "extension"
    CONSTRUCTOR = "constructor"


@dataclass(frozen=True)
class Parameter:
    name: str
    annotation: Any = EMPTY
    default: Any = EMPTY
    is_ref: bool = False
    variadic: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not EMPTY


@dataclass(frozen=True)
class Signature:
    """One callable form of a member: the parameters a script supplies."""

    function: Callable[..., Any]
    parameters: Tuple[Parameter, ...]
    binding: Binding
    returns_none: bool = False
    name: str = ""
    type_parameters: Tuple[Any, ...] = ()
    rejects_calls: bool = False

    def specialize(self, mapping: Mapping[Any, Any]) -> "Signature":
        parameters = tuple(replace(p, annotation=substitute(p.annotation, mapping)) for p in self.parameters)
        remaining = tuple(t for t in self.type_parameters if t not in mapping)
        return replace(self, parameters=parameters, type_parameters=remaining)

    def invoke(self, target: Any, arguments: List[Any]) -> Any:
        if self.binding in (Binding.INSTANCE, Binding.EXTENSION):
            return self.function(target, *arguments)
        if self.binding is Binding.CLASS:
            owner = target if is_type_descriptor(target) else type(target)
            return self.function(owner_class(owner), *arguments)
        if self.binding is Binding.CONSTRUCTOR:
            return target(*arguments)
        return self.function(*arguments)


@dataclass(frozen=True)
class Member:
    name: str
    kind: MemberKind
    static: bool
    attribute: str = ""
    descriptor: Any = None
    annotation: Any = EMPTY
    constant: bool = False
    read_only: bool = False
    readable: bool = True
    indexed: bool = False
    signatures: Tuple[Signature, ...] = ()


@dataclass(frozen=True)
class TypeMetadata:
    cls: type
    constructors: Tuple[Signature, ...]
    instance_members: Mapping[str, Member]
    static_members: Mapping[str, Member]
    operators: Mapping[str, Tuple[Signature, ...]] = field(default_factory=dict)

    def member(self, name: str, instance: bool = True) -> Optional[Member]:
        members = self.instance_members if instance else self.static_members
        return members.get(name)

    def operator(self, name: str) -> Tuple[Signature, ...]:
        return self.operators.get(name, ())


_CACHE: Dict[type, TypeMetadata] = {}


# ---------------------------------------------------------------------- type descriptors
def is_type_descriptor(value: Any) -> bool:
    """True for classes and parameterized generic aliases such as ``Box[int]``."""
    if isinstance(value, type):
        return True
    origin = typing.get_origin(value)
    return isinstance(origin, type) and origin not in _UNIONS


def owner_class(descriptor: Any) -> type:
    if isinstance(descriptor, type):
        return descriptor
    return typing.get_origin(descriptor)


def is_open_generic(descriptor: Any) -> bool:
    return bool(getattr(descriptor, "__parameters__", ()))


def is_abstract(descriptor: Any) -> bool:
    cls = owner_class(descriptor)
    return inspect.isabstract(cls) or bool(getattr(cls, "_is_protocol", False))


def type_name(descriptor: Any) -> str:
    return owner_class(descriptor).__name__


def substitute(annotation: Any, mapping: Mapping[Any, Any]) -> Any:
    """Replaces type variables of ``annotation`` with their values in ``mapping``."""
    if isinstance(annotation, TypeVar):
        return mapping.get(annotation, annotation)
    if isinstance(annotation, type):
        return annotation
    params = getattr(annotation, "__parameters__", ())
    if not params:
        return annotation
    try:
        return annotation[tuple(mapping.get(p, p) for p in params)]
    except TypeError:
        return annotation


def _type_variables(annotation: Any) -> Tuple[Any, ...]:
    if isinstance(annotation, TypeVar):
        return (annotation,)
    if isinstance(annotation, type):
        return ()
    return tuple(getattr(annotation, "__parameters__", ()))


# ---------------------------------------------------------------------- annotations
def _hints(obj: Any) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(obj)
    except Exception:
        annotations = getattr(obj, "__annotations__", None)
        return dict(annotations) if isinstance(annotations, dict) else {}


def _own_annotations(klass: type) -> Dict[str, Any]:
    try:
        return dict(inspect.get_annotations(klass))
    except Exception:
        return {}


def _qualifier(annotation: Any) -> Optional[str]:
    if isinstance(annotation, str):
        head = annotation.split("[", 1)[0].rsplit(".", 1)[-1].strip()
        return head if head in ("ClassVar", "Final") else None
    if annotation is ClassVar or typing.get_origin(annotation) is ClassVar:
        return "ClassVar"
    if annotation is Final or typing.get_origin(annotation) is Final:
        return "Final"
    return None


def _unqualified(annotation: Any) -> Any:
    if isinstance(annotation, str) or annotation in (ClassVar, Final):
        return EMPTY if _qualifier(annotation) else annotation
    args = typing.get_args(annotation)
    return args[0] if args else EMPTY


def _is_ref(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith("Ref[") or annotation == "Ref"
    return annotation is Ref or typing.get_origin(annotation) is Ref


def _returns_none(annotation: Any) -> bool:
    return annotation is None or annotation is type(None) or annotation == "None"


# ---------------------------------------------------------------------- signatures
def build_signature(
    function: Callable[..., Any],
    binding: Binding,
    *,
    skip_first: bool = False,
    implementation: Optional[Callable[..., Any]] = None,
    name: str = "",
    owner_parameters: Tuple[Any, ...] = (),
) -> Signature:
    target = implementation or function
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError):
        # opaque builtins accept anything and report failures when invoked
        return Signature(target, (Parameter("args", variadic=True),), binding, name=name)
    hints = _hints(function)
    raw = list(signature.parameters.values())
    if skip_first and raw and raw[0].kind in (raw[0].POSITIONAL_ONLY, raw[0].POSITIONAL_OR_KEYWORD):
        raw = raw[1:]
    parameters: List[Parameter] = []
    rejects = False
    type_parameters: List[Any] = []
    for param in raw:
        if param.kind is param.VAR_KEYWORD:
            continue
        if param.kind is param.KEYWORD_ONLY:
            rejects = rejects or param.default is param.empty
            continue
        annotation = hints.get(param.name, param.annotation)
        for variable in _type_variables(annotation):
            if variable not in type_parameters and variable not in owner_parameters:
                type_parameters.append(variable)
        parameters.append(
            Parameter(
                param.name,
                annotation,
                param.default,
                is_ref=_is_ref(annotation),
                variadic=param.kind is param.VAR_POSITIONAL,
            )
        )
    returns = hints.get("return", signature.return_annotation)
    return Signature(
        target,
        tuple(parameters),
        binding,
        returns_none=_returns_none(returns),
        name=name,
        type_parameters=tuple(type_parameters),
        rejects_calls=rejects,
    )


def _overloads(function: Callable[..., Any]) -> List[Callable[..., Any]]:
    try:
        return list(typing.get_overloads(function))
    except Exception:
        return []


def _signatures_of(
    function: Callable[..., Any],
    binding: Binding,
    skip_first: bool,
    name: str,
    owner_parameters: Tuple[Any, ...] = (),
) -> List[Signature]:
    stubs = _overloads(function)
    if not stubs:
        return [build_signature(function, binding, skip_first=skip_first, name=name, owner_parameters=owner_parameters)]
    return [
        build_signature(
            stub,
            binding,
            skip_first=skip_first,
            implementation=function,
            name=name,
            owner_parameters=owner_parameters,
        )
        for stub in stubs
    ]


def callable_signature(function: Callable[..., Any]) -> Signature:
    """Signature of a plain host callable invoked directly by a script."""
    return build_signature(function, Binding.STATIC, name=getattr(function, "__name__", ""))


def constructor_signatures(descriptor: Any) -> Tuple[Signature, ...]:
    metadata = metadata_for(descriptor)
    if isinstance(descriptor, type):
        return metadata.constructors
    mapping = dict(zip(getattr(metadata.cls, "__parameters__", ()), typing.get_args(descriptor)))
    return tuple(signature.specialize(mapping) for signature in metadata.constructors)


# ---------------------------------------------------------------------- metadata construction
def metadata_for(descriptor: Any) -> TypeMetadata:
    cls = owner_class(descriptor)
    metadata = _CACHE.get(cls)
    if metadata is None:
        metadata = _build(cls)
        _CACHE[cls] = metadata
        logger.debug(
            "built metadata for %s: %d instance, %d static members",
            cls.__qualname__,
            len(metadata.instance_members),
            len(metadata.static_members),
        )
    return metadata


def _visible(name: str, value: Any, hidden_names: frozenset) -> bool:
    if name.startswith("_") or name in _DENY_LIST or name in hidden_names:
        return False
    return not is_hidden(value)


def _constructors(cls: type, owner_parameters: Tuple[Any, ...]) -> Tuple[Signature, ...]:
    init = getattr(cls, "__init__", object.__init__)
    if init is object.__init__:
        if getattr(cls, "__new__", object.__new__) is object.__new__:
            return (Signature(cls, (), Binding.CONSTRUCTOR, name="__init__"),)
        return (build_signature(cls, Binding.CONSTRUCTOR, name="__new__", owner_parameters=owner_parameters),)
    signatures = _signatures_of(init, Binding.CONSTRUCTOR, True, "__init__", owner_parameters)
    return tuple(replace(signature, function=cls) for signature in signatures)


def _extensions(cls: type) -> List[Tuple[str, Signature]]:
    found = []
    for function in freeze_extensions():
        try:
            first = next(iter(inspect.signature(function).parameters.values()))
        except (StopIteration, TypeError, ValueError):
            continue
        if _hints(function).get(first.name, first.annotation) is not cls:
            continue
        name = exposed_name(function, function.__name__)
        found.append((name, build_signature(function, Binding.EXTENSION, skip_first=True, name=name)))
    return found


def _build(cls: type) -> TypeMetadata:
    hidden_names = frozenset(getattr(cls, "__lua_hidden__", ()))
    owner_parameters = tuple(getattr(cls, "__parameters__", ()))
    hints = _hints(cls) if cls.__module__ != "builtins" else {}
    instance: Dict[str, Member] = {}
    static: Dict[str, Member] = {}
    groups: Dict[Tuple[bool, str], List[Signature]] = {}
    seen = set()

    def add_field(name: str, annotation: Any, is_static: bool, constant: bool) -> None:
        member = Member(name, MemberKind.FIELD, is_static, name, annotation=annotation, constant=constant)
        (static if is_static else instance).setdefault(name, member)

    for klass in cls.__mro__:
        if klass is object:
            continue
        annotations = _own_annotations(klass)
        for name, value in vars(klass).items():
            if name in seen:
                continue
            seen.add(name)
            if not _visible(name, value, hidden_names):
                continue
            annotation = hints.get(name, annotations.get(name, EMPTY))
            if isinstance(value, Event):
                member = Member(name, MemberKind.EVENT, value.static, name, descriptor=value)
                (static if value.static else instance).setdefault(name, member)
            elif isinstance(value, indexed_property):
                instance.setdefault(
                    name,
                    Member(
                        name,
                        MemberKind.PROPERTY,
                        False,
                        name,
                        descriptor=value,
                        read_only=value.fset is None,
                        indexed=True,
                    ),
                )
            elif isinstance(value, property):
                returns = _hints(value.fget).get("return", EMPTY) if value.fget is not None else EMPTY
                instance.setdefault(
                    name,
                    Member(
                        name,
                        MemberKind.PROPERTY,
                        False,
                        name,
                        descriptor=value,
                        annotation=returns,
                        read_only=value.fset is None,
                        readable=value.fget is not None,
                    ),
                )
            elif isinstance(value, types.GetSetDescriptorType):
                instance.setdefault(name, Member(name, MemberKind.PROPERTY, False, name, descriptor=value))
            elif isinstance(value, types.MemberDescriptorType):
                add_field(name, annotation, False, False)
            elif isinstance(value, staticmethod):
                exposed = exposed_name(value, name)
                groups.setdefault((True, exposed), []).extend(
                    _signatures_of(value.__func__, Binding.STATIC, False, exposed)
                )
            elif isinstance(value, classmethod):
                exposed = exposed_name(value, name)
                groups.setdefault((True, exposed), []).extend(
                    _signatures_of(value.__func__, Binding.CLASS, True, exposed, owner_parameters)
                )
            elif isinstance(value, types.ClassMethodDescriptorType):
                groups.setdefault((True, name), []).extend(
                    _signatures_of(getattr(cls, name), Binding.STATIC, False, name)
                )
            elif isinstance(value, type):
                static.setdefault(name, Member(name, MemberKind.NESTED, True, name, descriptor=value))
            elif inspect.isroutine(value):
                exposed = exposed_name(value, name)
                groups.setdefault((False, exposed), []).extend(
                    _signatures_of(value, Binding.INSTANCE, True, exposed, owner_parameters)
                )
            else:
                qualifier = _qualifier(annotation)
                if qualifier == "ClassVar":
                    add_field(name, _unqualified(annotation), True, False)
                elif qualifier == "Final":
                    add_field(name, _unqualified(annotation), True, True)
                elif annotation is not EMPTY:
                    add_field(name, annotation, False, False)
                else:
                    add_field(name, EMPTY, True, False)
        # annotated but unassigned names are instance fields
        for name, raw in annotations.items():
            if name in seen:
                continue
            seen.add(name)
            if not _visible(name, None, hidden_names):
                continue
            annotation = hints.get(name, raw)
            qualifier = _qualifier(annotation)
            if qualifier == "ClassVar":
                add_field(name, _unqualified(annotation), True, False)
            else:
                add_field(name, _unqualified(annotation) if qualifier else annotation, False, qualifier == "Final")

    for name, signature in _extensions(cls):
        groups.setdefault((False, name), []).append(signature)

    for (is_static, name), signatures in groups.items():
        member = Member(name, MemberKind.METHOD, is_static, name, signatures=tuple(signatures))
        (static if is_static else instance).setdefault(name, member)

    getitem = getattr(cls, "__getitem__", None)
    if getitem is not None and "Item" not in instance and "Item" not in hidden_names and not is_hidden(getitem):
        instance["Item"] = Member(
            "Item",
            MemberKind.PROPERTY,
            False,
            "__getitem__",
            read_only=getattr(cls, "__setitem__", None) is None,
            indexed=True,
        )

    operators: Dict[str, Tuple[Signature, ...]] = {}
    for name in OPERATORS:
        function = getattr(cls, name, None)
        if function is not None and inspect.isroutine(function):
            operators[name] = tuple(_signatures_of(function, Binding.INSTANCE, True, name))

    return TypeMetadata(
        cls=cls,
        constructors=_constructors(cls, owner_parameters),
        instance_members=types.MappingProxyType(instance),
        static_members=types.MappingProxyType(static),
        operators=types.MappingProxyType(operators),
    )


__all__ = [
    "Binding",
    "EMPTY",
    "Member",
    "MemberKind",
    "OPERATORS",
    "Parameter",
    "Signature",
    "TypeMetadata",
    "build_signature",
    "callable_signature",
    "constructor_signatures",
    "is_abstract",
    "is_open_generic",
    "is_type_descriptor",
    "metadata_for",
    "owner_class",
    "substitute",
    "type_name",
]
