"""Scoring of candidate signatures against script arguments."""

from __future__ import annotations

import logging
import typing
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from .attributes import Ref
from .coercion import try_coerce
from .errors import InvalidTypeArgument, NoMatchingOverload
from .metadata import Signature, is_open_generic, is_type_descriptor, owner_class

logger = logging.getLogger(__name__)

REJECTED = -1


@dataclass
class Candidate:
    signature: Signature
    arguments: List[Any]
    refs: List[Ref] = field(default_factory=list)
    score: int = 0

    def invoke(self, target: Any) -> Any:
        return self.signature.invoke(target, self.arguments)


def _takes_nothing(signature: Signature) -> bool:
    """No fixed parameters once out parameters are skipped; a bare ``*args`` counts as none."""
    return all(p.is_ref or p.variadic for p in signature.parameters)


def score(signature: Signature, arguments: Sequence[Any]) -> Tuple[int, Optional[Candidate]]:
    """Scores one candidate; ``REJECTED`` when the arguments do not fit.

    A successful coercion counts 2 and a defaulted slot counts 1. Surplus
    arguments count nothing.
    """
    if signature.rejects_calls:
        return REJECTED, None
    bound: List[Any] = []
    refs: List[Ref] = []
    total = 0
    position = 0
    for param in signature.parameters:
        if param.is_ref:
            cell: Ref = Ref()
            refs.append(cell)
            bound.append(cell)
            continue
        if param.variadic:
            for argument in arguments[position:]:
                ok, value = try_coerce(param.annotation, argument)
                if not ok:
                    return REJECTED, None
                bound.append(value)
                total += 2
            position = len(arguments)
            continue
        supplied = position < len(arguments)
        if not supplied or arguments[position] is None:
            position += 1
            if param.has_default:
                bound.append(param.default)
            elif supplied and try_coerce(param.annotation, None)[0]:
                bound.append(None)
            else:
                return REJECTED, None
            total += 1
            continue
        ok, value = try_coerce(param.annotation, arguments[position])
        if not ok:
            return REJECTED, None
        bound.append(value)
        total += 2
        position += 1
    return total, Candidate(signature, bound, refs, total)


def resolve(signatures: Sequence[Signature], arguments: Sequence[Any]) -> Optional[Candidate]:
    """Picks the best scoring candidate; the first one wins ties.

    Only a positive score can win, except that a candidate taking no
    parameters is chosen at once for a call without arguments.
    """
    best: Optional[Candidate] = None
    best_score = 0
    for signature in signatures:
        if not arguments and _takes_nothing(signature) and not signature.rejects_calls:
            return score(signature, arguments)[1]
        value, candidate = score(signature, arguments)
        if value > best_score:
            best, best_score = candidate, value
    return best


def satisfies(variable: Any, argument: Any) -> bool:
    """Whether a type argument meets a type variable's bound or constraints."""
    bounds = variable.__constraints__ or ((variable.__bound__,) if variable.__bound__ is not None else ())
    if not bounds:
        return True
    cls = owner_class(argument)
    for bound in bounds:
        if isinstance(bound, (str, typing.ForwardRef)):
            return True
        try:
            if issubclass(cls, owner_class(bound) if is_type_descriptor(bound) else bound):
                return True
        except TypeError:
            # protocols without runtime support cannot be checked
            return True
    return False


def leading_type_arguments(arguments: Sequence[Any]) -> List[Any]:
    count = 0
    while count < len(arguments) and is_type_descriptor(arguments[count]):
        count += 1
    return list(arguments[:count])


def resolve_generic(signatures: Sequence[Signature], arguments: Sequence[Any]) -> Candidate:
    """Closes generic candidates over the leading type arguments, then resolves.

    Raises :class:`NoMatchingOverload` or :class:`InvalidTypeArgument` when
    nothing fits.
    """
    type_arguments = leading_type_arguments(arguments)
    if not type_arguments:
        raise NoMatchingOverload("Attempt to call a method with invalid arguments.")
    if any(is_open_generic(argument) for argument in type_arguments):
        raise InvalidTypeArgument("Attempt to call a generic method with an invalid type argument.")
    remaining = list(arguments[len(type_arguments):])
    candidates = []
    violated = False
    for signature in signatures:
        if len(signature.type_parameters) != len(type_arguments):
            continue
        mapping = dict(zip(signature.type_parameters, type_arguments))
        if not all(satisfies(variable, argument) for variable, argument in mapping.items()):
            violated = True
            continue
        candidates.append(signature.specialize(mapping))
    if not candidates and violated:
        raise InvalidTypeArgument("Generic method arguments do not satisfy type constraints.")
    candidate = resolve(candidates, remaining)
    if candidate is None:
        raise NoMatchingOverload("Attempt to call a generic method with invalid arguments.")
    logger.debug("closed generic %s over %s", candidate.signature.name, type_arguments)
    return candidate


__all__ = [
    "REJECTED",
    "Candidate",
    "leading_type_arguments",
    "resolve",
    "resolve_generic",
    "satisfies",
    "score",
]
