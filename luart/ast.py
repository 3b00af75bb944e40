"""Syntax tree produced by :mod:`luart.parser`.

Every node records the line and column of the token that starts it; the
compiler copies them into instruction debug info for error positions and
line hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union

ConstantValue = Union[None, bool, int, float, str]


@dataclass
class Node:
    line: int
    column: int


class Expr(Node):
    pass


class Stmt(Node):
    pass


# ---------------------------------------------------------------------- expressions
@dataclass
class Constant(Expr):
    """``nil``, ``true``, ``false``, a numeral or a string literal."""

    value: ConstantValue


@dataclass
class VarargExpr(Expr):
    pass


@dataclass
class Identifier(Expr):
    name: str


@dataclass
class FieldAccess(Expr):
    """``table.field``; also the ``a.b`` and ``a:b`` parts of a function name."""

    table: Expr
    field: str


@dataclass
class IndexExpr(Expr):
    table: Expr
    index: Expr


@dataclass
class CallExpr(Expr):
    callee: Expr
    args: List[Expr]


@dataclass
class MethodCallExpr(Expr):
    """``receiver:method(args)``; the receiver is evaluated once."""

    receiver: Expr
    method: str
    args: List[Expr]


@dataclass
class ParenExpr(Expr):
    """Parenthesised expression; truncates multiple results to one."""

    expr: Expr


@dataclass
class UnaryOp(Expr):
    op: str
    operand: Expr


@dataclass
class BinaryOp(Expr):
    left: Expr
    op: str
    right: Expr


@dataclass
class TableField:
    """One constructor entry: ``[key] = value``, ``name = value`` or a positional value."""

    value: Expr
    key: Optional[Expr] = None
    name: Optional[str] = None


@dataclass
class TableConstructor(Expr):
    fields: List[TableField]


@dataclass
class FunctionExpr(Expr):
    params: List[str]
    vararg: bool
    body: Block
    name: str = "<anonymous>"
    end_line: int = 0


# ---------------------------------------------------------------------- statements
@dataclass
class Assignment(Stmt):
    """Plain or ``local`` assignment.

    ``attribs`` runs parallel to ``targets`` for locals and holds ``"const"``,
    ``"close"`` or ``None``.
    """

    targets: List[Expr]
    values: List[Expr]
    is_local: bool = False
    attribs: List[Optional[str]] = field(default_factory=list)


@dataclass
class ExprStmt(Stmt):
    expr: Expr


@dataclass
class LocalFunctionStmt(Stmt):
    name: str
    func: FunctionExpr


@dataclass
class FunctionStmt(Stmt):
    target: Expr
    func: FunctionExpr
    is_method: bool = False


@dataclass
class Conditional(Node):
    """The ``if`` or an ``elseif`` arm of an :class:`IfStmt`."""

    condition: Expr
    body: Block


@dataclass
class IfStmt(Stmt):
    clauses: List[Conditional]
    orelse: Optional[Block] = None


@dataclass
class WhileStmt(Stmt):
    condition: Expr
    body: Block


@dataclass
class RepeatStmt(Stmt):
    """``repeat body until condition``; the condition sees the body's locals."""

    body: Block
    condition: Expr


@dataclass
class ForNumericStmt(Stmt):
    var: str
    start: Expr
    limit: Expr
    step: Optional[Expr]
    body: Block


@dataclass
class ForGenericStmt(Stmt):
    names: List[str]
    iter_exprs: List[Expr]
    body: Block


@dataclass
class DoStmt(Stmt):
    body: Block


@dataclass
class ReturnStmt(Stmt):
    values: List[Expr]


@dataclass
class BreakStmt(Stmt):
    pass


@dataclass
class GotoStmt(Stmt):
    label: str


@dataclass
class LabelStmt(Stmt):
    name: str


@dataclass
class Block:
    statements: List[Stmt] = field(default_factory=list)


@dataclass
class Chunk:
    body: Block


__all__ = [
    "Assignment",
    "BinaryOp",
    "Block",
    "BreakStmt",
    "CallExpr",
    "Chunk",
    "Conditional",
    "Constant",
    "ConstantValue",
    "DoStmt",
    "Expr",
    "ExprStmt",
    "FieldAccess",
    "ForGenericStmt",
    "ForNumericStmt",
    "FunctionExpr",
    "FunctionStmt",
    "GotoStmt",
    "Identifier",
    "IfStmt",
    "IndexExpr",
    "LabelStmt",
    "LocalFunctionStmt",
    "MethodCallExpr",
    "Node",
    "ParenExpr",
    "RepeatStmt",
    "ReturnStmt",
    "Stmt",
    "TableConstructor",
    "TableField",
    "UnaryOp",
    "VarargExpr",
    "WhileStmt",
]
