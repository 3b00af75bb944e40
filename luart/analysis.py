"""Lexical analysis of captured locals.

Every local declaration is identified by a ``(id(node), index)`` key. The
compiler asks whether a key is captured by a nested function; captured
locals live in cells, everything else in plain registers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .ast import (
    Assignment,
    BinaryOp,
    Block,
    CallExpr,
    Chunk,
    DoStmt,
    Expr,
    ExprStmt,
    FieldAccess,
    ForGenericStmt,
    ForNumericStmt,
    FunctionExpr,
    FunctionStmt,
    Identifier,
    IfStmt,
    IndexExpr,
    LocalFunctionStmt,
    MethodCallExpr,
    ParenExpr,
    RepeatStmt,
    ReturnStmt,
    TableConstructor,
    UnaryOp,
    WhileStmt,
)

DeclKey = Tuple[int, int]


@dataclass
class FunctionInfo:
    captured: Set[DeclKey] = field(default_factory=set)

    def is_captured(self, node: object, index: int = 0) -> bool:
        return (id(node), index) in self.captured


class Scope:
    """One function's block stack; ``parent`` is the enclosing function."""

    def __init__(self, parent: Optional["Scope"], info: FunctionInfo):
        self.parent = parent
        self.info = info
        self.blocks: List[Dict[str, DeclKey]] = [{}]

    def push(self) -> None:
        self.blocks.append({})

    def pop(self) -> None:
        self.blocks.pop()

    def declare(self, name: str, key: DeclKey) -> None:
        self.blocks[-1][name] = key

    def lookup_local(self, name: str) -> Optional[DeclKey]:
        for block in reversed(self.blocks):
            if name in block:
                return block[name]
        return None

    def use(self, name: str) -> None:
        if self.lookup_local(name) is not None:
            return
        current = self.parent
        while current is not None:
            key = current.lookup_local(name)
            if key is not None:
                self.info.captured.add(key)
                return
            current = current.parent


def analyze(chunk: Chunk) -> FunctionInfo:
    info = FunctionInfo()
    scope = Scope(None, info)
    _analyze_block(chunk.body, scope)
    return info


def _analyze_block(block: Block, scope: Scope, *, new_scope: bool = True) -> None:
    if new_scope:
        scope.push()
    try:
        for stmt in block.statements:
            _analyze_stmt(stmt, scope)
    finally:
        if new_scope:
            scope.pop()


def _analyze_stmt(stmt, scope: Scope) -> None:
    if isinstance(stmt, Assignment):
        for value in stmt.values:
            _analyze_expr(value, scope)
        if stmt.is_local:
            for idx, target in enumerate(stmt.targets):
                scope.declare(target.name, (id(stmt), idx))
        else:
            for target in stmt.targets:
                _analyze_expr(target, scope)
    elif isinstance(stmt, ExprStmt):
        _analyze_expr(stmt.expr, scope)
    elif isinstance(stmt, IfStmt):
        for clause in stmt.clauses:
            _analyze_expr(clause.condition, scope)
            _analyze_block(clause.body, scope)
        if stmt.orelse is not None:
            _analyze_block(stmt.orelse, scope)
    elif isinstance(stmt, WhileStmt):
        _analyze_expr(stmt.condition, scope)
        _analyze_block(stmt.body, scope)
    elif isinstance(stmt, RepeatStmt):
        # the condition sees the body's locals
        scope.push()
        try:
            _analyze_block(stmt.body, scope, new_scope=False)
            _analyze_expr(stmt.condition, scope)
        finally:
            scope.pop()
    elif isinstance(stmt, DoStmt):
        _analyze_block(stmt.body, scope)
    elif isinstance(stmt, ForNumericStmt):
        _analyze_expr(stmt.start, scope)
        _analyze_expr(stmt.limit, scope)
        if stmt.step is not None:
            _analyze_expr(stmt.step, scope)
        scope.push()
        try:
            scope.declare(stmt.var, (id(stmt), 0))
            _analyze_block(stmt.body, scope)
        finally:
            scope.pop()
    elif isinstance(stmt, ForGenericStmt):
        for expr in stmt.iter_exprs:
            _analyze_expr(expr, scope)
        scope.push()
        try:
            for idx, name in enumerate(stmt.names):
                scope.declare(name, (id(stmt), idx))
            _analyze_block(stmt.body, scope)
        finally:
            scope.pop()
    elif isinstance(stmt, ReturnStmt):
        for value in stmt.values:
            _analyze_expr(value, scope)
    elif isinstance(stmt, FunctionStmt):
        _analyze_expr(stmt.target, scope)
        _analyze_function(stmt.func, scope)
    elif isinstance(stmt, LocalFunctionStmt):
        # visible inside its own body for recursion
        scope.declare(stmt.name, (id(stmt), 0))
        _analyze_function(stmt.func, scope)


def _analyze_function(func: FunctionExpr, scope: Scope) -> None:
    child = Scope(scope, scope.info)
    for idx, param in enumerate(func.params):
        child.declare(param, (id(func), idx))
    _analyze_block(func.body, child, new_scope=False)


def _analyze_expr(expr: Expr, scope: Scope) -> None:
    if isinstance(expr, Identifier):
        scope.use(expr.name)
    elif isinstance(expr, BinaryOp):
        _analyze_expr(expr.left, scope)
        _analyze_expr(expr.right, scope)
    elif isinstance(expr, UnaryOp):
        _analyze_expr(expr.operand, scope)
    elif isinstance(expr, ParenExpr):
        _analyze_expr(expr.expr, scope)
    elif isinstance(expr, CallExpr):
        _analyze_expr(expr.callee, scope)
        for arg in expr.args:
            _analyze_expr(arg, scope)
    elif isinstance(expr, MethodCallExpr):
        _analyze_expr(expr.receiver, scope)
        for arg in expr.args:
            _analyze_expr(arg, scope)
    elif isinstance(expr, FunctionExpr):
        _analyze_function(expr, scope)
    elif isinstance(expr, FieldAccess):
        _analyze_expr(expr.table, scope)
    elif isinstance(expr, IndexExpr):
        _analyze_expr(expr.table, scope)
        _analyze_expr(expr.index, scope)
    elif isinstance(expr, TableConstructor):
        for item in expr.fields:
            if item.key is not None:
                _analyze_expr(item.key, scope)
            _analyze_expr(item.value, scope)


__all__ = ["FunctionInfo", "analyze"]
