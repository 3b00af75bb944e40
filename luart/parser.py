from __future__ import annotations

from typing import List, Optional, Tuple

from .ast import (
    Assignment,
    BinaryOp,
    Block,
    BreakStmt,
    CallExpr,
    Chunk,
    DoStmt,
    Conditional,
    Constant,
    Expr,
    ExprStmt,
    FieldAccess,
    ForGenericStmt,
    ForNumericStmt,
    FunctionExpr,
    FunctionStmt,
    GotoStmt,
    Identifier,
    IfStmt,
    IndexExpr,
    LabelStmt,
    LocalFunctionStmt,
    MethodCallExpr,
    ParenExpr,
    RepeatStmt,
    ReturnStmt,
    Stmt,
    TableConstructor,
    TableField,
    UnaryOp,
    VarargExpr,
    WhileStmt,
)
from .lexer import LexerError, LuaLexer, Token
from .values import str_to_number

# (left, right) binding power of binary operators
_BINARY_PRIORITY = {
    "or": (1, 1),
    "and": (2, 2),
    "<": (3, 3),
    ">": (3, 3),
    "<=": (3, 3),
    ">=": (3, 3),
    "~=": (3, 3),
    "==": (3, 3),
    "|": (4, 4),
    "~": (5, 5),
    "&": (6, 6),
    "<<": (7, 7),
    ">>": (7, 7),
    "..": (9, 8),
    "+": (10, 10),
    "-": (10, 10),
    "*": (11, 11),
    "/": (11, 11),
    "//": (11, 11),
    "%": (11, 11),
    "^": (14, 13),
}
_UNARY_PRIORITY = 12
_BLOCK_END = {"EOF", "end", "else", "elseif", "until"}


class ParserError(SyntaxError):
    pass


class LuaParser:
    def __init__(self, tokens: List[Token], source_name: str = "?"):
        self.tokens = tokens
        self.pos = 0
        self.source_name = source_name

    @classmethod
    def parse(cls, source: str, source_name: str = "?") -> Chunk:
        try:
            tokens = LuaLexer(source).tokenize()
        except LexerError as exc:
            raise ParserError(f"{source_name}:{exc.line}: {exc.msg}") from exc
        parser = cls(tokens, source_name)
        return parser._parse_chunk()

    # ------------------------------------------------------------------
    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self._current()
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _peek_kind(self, offset: int = 1) -> str:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return "EOF"
        return self.tokens[idx].kind

    def _match(self, *kinds: str) -> Optional[Token]:
        if self._current().kind in kinds:
            return self._advance()
        return None

    def _check_op(self, symbol: str) -> bool:
        token = self._current()
        return token.kind == "OP" and token.value == symbol

    def _error(self, message: str, token: Optional[Token] = None) -> ParserError:
        token = token or self._current()
        near = "<eof>" if token.kind == "EOF" else token.value
        return ParserError(f"{self.source_name}:{token.line}: {message} near '{near}'")

    def _expect(self, kind: str, opener: Optional[Token] = None) -> Token:
        token = self._current()
        if token.kind != kind:
            if opener is not None and opener.line != token.line:
                raise self._error(f"'{kind}' expected (to close '{opener.value}' at line {opener.line})")
            raise self._error(f"'{kind}' expected")
        return self._advance()

    def _expect_op(self, symbol: str) -> Token:
        if not self._check_op(symbol):
            raise self._error(f"'{symbol}' expected")
        return self._advance()

    def _parse_chunk(self) -> Chunk:
        body = self._parse_block()
        if self._current().kind != "EOF":
            raise self._error("'<eof>' expected")
        return Chunk(body)

    def _parse_block(self) -> Block:
        statements: List[Stmt] = []
        while self._current().kind not in _BLOCK_END:
            if self._current().kind == "return":
                statements.append(self._parse_return())
                break
            stmt = self._parse_statement()
            if stmt is not None:
                statements.append(stmt)
        return Block(statements)

    def _parse_statement(self) -> Optional[Stmt]:
        token = self._current()
        kind = token.kind
        if kind == ";":
            self._advance()
            return None
        if kind == "if":
            return self._parse_if()
        if kind == "while":
            return self._parse_while()
        if kind == "do":
            self._advance()
            body = self._parse_block()
            self._expect("end", token)
            return DoStmt(token.line, token.column, body)
        if kind == "for":
            return self._parse_for()
        if kind == "repeat":
            return self._parse_repeat()
        if kind == "function":
            return self._parse_function()
        if kind == "local":
            if self._peek_kind(1) == "function":
                return self._parse_local_function()
            return self._parse_local_assignment()
        if kind == "::":
            self._advance()
            name_tok = self._expect("IDENT")
            self._expect("::")
            return LabelStmt(token.line, token.column, name_tok.value)
        if kind == "break":
            self._advance()
            return BreakStmt(token.line, token.column)
        if kind == "goto":
            self._advance()
            name_tok = self._expect("IDENT")
            return GotoStmt(token.line, token.column, name_tok.value)
        return self._parse_assignment_or_expression()

    def _parse_if(self) -> IfStmt:
        if_tok = self._expect("if")
        condition = self._parse_expression()
        self._expect("then")
        clauses = [Conditional(if_tok.line, if_tok.column, condition, self._parse_block())]
        else_block = None
        while True:
            tok = self._current()
            if tok.kind == "elseif":
                self._advance()
                cond = self._parse_expression()
                self._expect("then")
                body = self._parse_block()
                clauses.append(Conditional(tok.line, tok.column, cond, body))
                continue
            if tok.kind == "else":
                self._advance()
                else_block = self._parse_block()
            break
        self._expect("end", if_tok)
        return IfStmt(if_tok.line, if_tok.column, clauses, else_block)

    def _parse_while(self) -> WhileStmt:
        tok = self._expect("while")
        condition = self._parse_expression()
        self._expect("do")
        body = self._parse_block()
        self._expect("end", tok)
        return WhileStmt(tok.line, tok.column, condition, body)

    def _parse_repeat(self) -> RepeatStmt:
        tok = self._expect("repeat")
        body = self._parse_block()
        self._expect("until", tok)
        condition = self._parse_expression()
        return RepeatStmt(tok.line, tok.column, body, condition)

    def _parse_for(self) -> Stmt:
        tok = self._expect("for")
        first = self._expect("IDENT")
        if self._check_op("="):
            self._advance()
            start = self._parse_expression()
            self._expect(",")
            limit = self._parse_expression()
            step = None
            if self._match(","):
                step = self._parse_expression()
            self._expect("do")
            body = self._parse_block()
            self._expect("end", tok)
            return ForNumericStmt(tok.line, tok.column, first.value, start, limit, step, body)
        names = [first.value]
        while self._match(","):
            names.append(self._expect("IDENT").value)
        self._expect("in")
        exprs = self._parse_expression_list()
        self._expect("do")
        body = self._parse_block()
        self._expect("end", tok)
        return ForGenericStmt(tok.line, tok.column, names, exprs, body)

    def _parse_return(self) -> ReturnStmt:
        tok = self._expect("return")
        values: List[Expr] = []
        if self._current().kind not in _BLOCK_END and self._current().kind != ";":
            values = self._parse_expression_list()
        self._match(";")
        return ReturnStmt(tok.line, tok.column, values)

    def _parse_function(self) -> FunctionStmt:
        tok = self._expect("function")
        name_tok = self._expect("IDENT")
        target: Expr = Identifier(name_tok.line, name_tok.column, name_tok.value)
        full_name = name_tok.value
        is_method = False
        while self._current().kind == ".":
            self._advance()
            field_tok = self._expect("IDENT")
            target = FieldAccess(field_tok.line, field_tok.column, target, field_tok.value)
            full_name += "." + field_tok.value
        if self._match(":"):
            method_tok = self._expect("IDENT")
            target = FieldAccess(method_tok.line, method_tok.column, target, method_tok.value)
            full_name += ":" + method_tok.value
            is_method = True
        func = self._parse_function_body(tok, full_name, is_method)
        return FunctionStmt(tok.line, tok.column, target, func, is_method)

    def _parse_function_body(self, tok: Token, name: str, is_method: bool = False) -> FunctionExpr:
        params, vararg = self._parse_param_list()
        if is_method:
            params.insert(0, "self")
        body = self._parse_block()
        end_tok = self._expect("end", tok)
        return FunctionExpr(tok.line, tok.column, params, vararg, body, name, end_tok.line)

    def _parse_param_list(self) -> Tuple[List[str], bool]:
        params: List[str] = []
        vararg = False
        self._expect("(")
        if self._current().kind != ")":
            while True:
                if self._current().kind == "VARARG":
                    self._advance()
                    vararg = True
                    break
                ident = self._expect("IDENT")
                params.append(ident.value)
                if not self._match(","):
                    break
        self._expect(")")
        return params, vararg

    def _parse_local_function(self) -> LocalFunctionStmt:
        local_tok = self._expect("local")
        func_tok = self._expect("function")
        name_tok = self._expect("IDENT")
        func = self._parse_function_body(func_tok, name_tok.value)
        return LocalFunctionStmt(local_tok.line, local_tok.column, name_tok.value, func)

    def _parse_local_assignment(self) -> Assignment:
        tok = self._expect("local")
        names: List[Expr] = []
        attribs: List[Optional[str]] = []
        while True:
            name_tok = self._expect("IDENT")
            names.append(Identifier(name_tok.line, name_tok.column, name_tok.value))
            attrib = None
            if self._check_op("<"):
                self._advance()
                attrib = self._expect("IDENT").value
                if attrib not in {"const", "close"}:
                    raise self._error(f"unknown attribute '{attrib}'")
                self._expect_op(">")
            attribs.append(attrib)
            if not self._match(","):
                break
        values: List[Expr] = []
        if self._check_op("="):
            self._advance()
            values = self._parse_expression_list()
        return Assignment(tok.line, tok.column, names, values, True, attribs)

    def _parse_assignment_or_expression(self) -> Stmt:
        start = self._current()
        expr = self._parse_suffixed_expression()
        if self._check_op("=") or self._current().kind == ",":
            targets: List[Expr] = [expr]
            while self._match(","):
                targets.append(self._parse_suffixed_expression())
            for target in targets:
                if not self._is_assignable(target):
                    raise self._error("syntax error")
            self._expect_op("=")
            values = self._parse_expression_list()
            return Assignment(start.line, start.column, targets, values, False)
        if not isinstance(expr, (CallExpr, MethodCallExpr)):
            raise self._error("syntax error")
        return ExprStmt(start.line, start.column, expr)

    def _parse_expression_list(self) -> List[Expr]:
        values: List[Expr] = [self._parse_expression()]
        while self._match(","):
            values.append(self._parse_expression())
        return values

    def _is_assignable(self, expr: Expr) -> bool:
        return isinstance(expr, (Identifier, FieldAccess, IndexExpr))

    # ------------------------ expression parsing ------------------------- #
    def _parse_expression(self, limit: int = 0) -> Expr:
        token = self._current()
        if token.kind == "not" or (token.kind == "OP" and token.value in {"-", "#", "~"}):
            op_tok = self._advance()
            operand = self._parse_expression(_UNARY_PRIORITY)
            expr: Expr = self._fold_unary(op_tok, operand)
        else:
            expr = self._parse_simple_expression()
        while True:
            token = self._current()
            op = token.value if token.kind in {"OP", "and", "or"} else None
            priority = _BINARY_PRIORITY.get(op) if op is not None else None
            if priority is None or priority[0] <= limit:
                break
            op_tok = self._advance()
            right = self._parse_expression(priority[1])
            expr = BinaryOp(op_tok.line, op_tok.column, expr, op, right)
        return expr

    def _fold_unary(self, op_tok: Token, operand: Expr) -> Expr:
        if op_tok.value == "-" and isinstance(operand, Constant) and type(operand.value) in (int, float):
            value = operand.value
            if isinstance(value, int) and value == -(2**63):
                return UnaryOp(op_tok.line, op_tok.column, "-", operand)
            return Constant(op_tok.line, op_tok.column, -value)
        return UnaryOp(op_tok.line, op_tok.column, op_tok.value, operand)

    def _parse_simple_expression(self) -> Expr:
        token = self._current()
        kind = token.kind
        if kind == "NUMBER":
            self._advance()
            value = str_to_number(token.value)
            if value is None:
                raise self._error("malformed number", token)
            return Constant(token.line, token.column, value)
        if kind == "STRING":
            self._advance()
            return Constant(token.line, token.column, token.value)
        if kind == "nil":
            self._advance()
            return Constant(token.line, token.column, None)
        if kind == "true":
            self._advance()
            return Constant(token.line, token.column, True)
        if kind == "false":
            self._advance()
            return Constant(token.line, token.column, False)
        if kind == "VARARG":
            self._advance()
            return VarargExpr(token.line, token.column)
        if kind == "{":
            return self._parse_table_constructor()
        if kind == "function":
            self._advance()
            return self._parse_function_body(token, f"<anonymous:{token.line}>")
        return self._parse_suffixed_expression()

    def _parse_primary(self) -> Expr:
        token = self._current()
        if token.kind == "IDENT":
            self._advance()
            return Identifier(token.line, token.column, token.value)
        if token.kind == "(":
            self._advance()
            inner = self._parse_expression()
            self._expect(")", token)
            return ParenExpr(token.line, token.column, inner)
        if token.kind == "EOF":
            raise self._error("unexpected symbol")
        raise self._error("unexpected symbol")

    def _parse_suffixed_expression(self) -> Expr:
        expr = self._parse_primary()
        while True:
            token = self._current()
            if token.kind == ".":
                self._advance()
                name_tok = self._expect("IDENT")
                expr = FieldAccess(name_tok.line, name_tok.column, expr, name_tok.value)
                continue
            if token.kind == "[":
                self._advance()
                index_expr = self._parse_expression()
                self._expect("]")
                expr = IndexExpr(token.line, token.column, expr, index_expr)
                continue
            if token.kind == ":":
                self._advance()
                name_tok = self._expect("IDENT")
                args = self._parse_call_arguments()
                expr = MethodCallExpr(name_tok.line, name_tok.column, expr, name_tok.value, args)
                continue
            if token.kind in {"(", "STRING", "{"}:
                args = self._parse_call_arguments()
                expr = CallExpr(token.line, token.column, expr, args)
                continue
            break
        return expr

    def _parse_call_arguments(self) -> List[Expr]:
        token = self._current()
        if token.kind == "STRING":
            self._advance()
            return [Constant(token.line, token.column, token.value)]
        if token.kind == "{":
            return [self._parse_table_constructor()]
        self._expect("(")
        args: List[Expr] = []
        if self._current().kind != ")":
            args = self._parse_expression_list()
        self._expect(")", token)
        return args

    def _parse_table_constructor(self) -> TableConstructor:
        start = self._expect("{")
        fields: List[TableField] = []
        while self._current().kind != "}":
            if self._current().kind == "[":
                self._advance()
                key_expr = self._parse_expression()
                self._expect("]")
                self._expect_op("=")
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr, key=key_expr))
            elif (
                self._current().kind == "IDENT"
                and self._peek_kind(1) == "OP"
                and self.tokens[self.pos + 1].value == "="
            ):
                name_tok = self._advance()
                self._expect_op("=")
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr, name=name_tok.value))
            else:
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr))
            if not self._match(",") and not self._match(";"):
                break
        self._expect("}", start)
        return TableConstructor(start.line, start.column, fields)


__all__ = ["LuaParser", "ParserError"]
