from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .analysis import FunctionInfo, analyze
from .ast import (
    Assignment,
    BinaryOp,
    Block,
    BreakStmt,
    CallExpr,
    Chunk,
    Constant,
    DoStmt,
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
    TableConstructor,
    UnaryOp,
    VarargExpr,
    WhileStmt,
)
from .bytecode import Instruction, InstructionDebug, Opcode, Prototype, SourceLocation


@dataclass
class VarBinding:
    storage: str
    is_cell: bool = False
    is_const: bool = False


@dataclass
class _BlockLabels:
    statements: list
    labels: Dict[str, Tuple[str, int]]
    position: int = 0


class CompileError(RuntimeError):
    pass


_ARITHMETIC = {
    "+": Opcode.ADD,
    "-": Opcode.SUB,
    "*": Opcode.MUL,
    "/": Opcode.DIV,
    "%": Opcode.MOD,
    "//": Opcode.IDIV,
    "^": Opcode.POW,
    "..": Opcode.CONCAT,
    "&": Opcode.AND_BIT,
    "|": Opcode.OR_BIT,
    "~": Opcode.XOR,
    "<<": Opcode.SHL,
    ">>": Opcode.SHR,
}

_UNARY = {
    "-": Opcode.NEG,
    "not": Opcode.NOT,
    "#": Opcode.LEN,
    "~": Opcode.NOT_BIT,
}

_MULTI_VALUE = (CallExpr, MethodCallExpr, VarargExpr)


class LuaCompiler:
    """Compiles one Lua function body into a :class:`Prototype`.

    Nested functions get their own compiler whose ``parent`` is consulted
    when a free name has to be resolved as an upvalue.
    """

    def __init__(
        self,
        info: FunctionInfo,
        *,
        parent: Optional["LuaCompiler"] = None,
        source_name: str = "<stdin>",
        function_name: str = "main chunk",
        is_vararg: bool = False,
    ):
        self.info = info
        self.parent = parent
        self.source_name = source_name
        self.function_name = function_name
        self.is_vararg = is_vararg

        self.instructions: List[Instruction] = []
        self.scope_stack: List[Dict[str, VarBinding]] = [{}]
        self.temp_counter = 0
        self._last_debug: InstructionDebug | None = None
        self.loop_stack: List[str] = []
        self.label_stack: List[_BlockLabels] = []
        self.upvalue_names: List[str] = []
        self.upvalue_sources: List[Tuple[str, object]] = []
        self._upvalue_index: Dict[str, int] = {}

    # ------------------------------------------------------------------
    @classmethod
    def compile_chunk(cls, chunk: Chunk, *, source_name: str = "<stdin>") -> Prototype:
        info = analyze(chunk)
        compiler = cls(info, source_name=source_name, function_name="main chunk", is_vararg=True)
        statements = chunk.body.statements
        last_line = statements[-1].line if statements else 0
        return compiler._compile_function([], chunk.body, None, 0, last_line)

    def _compile_function(
        self,
        params: List[str],
        body: Block,
        node: Optional[FunctionExpr],
        line: int,
        end_line: int,
    ) -> Prototype:
        scope = self.scope_stack[-1]
        for idx, param in enumerate(params):
            reg = self._alloc_local_reg(param)
            self._emit(Opcode.ARG, [reg], node=node)
            if node is not None and self.info.is_captured(node, idx):
                cell_reg = self._alloc_cell_reg(param)
                self._emit(Opcode.MAKE_CELL, [cell_reg, reg], node=node)
                scope[param] = VarBinding(cell_reg, True)
            else:
                scope[param] = VarBinding(reg)
        if self.is_vararg:
            self._emit(Opcode.VARARG, ["__varargs"], node=node)
        self._compile_block(body)
        self._emit(Opcode.RETURN_MULTI, [], node=None)
        proto = Prototype(
            name=self.function_name,
            source=self.source_name,
            instructions=self.instructions,
            line_defined=line,
            last_line_defined=end_line,
            num_params=len(params),
            is_vararg=self.is_vararg,
            num_upvalues=len(self.upvalue_names),
        )
        proto.index_labels()
        return proto

    # ------------------------------------------------------------------
    def _push_scope(self):
        self.scope_stack.append({})

    def _pop_scope(self):
        self.scope_stack.pop()

    def _new_temp(self) -> str:
        name = f"__t{self.temp_counter}"
        self.temp_counter += 1
        return name

    def _alloc_local_reg(self, name: str) -> str:
        reg = f"L_{len(self.scope_stack)-1}_{name}_{self.temp_counter}"
        self.temp_counter += 1
        return reg

    def _alloc_cell_reg(self, name: str) -> str:
        reg = f"C_{len(self.scope_stack)-1}_{name}_{self.temp_counter}"
        self.temp_counter += 1
        return reg

    def _error(self, message: str, node: object | None) -> CompileError:
        line = getattr(node, "line", 0) or 0
        return CompileError(f"{self.source_name}:{line}: {message}")

    def _debug_for(self, node: object | None) -> InstructionDebug | None:
        if node is None:
            return None
        line = int(getattr(node, "line", 0) or 0)
        column = int(getattr(node, "column", 0) or 0)
        location = SourceLocation(self.source_name, line, column)
        return InstructionDebug(location, self.function_name)

    def _emit(self, opcode: Opcode, args, *, node: object | None = None) -> Instruction:
        if isinstance(args, (list, tuple)):
            arg_list = list(args)
        else:
            arg_list = [args]
        debug = self._debug_for(node)
        if debug is not None:
            self._last_debug = debug
        elif self._last_debug is not None:
            debug = self._last_debug
        inst = Instruction(opcode, arg_list, debug)
        self.instructions.append(inst)
        return inst

    def _lookup_binding(self, name: str) -> Optional[VarBinding]:
        for scope in reversed(self.scope_stack):
            if name in scope:
                return scope[name]
        return None

    def _resolve_upvalue(self, name: str) -> Optional[int]:
        if name in self._upvalue_index:
            return self._upvalue_index[name]
        if self.parent is None:
            return None
        binding = self.parent._lookup_binding(name)
        if binding is not None:
            if not binding.is_cell:
                raise CompileError(f"captured variable '{name}' was not allocated in a cell")
            source: Tuple[str, object] = ("local", binding.storage)
        else:
            parent_index = self.parent._resolve_upvalue(name)
            if parent_index is None:
                return None
            source = ("upvalue", parent_index)
        index = len(self.upvalue_names)
        self.upvalue_names.append(name)
        self.upvalue_sources.append(source)
        self._upvalue_index[name] = index
        return index

    def _declare_local(self, name: str, key_node: object, index: int, value_reg: str, node: object, *, is_const: bool = False) -> VarBinding:
        if self.info.is_captured(key_node, index):
            cell_reg = self._alloc_cell_reg(name)
            self._emit(Opcode.MAKE_CELL, [cell_reg, value_reg], node=node)
            binding = VarBinding(cell_reg, True, is_const)
        else:
            reg = self._alloc_local_reg(name)
            self._emit(Opcode.MOV, [reg, value_reg], node=node)
            binding = VarBinding(reg, False, is_const)
        self.scope_stack[-1][name] = binding
        return binding

    # ------------------------------------------------------------------ Statements
    def _compile_block(self, block: Block, tail: Optional[Callable[[], None]] = None):
        self._push_scope()
        labels: Dict[str, Tuple[str, int]] = {}
        for idx, stmt in enumerate(block.statements):
            if isinstance(stmt, LabelStmt):
                if stmt.name in labels or self._visible_label(stmt.name) is not None:
                    raise self._error(f"label '{stmt.name}' already defined", stmt)
                labels[stmt.name] = (f"__label_{stmt.name}_{self._new_temp()}", idx)
        frame = _BlockLabels(block.statements, labels)
        self.label_stack.append(frame)
        try:
            for idx, stmt in enumerate(block.statements):
                frame.position = idx
                self._compile_statement(stmt)
            if tail is not None:
                tail()
        finally:
            self.label_stack.pop()
            self._pop_scope()

    def _compile_statement(self, stmt) -> None:
        if isinstance(stmt, Assignment):
            self._compile_assignment(stmt)
        elif isinstance(stmt, IfStmt):
            self._compile_if(stmt)
        elif isinstance(stmt, WhileStmt):
            self._compile_while(stmt)
        elif isinstance(stmt, ForNumericStmt):
            self._compile_numeric_for(stmt)
        elif isinstance(stmt, ForGenericStmt):
            self._compile_generic_for(stmt)
        elif isinstance(stmt, RepeatStmt):
            self._compile_repeat(stmt)
        elif isinstance(stmt, DoStmt):
            self._compile_block(stmt.body)
        elif isinstance(stmt, BreakStmt):
            self._compile_break(stmt)
        elif isinstance(stmt, GotoStmt):
            self._compile_goto(stmt)
        elif isinstance(stmt, LabelStmt):
            symbol, _ = self.label_stack[-1].labels[stmt.name]
            self._emit(Opcode.LABEL, [symbol], node=stmt)
        elif isinstance(stmt, ReturnStmt):
            self._compile_return(stmt)
        elif isinstance(stmt, FunctionStmt):
            self._compile_function_stmt(stmt)
        elif isinstance(stmt, LocalFunctionStmt):
            self._compile_local_function(stmt)
        elif isinstance(stmt, ExprStmt):
            self._compile_expr(stmt.expr)
        else:
            raise self._error(f"unsupported statement {type(stmt).__name__}", stmt)

    def _compile_assignment(self, stmt: Assignment):
        target_count = len(stmt.targets)
        if stmt.is_local:
            value_regs = self._collect_assignment_values(stmt.values, target_count, stmt)
            for idx, target in enumerate(stmt.targets):
                attrib = stmt.attribs[idx] if idx < len(stmt.attribs) else None
                if attrib == "close":
                    raise self._error("to-be-closed variables are not supported", stmt)
                self._declare_local(target.name, stmt, idx, value_regs[idx], stmt, is_const=attrib == "const")
            return

        # table and key operands are evaluated before the right-hand side
        prepared = [self._prepare_target(target, target_count > 1) for target in stmt.targets]
        value_regs = self._collect_assignment_values(stmt.values, target_count, stmt)
        if target_count > 1:
            value_regs = [self._stabilize(reg) for reg in value_regs]
        for (target, table_reg, key_reg), value_reg in zip(prepared, value_regs):
            self._store_target(target, table_reg, key_reg, value_reg, stmt)

    def _stabilize(self, reg: str) -> str:
        # local registers may be overwritten by an earlier store of the same statement
        if reg.startswith("L_"):
            tmp = self._new_temp()
            self._emit(Opcode.MOV, [tmp, reg])
            return tmp
        return reg

    def _prepare_target(self, target: Expr, stabilize: bool) -> Tuple[Expr, Optional[str], Optional[str]]:
        if isinstance(target, Identifier):
            return target, None, None
        if isinstance(target, FieldAccess):
            table_reg = self._compile_expr(target.table)
            key_reg = self._emit_literal(target.field, target)
        elif isinstance(target, IndexExpr):
            table_reg = self._compile_expr(target.table)
            key_reg = self._compile_expr(target.index)
        else:
            raise self._error("cannot assign to this expression", target)
        if stabilize:
            table_reg = self._stabilize(table_reg)
            key_reg = self._stabilize(key_reg)
        return target, table_reg, key_reg

    def _store_target(self, target: Expr, table_reg: Optional[str], key_reg: Optional[str], value_reg: str, node: object):
        if isinstance(target, Identifier):
            self._store_name(target.name, value_reg, node)
            return
        self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg], node=node)

    def _store_name(self, name: str, value_reg: str, node: object) -> None:
        binding = self._lookup_binding(name)
        if binding is not None:
            if binding.is_const:
                raise self._error(f"attempt to assign to const variable '{name}'", node)
            self._binding_write(binding, value_reg, node)
            return
        index = self._resolve_upvalue(name)
        if index is not None:
            cell = self._new_temp()
            self._emit(Opcode.BIND_UPVALUE, [cell, index], node=node)
            self._emit(Opcode.CELL_SET, [cell, value_reg], node=node)
            return
        self._emit(Opcode.SET_GLOBAL, [name, value_reg], node=node)

    def _collect_assignment_values(self, values: List[Expr], target_count: int, node: object) -> List[str]:
        regs: List[str] = []
        total = len(values)
        for idx, expr in enumerate(values):
            is_last = idx == total - 1
            if is_last:
                needed = target_count - len(regs)
                regs.extend(self._eval_last_assignment_expr(expr, needed))
            else:
                result = self._compile_expr(expr)
                if len(regs) < target_count:
                    regs.append(result)
        while len(regs) < target_count:
            regs.append(self._emit_literal(None, node))
        return regs[:target_count]

    def _eval_last_assignment_expr(self, expr: Expr, needed: int) -> List[str]:
        if needed <= 1 or not isinstance(expr, _MULTI_VALUE):
            reg = self._compile_expr(expr)
            return [reg] if needed > 0 else []
        list_reg = self._compile_multi(expr)
        return self._unpack_list(list_reg, needed, expr)

    def _unpack_list(self, list_reg: str, count: int, node: Expr) -> List[str]:
        regs: List[str] = []
        for index in range(count):
            dst = self._new_temp()
            self._emit(Opcode.LIST_GET, [dst, list_reg, index], node=node)
            regs.append(dst)
        return regs

    def _compile_if(self, stmt: IfStmt):
        branches = [(clause.condition, clause.body) for clause in stmt.clauses]

        end_label = f"__endif_{self._new_temp()}"

        for idx, (condition, block) in enumerate(branches):
            has_following = idx < len(branches) - 1 or stmt.orelse is not None
            false_label = f"__if_next_{self._new_temp()}" if has_following else end_label
            cond_reg = self._compile_expr(condition)
            self._emit(Opcode.JZ, [cond_reg, false_label], node=condition)
            self._compile_block(block)
            if has_following:
                self._emit(Opcode.JMP, [end_label], node=stmt)
                self._emit(Opcode.LABEL, [false_label], node=stmt)

        if stmt.orelse is not None:
            self._compile_block(stmt.orelse)

        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_while(self, stmt: WhileStmt):
        start_label = f"__while_start_{self._new_temp()}"
        end_label = f"__while_end_{self._new_temp()}"
        self._emit(Opcode.LABEL, [start_label], node=stmt)
        cond_reg = self._compile_expr(stmt.condition)
        self._emit(Opcode.JZ, [cond_reg, end_label], node=stmt)
        self.loop_stack.append(end_label)
        try:
            self._compile_block(stmt.body)
        finally:
            self.loop_stack.pop()
        self._emit(Opcode.JMP, [start_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_repeat(self, stmt: RepeatStmt):
        start_label = f"__repeat_start_{self._new_temp()}"
        end_label = f"__repeat_end_{self._new_temp()}"
        self._emit(Opcode.LABEL, [start_label], node=stmt)

        def condition():
            cond_reg = self._compile_expr(stmt.condition)
            self._emit(Opcode.JZ, [cond_reg, start_label], node=stmt.condition)

        self.loop_stack.append(end_label)
        try:
            self._compile_block(stmt.body, tail=condition)
        finally:
            self.loop_stack.pop()
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_numeric_for(self, stmt: ForNumericStmt):
        index_reg = self._new_temp()
        self._emit(Opcode.MOV, [index_reg, self._compile_expr(stmt.start)], node=stmt.start)
        limit_reg = self._new_temp()
        self._emit(Opcode.MOV, [limit_reg, self._compile_expr(stmt.limit)], node=stmt.limit)
        step_reg = self._new_temp()
        if stmt.step is not None:
            self._emit(Opcode.MOV, [step_reg, self._compile_expr(stmt.step)], node=stmt.step)
        else:
            self._emit(Opcode.LOAD_CONST, [step_reg, 1], node=stmt)
        self._emit(Opcode.FOR_PREP, [index_reg, limit_reg, step_reg], node=stmt)

        zero_reg = self._emit_literal(0, stmt)
        positive_reg = self._new_temp()
        self._emit(Opcode.LT, [positive_reg, zero_reg, step_reg], node=stmt)

        check_label = f"__for_check_{self._new_temp()}"
        negative_label = f"__for_neg_{self._new_temp()}"
        body_label = f"__for_body_{self._new_temp()}"
        end_label = f"__for_end_{self._new_temp()}"
        cond_reg = self._new_temp()

        self._emit(Opcode.LABEL, [check_label], node=stmt)
        self._emit(Opcode.JZ, [positive_reg, negative_label], node=stmt)
        self._emit(Opcode.LE, [cond_reg, index_reg, limit_reg], node=stmt)
        self._emit(Opcode.JMP, [body_label], node=stmt)
        self._emit(Opcode.LABEL, [negative_label], node=stmt)
        self._emit(Opcode.LE, [cond_reg, limit_reg, index_reg], node=stmt)
        self._emit(Opcode.LABEL, [body_label], node=stmt)
        self._emit(Opcode.JZ, [cond_reg, end_label], node=stmt)

        # a fresh variable per iteration
        self._push_scope()
        self.loop_stack.append(end_label)
        try:
            self._declare_local(stmt.var, stmt, 0, index_reg, stmt)
            self._compile_block(stmt.body)
        finally:
            self.loop_stack.pop()
            self._pop_scope()
        self._emit(Opcode.ADD, [index_reg, index_reg, step_reg], node=stmt)
        self._emit(Opcode.JMP, [check_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_generic_for(self, stmt: ForGenericStmt):
        values = self._collect_assignment_values(stmt.iter_exprs, 3, stmt)
        iter_func_reg = self._new_temp()
        self._emit(Opcode.MOV, [iter_func_reg, values[0]], node=stmt)
        state_reg = self._new_temp()
        self._emit(Opcode.MOV, [state_reg, values[1]], node=stmt)
        control_reg = self._new_temp()
        self._emit(Opcode.MOV, [control_reg, values[2]], node=stmt)

        loop_label = f"__forgen_loop_{self._new_temp()}"
        end_label = f"__forgen_end_{self._new_temp()}"

        self._emit(Opcode.LABEL, [loop_label], node=stmt)
        self._emit(Opcode.PARAM, [state_reg], node=stmt)
        self._emit(Opcode.PARAM, [control_reg], node=stmt)
        self._emit(Opcode.CALL_VALUE, [iter_func_reg], node=stmt)
        result_list = self._new_temp()
        self._emit(Opcode.RESULT_LIST, [result_list], node=stmt)
        first_value = self._new_temp()
        self._emit(Opcode.LIST_GET, [first_value, result_list, 0], node=stmt)
        nil_check = self._new_temp()
        self._emit(Opcode.IS_NULL, [nil_check, first_value], node=stmt)
        self._emit(Opcode.JNZ, [nil_check, end_label], node=stmt)
        self._emit(Opcode.MOV, [control_reg, first_value], node=stmt)

        self._push_scope()
        self.loop_stack.append(end_label)
        try:
            for idx, name in enumerate(stmt.names):
                if idx == 0:
                    value_reg = first_value
                else:
                    value_reg = self._new_temp()
                    self._emit(Opcode.LIST_GET, [value_reg, result_list, idx], node=stmt)
                self._declare_local(name, stmt, idx, value_reg, stmt)
            self._compile_block(stmt.body)
        finally:
            self.loop_stack.pop()
            self._pop_scope()
        self._emit(Opcode.JMP, [loop_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_break(self, stmt: BreakStmt):
        if not self.loop_stack:
            raise self._error("break outside a loop", stmt)
        self._emit(Opcode.JMP, [self.loop_stack[-1]], node=stmt)

    def _visible_label(self, name: str) -> Optional[Tuple[_BlockLabels, str, int]]:
        for frame in reversed(self.label_stack):
            if name in frame.labels:
                symbol, position = frame.labels[name]
                return frame, symbol, position
        return None

    def _compile_goto(self, stmt: GotoStmt):
        found = self._visible_label(stmt.label)
        if found is None:
            raise self._error(f"no visible label '{stmt.label}' for goto", stmt)
        frame, symbol, position = found
        if position > frame.position:
            trailing = frame.statements[position + 1:]
            at_block_end = all(isinstance(s, LabelStmt) for s in trailing)
            if not at_block_end:
                for skipped in frame.statements[frame.position + 1:position]:
                    if isinstance(skipped, (Assignment, LocalFunctionStmt)) and getattr(skipped, "is_local", True):
                        local_name = skipped.name if isinstance(skipped, LocalFunctionStmt) else skipped.targets[0].name
                        raise self._error(
                            f"<goto {stmt.label}> at line {stmt.line} jumps into the scope of local '{local_name}'",
                            stmt,
                        )
        self._emit(Opcode.JMP, [symbol], node=stmt)

    def _compile_return(self, stmt: ReturnStmt):
        regs: List[str] = []
        total = len(stmt.values)
        for idx, expr in enumerate(stmt.values):
            if idx == total - 1 and isinstance(expr, _MULTI_VALUE):
                regs.append(self._compile_multi(expr))
            else:
                regs.append(self._compile_expr(expr))
        self._emit(Opcode.RETURN_MULTI, regs, node=stmt)

    def _compile_function_stmt(self, stmt: FunctionStmt):
        target = stmt.target
        if isinstance(target, Identifier):
            closure_reg = self._compile_function_expr(stmt.func)
            self._store_name(target.name, closure_reg, stmt)
            return
        table_reg = self._compile_expr(target.table)
        key_reg = self._emit_literal(target.field, target)
        closure_reg = self._compile_function_expr(stmt.func)
        self._emit(Opcode.TABLE_SET, [table_reg, key_reg, closure_reg], node=stmt)

    def _compile_local_function(self, stmt: LocalFunctionStmt):
        nil_reg = self._emit_literal(None, stmt)
        binding = self._declare_local(stmt.name, stmt, 0, nil_reg, stmt)
        closure_reg = self._compile_function_expr(stmt.func)
        self._binding_write(binding, closure_reg, stmt)

    # ------------------------------------------------------------------ Expressions
    def _compile_expr(self, expr: Expr) -> str:
        if isinstance(expr, Constant):
            return self._emit_literal(expr.value, expr)
        if isinstance(expr, Identifier):
            return self._read_identifier(expr)
        if isinstance(expr, ParenExpr):
            return self._compile_expr(expr.expr)
        if isinstance(expr, UnaryOp):
            operand = self._compile_expr(expr.operand)
            dst = self._new_temp()
            self._emit(_UNARY[expr.op], [dst, operand], node=expr)
            return dst
        if isinstance(expr, BinaryOp):
            return self._compile_binary(expr)
        if isinstance(expr, CallExpr):
            return self._compile_call(expr)
        if isinstance(expr, MethodCallExpr):
            return self._compile_method_call(expr)
        if isinstance(expr, FunctionExpr):
            return self._compile_function_expr(expr)
        if isinstance(expr, VarargExpr):
            list_reg = self._compile_vararg(expr)
            head = self._new_temp()
            self._emit(Opcode.VARARG_FIRST, [head, list_reg], node=expr)
            return head
        if isinstance(expr, FieldAccess):
            table_reg = self._compile_expr(expr.table)
            key_reg = self._emit_literal(expr.field, expr)
            dst = self._new_temp()
            self._emit(Opcode.TABLE_GET, [dst, table_reg, key_reg, *self._describe_args(expr.table)], node=expr)
            return dst
        if isinstance(expr, IndexExpr):
            table_reg = self._compile_expr(expr.table)
            index_reg = self._compile_expr(expr.index)
            dst = self._new_temp()
            self._emit(Opcode.TABLE_GET, [dst, table_reg, index_reg, *self._describe_args(expr.table)], node=expr)
            return dst
        if isinstance(expr, TableConstructor):
            return self._compile_table_constructor(expr)
        raise self._error(f"unsupported expression {type(expr).__name__}", expr)

    def _compile_multi(self, expr: Expr) -> str:
        """Compiles a call or ``...`` into a register holding the full value list."""
        if isinstance(expr, VarargExpr):
            return self._compile_vararg(expr)
        if isinstance(expr, CallExpr):
            return self._compile_call(expr, want_list=True)
        return self._compile_method_call(expr, want_list=True)

    def _compile_binary(self, expr: BinaryOp) -> str:
        op = expr.op
        if op in ("and", "or"):
            left = self._compile_expr(expr.left)
            result = self._new_temp()
            self._emit(Opcode.MOV, [result, left], node=expr.left)
            skip_label = f"__logic_skip_{self._new_temp()}"
            jump = Opcode.JZ if op == "and" else Opcode.JNZ
            self._emit(jump, [left, skip_label], node=expr)
            right = self._compile_expr(expr.right)
            self._emit(Opcode.MOV, [result, right], node=expr.right)
            self._emit(Opcode.LABEL, [skip_label], node=expr)
            return result

        left = self._compile_expr(expr.left)
        right = self._compile_expr(expr.right)
        dst = self._new_temp()
        if op in _ARITHMETIC:
            self._emit(_ARITHMETIC[op], [dst, left, right], node=expr)
        elif op == "==":
            self._emit(Opcode.EQ, [dst, left, right], node=expr)
        elif op == "~=":
            tmp = self._new_temp()
            self._emit(Opcode.EQ, [tmp, left, right], node=expr)
            self._emit(Opcode.NOT, [dst, tmp], node=expr)
        elif op == "<":
            self._emit(Opcode.LT, [dst, left, right], node=expr)
        elif op == "<=":
            self._emit(Opcode.LE, [dst, left, right], node=expr)
        elif op == ">":
            self._emit(Opcode.LT, [dst, right, left], node=expr)
        elif op == ">=":
            self._emit(Opcode.LE, [dst, right, left], node=expr)
        else:
            raise self._error(f"unsupported binary operator {op}", expr)
        return dst

    def _prepare_args(self, args: List[Expr]) -> List[Tuple[str, bool]]:
        prepared: List[Tuple[str, bool]] = []
        total = len(args)
        for idx, arg in enumerate(args):
            if idx == total - 1 and isinstance(arg, _MULTI_VALUE):
                prepared.append((self._compile_multi(arg), True))
            else:
                prepared.append((self._compile_expr(arg), False))
        return prepared

    def _emit_call(
        self,
        callee_reg: str,
        prepared: List[Tuple[str, bool]],
        node: Expr,
        want_list: bool,
        description: Optional[str],
    ) -> str:
        for reg, expand in prepared:
            opcode = Opcode.PARAM_EXPAND if expand else Opcode.PARAM
            self._emit(opcode, [reg], node=node)
        call_args = [callee_reg] if description is None else [callee_reg, description]
        self._emit(Opcode.CALL_VALUE, call_args, node=node)
        dst = self._new_temp()
        self._emit(Opcode.RESULT_LIST if want_list else Opcode.RESULT, [dst], node=node)
        return dst

    def _compile_call(self, expr: CallExpr, want_list: bool = False) -> str:
        callee_reg = self._compile_expr(expr.callee)
        prepared = self._prepare_args(expr.args)
        return self._emit_call(callee_reg, prepared, expr, want_list, self._describe(expr.callee))

    def _compile_method_call(self, expr: MethodCallExpr, want_list: bool = False) -> str:
        receiver_reg = self._compile_expr(expr.receiver)
        key_reg = self._emit_literal(expr.method, expr)
        callee_reg = self._new_temp()
        self._emit(Opcode.TABLE_GET, [callee_reg, receiver_reg, key_reg, *self._describe_args(expr.receiver)], node=expr)
        prepared = [(receiver_reg, False)] + self._prepare_args(expr.args)
        return self._emit_call(callee_reg, prepared, expr, want_list, f"method '{expr.method}'")

    def _compile_function_expr(self, expr: FunctionExpr) -> str:
        child = LuaCompiler(
            self.info,
            parent=self,
            source_name=self.source_name,
            function_name=expr.name,
            is_vararg=expr.vararg,
        )
        proto = child._compile_function(expr.params, expr.body, expr, expr.line, expr.end_line)
        cells: List[str] = []
        for kind, source in child.upvalue_sources:
            if kind == "local":
                cells.append(source)
            else:
                cell = self._new_temp()
                self._emit(Opcode.BIND_UPVALUE, [cell, source], node=expr)
                cells.append(cell)
        dst = self._new_temp()
        self._emit(Opcode.CLOSURE, [dst, proto, *cells], node=expr)
        return dst

    def _compile_vararg(self, node: VarargExpr) -> str:
        if not self.is_vararg:
            raise self._error("cannot use '...' outside a vararg function near '...'", node)
        dst = self._new_temp()
        self._emit(Opcode.MOV, [dst, "__varargs"], node=node)
        return dst

    def _compile_table_constructor(self, expr: TableConstructor) -> str:
        table_reg = self._new_temp()
        self._emit(Opcode.TABLE_NEW, [table_reg], node=expr)
        total = len(expr.fields)
        position = 0
        for idx, item in enumerate(expr.fields):
            value_node = item.value
            if item.key is not None:
                key_reg = self._compile_expr(item.key)
                value_reg = self._compile_expr(item.value)
                self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg], node=value_node)
                continue
            if item.name is not None:
                key_reg = self._emit_literal(item.name, value_node)
                value_reg = self._compile_expr(item.value)
                self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg], node=value_node)
                continue
            position += 1
            if idx == total - 1 and isinstance(item.value, _MULTI_VALUE):
                list_reg = self._compile_multi(item.value)
                self._emit(Opcode.TABLE_EXTEND, [table_reg, list_reg, position], node=value_node)
                continue
            value_reg = self._compile_expr(item.value)
            key_reg = self._emit_literal(position, value_node)
            self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg], node=value_node)
        return table_reg

    # ------------------------------------------------------------------ Helpers
    def _describe(self, expr: Expr) -> Optional[str]:
        """Names a value for runtime error messages, as in "(global 'x')"."""
        if isinstance(expr, Identifier):
            if self._lookup_binding(expr.name) is not None:
                return f"local '{expr.name}'"
            if self._resolve_upvalue(expr.name) is not None:
                return f"upvalue '{expr.name}'"
            return f"global '{expr.name}'"
        if isinstance(expr, FieldAccess):
            return f"field '{expr.field}'"
        if isinstance(expr, IndexExpr) and isinstance(expr.index, Constant) and isinstance(expr.index.value, str):
            return f"field '{expr.index.value}'"
        return None

    def _describe_args(self, expr: Expr) -> List[str]:
        description = self._describe(expr)
        return [] if description is None else [description]

    def _binding_write(self, binding: VarBinding, value_reg: str, node: object) -> None:
        if binding.is_cell:
            self._emit(Opcode.CELL_SET, [binding.storage, value_reg], node=node)
        else:
            self._emit(Opcode.MOV, [binding.storage, value_reg], node=node)

    def _emit_literal(self, value, node: object) -> str:
        dst = self._new_temp()
        self._emit(Opcode.LOAD_CONST, [dst, value], node=node)
        return dst

    def _read_identifier(self, expr: Identifier) -> str:
        name = expr.name
        binding = self._lookup_binding(name)
        if binding is not None:
            if binding.is_cell:
                dst = self._new_temp()
                self._emit(Opcode.CELL_GET, [dst, binding.storage], node=expr)
                return dst
            return binding.storage
        index = self._resolve_upvalue(name)
        dst = self._new_temp()
        if index is not None:
            cell = self._new_temp()
            self._emit(Opcode.BIND_UPVALUE, [cell, index], node=expr)
            self._emit(Opcode.CELL_GET, [dst, cell], node=expr)
            return dst
        self._emit(Opcode.GET_GLOBAL, [dst, name], node=expr)
        return dst


__all__ = ["LuaCompiler", "CompileError"]
