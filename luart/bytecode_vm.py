from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from .bytecode import InstructionDebug, Opcode, Prototype
from .hooks import (
    HOOKCALL,
    HOOKCOUNT,
    HOOKLINE,
    HOOKRET,
    MASKCALL,
    MASKCOUNT,
    MASKLINE,
    MASKRET,
    LuaDebug,
)
from .table import LuaTable
from .values import (
    BuiltinFunction,
    LuaFunction,
    LuaMultiReturn,
    Userdata,
    float_to_int,
    format_number,
    is_callable,
    is_falsy,
    is_number,
    lua_type,
    to_number,
    wrap_int,
)
from .vm_errors import TraceFrame, VMRuntimeError

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .coroutines import LuaThread
    from .runtime import LuaRuntime

_MAX_META_CHAIN = 2000
_UINT64 = 2**64 - 1


class LuaYield:
    __slots__ = ("values",)

    def __init__(self, values):
        self.values = list(values)


@dataclass
class Cell:
    value: object


@dataclass
class CallFrame:
    return_pc: int
    proto: Optional[Prototype]
    registers: Dict[str, object]
    param_stack: List[object]
    pending_params: List[object]
    upvalues: List[Cell]
    function: object
    caller_debug: InstructionDebug | None
    last_line: int = -1


# ---------------------------------------------------------------- arithmetic


def _div(a, b):
    a = float(a)
    b = float(b)
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _add(a, b):
    if type(a) is int and type(b) is int:
        return wrap_int(a + b)
    return float(a) + float(b)


def _sub(a, b):
    if type(a) is int and type(b) is int:
        return wrap_int(a - b)
    return float(a) - float(b)


def _mul(a, b):
    if type(a) is int and type(b) is int:
        return wrap_int(a * b)
    return float(a) * float(b)


def _mod(a, b):
    if type(a) is int and type(b) is int:
        if b == 0:
            raise RuntimeError("attempt to perform 'n%0'")
        return a % b
    a = float(a)
    b = float(b)
    if math.isinf(b) and math.isfinite(a):
        if a == 0 or (a > 0) == (b > 0):
            return a
        return b
    try:
        result = math.fmod(a, b)
    except ValueError:
        return math.nan
    if result != 0 and (result < 0) != (b < 0):
        result += b
    return result


def _idiv(a, b):
    if type(a) is int and type(b) is int:
        if b == 0:
            raise RuntimeError("attempt to perform 'n//0'")
        return wrap_int(a // b)
    quotient = _div(a, b)
    if math.isfinite(quotient):
        return float(math.floor(quotient))
    return quotient


def _pow(a, b):
    a = float(a)
    b = float(b)
    if a == 0.0 and b < 0:
        return math.inf
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


_ARITH = {
    Opcode.ADD: ("__add", _add),
    Opcode.SUB: ("__sub", _sub),
    Opcode.MUL: ("__mul", _mul),
    Opcode.DIV: ("__div", _div),
    Opcode.MOD: ("__mod", _mod),
    Opcode.IDIV: ("__idiv", _idiv),
    Opcode.POW: ("__pow", _pow),
}


def _shift_left(a: int, n: int) -> int:
    if n <= -64 or n >= 64:
        return 0
    unsigned = a & _UINT64
    if n >= 0:
        return wrap_int((unsigned << n) & _UINT64)
    return wrap_int(unsigned >> -n)


_BITWISE = {
    Opcode.AND_BIT: ("__band", lambda a, b: a & b),
    Opcode.OR_BIT: ("__bor", lambda a, b: a | b),
    Opcode.XOR: ("__bxor", lambda a, b: wrap_int(a ^ b)),
    Opcode.SHL: ("__shl", _shift_left),
    Opcode.SHR: ("__shr", lambda a, n: _shift_left(a, -n)),
}


def _bit_operand(value) -> Optional[int]:
    number = to_number(value)
    if number is None:
        return None
    if type(number) is int:
        return number
    result = float_to_int(number)
    if result is None:
        raise RuntimeError("number has no integer representation")
    return result


def _first(values: Sequence[object]):
    return values[0] if values else None


def _suffix(description: Optional[str]) -> str:
    return f" ({description})" if description else ""


class BytecodeVM:
    """Executes Lua prototypes for one thread.

    Lua-to-Lua calls push a :class:`CallFrame` and continue in the same
    ``step`` loop; host code re-enters the VM through :meth:`call_callable`,
    which runs a nested loop until the callee returns.
    """

    def __init__(self, runtime: "LuaRuntime", thread: "LuaThread | None" = None):
        self.runtime = runtime
        self.thread = thread
        self.proto: Optional[Prototype] = None
        self.instructions: list = []
        self.labels: Dict[str, int] = {}
        self.registers: Dict[str, object] = {}
        self.call_stack: List[CallFrame] = []
        self.param_stack: List[object] = []
        self.pending_params: List[object] = []
        self.pc = 0
        self.current_upvalues: List[Cell] = []
        self.current_function: object = None
        self.last_return: List[object] = []
        self.yield_values: List[object] = []
        self._last_traceback: Optional[List[TraceFrame]] = None
        self._c_depth = 0
        self._in_hook = False
        self._last_line = -1
        self._last_pc = -1
        self._hook_counter = 0
        self._handlers = {
            Opcode.LOAD_CONST: self._op_LOAD_CONST,
            Opcode.MOV: self._op_MOV,
            Opcode.ADD: self._op_arith,
            Opcode.SUB: self._op_arith,
            Opcode.MUL: self._op_arith,
            Opcode.DIV: self._op_arith,
            Opcode.MOD: self._op_arith,
            Opcode.POW: self._op_arith,
            Opcode.IDIV: self._op_arith,
            Opcode.CONCAT: self._op_CONCAT,
            Opcode.NEG: self._op_NEG,
            Opcode.EQ: self._op_EQ,
            Opcode.LT: self._op_LT,
            Opcode.LE: self._op_LE,
            Opcode.NOT: self._op_NOT,
            Opcode.AND_BIT: self._op_bitwise,
            Opcode.OR_BIT: self._op_bitwise,
            Opcode.XOR: self._op_bitwise,
            Opcode.SHL: self._op_bitwise,
            Opcode.SHR: self._op_bitwise,
            Opcode.NOT_BIT: self._op_NOT_BIT,
            Opcode.LEN: self._op_LEN,
            Opcode.IS_NULL: self._op_IS_NULL,
            Opcode.MAKE_CELL: self._op_MAKE_CELL,
            Opcode.CELL_GET: self._op_CELL_GET,
            Opcode.CELL_SET: self._op_CELL_SET,
            Opcode.CLOSURE: self._op_CLOSURE,
            Opcode.BIND_UPVALUE: self._op_BIND_UPVALUE,
            Opcode.GET_GLOBAL: self._op_GET_GLOBAL,
            Opcode.SET_GLOBAL: self._op_SET_GLOBAL,
            Opcode.VARARG: self._op_VARARG,
            Opcode.VARARG_FIRST: self._op_VARARG_FIRST,
            Opcode.LIST_GET: self._op_LIST_GET,
            Opcode.TABLE_NEW: self._op_TABLE_NEW,
            Opcode.TABLE_SET: self._op_TABLE_SET,
            Opcode.TABLE_GET: self._op_TABLE_GET,
            Opcode.TABLE_EXTEND: self._op_TABLE_EXTEND,
            Opcode.JMP: self._op_JMP,
            Opcode.JZ: self._op_JZ,
            Opcode.JNZ: self._op_JNZ,
            Opcode.FOR_PREP: self._op_FOR_PREP,
            Opcode.LABEL: self._op_LABEL,
            Opcode.PARAM: self._op_PARAM,
            Opcode.PARAM_EXPAND: self._op_PARAM_EXPAND,
            Opcode.CALL_VALUE: self._op_CALL_VALUE,
            Opcode.ARG: self._op_ARG,
            Opcode.RESULT: self._op_RESULT,
            Opcode.RESULT_LIST: self._op_RESULT_LIST,
            Opcode.RETURN_MULTI: self._op_RETURN_MULTI,
        }

    def val(self, name):
        return self.registers.get(name)

    @property
    def is_yieldable(self) -> bool:
        return self.thread is not None and not self.thread.is_main and self._c_depth == 0

    # -------------------- Debug helpers --------------------
    def _capture_traceback(self) -> List[TraceFrame]:
        frames: List[TraceFrame] = []
        if self.proto is not None:
            frames.append(self._frame_from_debug(self._instruction_debug(self.pc), self.pc))
        for frame in reversed(self.call_stack):
            if frame.proto is None or frame.caller_debug is None:
                continue
            pc = frame.return_pc - 1 if frame.return_pc > 0 else frame.return_pc
            frames.append(self._frame_from_debug(frame.caller_debug, pc))
        self._last_traceback = frames
        return frames

    def _instruction_debug(self, pc: int) -> InstructionDebug | None:
        if 0 <= pc < len(self.instructions):
            return self.instructions[pc].debug
        return None

    def _frame_from_debug(self, debug: InstructionDebug | None, pc: int) -> TraceFrame:
        coroutine_id = None
        if self.thread is not None and not self.thread.is_main:
            coroutine_id = id(self.thread)
        if debug is None:
            name = self.proto.name if self.proto is not None else "?"
            return TraceFrame(name, "?", 0, 0, pc, coroutine_id)
        location = debug.location
        return TraceFrame(
            function_name=debug.function_name,
            file=location.file,
            line=location.line,
            column=location.column,
            pc=pc,
            coroutine_id=coroutine_id,
        )

    def _wrap_runtime_error(self, exc: Exception) -> VMRuntimeError:
        message = str(exc) or exc.__class__.__name__
        position = self.where(1)
        if position:
            message = f"{position} {message}"
        frames = self._capture_traceback()
        return VMRuntimeError(message, frames)

    @property
    def last_traceback(self) -> Optional[List[TraceFrame]]:
        return self._last_traceback

    def where(self, level: int = 1) -> str:
        """Returns ``"file:line:"`` for the function ``level`` calls up, or ``""``."""
        if self.proto is None or level < 1:
            return ""
        if level == 1:
            debug = self._instruction_debug(self.pc)
        else:
            index = len(self.call_stack) - (level - 1)
            if index < 0:
                return ""
            frame = self.call_stack[index]
            if frame.proto is None:
                return ""
            debug = frame.caller_debug
        if debug is None:
            return ""
        return f"{debug.location.file}:{debug.location.line}:"

    def debug_info(self, level: int):
        """Describes the Lua function running ``level`` calls up, or ``None``."""
        if self.proto is None or level < 0:
            return None
        if level == 0:
            proto = self.proto
            debug = self._instruction_debug(self.pc)
        else:
            index = len(self.call_stack) - level
            if index < 0:
                return None
            proto = self.call_stack[index].proto
            if proto is None:
                return None
            debug = self.call_stack[index].caller_debug
        line = debug.location.line if debug is not None else -1
        return LuaDebug(
            event=-1,
            name=proto.name,
            what="main" if proto.name == "main chunk" else "Lua",
            source=proto.source,
            short_src=proto.source,
            currentline=line,
            linedefined=proto.line_defined,
            lastlinedefined=proto.last_line_defined,
        )

    # -------------------- Execution --------------------
    def step(self):
        """Executes a single instruction."""
        if self.proto is None or self.pc >= len(self.instructions):
            return "halt"
        runtime = self.runtime
        try:
            if runtime.pending_finalizers and not runtime.finalizing:
                runtime.run_finalizers(self)
            inst = self.instructions[self.pc]
            if runtime.hook_mask and not self._in_hook:
                self._trace(inst)
            control = self._handlers[inst.opcode](inst.args)
        except VMRuntimeError:
            raise
        except RecursionError as exc:
            raise self._wrap_runtime_error(RuntimeError("stack overflow")) from exc
        except Exception as exc:
            raise self._wrap_runtime_error(exc) from exc
        if control == "jump":
            return None
        if control == "halt":
            return "halt"
        if control == "yield":
            self.pc += 1
            return "yield"
        self.pc += 1
        return None

    def run(self):
        """Runs until the outermost function returns (``"halt"``) or yields."""
        while True:
            status = self.step()
            if status == "halt" or status == "yield":
                return status

    def _enter(self, func: LuaFunction, args: Sequence[object], return_pc: int) -> None:
        if len(self.call_stack) >= self.runtime.max_call_depth:
            raise RuntimeError("stack overflow")
        self.call_stack.append(
            CallFrame(
                return_pc=return_pc,
                proto=self.proto,
                registers=self.registers,
                param_stack=self.param_stack,
                pending_params=self.pending_params,
                upvalues=self.current_upvalues,
                function=self.current_function,
                caller_debug=self._instruction_debug(self.pc),
                last_line=self._last_line,
            )
        )
        self._activate(func, args)

    def _activate(self, func: LuaFunction, args: Sequence[object]) -> None:
        proto = func.proto
        self.proto = proto
        self.instructions = proto.instructions
        self.labels = proto.labels
        self.pc = 0
        self.registers = {}
        self.param_stack = list(args)
        self.pending_params = []
        self.current_upvalues = func.upvalues
        self.current_function = func
        self._last_line = -1
        self._last_pc = -1
        if self.runtime.hook_mask & MASKCALL:
            self._fire_hook(HOOKCALL, -1)

    def _restore(self, frame: CallFrame) -> None:
        self.proto = frame.proto
        self.instructions = frame.proto.instructions if frame.proto is not None else []
        self.labels = frame.proto.labels if frame.proto is not None else {}
        self.pc = frame.return_pc
        self.registers = frame.registers
        self.param_stack = frame.param_stack
        self.pending_params = frame.pending_params
        self.current_upvalues = frame.upvalues
        self.current_function = frame.function
        self._last_line = frame.last_line
        self._last_pc = frame.return_pc - 1

    def _return_with(self, values: List[object]):
        self.last_return = values
        if self.runtime.hook_mask & MASKRET:
            self._fire_hook(HOOKRET, -1)
        if not self.call_stack:
            self.proto = None
            self.instructions = []
            self.registers = {}
            self.current_function = None
            return "halt"
        self._restore(self.call_stack.pop())
        return "jump"

    def prepare_resume(self, values):
        self.last_return = list(values)

    def _coerce_call_result(self, result):
        if result is None:
            return []
        if isinstance(result, (list, tuple)):
            return list(result)
        if isinstance(result, LuaMultiReturn):
            return list(result.values)
        return [result]

    # -------------------- Hooks --------------------
    def _trace(self, inst) -> None:
        runtime = self.runtime
        mask = runtime.hook_mask
        if mask & MASKCOUNT and runtime.hook_count > 0:
            self._hook_counter += 1
            if self._hook_counter >= runtime.hook_count:
                self._hook_counter = 0
                self._fire_hook(HOOKCOUNT, -1)
        if mask & MASKLINE and inst.debug is not None:
            line = inst.debug.location.line
            if line != self._last_line or self.pc <= self._last_pc:
                self._last_line = line
                self._fire_hook(HOOKLINE, line)
        self._last_pc = self.pc

    def _fire_hook(self, event: int, line: int, native: object = None) -> None:
        if self._in_hook or self.runtime.hook is None:
            return
        self._in_hook = True
        try:
            self.runtime.dispatch_hook(self, event, line, native)
        except VMRuntimeError:
            raise
        except Exception as exc:
            raise self._wrap_runtime_error(exc) from exc
        finally:
            self._in_hook = False

    # -------------------- Calls --------------------
    def _resolve_call(self, func, args: List[object], description: Optional[str] = None):
        for _ in range(_MAX_META_CHAIN):
            if is_callable(func):
                return func, args
            handler = self.metamethod(func, "__call")
            if handler is None:
                raise RuntimeError(f"attempt to call a {lua_type(func)} value{_suffix(description)}")
            args = [func, *args]
            func = handler
        raise RuntimeError("'__call' chain too long; possible loop")

    def _call_native(self, func, args: List[object]):
        hooked = self.runtime.hook_mask & (MASKCALL | MASKRET)
        if hooked & MASKCALL:
            self._fire_hook(HOOKCALL, -1, func)
        if isinstance(func, BuiltinFunction):
            result = func(args, self)
        else:
            result = self.thread.state.call_c(func, args)
        if hooked & MASKRET:
            self._fire_hook(HOOKRET, -1, func)
        return result

    def call_callable(self, func, args: Sequence[object]) -> List[object]:
        """Calls any Lua value from host code and returns its results."""
        saved_last_return = self.last_return
        try:
            func, call_args = self._resolve_call(func, list(args))
            if isinstance(func, LuaFunction):
                return self._call_lua(func, call_args)
            self._c_depth += 1
            try:
                result = self._call_native(func, call_args)
            finally:
                self._c_depth -= 1
            if isinstance(result, LuaYield):
                raise RuntimeError("attempt to yield across a C-call boundary")
            return self._coerce_call_result(result)
        except VMRuntimeError:
            raise
        except RecursionError as exc:
            raise self._wrap_runtime_error(RuntimeError("stack overflow")) from exc
        except Exception as exc:
            raise self._wrap_runtime_error(exc) from exc
        finally:
            self.last_return = saved_last_return

    def _call_lua(self, func: LuaFunction, args: List[object]) -> List[object]:
        if self._c_depth >= self.runtime.max_c_calls:
            raise RuntimeError("C stack overflow")
        target_depth = len(self.call_stack)
        self._c_depth += 1
        try:
            self._enter(func, args, self.pc)
            while len(self.call_stack) > target_depth:
                if self.step() == "halt":
                    break
            return list(self.last_return)
        finally:
            self._c_depth -= 1
            if len(self.call_stack) > target_depth:
                self._restore(self.call_stack[target_depth])
                del self.call_stack[target_depth:]

    # -------------------- Metatables --------------------
    def get_metatable(self, value) -> Optional[LuaTable]:
        if isinstance(value, (LuaTable, Userdata)):
            return value.metatable
        if isinstance(value, str):
            return self.runtime.string_metatable
        return None

    def metamethod(self, value, event: str):
        metatable = self.get_metatable(value)
        if metatable is None:
            return None
        return metatable.raw_get(event)

    def _call_meta(self, handler, *args):
        return _first(self.call_callable(handler, args))

    def index(self, obj, key, description: Optional[str] = None):
        for _ in range(_MAX_META_CHAIN):
            if isinstance(obj, LuaTable):
                value = obj.raw_get(key)
                if value is not None:
                    return value
                metatable = obj.metatable
                if metatable is None:
                    return None
                handler = metatable.raw_get("__index")
                if handler is None:
                    return None
            else:
                handler = self.metamethod(obj, "__index")
                if handler is None:
                    raise RuntimeError(f"attempt to index a {lua_type(obj)} value{_suffix(description)}")
            if is_callable(handler):
                return self._call_meta(handler, obj, key)
            obj = handler
            description = None
        raise RuntimeError("'__index' chain too long; possible loop")

    def newindex(self, obj, key, value, description: Optional[str] = None) -> None:
        for _ in range(_MAX_META_CHAIN):
            if isinstance(obj, LuaTable):
                metatable = obj.metatable
                if metatable is None or obj.raw_get(key) is not None:
                    obj.raw_set(key, value)
                    return
                handler = metatable.raw_get("__newindex")
                if handler is None:
                    obj.raw_set(key, value)
                    return
            else:
                handler = self.metamethod(obj, "__newindex")
                if handler is None:
                    raise RuntimeError(f"attempt to index a {lua_type(obj)} value{_suffix(description)}")
            if is_callable(handler):
                self.call_callable(handler, [obj, key, value])
                return
            obj = handler
            description = None
        raise RuntimeError("'__newindex' chain too long; possible loop")

    def arith(self, opcode: Opcode, a, b):
        event, operation = _ARITH[opcode]
        x = to_number(a)
        y = to_number(b)
        if x is not None and y is not None:
            return operation(x, y)
        handler = self.metamethod(a, event) or self.metamethod(b, event)
        if handler is None:
            culprit = b if x is not None else a
            raise RuntimeError(f"attempt to perform arithmetic on a {lua_type(culprit)} value")
        return self._call_meta(handler, a, b)

    def concat(self, a, b):
        if isinstance(a, (str, int, float)) and isinstance(b, (str, int, float)) \
                and not isinstance(a, bool) and not isinstance(b, bool):
            left = a if isinstance(a, str) else format_number(a)
            right = b if isinstance(b, str) else format_number(b)
            return left + right
        handler = self.metamethod(a, "__concat") or self.metamethod(b, "__concat")
        if handler is None:
            culprit = b if isinstance(a, str) or is_number(a) else a
            raise RuntimeError(f"attempt to concatenate a {lua_type(culprit)} value")
        return self._call_meta(handler, a, b)

    def equals(self, a, b) -> bool:
        if is_number(a) and is_number(b):
            return a == b
        if a is b:
            return True
        if type(a) is not type(b):
            return False
        if type(a) is str:
            return a == b
        if isinstance(a, (LuaTable, Userdata)):
            handler = self.metamethod(a, "__eq") or self.metamethod(b, "__eq")
            if handler is not None:
                return not is_falsy(self._call_meta(handler, a, b))
        return False

    def less_than(self, a, b) -> bool:
        if is_number(a) and is_number(b):
            return a < b
        if type(a) is str and type(b) is str:
            return a < b
        handler = self.metamethod(a, "__lt") or self.metamethod(b, "__lt")
        if handler is None:
            raise self._compare_error(a, b)
        return not is_falsy(self._call_meta(handler, a, b))

    def less_equal(self, a, b) -> bool:
        if is_number(a) and is_number(b):
            return a <= b
        if type(a) is str and type(b) is str:
            return a <= b
        handler = self.metamethod(a, "__le") or self.metamethod(b, "__le")
        if handler is not None:
            return not is_falsy(self._call_meta(handler, a, b))
        handler = self.metamethod(b, "__lt") or self.metamethod(a, "__lt")
        if handler is None:
            raise self._compare_error(a, b)
        return is_falsy(self._call_meta(handler, b, a))

    @staticmethod
    def _compare_error(a, b) -> RuntimeError:
        left, right = lua_type(a), lua_type(b)
        if left == right:
            return RuntimeError(f"attempt to compare two {left} values")
        return RuntimeError(f"attempt to compare {left} with {right}")

    def length(self, value):
        if isinstance(value, str):
            return len(value)
        handler = self.metamethod(value, "__len")
        if handler is not None:
            return self._call_meta(handler, value)
        if isinstance(value, LuaTable):
            return value.lua_len()
        raise RuntimeError(f"attempt to get length of a {lua_type(value)} value")

    # -------------------- Opcode handlers --------------------
    def _op_LOAD_CONST(self, args):
        self.registers[args[0]] = args[1]

    def _op_MOV(self, args):
        self.registers[args[0]] = self.registers.get(args[1])

    def _op_arith(self, args):
        dst, left, right = args
        opcode = self.instructions[self.pc].opcode
        self.registers[dst] = self.arith(opcode, self.val(left), self.val(right))

    def _op_CONCAT(self, args):
        dst, left, right = args
        self.registers[dst] = self.concat(self.val(left), self.val(right))

    def _op_NEG(self, args):
        dst, src = args
        value = self.val(src)
        number = to_number(value)
        if number is not None:
            self.registers[dst] = wrap_int(-number) if type(number) is int else -number
            return
        handler = self.metamethod(value, "__unm")
        if handler is None:
            raise RuntimeError(f"attempt to perform arithmetic on a {lua_type(value)} value")
        self.registers[dst] = self._call_meta(handler, value, value)

    def _op_EQ(self, args):
        dst, left, right = args
        self.registers[dst] = self.equals(self.val(left), self.val(right))

    def _op_LT(self, args):
        dst, left, right = args
        self.registers[dst] = self.less_than(self.val(left), self.val(right))

    def _op_LE(self, args):
        dst, left, right = args
        self.registers[dst] = self.less_equal(self.val(left), self.val(right))

    def _op_NOT(self, args):
        dst, src = args
        self.registers[dst] = is_falsy(self.val(src))

    def _op_bitwise(self, args):
        dst, left_reg, right_reg = args
        event, operation = _BITWISE[self.instructions[self.pc].opcode]
        left = self.val(left_reg)
        right = self.val(right_reg)
        handler = None
        if to_number(left) is None or to_number(right) is None:
            handler = self.metamethod(left, event) or self.metamethod(right, event)
            if handler is None:
                culprit = right if to_number(left) is not None else left
                raise RuntimeError(f"attempt to perform bitwise operation on a {lua_type(culprit)} value")
            self.registers[dst] = self._call_meta(handler, left, right)
            return
        self.registers[dst] = operation(_bit_operand(left), _bit_operand(right))

    def _op_NOT_BIT(self, args):
        dst, src = args
        value = self.val(src)
        if to_number(value) is None:
            handler = self.metamethod(value, "__bnot")
            if handler is None:
                raise RuntimeError(f"attempt to perform bitwise operation on a {lua_type(value)} value")
            self.registers[dst] = self._call_meta(handler, value, value)
            return
        self.registers[dst] = wrap_int(~_bit_operand(value))

    def _op_LEN(self, args):
        dst, src = args
        self.registers[dst] = self.length(self.val(src))

    def _op_IS_NULL(self, args):
        dst, src = args
        self.registers[dst] = self.val(src) is None

    def _op_MAKE_CELL(self, args):
        dst, src = args
        self.registers[dst] = Cell(self.val(src))

    def _op_CELL_GET(self, args):
        dst, cell_reg = args
        cell = self.registers.get(cell_reg)
        if not isinstance(cell, Cell):
            raise RuntimeError(f"CELL_GET expects cell in {cell_reg}")
        self.registers[dst] = cell.value

    def _op_CELL_SET(self, args):
        cell_reg, src = args
        cell = self.registers.get(cell_reg)
        if not isinstance(cell, Cell):
            raise RuntimeError(f"CELL_SET expects cell in {cell_reg}")
        cell.value = self.val(src)

    def _op_CLOSURE(self, args):
        dst, proto = args[0], args[1]
        upvalues = []
        for cell_reg in args[2:]:
            cell = self.registers.get(cell_reg)
            if not isinstance(cell, Cell):
                raise RuntimeError(f"CLOSURE expects cell register, got {cell_reg}")
            upvalues.append(cell)
        self.registers[dst] = LuaFunction(proto, upvalues)

    def _op_BIND_UPVALUE(self, args):
        dst, index = args
        if index < 0 or index >= len(self.current_upvalues):
            raise RuntimeError("BIND_UPVALUE index out of range")
        self.registers[dst] = self.current_upvalues[index]

    def _op_GET_GLOBAL(self, args):
        dst, name = args
        self.registers[dst] = self.index(self.runtime.globals, name)

    def _op_SET_GLOBAL(self, args):
        name, src = args
        self.newindex(self.runtime.globals, name, self.val(src))

    def _op_VARARG(self, args):
        self.registers[args[0]] = list(self.param_stack)

    def _op_VARARG_FIRST(self, args):
        dst, src = args
        values = self.val(src)
        self.registers[dst] = values[0] if values else None

    def _op_LIST_GET(self, args):
        dst, src, index = args
        values = self.val(src)
        if isinstance(values, list) and 0 <= index < len(values):
            self.registers[dst] = values[index]
        else:
            self.registers[dst] = None

    def _op_TABLE_NEW(self, args):
        self.registers[args[0]] = LuaTable()

    def _op_TABLE_SET(self, args):
        table_reg, key_reg, value_reg = args[:3]
        description = args[3] if len(args) > 3 else None
        self.newindex(self.val(table_reg), self.val(key_reg), self.val(value_reg), description)

    def _op_TABLE_GET(self, args):
        dst, table_reg, key_reg = args[:3]
        description = args[3] if len(args) > 3 else None
        self.registers[dst] = self.index(self.val(table_reg), self.val(key_reg), description)

    def _op_TABLE_EXTEND(self, args):
        table_reg, values_reg, start = args
        table = self.val(table_reg)
        for offset, value in enumerate(self.val(values_reg) or ()):
            table.raw_set(start + offset, value)

    def _op_JMP(self, args):
        self.pc = self.labels[args[0]]
        return "jump"

    def _op_JZ(self, args):
        if is_falsy(self.val(args[0])):
            self.pc = self.labels[args[1]]
            return "jump"
        return None

    def _op_JNZ(self, args):
        if not is_falsy(self.val(args[0])):
            self.pc = self.labels[args[1]]
            return "jump"
        return None

    def _op_FOR_PREP(self, args):
        index_reg, limit_reg, step_reg = args
        start = to_number(self.val(index_reg))
        if start is None:
            raise RuntimeError("'for' initial value must be a number")
        limit = to_number(self.val(limit_reg))
        if limit is None:
            raise RuntimeError("'for' limit must be a number")
        step = to_number(self.val(step_reg))
        if step is None:
            raise RuntimeError("'for' step must be a number")
        if step == 0:
            raise RuntimeError("'for' step is zero")
        if type(start) is int and type(step) is int:
            if type(limit) is float and not math.isnan(limit):
                if math.isinf(limit):
                    limit = 2**63 - 1 if limit > 0 else -(2**63)
                else:
                    limit = math.floor(limit) if step > 0 else math.ceil(limit)
        else:
            start, limit, step = float(start), float(limit), float(step)
        self.registers[index_reg] = start
        self.registers[limit_reg] = limit
        self.registers[step_reg] = step

    def _op_LABEL(self, args):
        return None

    def _op_PARAM(self, args):
        self.pending_params.append(self.val(args[0]))

    def _op_PARAM_EXPAND(self, args):
        values = self.val(args[0])
        if values:
            self.pending_params.extend(values)

    def _op_ARG(self, args):
        self.registers[args[0]] = self.param_stack.pop(0) if self.param_stack else None

    def _op_CALL_VALUE(self, args):
        callee = self.val(args[0])
        description = args[1] if len(args) > 1 else None
        call_args = self.pending_params
        self.pending_params = []
        func, call_args = self._resolve_call(callee, call_args, description)
        if isinstance(func, LuaFunction):
            self._enter(func, call_args, self.pc + 1)
            return "jump"
        result = self._call_native(func, call_args)
        if isinstance(result, LuaYield):
            if self.thread is None or self.thread.is_main:
                raise RuntimeError("attempt to yield from outside a coroutine")
            if self._c_depth > 0:
                raise RuntimeError("attempt to yield across a C-call boundary")
            self.yield_values = list(result.values)
            self.last_return = []
            return "yield"
        self.last_return = self._coerce_call_result(result)
        return None

    def _op_RESULT(self, args):
        self.registers[args[0]] = self.last_return[0] if self.last_return else None

    def _op_RESULT_LIST(self, args):
        self.registers[args[0]] = list(self.last_return)

    def _op_RETURN_MULTI(self, args):
        values = []
        for reg in args:
            value = self.val(reg)
            if isinstance(value, list):
                values.extend(value)
            else:
                values.append(value)
        return self._return_with(values)


__all__ = ["BytecodeVM", "CallFrame", "Cell", "LuaYield"]
