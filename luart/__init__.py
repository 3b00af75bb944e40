from .constants import ERRERR, ERRMEM, ERRRUN, ERRSYNTAX, MULTRET, OK, REGISTRYINDEX, YIELD, upvalue_index
from .coroutines import LuaThread, ResumeResult
from .hooks import LuaDebug
from .runtime import LuaRuntime, chunk_id, compile_source, run_source
from .state import LuaState
from .table import LuaTable
from .values import BuiltinFunction, CFunction, LuaFunction, LuaMultiReturn, Userdata
from .vm_errors import LuaError, VMRuntimeError

__all__ = [
    "BuiltinFunction",
    "CFunction",
    "ERRERR",
    "ERRMEM",
    "ERRRUN",
    "ERRSYNTAX",
    "LuaDebug",
    "LuaError",
    "LuaFunction",
    "LuaMultiReturn",
    "LuaRuntime",
    "LuaState",
    "LuaTable",
    "LuaThread",
    "MULTRET",
    "OK",
    "REGISTRYINDEX",
    "ResumeResult",
    "Userdata",
    "VMRuntimeError",
    "YIELD",
    "chunk_id",
    "compile_source",
    "run_source",
    "upvalue_index",
]
