import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import ERRRUN, ERRSYNTAX, OK, REGISTRYINDEX, YIELD, LuaRuntime, VMRuntimeError, upvalue_index
from luart.constants import TNIL, TNONE, TNUMBER, TSTRING, TTABLE, TUSERDATA


def test_stack_manipulation():
    state = LuaRuntime().state
    state.push_integer(1)
    state.push_string("two")
    state.push_number(3.5)
    assert state.get_top() == 3
    assert state.type_of(1) == TNUMBER and state.is_integer(1)
    assert not state.is_integer(3)
    assert state.to_string(-2) == "two"
    state.push_value(1)
    assert state.to_integer(-1) == 1
    state.remove(2)
    assert state.to_number(2) == 3.5
    state.set_top(1)
    assert state.get_top() == 1
    state.pop(1)
    assert state.get_top() == 0
    assert state.type_of(1) == TNONE


def test_to_string_converts_numbers_in_place():
    state = LuaRuntime().state
    state.push_integer(12)
    assert state.to_string(1) == "12"
    assert state.type_of(1) == TSTRING


def test_tables_through_the_stack():
    state = LuaRuntime().state
    state.new_table()
    state.push_string("answer")
    state.push_integer(42)
    state.set_table(1)
    state.push_string("x")
    state.set_field(1, "name")
    state.push_string("first")
    state.raw_seti(1, 1)
    assert state.get_field(1, "answer") == TNUMBER
    assert state.to_integer(-1) == 42
    state.pop(1)
    state.raw_geti(1, 1)
    assert state.to_string(-1) == "first"
    state.pop(1)
    keys = []
    state.push_nil()
    while state.next(1):
        keys.append(state.to_string(-2) if state.type_of(-2) == TSTRING else state.to_integer(-2))
        state.pop(1)
    assert sorted(keys, key=str) == [1, "answer", "name"]
    assert state.get_top() == 1


def test_registry_references_reuse_freed_slots():
    state = LuaRuntime().state
    state.new_table()
    first = state.ref(REGISTRYINDEX)
    state.push_string("value")
    second = state.ref(REGISTRYINDEX)
    assert (first, second) == (3, 4)
    state.unref(REGISTRYINDEX, first)
    state.push_boolean(True)
    assert state.ref(REGISTRYINDEX) == first
    state.raw_geti(REGISTRYINDEX, second)
    assert state.to_string(-1) == "value"


def test_pcall_leaves_error_value_and_balances_stack():
    state = LuaRuntime().state
    state.push_string("sentinel")
    assert state.load_string("error('boom')", "=chunk") == OK
    assert state.pcall(0, 0) == ERRRUN
    assert state.get_top() == 2
    assert state.to_string(-1) == "chunk:1: boom"
    assert state.last_error is not None


def test_pcall_with_message_handler():
    state = LuaRuntime().state
    state.load_string("return function(m) return 'handled: ' .. m end")
    state.call(0, 1)
    state.load_string("error('x')", "=c")
    assert state.pcall(0, 1, 1) == ERRRUN
    assert state.to_string(-1) == "handled: c:1: x"


def test_load_string_reports_syntax_errors():
    state = LuaRuntime().state
    assert state.load_string("return +", "=bad") == ERRSYNTAX
    assert state.type_of(-1) == TSTRING


def test_c_function_errors_are_script_errors():
    runtime = LuaRuntime()
    state = runtime.state

    def fail(s):
        s.push_string("native failure")
        s.error()

    state.push_cfunction(fail, "fail")
    state.set_global("fail")
    assert runtime.execute("local ok, err = pcall(fail) return ok, err") == [False, "native failure"]
    with pytest.raises(VMRuntimeError):
        runtime.execute("fail()")


def test_c_closure_upvalues_persist_between_calls():
    runtime = LuaRuntime()
    state = runtime.state

    def counter(s):
        s.push_integer(s.to_integer(upvalue_index(1)) + 1)
        s.push_value(-1)
        s.replace(upvalue_index(1))
        return 1

    state.push_integer(0)
    state.push_cclosure(counter, 1, "counter")
    state.set_global("counter")
    assert runtime.execute("counter() counter() return counter()") == [3]


def test_call_runs_function_with_arguments():
    state = LuaRuntime().state
    state.load_string("local a, b = ... return a + b")
    state.push_integer(2)
    state.push_integer(3)
    state.call(2, 1)
    assert state.to_integer(-1) == 5
    assert state.get_top() == 1


def test_userdata_with_metatable():
    state = LuaRuntime().state
    udata = state.new_userdata({"payload": 1})
    assert state.new_metatable("demo") is True
    assert state.new_metatable("demo") is False
    state.pop(1)
    state.set_metatable(1)
    assert state.type_of(1) == TUSERDATA
    assert state.to_userdata(1) == {"payload": 1}
    assert state.get_metatable(1)
    state.get_field(-1, "__name")
    assert state.to_string(-1) == "demo"
    assert udata.metatable is not None


def test_threads_resume_through_the_state():
    state = LuaRuntime().state
    thread = state.new_thread()
    thread.load_string("local x = coroutine.yield(10) return x + 1")
    assert thread.resume(0, state) == YIELD
    assert thread.to_integer(-1) == 10
    thread.set_top(0)
    thread.push_integer(4)
    assert thread.resume(1, state) == OK
    assert thread.to_integer(-1) == 5
    assert thread.status() == OK
    assert state.type_of(-1) != TNIL


def test_create_table_keeps_type():
    state = LuaRuntime().state
    state.create_table(4, 2)
    assert state.type_of(-1) == TTABLE
    assert state.raw_len(-1) == 0
