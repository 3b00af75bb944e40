import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import LuaRuntime, VMRuntimeError, run_source


def test_arithmetic_follows_integer_and_float_subtypes():
    src = """
    return 1 + 2, 7 / 2, 2 ^ 10, 7 // -3, -7 // 2, 7 % 3, 7 % -5 + 6, 1 << 4, 0x10, -1, 3 * 2
    """
    assert run_source(src) == [3, 3.5, 1024.0, -3, -4, 1, 3, 16, 16, -1, 6]


def test_closures_capture_upvalues_per_iteration():
    src = """
    local fns = {}
    for i = 1, 3 do
        fns[i] = function() return i * 10 end
    end
    local function counter()
        local n = 0
        return function() n = n + 1; return n end
    end
    local c = counter()
    c(); c()
    return fns[1](), fns[3](), c()
    """
    assert run_source(src) == [10, 30, 3]


def test_varargs_and_multiple_results():
    src = """
    local function pack(...)
        return select("#", ...), ...
    end
    local function three() return 1, 2, 3 end
    local t = { three() }
    local u = { three(), 10 }
    return #t, #u, pack(nil, "x")
    """
    assert run_source(src) == [3, 2, 2, None, "x"]


def test_string_helpers_and_concatenation():
    src = """
    local s = "hello"
    return s:upper(), #s, s .. " " .. 42, ("x"):rep(3, "-"), string.format("%d-%s", 5, "a")
    """
    assert run_source(src) == ["HELLO", 5, "hello 42", "x-x-x", "5-a"]


def test_runtime_error_carries_position_and_variable():
    src = """local t = nil
    return t.x
    """
    with pytest.raises(VMRuntimeError) as excinfo:
        run_source(src, chunk_name="=test")
    assert str(excinfo.value) == "test:2: attempt to index a nil value (local 't')"


def test_pcall_returns_error_values():
    src = """
    local ok, err = pcall(error, { code = 7 })
    local ok2, msg = pcall(function() error("boom") end)
    return ok, err.code, ok2, msg
    """
    assert run_source(src, chunk_name="=chunk") == [False, 7, False, "chunk:3: boom"]


def test_goto_and_numeric_loops():
    src = """
    local total = 0
    for i = 10, 1, -3 do total = total + i end
    local n = 0
    ::again::
    n = n + 1
    if n < 3 then goto again end
    return total, n
    """
    assert run_source(src) == [22, 3]


def test_runtime_keeps_globals_between_chunks():
    runtime = LuaRuntime()
    runtime.execute("counter = 41")
    assert runtime.execute("counter = counter + 1 return counter") == [42]
