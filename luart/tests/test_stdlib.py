import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import LuaRuntime, VMRuntimeError, run_source


def test_string_patterns():
    src = """
    local words = {}
    for w in ("one two  three"):gmatch("%a+") do words[#words + 1] = w end
    local replaced, count = ("a-b-c"):gsub("-", "+")
    local k, v = ("key=value"):match("(%w+)=(%w+)")
    return #words, words[3], replaced, count, k, v, ("hello"):find("l"), ("a.b"):find(".", 1, true)
    """
    assert run_source(src) == [3, "three", "a+b+c", 2, "key", "value", 3, 2, 2]


def test_table_library():
    src = """
    local t = { 5, 2, 8 }
    table.insert(t, 1)
    table.sort(t)
    local removed = table.remove(t)
    local packed = table.pack(1, nil, 3)
    return table.concat(t, ","), removed, packed.n, select("#", table.unpack({ 1, 2, 3 }))
    """
    assert run_source(src) == ["1,2,5", 8, 3, 3]


def test_math_library():
    src = """
    return math.floor(3.7), math.max(1, 9, 4), math.type(1), math.type(1.0), math.tointeger(4.0), math.huge > 0
    """
    assert run_source(src) == [3, 9, "integer", "float", 4, True]


def test_only_the_sandboxed_libraries_are_installed():
    assert run_source("return type(string), type(table), type(math), type(coroutine), os, io") == [
        "table",
        "table",
        "table",
        "table",
        None,
        None,
    ]


def test_tonumber_and_tostring():
    src = """
    return tonumber("0x1F"), tonumber("10", 2), tonumber("nope"), tostring(1.5), tostring(nil)
    """
    assert run_source(src) == [31, 2, None, "1.5", "nil"]


def test_load_compiles_chunks_and_rejects_environments():
    runtime = LuaRuntime()
    assert runtime.execute("local f = load('return 1 + 1') return f()") == [2]
    ok, message = runtime.execute("return pcall(load, 'return 1', 'x', 't', {})")
    assert ok is False
    assert "custom environments are not supported" in message


def test_print_collects_output():
    runtime = LuaRuntime()
    runtime.execute("print('a', 1, nil)")
    assert runtime.output == ["a\t1\tnil"]


def test_error_with_non_string_value_propagates_value():
    with pytest.raises(VMRuntimeError) as excinfo:
        run_source("error({ code = 3 })")
    assert excinfo.value.value.raw_get("code") == 3
