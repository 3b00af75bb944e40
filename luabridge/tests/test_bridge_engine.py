import logging
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luabridge import (
    Engine,
    EngineOptions,
    EventCode,
    EventMask,
    HandleTable,
    LifecycleError,
    LuaException,
    LuaScriptException,
    lua_global,
)
from luabridge.debugging import format_stack


@lua_global(name="bridge_double")
def _double(x: int) -> int:
    return x * 2


class Thing:
    label: str = "thing"


class CountingHandles(HandleTable):
    def __init__(self):
        super().__init__()
        self.released = 0

    def unpin(self, handle):
        released = super().unpin(handle)
        self.released += released
        return released


def test_globals_round_trip():
    lua = Engine()
    lua["answer"] = 42
    assert lua["answer"] == 42
    assert lua.do_string("return answer + 1") == [43]
    assert lua["missing"] is None
    for name in ("", "   "):
        with pytest.raises(ValueError):
            lua[name] = 1
        with pytest.raises(ValueError):
            lua[name]


def test_syntax_errors_are_reported_with_status():
    lua = Engine()
    with pytest.raises(LuaScriptException) as excinfo:
        lua.do_string("return +")
    assert str(excinfo.value).startswith("[LUA_ERRSYNTAX]: ")
    assert lua.state.get_top() == 0


def test_runtime_errors_carry_the_call_prefix():
    lua = Engine()
    with pytest.raises(LuaScriptException) as excinfo:
        lua.do_string("error('boom')", chunk_name="=run")
    assert str(excinfo.value) == "An exception has occurred while calling a function: [LUA_ERRRUN]: run:1: boom"
    assert excinfo.value.inner_exception is None
    assert lua.state.get_top() == 0
    assert lua.do_string("return 1, nil, 'x'") == [1, None, "x"]
    assert lua.do_string("return 1, 2", nresults=1) == [1]
    assert lua.state.get_top() == 0


def test_do_file(tmp_path):
    lua = Engine()
    script = tmp_path / "script.lua"
    script.write_text("#!/usr/bin/env lua\nreturn 6 * 7\n", encoding="utf-8")
    assert lua.do_file(script) == [42]
    with pytest.raises(FileNotFoundError):
        lua.do_file(tmp_path / "missing.lua")
    other = tmp_path / "notes.txt"
    other.write_text("return 1", encoding="utf-8")
    with pytest.raises(LuaException, match="non Lua file"):
        lua.do_file(other)


def test_do_file_errors_name_the_file(tmp_path):
    lua = Engine()
    script = tmp_path / "broken.lua"
    script.write_text("local x = 1\nerror('broken')\n", encoding="utf-8")
    with pytest.raises(LuaScriptException, match="broken.lua:2: broken"):
        lua.do_file(script)


def test_create_table_rejects_negative_sizes():
    lua = Engine()
    with pytest.raises(ValueError):
        lua.create_table(-1)
    assert lua.create_table(4, 4).length == 0


def test_import_type_by_name():
    lua = Engine()
    lua.import_type("datetime.date")
    assert lua.do_string("local d = date(2020, 1, 2) return d.year, d:isoformat()") == [2020, "2020-01-02"]
    assert lua.do_string("import_type('datetime.date', 'Day') return Day(2021, 5, 6):isoformat()") == ["2021-05-06"]
    with pytest.raises(LuaException, match="could not be found"):
        lua.import_type("no.such.Type")
    with pytest.raises(LuaException, match="is not a type"):
        lua.import_type(42)


def test_load_module_and_import_namespace(tmp_path):
    module_path = tmp_path / "bridge_sample_widgets.py"
    module_path.write_text(
        "class Widget:\n"
        "    size: int = 3\n"
        "\n"
        "class _Private:\n"
        "    pass\n",
        encoding="utf-8",
    )
    lua = Engine()
    try:
        module = lua.load_module(module_path)
        assert lua.import_namespace(module) == ["Widget"]
        assert lua.do_string("return Widget().size") == [3]
        assert lua["_Private"] is None
        other = Engine()
        chunk = f"load_module([[{module_path}]]) import_namespace('bridge_sample_widgets') return Widget().size"
        assert other.do_string(chunk) == [3]
    finally:
        sys.modules.pop("bridge_sample_widgets", None)
    with pytest.raises(LuaException, match="could not be found"):
        lua.import_namespace("bridge_no_such_module")


def test_registered_globals_follow_the_option():
    assert Engine().do_string("return bridge_double(4)") == [8]
    assert Engine(register_globals=False)["bridge_double"] is None


def test_engine_without_libraries():
    lua = Engine(EngineOptions(open_libs=False))
    assert lua.do_string("return print, string") == [None, None]
    lua["thing"] = Thing()
    assert lua.do_string("return thing.label") == ["thing"]


def test_line_hooks_and_removal():
    lua = Engine()
    lines = []

    def hook(state, debug):
        assert debug.event == EventCode.LINE
        lines.append(debug.currentline)

    lua.add_hook(hook, EventMask.LINE)
    assert lua.do_string("local a = 1\nlocal b = 2\nreturn a + b", chunk_name="=hooked") == [3]
    assert {1, 2, 3} <= set(lines)
    lua.remove_hook()
    lines.clear()
    lua.do_string("return 1")
    assert lines == []
    with pytest.raises(ValueError):
        lua.add_hook(None, EventMask.LINE)


def test_print_output_is_captured():
    lua = Engine()
    lua.do_string("print('a', 1) print(nil)")
    assert lua.output == ["a\t1", "nil"]


def test_close_runs_each_finalizer_once():
    handles = CountingHandles()
    lua = Engine(handles=handles)
    lua["thing"] = Thing()
    lua.do_string("copy = thing")
    outstanding = len(handles)
    released_before = handles.released
    assert outstanding > 0
    lua.close()
    assert len(handles) == 0
    assert handles.released - released_before == outstanding
    lua.close()
    assert handles.released - released_before == outstanding


def test_closed_engine_refuses_work():
    with Engine() as lua:
        lua["x"] = 1
    assert lua.closed
    with pytest.raises(LifecycleError):
        lua.do_string("return 1")
    with pytest.raises(LifecycleError):
        lua["x"]
    with pytest.raises(LifecycleError):
        lua.collect_garbage()


def test_stack_dumps_are_logged(caplog):
    lua = Engine(debug_stack_dumps=True)
    lua["thing"] = Thing()
    with caplog.at_level(logging.DEBUG, logger="luabridge.debugging"):
        lua.do_string("return thing.label")
    assert any("stack at __index" in record.getMessage() for record in caplog.records)


def test_format_stack_renders_one_row_per_slot():
    lua = Engine()
    state = lua.state
    state.push_integer(1)
    state.push_string("a")
    state.push_nil()
    lines = format_stack(state).splitlines()
    assert [part.strip() for part in lines[0].split("|")] == ["Stack Index", "Type", "Value"]
    assert [part.strip() for part in lines[1].split("|")] == ["1", "number", "1"]
    assert [part.strip() for part in lines[2].split("|")] == ["2", "string", "'a'"]
    assert [part.strip() for part in lines[3].split("|")] == ["3", "nil", "nil"]
    state.set_top(0)
