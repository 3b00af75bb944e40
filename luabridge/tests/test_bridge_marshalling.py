import pathlib
import sys
from decimal import Decimal
from fractions import Fraction

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luabridge import Engine, HandleTable, LuaException, LuaFunction, LuaScriptException, LuaTable, UnsupportedValueKind
from luabridge.handles import Handle


class Thing:
    def __init__(self, label="thing"):
        self.label = label


def round_trip(lua, value):
    state = lua.state
    top = state.get_top()
    lua.translator.push(state, value)
    try:
        return lua.translator.pull(state, -1)
    finally:
        state.set_top(top)


def test_primitives_round_trip():
    lua = Engine()
    for value in (None, True, False, 0, -5, 2**63 - 1, -(2**63), 1.5, 2.0, "text", ""):
        pulled = round_trip(lua, value)
        assert pulled == value
        assert type(pulled) is type(value)


def test_host_objects_round_trip_by_identity():
    lua = Engine()
    thing = Thing()
    assert round_trip(lua, thing) is thing
    assert round_trip(lua, Thing) is Thing


def test_composites_round_trip_to_the_same_table():
    lua = Engine()
    table = lua.create_table()
    pulled = round_trip(lua, table)
    assert isinstance(pulled, LuaTable)
    assert pulled == table
    pulled["shared"] = 1
    assert table["shared"] == 1


def test_unsupported_values_are_refused():
    lua = Engine()
    for value in (Decimal("1.5"), Fraction(1, 3), 1j, 2**70):
        with pytest.raises(UnsupportedValueKind):
            lua.translator.push(lua.state, value)
    assert lua.state.get_top() == 0


def test_pull_of_an_empty_slot_is_an_error():
    lua = Engine()
    with pytest.raises(LuaException, match="Invalid type."):
        lua.translator.pull(lua.state, 1)


def test_handle_table_detects_stale_handles():
    handles = HandleTable()
    first = Thing("first")
    handle = handles.pin(first)
    assert handles.resolve(handle) is first
    assert handle in handles
    assert handles.unpin(handle) is True
    assert handles.resolve(handle) is None
    assert handles.unpin(handle) is False
    reused = handles.pin(Thing("second"))
    assert reused.index == handle.index
    assert reused.generation == handle.generation + 1
    assert handles.resolve(handle) is None
    assert len(handles) == 1


def test_handle_table_pins_each_push_separately():
    handles = HandleTable()
    thing = Thing()
    a, b = handles.pin(thing), handles.pin(thing)
    assert a != b
    assert len(handles) == 2
    assert handles.resolve(Handle(99, 0)) is None


def test_collected_userdata_releases_its_handle():
    handles = HandleTable()
    lua = Engine(handles=handles)
    before = len(handles)
    lua["obj"] = Thing()
    assert len(handles) == before + 1
    lua.do_string("obj = nil")
    lua.collect_garbage()
    assert len(handles) == before


def test_table_view_reads_and_writes_through_the_vm():
    lua = Engine()
    table = lua.create_table()
    table["a"] = 1
    table[1] = "x"
    lua["t"] = table
    assert lua.do_string("t.b = 2 return t.a, t[1]") == [1, "x"]
    assert table["b"] == 2
    assert len(table) == 3
    assert sorted(str(key) for key in table) == ["1", "a", "b"]
    del table["a"]
    assert "a" not in table
    with pytest.raises(KeyError):
        table["missing"]


def test_table_view_honours_metatables():
    lua = Engine()
    table = lua.create_table()
    meta = lua.create_table()
    meta["__index"] = lua.create_function("return 'fallback'")
    assert table.with_metatable(meta) is table
    assert table["anything"] == "fallback"
    assert table.metatable == meta
    table.metatable = None
    assert table.metatable is None


def test_add_range_and_length():
    lua = Engine()
    table = lua.create_table().add_range([10, 20])
    table.add_range([30])
    table.add_range({"name": "seq"})
    assert table.length == 3
    lua["seq"] = table
    assert lua.do_string("return #seq, seq[3], seq.name") == [3, 30, "seq"]


def test_nested_tables_are_not_expanded():
    lua = Engine()
    (outer,) = lua.do_string("return { 1, { 2 } }")
    inner = outer[2]
    assert isinstance(inner, LuaTable)
    assert dict(inner.pairs()) == {1: 2}


def test_function_views_call_in_protected_mode():
    lua = Engine()
    function = lua.create_function("local a, b = ... return a * b, a + b")
    assert isinstance(function, LuaFunction)
    assert function(3, 4) == [12, 7]
    assert function.call(3, 4, nresults=1) == [12]
    failing = lua.create_function("error('bad')")
    with pytest.raises(LuaScriptException, match="bad"):
        failing()
    assert lua.state.get_top() == 0


def test_host_callables_become_functions():
    lua = Engine()
    increment = lua.create_function(lambda x: x + 1)
    assert increment(1) == [2]
    lua["inc"] = increment
    assert lua.do_string("return inc(41)") == [42]


def test_views_fail_after_close():
    lua = Engine()
    table = lua.create_table()
    lua.close()
    with pytest.raises(LuaException, match="after its engine was closed"):
        table["x"] = 1


def test_views_cannot_cross_engines():
    a = Engine()
    b = Engine()
    table = a.do_string("return {1, 2, 3}")[0]
    with pytest.raises(LuaException, match="another engine"):
        b["t"] = table
    assert b.state.get_top() == 0
    assert b["t"] is None
    a["t"] = table
    assert a.do_string("return #t") == [3]
