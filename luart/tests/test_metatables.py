import gc
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import REGISTRYINDEX, LuaRuntime, LuaTable, run_source


def test_index_and_newindex_metamethods():
    src = """
    local log = {}
    local base = { greet = "hi" }
    local t = setmetatable({}, {
        __index = base,
        __newindex = function(t, k, v) log[#log + 1] = k; rawset(t, k, v) end,
    })
    t.x = 1
    return t.greet, t.x, log[1], rawget(t, "greet")
    """
    assert run_source(src) == ["hi", 1, "x", None]


def test_arithmetic_comparison_and_call_metamethods():
    src = """
    local V = {}
    V.__index = V
    V.__add = function(a, b) return setmetatable({ n = a.n + b.n }, V) end
    V.__eq = function(a, b) return a.n == b.n end
    V.__lt = function(a, b) return a.n < b.n end
    V.__len = function(a) return a.n end
    V.__call = function(self, k) return self.n * k end
    V.__tostring = function(a) return "V(" .. a.n .. ")" end
    V.__concat = function(a, b) return tostring(a) .. tostring(b) end
    local function new(n) return setmetatable({ n = n }, V) end
    local a, b = new(1), new(2)
    local c = a + b
    return c.n, new(3) == c, a < b, #c, c(2), tostring(c), a .. b
    """
    assert run_source(src) == [3, True, True, 3, 6, "V(3)", "V(1)V(2)"]


def test_protected_metatable():
    src = """
    local t = setmetatable({}, { __metatable = "locked" })
    local ok = pcall(setmetatable, t, {})
    return getmetatable(t), ok
    """
    assert run_source(src) == ["locked", False]


def test_weak_keys_do_not_keep_keys_alive():
    weak = LuaTable()
    meta = LuaTable()
    meta.raw_set("__mode", "k")
    weak.set_metatable(meta)
    key = LuaTable()
    weak.raw_set(key, "value")
    weak.raw_set("name", "kept")
    assert weak.raw_get(key) == "value"
    del key
    gc.collect()
    assert [k for k, _ in weak.iter_items()] == ["name"]


def _install_finalizer(state, seen):
    def on_gc(s):
        seen.append(s.to_userdata(1))
        return 0

    state.new_metatable("resource")
    state.push_cfunction(on_gc, "on_gc")
    state.set_field(-2, "__gc")
    state.pop(1)


def _push_resource(state, block):
    state.new_userdata(block)
    state.get_field(REGISTRYINDEX, "resource")
    state.set_metatable(-2)


def test_unreachable_userdata_is_finalized_once():
    runtime = LuaRuntime()
    state = runtime.state
    seen = []
    _install_finalizer(state, seen)
    _push_resource(state, "a")
    state.pop(1)
    state.gc()
    state.gc()
    assert seen == ["a"]


def test_close_finalizes_remaining_userdata_once():
    runtime = LuaRuntime()
    state = runtime.state
    seen = []
    _install_finalizer(state, seen)
    _push_resource(state, "held")
    state.set_global("held")
    runtime.close()
    runtime.close()
    assert seen == ["held"]
    assert runtime.closed
