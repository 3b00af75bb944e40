import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import LuaRuntime, run_source


def test_resume_and_yield_pass_values_both_ways():
    src = """
    local co = coroutine.create(function(a, b)
        local c = coroutine.yield(a + b)
        return c * 2
    end)
    local _, first = coroutine.resume(co, 1, 2)
    local _, second = coroutine.resume(co, 10)
    local ok, err = coroutine.resume(co)
    return first, second, 7, ok, err, coroutine.status(co)
    """
    assert run_source(src) == [3, 20, 7, False, "cannot resume dead coroutine", "dead"]


def test_wrap_builds_a_generator():
    src = """
    local gen = coroutine.wrap(function()
        for i = 1, 3 do coroutine.yield(i) end
    end)
    return gen(), gen(), gen()
    """
    assert run_source(src) == [1, 2, 3]


def test_status_transitions():
    src = """
    local co
    co = coroutine.create(function()
        local inner = coroutine.status(co)
        coroutine.yield(inner)
    end)
    local before = coroutine.status(co)
    local _, inner = coroutine.resume(co)
    local middle = coroutine.status(co)
    coroutine.resume(co)
    return before, inner, middle, coroutine.status(co)
    """
    assert run_source(src) == ["suspended", "running", "suspended", "dead"]


def test_errors_inside_coroutines_are_returned():
    src = """
    local co = coroutine.create(function() error("inside") end)
    local ok, err = coroutine.resume(co)
    return ok, err, coroutine.status(co)
    """
    assert run_source(src, chunk_name="=co") == [False, "co:2: inside", "dead"]


def test_main_thread_is_not_yieldable():
    runtime = LuaRuntime()
    assert runtime.execute("local _, main = coroutine.running() return main, coroutine.isyieldable()") == [True, False]
    assert runtime.execute(
        "local co = coroutine.wrap(function() return coroutine.isyieldable() end) return co()"
    ) == [True]
