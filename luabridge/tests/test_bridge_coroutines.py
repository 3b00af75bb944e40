import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luabridge import CoroutineStatus, DeadCoroutine, Engine, InsufficientStackSpace, LuaCoroutine


def test_finished_coroutine_is_dead_and_refuses_resume():
    lua = Engine()
    co = lua.create_coroutine(lua.create_function("return 1, 2, 3"))
    assert co.status == CoroutineStatus.SUSPENDED
    result = co.resume()
    assert result.success
    assert result.results == [1, 2, 3]
    assert co.status == CoroutineStatus.DEAD
    with pytest.raises(DeadCoroutine):
        co.resume()
    assert lua.state.get_top() == 0


def test_values_travel_through_yield():
    lua = Engine()
    co = lua.create_coroutine(
        lua.create_function("local a = ... local b = coroutine.yield(a * 2) return b * 2")
    )
    first = co.resume(1)
    assert (first.success, first.results) == (True, [2])
    assert co.status == CoroutineStatus.SUSPENDED
    second = co.resume(10)
    assert (second.success, second.results) == (True, [20])
    assert co.status == CoroutineStatus.DEAD


def test_errors_are_reported_not_raised():
    lua = Engine()
    co = lua.create_coroutine(lua.create_function("error('oops')"))
    result = co.resume()
    assert result.success is False
    assert "oops" in result.error
    assert result.results == []
    assert co.status == CoroutineStatus.DEAD
    again = co.resume()
    assert again.success is False
    assert again.error == "cannot resume dead coroutine"
    assert lua.state.get_top() == 0


def test_host_callables_become_coroutine_bodies():
    lua = Engine()
    co = lua.create_coroutine(lambda x: x * 2)
    assert co.resume(21).results == [42]


def test_script_threads_pull_as_coroutines():
    lua = Engine()
    (co,) = lua.do_string("return coroutine.create(function(a) coroutine.yield(a + 1) end)")
    assert isinstance(co, LuaCoroutine)
    assert co.resume(4).results == [5]
    assert lua.do_string("return coroutine.running()")[0].status == CoroutineStatus.RUNNING


def test_running_and_normal_statuses_seen_from_the_host():
    lua = Engine()
    seen = []

    def record_status(co):
        seen.append(co.status)

    lua["record_status"] = record_status
    outer = lua.create_coroutine(
        lua.create_function(
            """
            local me = coroutine.running()
            record_status(me)
            local inner = coroutine.create(function() record_status(me) end)
            coroutine.resume(inner)
            """
        )
    )
    assert outer.resume().success
    assert seen == [CoroutineStatus.RUNNING, CoroutineStatus.NORMAL]
    assert outer.status == CoroutineStatus.DEAD


def test_too_many_arguments_abort_the_resume():
    lua = Engine(max_stack=16)
    co = lua.create_coroutine(lua.create_function("return ..."))
    with pytest.raises(InsufficientStackSpace):
        co.resume(*range(40))
    assert co.status == CoroutineStatus.SUSPENDED
    assert co.resume(1, 2).results == [1, 2]
