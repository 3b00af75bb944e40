import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luart import LuaRuntime
from luart.hooks import HOOKCALL, HOOKLINE, MASKCALL, MASKCOUNT, MASKLINE

SOURCE = """local a = 1
local b = 2
return a + b
"""


def test_line_hook_reports_each_line():
    runtime = LuaRuntime()
    lines = []

    def hook(state, debug):
        assert debug.event == HOOKLINE
        lines.append(debug.currentline)

    runtime.state.set_hook(hook, MASKLINE)
    assert runtime.execute(SOURCE, "=lines") == [3]
    assert {1, 2, 3} <= set(lines)


def test_call_hook_sees_native_calls():
    runtime = LuaRuntime()
    names = []

    def hook(state, debug):
        if debug.event == HOOKCALL and debug.what == "C":
            names.append(debug.name)

    runtime.state.set_hook(hook, MASKCALL)
    runtime.execute("local s = tostring(1) return s")
    assert "tostring" in names


def test_count_hook_and_removal():
    runtime = LuaRuntime()
    ticks = []
    runtime.state.set_hook(lambda state, debug: ticks.append(debug.event), MASKCOUNT, 1)
    runtime.execute(SOURCE)
    assert ticks
    ticks.clear()
    runtime.state.set_hook(None, 0)
    runtime.execute(SOURCE)
    assert ticks == []


def test_hook_can_inspect_the_running_function():
    runtime = LuaRuntime()
    sources = set()

    def hook(state, debug):
        info = state.get_stack(0)
        if info is not None:
            sources.add(info.short_src)

    runtime.state.set_hook(hook, MASKLINE)
    runtime.execute(SOURCE, "=inspected")
    assert sources == {"inspected"}
