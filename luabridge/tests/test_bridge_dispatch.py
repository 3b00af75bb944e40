import pathlib
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Final, Generic, Optional, TypeVar, overload

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luabridge import (
    Engine,
    Event,
    HostInvocationError,
    InvalidTypeArgument,
    LuaScriptException,
    NoMatchingOverload,
    OperatorNotSupported,
    ReadOnlyMember,
    Ref,
    TypeMismatch,
    UnknownMember,
    indexed_property,
    lua_extension,
    lua_hide,
    lua_name,
)
from luabridge.coercion import coerce, try_coerce
from luabridge.metadata import MemberKind, is_abstract, metadata_for

T = TypeVar("T")
N = TypeVar("N", int, float)


@dataclass
class Point:
    x: int
    y: int = 0
    ORIGIN: ClassVar[str] = "origin"

    def norm2(self) -> int:
        return self.x * self.x + self.y * self.y

    def moved(self, dx: int, dy: int = 0) -> "Point":
        return Point(self.x + dx, self.y + dy)

    @staticmethod
    def add(a: int, b: int) -> int:
        return a + b

    @classmethod
    def unit(cls) -> "Point":
        return cls(1, 1)

    @lua_hide
    def secret(self) -> str:
        return "hidden"

    def dispose(self) -> None:
        pass


class Settings:
    count = 0
    LIMIT: Final[int] = 10

    class Section:
        def __init__(self, name: str = "main"):
            self.name = name

        def title(self) -> str:
            return self.name.title()


class Gauge:
    def __init__(self):
        self.reads = 0
        self._level = 1

    @property
    def stamp(self) -> int:
        self.reads += 1
        return 7

    @property
    def level(self) -> int:
        self.reads += 1
        return self._level

    @level.setter
    def level(self, value: int) -> None:
        self._level = value

    def _set_only(self, value: int) -> None:
        self._level = value * 10

    write_only = property(None, _set_only)

    def describe(self) -> str:
        return f"gauge {self._level}"


class Picker:
    @lua_name("pick")
    def pick_int(self, value: int) -> str:
        return "int"

    @lua_name("pick")
    def pick_str(self, value: str) -> str:
        return "str"

    def greet(self, name: str = "world") -> str:
        return "hello " + name

    def maybe(self, value: Optional[int]) -> str:
        return "none" if value is None else f"value {value}"

    def total(self, *values: int) -> int:
        return sum(values)

    def total_list(self, values: list[int]) -> int:
        return sum(values)

    def keyed(self, mapping: dict[str, int]) -> int:
        return mapping["a"]

    def scaled(self, scale: int = 1) -> int:
        return scale * 10

    def try_parse(self, text: str, result: Ref[int]) -> bool:
        try:
            result.value = int(text)
        except ValueError:
            return False
        return True

    def split(self, text: str, head: Ref[str], tail: Ref[str]) -> None:
        head.value, _, tail.value = text.partition(" ")

    def strict(self, *, flag: bool) -> str:
        return "strict"

    def ratio(self, value: float) -> float:
        return value * 2


class Chooser:
    @lua_name("g")
    def g_default(self, x: int = 1) -> str:
        return "default"

    @lua_name("g")
    def g_none(self) -> str:
        return "none"

    def ping(self) -> str:
        return "pong"


class Formatter:
    @overload
    def fmt(self, value: int) -> str: ...

    @overload
    def fmt(self, value: str, width: int) -> str: ...

    def fmt(self, value, width=None):
        return f"{value}:{width}"


class Box(Generic[T]):
    def __init__(self, value: T):
        self.value = value

    def get(self) -> T:
        return self.value


class Animal:
    pass


class Dog(Animal):
    pass


A = TypeVar("A", bound=Animal)


class Kennel(Generic[A]):
    size: int

    def __init__(self):
        self.size = 0


class Converter:
    def cast(self, value: N) -> N:
        return value


class Vec:
    x: int

    def __init__(self, x: int):
        self.x = x

    def __add__(self, other: "Vec") -> "Vec":
        return Vec(self.x + other.x)

    def __mul__(self, k: int) -> "Vec":
        return Vec(self.x * k)

    def __rmul__(self, k: int) -> "Vec":
        return Vec(self.x * k)

    def __neg__(self) -> "Vec":
        return Vec(-self.x)


class Button:
    clicked = Event()
    published = Event(static=True)

    def click(self) -> None:
        self.clicked.fire(self, "payload")


class Grid:
    def __init__(self):
        self.cells = {}

    @indexed_property
    def cell(self, x: int, y: int) -> int:
        return self.cells.get((x, y), 0)

    @cell.setter
    def cell(self, x: int, y: int, value: int) -> None:
        self.cells[(x, y)] = value


class Bag:
    def __init__(self):
        self.items = {}

    def __getitem__(self, key):
        return self.items.get(key)

    def __setitem__(self, key, value):
        self.items[key] = value


class Greeter:
    def __init__(self, name: str = "lua"):
        self.name = name


@lua_extension
def shout(greeter: Greeter, suffix: str = "!") -> str:
    return greeter.name.upper() + suffix


class Shape(ABC):
    @abstractmethod
    def area(self) -> float:
        ...


class Faulty:
    def explode(self) -> None:
        raise ValueError("nope")


def engine(**globals_):
    lua = Engine()
    for name, value in globals_.items():
        lua[name] = value
    return lua


def script_error(lua, chunk):
    with pytest.raises(LuaScriptException) as excinfo:
        lua.do_string(chunk)
    return excinfo.value.inner_exception


def test_metadata_is_cached_and_stable():
    first = metadata_for(Point)
    second = metadata_for(Point)
    assert first is second
    assert set(first.instance_members) == set(second.instance_members)
    assert {"x", "y", "norm2", "moved"} <= set(first.instance_members)
    assert {"add", "unit", "ORIGIN"} <= set(first.static_members)
    assert first.member("x").kind is MemberKind.FIELD
    assert metadata_for(Settings).member("LIMIT", False).constant
    assert not metadata_for(Settings).member("count", False).constant
    assert "secret" not in first.instance_members
    assert "dispose" not in first.instance_members


def test_fields_methods_and_static_members():
    lua = engine(p=Point(3, 4), Point=Point)
    assert lua.do_string("return p.x, p.y, p:norm2(), p:moved(1).x, p:moved(1, 2).y") == [3, 4, 25, 4, 6]
    assert lua.do_string("return Point.add(1, 2), Point.unit().x, Point.ORIGIN") == [3, 1, "origin"]
    lua.do_string("p.x = '7'")
    assert lua["p"].x == 7
    assert lua.do_string("return tostring(Point(1, 2))") == ["Point(x=1, y=2)"]


def test_static_fields_and_nested_types():
    lua = engine(Settings=Settings)
    lua.do_string("Settings.count = 3")
    assert Settings.count == 3
    Settings.count = 0
    assert lua.do_string("return Settings.Section('intro'):title(), Settings.Section():title()") == ["Intro", "Main"]
    assert isinstance(script_error(lua, "Settings.Section = 1"), ReadOnlyMember)


def test_constants_are_read_only_whatever_the_value():
    lua = engine(Settings=Settings)
    for value in ("1", "'text'", "nil", "{}", "Settings.LIMIT"):
        error = script_error(lua, f"Settings.LIMIT = {value}")
        assert isinstance(error, ReadOnlyMember)
        assert str(error) == "Attempt to set a constant."
    assert Settings.LIMIT == 10


def test_field_writes_are_coerced():
    lua = engine(p=Point(1))
    error = script_error(lua, "p.x = 'abc'")
    assert isinstance(error, TypeMismatch)
    assert str(error) == "Attempt to set field to invalid value."
    assert isinstance(script_error(lua, "p.norm2 = 1"), ReadOnlyMember)


def test_hidden_and_unknown_members():
    lua = engine(p=Point(1))
    for name in ("secret", "dispose", "missing", "__class__"):
        error = script_error(lua, f"return p.{name}")
        assert isinstance(error, UnknownMember)
        assert str(error) == f"Attempt to index invalid member '{name}'."


def test_properties():
    gauge = Gauge()
    lua = engine(g=gauge)
    lua.do_string("g.level = 5")
    assert lua.do_string("return g.level, g:describe()") == [5, "gauge 5"]
    assert isinstance(script_error(lua, "g.stamp = 1"), ReadOnlyMember)
    lua.do_string("g.write_only = 2")
    assert lua.do_string("return g:describe()") == ["gauge 20"]
    with pytest.raises(LuaScriptException, match="without a valid getter"):
        lua.do_string("return g.write_only")


def test_cacheable_members_are_served_from_the_index_cache():
    gauge = Gauge()
    lua = engine(g=gauge)
    assert lua.do_string("return g.stamp + g.stamp") == [14]
    assert gauge.reads == 1
    lua.do_string("local a, b = g.level, g.level")
    assert gauge.reads == 3
    assert lua.do_string("return rawequal(g.describe, g.describe)") == [True]


def test_overload_group_tie_keeps_first_declared():
    lua = engine(p=Picker())
    assert lua.do_string("return p:pick('5'), p:pick('abc'), p:pick(5)") == ["int", "str", "int"]


def test_typing_overloads_dispatch_to_implementation():
    lua = engine(f=Formatter())
    assert lua.do_string("return f:fmt(3), f:fmt('a', 4)") == ["3:None", "a:4"]
    error = script_error(lua, "return f:fmt({})")
    assert isinstance(error, NoMatchingOverload)
    assert str(error) == "Attempt to call a method with invalid arguments."


def test_defaults_nil_and_varargs():
    lua = engine(p=Picker())
    assert lua.do_string("return p:greet(), p:greet(nil), p:greet('lua')") == [
        "hello world",
        "hello world",
        "hello lua",
    ]
    assert lua.do_string("return p:maybe(nil), p:maybe('4')") == ["none", "value 4"]
    assert lua.do_string("return p:total(), p:total(1, 2, '3'), p:scaled()") == [0, 6, 10]
    assert isinstance(script_error(lua, "return p:strict()"), NoMatchingOverload)


def test_parameterless_overload_wins_a_call_without_arguments():
    lua = engine(q=Chooser())
    assert lua.do_string("return q:g(), q:g(5), q:ping()") == ["none", "default", "pong"]


def test_surplus_arguments_do_not_match_a_parameterless_method():
    lua = engine(q=Chooser())
    assert isinstance(script_error(lua, "return q:ping(1, 2)"), NoMatchingOverload)


def test_tables_coerce_to_sequences_and_mappings():
    lua = engine(p=Picker())
    assert lua.do_string("return p:total_list({1, 2, 3}), p:keyed({a = 5})") == [6, 5]
    assert isinstance(script_error(lua, "return p:total_list({1, 'x', 3})"), NoMatchingOverload)


def test_coerce_table_to_integer_list():
    lua = Engine()
    good = lua.create_table().add_range([1, 2, 3])
    bad = lua.create_table().add_range([1, "x", 3])
    assert coerce(list[int], good) == [1, 2, 3]
    assert coerce(tuple[int, ...], good) == (1, 2, 3)
    with pytest.raises(TypeMismatch):
        coerce(list[int], bad)


def test_numeric_coercion_rules():
    assert try_coerce(int, "0x10") == (True, 16)
    assert try_coerce(float, 2) == (True, 2.0)
    assert try_coerce(int, 2.5)[0] is False
    assert try_coerce(int, True)[0] is False
    assert try_coerce(Optional[int], None) == (True, None)
    assert try_coerce(int, None)[0] is False
    assert try_coerce(str, 5)[0] is False


def test_non_finite_numeric_strings_are_rejected():
    assert try_coerce(float, " 1.5 ") == (True, 1.5)
    assert try_coerce(Decimal, "2.25") == (True, Decimal("2.25"))
    for text in ("inf", "-Infinity", "nan"):
        assert try_coerce(float, text)[0] is False
        assert try_coerce(Decimal, text)[0] is False
    lua = engine(p=Picker())
    assert isinstance(script_error(lua, "return p:ratio('nan')"), NoMatchingOverload)
    assert lua.do_string("return p:ratio('0.5')") == [1.0]


def test_ref_parameters_become_extra_results():
    lua = engine(p=Picker())
    assert lua.do_string("return p:try_parse('42')") == [True, 42]
    assert lua.do_string("return p:try_parse('x')") == [False, None]
    assert lua.do_string("return p:split('hello big world')") == ["hello", "big world"]


def test_generic_types_close_over_type_arguments():
    lua = engine(Box=Box, Kennel=Kennel, Dog=Dog)
    lua.import_type(int)
    assert lua.do_string("local IntBox = Box(int) local b = IntBox('5') return b:get(), math.type(b:get())") == [
        5,
        "integer",
    ]
    assert lua.do_string("return Kennel(Dog)().size") == [0]
    error = script_error(lua, "return Kennel(int)")
    assert isinstance(error, InvalidTypeArgument)
    assert "do not satisfy the type constraints" in str(error)
    assert isinstance(script_error(lua, "return Box('x')"), InvalidTypeArgument)
    assert isinstance(script_error(lua, "return Box(int)({})"), NoMatchingOverload)


def test_generic_methods_take_leading_type_arguments():
    lua = engine(c=Converter())
    lua.import_type(float)
    lua.import_type(str)
    assert lua.do_string("return math.type(c:cast(float, 3)), c:cast(3)") == ["float", 3]
    error = script_error(lua, "return c:cast(str, 3)")
    assert isinstance(error, InvalidTypeArgument)
    assert str(error) == "Generic method arguments do not satisfy type constraints."


def test_operators():
    lua = engine(Vec=Vec)
    assert lua.do_string("return (Vec(1) + Vec(2)).x, (Vec(2) * 3).x, (3 * Vec(2)).x, (-Vec(4)).x") == [3, 6, 6, -4]
    assert isinstance(script_error(lua, "return Vec(1) - Vec(2)"), OperatorNotSupported)
    assert isinstance(script_error(lua, "return Vec(1) + 5"), OperatorNotSupported)


def test_host_callables_are_delegates():
    def scale(x: int, factor: int = 2) -> int:
        return x * factor

    lua = engine(scale=scale, pt=Point(1))
    assert lua.do_string("return scale('3'), scale(2, 5)") == [6, 10]
    error = script_error(lua, "return scale(1, 2, 3)")
    assert isinstance(error, NoMatchingOverload)
    assert isinstance(script_error(lua, "return scale('x')"), TypeMismatch)
    with pytest.raises(LuaScriptException, match="non-delegate"):
        lua.do_string("return pt()")


def test_events_register_once_and_deregister():
    button = Button()
    lua = engine(button=button, Button=Button)
    result = lua.do_string(
        """
        local seen = {}
        local function handler(sender, args) seen[#seen + 1] = args end
        button.clicked:register(handler)
        button.clicked:register(handler)
        button:click()
        button.clicked:deregister(handler)
        button:click()
        return #seen, seen[1], tostring(button.clicked)
        """
    )
    assert result == [1, "payload", "event clicked"]
    assert len(button.clicked) == 0
    assert isinstance(script_error(lua, "button.clicked = 1"), ReadOnlyMember)


def test_static_events_are_shared_through_the_class():
    lua = engine(Button=Button)
    lua.do_string("received = nil Button.published:register(function(sender, args) received = args end)")
    Button.published.fire(None, "broadcast")
    assert lua["received"] == "broadcast"


def test_indexed_properties():
    grid = Grid()
    lua = engine(grid=grid, bag=Bag())
    assert lua.do_string("grid.cell:set(5, 1, 2) return grid.cell:get(1, 2), grid.cell:get(0, 0)") == [5, 0]
    assert grid.cell[1, 2] == 5
    error = script_error(lua, "grid.cell = 3")
    assert isinstance(error, ReadOnlyMember)
    assert "Use a :set(value, ...) call instead." in str(error)
    assert lua.do_string("bag.Item:set(3, 'a') return bag.Item:get('a')") == [3]


def test_extension_methods_join_instance_methods():
    lua = engine(Greeter=Greeter)
    assert lua.do_string("return Greeter('bob'):shout(), Greeter():shout('?')") == ["BOB!", "LUA?"]


def test_abstract_classes_cannot_be_used():
    lua = engine(Shape=Shape)
    with pytest.raises(LuaScriptException, match="abstract class or an interface"):
        lua.do_string("return Shape()")
    with pytest.raises(LuaScriptException, match="abstract class or interface"):
        lua.do_string("return Shape.area")


def test_abstractness_is_read_from_the_class():
    assert is_abstract(Shape)
    assert not is_abstract(Point)
    assert not is_abstract(Box[int])


def test_host_exceptions_keep_their_traceback():
    lua = engine(f=Faulty())
    error = script_error(lua, "f:explode()")
    assert isinstance(error, HostInvocationError)
    assert "ValueError: nope" in str(error)
    assert isinstance(error.__cause__, ValueError)
    assert lua.do_string("local ok, err = pcall(function() f:explode() end) return ok, tostring(err):find('nope') ~= nil") == [
        False,
        True,
    ]
    assert lua.state.get_top() == 0
