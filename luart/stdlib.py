from __future__ import annotations

import functools
import gc
import math
import random
import sys
from typing import Any, Callable, Dict, List, Sequence

from .bytecode_vm import LuaYield
from .compiler import CompileError
from .coroutines import LuaThread
from .lpattern import has_specials, iterate, search, substitute
from .parser import ParserError
from .table import LuaTable
from .values import (
    MAX_INTEGER,
    MIN_INTEGER,
    BuiltinFunction,
    LuaMultiReturn,
    float_to_int,
    format_number,
    is_callable,
    is_falsy,
    is_number,
    lua_type,
    raw_tostring,
    str_to_number,
    to_integer,
    to_number,
    wrap_int,
)
from .vm_errors import LuaError, VMRuntimeError

_MISSING = object()
_MAX_UNPACK = 1_000_000
_MAX_STRING = 2**31


# ---------------------------------------------------------------- argument checks


def _arg(args: Sequence[Any], index: int, default: Any = None) -> Any:
    return args[index] if index < len(args) else default


def _arg_error(index: int, name: str, message: str) -> RuntimeError:
    return RuntimeError(f"bad argument #{index + 1} to '{name}' ({message})")


def _type_error(args: Sequence[Any], index: int, name: str, expected: str) -> RuntimeError:
    got = lua_type(args[index]) if index < len(args) else "no value"
    return _arg_error(index, name, f"{expected} expected, got {got}")


def _check_any(args: Sequence[Any], index: int, name: str) -> Any:
    if index >= len(args):
        raise _arg_error(index, name, "value expected")
    return args[index]


def _check_table(args: Sequence[Any], index: int, name: str) -> LuaTable:
    value = _arg(args, index)
    if not isinstance(value, LuaTable):
        raise _type_error(args, index, name, "table")
    return value


def _check_number(args: Sequence[Any], index: int, name: str, default: Any = _MISSING):
    value = _arg(args, index)
    if value is None and default is not _MISSING:
        return default
    number = to_number(value)
    if number is None:
        raise _type_error(args, index, name, "number")
    return number


def _check_int(args: Sequence[Any], index: int, name: str, default: Any = _MISSING) -> int:
    value = _arg(args, index)
    if value is None and default is not _MISSING:
        return default
    number = to_number(value)
    if number is None:
        raise _type_error(args, index, name, "number")
    result = to_integer(number)
    if result is None:
        raise _arg_error(index, name, "number has no integer representation")
    return result


def _check_string(args: Sequence[Any], index: int, name: str, default: Any = _MISSING) -> str:
    value = _arg(args, index)
    if value is None and default is not _MISSING:
        return default
    if isinstance(value, str):
        return value
    if is_number(value):
        return format_number(value)
    raise _type_error(args, index, name, "string")


def _check_function(args: Sequence[Any], index: int, name: str) -> Any:
    value = _arg(args, index)
    if not is_callable(value):
        raise _type_error(args, index, name, "function")
    return value


def _position(index: int, length: int) -> int:
    if index >= 0:
        return index
    if -index > length:
        return 0
    return length + index + 1


def tostring(vm: Any, value: Any) -> str:  # noqa: ANN401 - VM is dynamic
    """``tostring`` honouring ``__tostring`` and ``__name``."""
    metatable = vm.get_metatable(value)
    if metatable is not None:
        handler = metatable.raw_get("__tostring")
        if handler is not None:
            results = vm.call_callable(handler, [value])
            text = results[0] if results else None
            if is_number(text):
                return format_number(text)
            if not isinstance(text, str):
                raise RuntimeError("'__tostring' must return a string")
            return text
        name = metatable.raw_get("__name")
        if isinstance(name, str):
            return f"{name}: 0x{id(value):08x}"
    return raw_tostring(value)


# ---------------------------------------------------------------- base library


def _lua_print(args: Sequence[Any], vm: Any) -> None:  # noqa: ANN401
    vm.runtime.write("\t".join(tostring(vm, arg) for arg in args))


def _lua_type(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return lua_type(_check_any(args, 0, "type"))


def _lua_tostring(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return tostring(vm, _check_any(args, 0, "tostring"))


def _lua_tonumber(args: Sequence[Any], vm: Any):  # noqa: ANN401
    value = _check_any(args, 0, "tonumber")
    base = _arg(args, 1)
    if base is None:
        if is_number(value):
            return value
        if isinstance(value, str):
            return str_to_number(value)
        return None
    base = _check_int(args, 1, "tonumber")
    if not isinstance(value, str):
        raise _type_error(args, 0, "tonumber", "string")
    if not 2 <= base <= 36:
        raise _arg_error(1, "tonumber", "base out of range")
    text = value.strip(" \t\n\r\f\v").lower()
    negative = text.startswith("-")
    if negative:
        text = text[1:]
    if not text:
        return None
    result = 0
    for char in text:
        digit = int(char, 36) if char.isalnum() and char.isascii() else 36
        if digit >= base:
            return None
        result = result * base + digit
    result = wrap_int(result % 2**64)
    return wrap_int(-result) if negative else result


def _lua_error(args: Sequence[Any], vm: Any) -> None:  # noqa: ANN401
    value = _arg(args, 0)
    level = _check_int(args, 1, "error", 1)
    if isinstance(value, str) and level > 0:
        position = vm.where(level)
        if position:
            value = f"{position} {value}"
    raise LuaError(value, vm._capture_traceback())


def _lua_assert(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    condition = _check_any(args, 0, "assert")
    if is_falsy(condition):
        if len(args) > 1:
            raise LuaError(args[1], vm._capture_traceback())
        raise LuaError("assertion failed!", vm._capture_traceback())
    return LuaMultiReturn(list(args))


def _lua_pcall(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    func = _check_any(args, 0, "pcall")
    try:
        results = vm.call_callable(func, args[1:])
    except VMRuntimeError as exc:
        return LuaMultiReturn([False, exc.value])
    return LuaMultiReturn([True, *results])


def _lua_xpcall(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    func = _check_any(args, 0, "xpcall")
    handler = _check_any(args, 1, "xpcall")
    try:
        results = vm.call_callable(func, args[2:])
    except VMRuntimeError as exc:
        try:
            handled = vm.call_callable(handler, [exc.value])
        except VMRuntimeError as inner:
            return LuaMultiReturn([False, inner.value])
        return LuaMultiReturn([False, *handled[:1]])
    return LuaMultiReturn([True, *results])


def _lua_select(args: Sequence[Any], vm: Any):  # noqa: ANN401
    selector = _arg(args, 0)
    count = len(args) - 1
    if selector == "#":
        return count
    index = _check_int(args, 0, "select")
    if index < 0:
        index = count + index
        if index < 0:
            raise _arg_error(0, "select", "index out of range")
        return LuaMultiReturn(list(args[1 + index:]))
    if index == 0:
        raise _arg_error(0, "select", "index out of range")
    return LuaMultiReturn(list(args[index:]))


def _lua_getmetatable(args: Sequence[Any], vm: Any):  # noqa: ANN401
    metatable = vm.get_metatable(_check_any(args, 0, "getmetatable"))
    if metatable is None:
        return None
    protected = metatable.raw_get("__metatable")
    return metatable if protected is None else protected


def _lua_setmetatable(args: Sequence[Any], vm: Any) -> LuaTable:  # noqa: ANN401
    table = _check_table(args, 0, "setmetatable")
    metatable = _arg(args, 1)
    if len(args) < 2 or (metatable is not None and not isinstance(metatable, LuaTable)):
        raise _type_error(args, 1, "setmetatable", "nil or table")
    if table.metatable is not None and table.metatable.raw_get("__metatable") is not None:
        raise RuntimeError("cannot change a protected metatable")
    table.set_metatable(metatable)
    return table


def _lua_rawget(args: Sequence[Any], vm: Any):  # noqa: ANN401
    table = _check_table(args, 0, "rawget")
    return table.raw_get(_check_any(args, 1, "rawget"))


def _lua_rawset(args: Sequence[Any], vm: Any) -> LuaTable:  # noqa: ANN401
    table = _check_table(args, 0, "rawset")
    _check_any(args, 2, "rawset")
    table.raw_set(args[1], args[2])
    return table


def _lua_rawequal(args: Sequence[Any], vm: Any) -> bool:  # noqa: ANN401
    left = _check_any(args, 0, "rawequal")
    right = _check_any(args, 1, "rawequal")
    if is_number(left) and is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return left is right


def _lua_rawlen(args: Sequence[Any], vm: Any) -> int:  # noqa: ANN401
    value = _arg(args, 0)
    if isinstance(value, LuaTable):
        return value.lua_len()
    if isinstance(value, str):
        return len(value)
    raise _arg_error(0, "rawlen", "table or string expected")


def _lua_next(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    table = _check_table(args, 0, "next")
    entry = table.next(_arg(args, 1))
    if entry is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn(list(entry))


def _create_pairs_builtin(next_builtin: BuiltinFunction) -> BuiltinFunction:
    def _pairs(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
        value = _check_any(args, 0, "pairs")
        handler = vm.metamethod(value, "__pairs")
        if handler is not None:
            results = vm.call_callable(handler, [value])
            return LuaMultiReturn((results + [None] * 3)[:3])
        table = _check_table(args, 0, "pairs")
        return LuaMultiReturn([next_builtin, table, None])

    return BuiltinFunction("pairs", _pairs, "Iterate over every entry of a table.")


def _ipairs_iter(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    index = _check_int(args, 1, "ipairs_iterator") + 1
    value = vm.index(args[0], index)
    if value is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn([index, value])


def _create_ipairs_builtin(iterator: BuiltinFunction) -> BuiltinFunction:
    def _ipairs(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
        return LuaMultiReturn([iterator, _check_any(args, 0, "ipairs"), 0])

    return BuiltinFunction("ipairs", _ipairs, "Iterate over the sequence part of a table.")


def _lua_collectgarbage(args: Sequence[Any], vm: Any):  # noqa: ANN401
    option = _check_string(args, 0, "collectgarbage", "collect")
    runtime = vm.runtime
    if option == "collect":
        gc.collect()
        runtime.run_finalizers(vm)
        return 0
    if option == "step":
        gc.collect()
        runtime.run_finalizers(vm)
        return True
    if option == "count":
        # approximation: live allocator blocks of the interpreter
        kilobytes = sys.getallocatedblocks() * 64 / 1024
        return kilobytes
    if option == "isrunning":
        return gc.isenabled()
    if option == "stop":
        gc.disable()
        return 0
    if option == "restart":
        gc.enable()
        return 0
    if option in ("incremental", "generational", "setpause", "setstepmul"):
        return 0
    raise _arg_error(0, "collectgarbage", f"invalid option '{option}'")


def _lua_load(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    chunk = _arg(args, 0)
    if _arg(args, 3) is not None:
        raise _arg_error(3, "load", "custom environments are not supported")
    if isinstance(chunk, str):
        source = chunk
        chunk_name = _check_string(args, 1, "load", None)
    elif is_callable(chunk):
        pieces: List[str] = []
        while True:
            results = vm.call_callable(chunk, [])
            piece = results[0] if results else None
            if piece is None or piece == "":
                break
            if not isinstance(piece, str):
                return LuaMultiReturn([None, "reader function must return a string"])
            pieces.append(piece)
        source = "".join(pieces)
        chunk_name = _check_string(args, 1, "load", "=(load)")
    else:
        raise _type_error(args, 0, "load", "string")
    mode = _check_string(args, 2, "load", "bt")
    if "t" not in mode:
        return LuaMultiReturn([None, f"attempt to load a text chunk (mode is '{mode}')"])
    try:
        return LuaMultiReturn([vm.runtime.load(source, chunk_name)])
    except (ParserError, CompileError) as exc:
        return LuaMultiReturn([None, str(exc)])


# ---------------------------------------------------------------- string library


def _string_len(args: Sequence[Any], vm: Any) -> int:  # noqa: ANN401
    return len(_check_string(args, 0, "len"))


def _string_sub(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    text = _check_string(args, 0, "sub")
    length = len(text)
    start = _position(_check_int(args, 1, "sub", 1), length)
    end = _position(_check_int(args, 2, "sub", -1), length)
    start = max(start, 1)
    end = min(end, length)
    if start > end:
        return ""
    return text[start - 1:end]


def _string_upper(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return _check_string(args, 0, "upper").upper()


def _string_lower(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return _check_string(args, 0, "lower").lower()


def _string_rep(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    text = _check_string(args, 0, "rep")
    count = _check_int(args, 1, "rep")
    separator = _check_string(args, 2, "rep", "")
    if count <= 0:
        return ""
    if (len(text) + len(separator)) * count >= _MAX_STRING:
        raise RuntimeError("resulting string too large")
    return separator.join([text] * count)


def _string_reverse(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return _check_string(args, 0, "reverse")[::-1]


def _string_byte(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    text = _check_string(args, 0, "byte")
    length = len(text)
    start = _position(_check_int(args, 1, "byte", 1), length)
    end = _position(_check_int(args, 2, "byte", start), length)
    start = max(start, 1)
    end = min(end, length)
    return LuaMultiReturn([ord(char) for char in text[start - 1:end]] if start <= end else [])


def _string_char(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    chars = []
    for index in range(len(args)):
        code = _check_int(args, index, "char")
        if not 0 <= code <= 255:
            raise _arg_error(index, "char", "value out of range")
        chars.append(chr(code))
    return "".join(chars)


def _find_start(args: Sequence[Any], name: str, length: int) -> int:
    start = _position(_check_int(args, 2, name, 1), length)
    return max(start, 1)


def _string_find(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    text = _check_string(args, 0, "find")
    pattern = _check_string(args, 1, "find")
    start = _find_start(args, "find", len(text))
    if start > len(text) + 1:
        return LuaMultiReturn([None])
    if not is_falsy(_arg(args, 3)) or not has_specials(pattern):
        found = text.find(pattern, start - 1)
        if found < 0:
            return LuaMultiReturn([None])
        return LuaMultiReturn([found + 1, found + len(pattern)])
    match = search(text, pattern, start - 1)
    if match is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn([match.start + 1, match.end, *match.captures(whole_if_none=False)])


def _string_match(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    text = _check_string(args, 0, "match")
    pattern = _check_string(args, 1, "match")
    start = _find_start(args, "match", len(text))
    if start > len(text) + 1:
        return LuaMultiReturn([None])
    match = search(text, pattern, start - 1)
    if match is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn(match.captures())


def _string_gmatch(args: Sequence[Any], vm: Any) -> BuiltinFunction:  # noqa: ANN401
    text = _check_string(args, 0, "gmatch")
    pattern = _check_string(args, 1, "gmatch")
    matches = iterate(text, pattern)

    def _iterator(iterator_args: Sequence[Any], iterator_vm: Any) -> LuaMultiReturn:  # noqa: ANN401
        match = next(matches, None)
        if match is None:
            return LuaMultiReturn([None])
        return LuaMultiReturn(match.captures())

    return BuiltinFunction("gmatch_iterator", _iterator)


def _expand_replacement(template: str, match) -> str:
    output: List[str] = []
    index = 0
    length = len(template)
    while index < length:
        char = template[index]
        index += 1
        if char != "%":
            output.append(char)
            continue
        if index >= length:
            raise RuntimeError("invalid use of '%' in replacement string")
        code = template[index]
        index += 1
        if code == "%":
            output.append("%")
        elif code.isdigit():
            value = match.text if code == "0" else match.capture(int(code) - 1)
            output.append(value if isinstance(value, str) else format_number(value))
        else:
            raise RuntimeError("invalid use of '%' in replacement string")
    return "".join(output)


def _string_gsub(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    text = _check_string(args, 0, "gsub")
    pattern = _check_string(args, 1, "gsub")
    replacement = _arg(args, 2)
    max_count = _check_int(args, 3, "gsub", None)
    if is_number(replacement):
        replacement = format_number(replacement)
    if not isinstance(replacement, (str, LuaTable)) and not is_callable(replacement):
        raise _type_error(args, 2, "gsub", "string/function/table")

    def _replace(match):
        if isinstance(replacement, str):
            return _expand_replacement(replacement, match)
        first = match.capture(0)
        if isinstance(replacement, LuaTable):
            value = vm.index(replacement, first)
        else:
            results = vm.call_callable(replacement, match.captures())
            value = results[0] if results else None
        if is_falsy(value):
            return None
        if isinstance(value, str):
            return value
        if is_number(value):
            return format_number(value)
        raise RuntimeError(f"invalid replacement value (a {lua_type(value)})")

    result, count = substitute(text, pattern, _replace, max_count)
    return LuaMultiReturn([result, count])


def _format_integer(value: Any, index: int) -> int:
    number = to_number(value)
    if number is None:
        raise _arg_error(index, "format", f"number expected, got {lua_type(value)}")
    result = to_integer(number)
    if result is None:
        raise _arg_error(index, "format", "number has no integer representation")
    return result


def _quote(value: Any) -> str:
    if type(value) is int:
        return str(value) if value != MIN_INTEGER else "0x8000000000000000"
    if type(value) is float:
        if value == math.inf:
            return "1e9999"
        if value == -math.inf:
            return "-1e9999"
        if math.isnan(value):
            return "(0/0)"
        integral = float_to_int(value)
        return f"{integral}.0" if integral is not None else repr(value)
    if not isinstance(value, str):
        raise RuntimeError("value has no literal form")
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\\n")
        .replace("\r", "\\r")
        .replace("\0", "\\0")
    )
    return f'"{escaped}"'


def _string_format(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    template = _check_string(args, 0, "format")
    argument = 0
    output: List[str] = []
    length = len(template)
    index = 0
    while index < length:
        char = template[index]
        if char != "%":
            output.append(char)
            index += 1
            continue
        index += 1
        if index < length and template[index] == "%":
            output.append("%")
            index += 1
            continue
        flags = ""
        while index < length and template[index] in "-+ #0":
            flags += template[index]
            index += 1
        width = ""
        while index < length and template[index].isdigit():
            width += template[index]
            index += 1
        precision = ""
        if index < length and template[index] == ".":
            index += 1
            precision = "."
            while index < length and template[index].isdigit():
                precision += template[index]
                index += 1
        if len(flags) > 5 or len(width) > 2 or len(precision) > 3:
            raise RuntimeError("invalid format (repeated flags)")
        if index >= length:
            raise RuntimeError("invalid conversion '%' to 'format'")
        specifier = template[index]
        index += 1
        argument += 1
        if argument >= len(args):
            raise _arg_error(argument, "format", "no value")
        value = args[argument]
        spec = "%" + flags + width + precision
        if specifier in "di":
            formatted = (spec + "d") % _format_integer(value, argument)
        elif specifier in "oxX":
            formatted = (spec + specifier) % (_format_integer(value, argument) & 0xFFFFFFFFFFFFFFFF)
        elif specifier in "eEfFgGaA":
            number = to_number(value)
            if number is None:
                raise _arg_error(argument, "format", f"number expected, got {lua_type(value)}")
            if specifier in "aA":
                formatted = float(number).hex()
                formatted = formatted.upper() if specifier == "A" else formatted
            else:
                formatted = (spec + specifier) % float(number)
        elif specifier == "c":
            formatted = (spec + "s") % chr(_format_integer(value, argument))
        elif specifier == "s":
            formatted = (spec + "s") % tostring(vm, value)
        elif specifier == "q":
            formatted = _quote(value)
        else:
            raise RuntimeError(f"invalid conversion '%{specifier}' to 'format'")
        output.append(formatted)
    return "".join(output)


# ---------------------------------------------------------------- table library


def _table_insert(args: Sequence[Any], vm: Any) -> None:  # noqa: ANN401
    target = _check_table(args, 0, "insert")
    end = target.lua_len() + 1
    if len(args) == 2:
        target.raw_set(end, args[1])
        return None
    if len(args) != 3:
        raise RuntimeError("wrong number of arguments to 'insert'")
    position = _check_int(args, 1, "insert")
    if not 1 <= position <= end:
        raise _arg_error(1, "insert", "position out of bounds")
    target.insert(position, args[2])
    return None


def _table_remove(args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401
    target = _check_table(args, 0, "remove")
    size = target.lua_len()
    position = _check_int(args, 1, "remove", size)
    if position != size and not 1 <= position <= size + 1:
        raise _arg_error(0, "remove", "position out of bounds")
    return target.remove(position)


def _table_concat(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    table = _check_table(args, 0, "concat")
    separator = _check_string(args, 1, "concat", "")
    start = _check_int(args, 2, "concat", 1)
    stop = _check_int(args, 3, "concat", None)
    if stop is None:
        stop = table.lua_len()
    parts = []
    for index in range(start, stop + 1):
        value = table.raw_get(index)
        if isinstance(value, str):
            parts.append(value)
        elif is_number(value):
            parts.append(format_number(value))
        else:
            raise RuntimeError(f"invalid value (at index {index}) in table for 'concat'")
    return separator.join(parts)


def _table_pack(args: Sequence[Any], vm: Any) -> LuaTable:  # noqa: ANN401
    table = LuaTable()
    for index, value in enumerate(args, start=1):
        table.raw_set(index, value)
    table.raw_set("n", len(args))
    return table


def _table_unpack(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    source = _check_any(args, 0, "unpack")
    start = _check_int(args, 1, "unpack", 1)
    stop = _check_int(args, 2, "unpack", None)
    if stop is None:
        stop = vm.length(source)
    if start > stop:
        return LuaMultiReturn([])
    if stop - start >= _MAX_UNPACK:
        raise RuntimeError("too many results to unpack")
    if isinstance(source, LuaTable) and source.metatable is None:
        return LuaMultiReturn([source.raw_get(index) for index in range(start, stop + 1)])
    return LuaMultiReturn([vm.index(source, index) for index in range(start, stop + 1)])


def _table_sort(args: Sequence[Any], vm: Any) -> None:  # noqa: ANN401
    table = _check_table(args, 0, "sort")
    comparator = _arg(args, 1)
    if comparator is not None and not is_callable(comparator):
        raise _type_error(args, 1, "sort", "function")
    length = table.lua_len()
    values = [table.raw_get(index) for index in range(1, length + 1)]

    def less(left, right) -> bool:
        if comparator is None:
            return vm.less_than(left, right)
        results = vm.call_callable(comparator, [left, right])
        return bool(results) and not is_falsy(results[0])

    def compare(left, right) -> int:
        if less(left, right):
            return -1
        if less(right, left):
            return 1
        return 0

    values.sort(key=functools.cmp_to_key(compare))
    for index, value in enumerate(values, start=1):
        table.raw_set(index, value)


def _table_move(args: Sequence[Any], vm: Any) -> LuaTable:  # noqa: ANN401
    source = _check_table(args, 0, "move")
    start = _check_int(args, 1, "move")
    finish = _check_int(args, 2, "move")
    dest_index = _check_int(args, 3, "move")
    destination = source
    if _arg(args, 4) is not None:
        destination = _check_table(args, 4, "move")
    if finish < start:
        return destination
    count = finish - start + 1
    if destination is source and start < dest_index <= finish:
        offsets = range(count - 1, -1, -1)
    else:
        offsets = range(count)
    for offset in offsets:
        destination.raw_set(dest_index + offset, source.raw_get(start + offset))
    return destination


# ---------------------------------------------------------------- math library


def _math_unary(name: str, func: Callable[[float], float]):
    def wrapper(args: Sequence[Any], vm: Any) -> float:  # noqa: ANN401
        number = _check_number(args, 0, name)
        try:
            return func(float(number))
        except (ValueError, OverflowError):
            return math.nan

    return wrapper


def _integral(value: float):
    result = float_to_int(value)
    return result if result is not None else value


def _math_floor(args: Sequence[Any], vm: Any):  # noqa: ANN401
    number = _check_number(args, 0, "floor")
    if type(number) is int:
        return number
    return _integral(float(math.floor(number))) if math.isfinite(number) else number


def _math_ceil(args: Sequence[Any], vm: Any):  # noqa: ANN401
    number = _check_number(args, 0, "ceil")
    if type(number) is int:
        return number
    return _integral(float(math.ceil(number))) if math.isfinite(number) else number


def _math_abs(args: Sequence[Any], vm: Any):  # noqa: ANN401
    number = _check_number(args, 0, "abs")
    if type(number) is int:
        return wrap_int(abs(number))
    return abs(number)


def _math_fmod(args: Sequence[Any], vm: Any):  # noqa: ANN401
    left = _check_number(args, 0, "fmod")
    right = _check_number(args, 1, "fmod")
    if type(left) is int and type(right) is int:
        if right == 0:
            raise _arg_error(1, "fmod", "zero")
        remainder = abs(left) % abs(right)
        return -remainder if left < 0 else remainder
    try:
        return math.fmod(float(left), float(right))
    except ValueError:
        return math.nan


def _math_modf(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    number = float(_check_number(args, 0, "modf"))
    if math.isinf(number):
        return LuaMultiReturn([number, 0.0])
    integral = float(math.floor(number) if number >= 0 else math.ceil(number))
    return LuaMultiReturn([integral, number - integral])


def _math_log(args: Sequence[Any], vm: Any) -> float:  # noqa: ANN401
    number = float(_check_number(args, 0, "log"))
    base = _arg(args, 1)
    try:
        if base is None:
            return math.log(number)
        base = float(_check_number(args, 1, "log"))
        if base == 2.0:
            return math.log2(number)
        if base == 10.0:
            return math.log10(number)
        return math.log(number) / math.log(base)
    except ValueError:
        return -math.inf if number == 0 else math.nan


def _math_atan(args: Sequence[Any], vm: Any) -> float:  # noqa: ANN401
    y = float(_check_number(args, 0, "atan"))
    x = float(_check_number(args, 1, "atan", 1.0))
    return math.atan2(y, x)


def _math_extreme(name: str, pick_left: Callable[[Any, Any], bool]):
    def wrapper(args: Sequence[Any], vm: Any):  # noqa: ANN401
        best = _check_number(args, 0, name)
        for index in range(1, len(args)):
            candidate = _check_number(args, index, name)
            if pick_left(candidate, best):
                best = candidate
        return best

    return wrapper


def _math_tointeger(args: Sequence[Any], vm: Any):  # noqa: ANN401
    value = _arg(args, 0)
    if type(value) is int:
        return value
    if type(value) is float:
        return float_to_int(value)
    return None


def _math_type(args: Sequence[Any], vm: Any):  # noqa: ANN401
    value = _check_any(args, 0, "type")
    if type(value) is int:
        return "integer"
    if type(value) is float:
        return "float"
    return None


def _math_ult(args: Sequence[Any], vm: Any) -> bool:  # noqa: ANN401
    left = _check_int(args, 0, "ult")
    right = _check_int(args, 1, "ult")
    return (left & 0xFFFFFFFFFFFFFFFF) < (right & 0xFFFFFFFFFFFFFFFF)


def _create_random_builtins(rng: random.Random) -> Dict[str, BuiltinFunction]:
    def _random(args: Sequence[Any], vm: Any):  # noqa: ANN401
        if not args:
            return rng.random()
        if len(args) == 1:
            low, high = 1, _check_int(args, 0, "random")
        elif len(args) == 2:
            low, high = _check_int(args, 0, "random"), _check_int(args, 1, "random")
        else:
            raise RuntimeError("wrong number of arguments")
        if low > high:
            raise _arg_error(len(args) - 1, "random", "interval is empty")
        return rng.randint(low, high)

    def _randomseed(args: Sequence[Any], vm: Any) -> None:  # noqa: ANN401
        if args:
            rng.seed(_check_number(args, 0, "randomseed"))
        else:
            rng.seed()

    return {
        "random": BuiltinFunction("math.random", _random),
        "randomseed": BuiltinFunction("math.randomseed", _randomseed),
    }


# ---------------------------------------------------------------- coroutine library


def _check_thread(args: Sequence[Any], index: int, name: str) -> LuaThread:
    value = _arg(args, index)
    if not isinstance(value, LuaThread):
        raise _type_error(args, index, name, "coroutine")
    return value


def _coroutine_create(args: Sequence[Any], vm: Any) -> LuaThread:  # noqa: ANN401
    return LuaThread(vm.runtime, _check_function(args, 0, "create"))


def _coroutine_resume(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    thread = _check_thread(args, 0, "resume")
    result = thread.resume(args[1:])
    if result.success:
        return LuaMultiReturn([True, *result.values])
    return LuaMultiReturn([False, *result.values[:1]])


def _coroutine_yield(args: Sequence[Any], vm: Any) -> LuaYield:  # noqa: ANN401
    return LuaYield(args)


def _coroutine_status(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return _check_thread(args, 0, "status").status


def _coroutine_wrap(args: Sequence[Any], vm: Any) -> BuiltinFunction:  # noqa: ANN401
    thread = LuaThread(vm.runtime, _check_function(args, 0, "wrap"))

    def _wrapped(call_args: Sequence[Any], call_vm: Any) -> LuaMultiReturn:  # noqa: ANN401
        result = thread.resume(call_args)
        if not result.success:
            value = result.values[0] if result.values else None
            frames = result.error.frames if result.error is not None else call_vm._capture_traceback()
            raise LuaError(value, frames)
        return LuaMultiReturn(result.values)

    return BuiltinFunction("wrap", _wrapped)


def _coroutine_running(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    current = vm.runtime.current_thread
    return LuaMultiReturn([current, current.is_main])


def _coroutine_isyieldable(args: Sequence[Any], vm: Any) -> bool:  # noqa: ANN401
    return vm.is_yieldable


# ---------------------------------------------------------------- installation


def _register_library(runtime: Any, name: str, members: Dict[str, Any]) -> LuaTable:  # noqa: ANN401
    library = LuaTable()
    for key, value in members.items():
        library.raw_set(key, value)
    runtime.globals.raw_set(name, library)
    return library


def install_stdlib(runtime: Any) -> None:  # noqa: ANN401 - runtime imports this module lazily
    """Installs the base, string, table, math and coroutine libraries."""
    env = runtime.globals

    def register(name: str, func, doc: str = "") -> BuiltinFunction:
        builtin = BuiltinFunction(name, func, doc)
        env.raw_set(name, builtin)
        return builtin

    register("print", _lua_print, "Write values to the runtime output.")
    register("type", _lua_type, "Return the type of a Lua value.")
    next_builtin = register("next", _lua_next, "Iterate to the next key in a table.")
    env.raw_set("pairs", _create_pairs_builtin(next_builtin))
    env.raw_set("ipairs", _create_ipairs_builtin(BuiltinFunction("ipairs_iterator", _ipairs_iter)))
    register("tonumber", _lua_tonumber, "Convert a value to a number.")
    register("tostring", _lua_tostring, "Convert a value to a string.")
    register("error", _lua_error, "Raise a Lua error.")
    register("assert", _lua_assert, "Assert that a value is truthy.")
    register("pcall", _lua_pcall, "Call a function in protected mode.")
    register("xpcall", _lua_xpcall, "Protected call with a message handler.")
    register("select", _lua_select)
    register("setmetatable", _lua_setmetatable)
    register("getmetatable", _lua_getmetatable)
    register("rawget", _lua_rawget)
    register("rawset", _lua_rawset)
    register("rawequal", _lua_rawequal)
    register("rawlen", _lua_rawlen)
    register("collectgarbage", _lua_collectgarbage)
    register("load", _lua_load)
    env.raw_set("_G", env)
    env.raw_set("_VERSION", "Lua 5.3")

    string_library = _register_library(
        runtime,
        "string",
        {
            "len": BuiltinFunction("string.len", _string_len),
            "sub": BuiltinFunction("string.sub", _string_sub),
            "upper": BuiltinFunction("string.upper", _string_upper),
            "lower": BuiltinFunction("string.lower", _string_lower),
            "rep": BuiltinFunction("string.rep", _string_rep),
            "reverse": BuiltinFunction("string.reverse", _string_reverse),
            "byte": BuiltinFunction("string.byte", _string_byte),
            "char": BuiltinFunction("string.char", _string_char),
            "find": BuiltinFunction("string.find", _string_find),
            "match": BuiltinFunction("string.match", _string_match),
            "gmatch": BuiltinFunction("string.gmatch", _string_gmatch),
            "gsub": BuiltinFunction("string.gsub", _string_gsub),
            "format": BuiltinFunction("string.format", _string_format),
        },
    )
    runtime.string_metatable = LuaTable(mapping={"__index": string_library})

    _register_library(
        runtime,
        "table",
        {
            "insert": BuiltinFunction("table.insert", _table_insert),
            "remove": BuiltinFunction("table.remove", _table_remove),
            "concat": BuiltinFunction("table.concat", _table_concat),
            "sort": BuiltinFunction("table.sort", _table_sort),
            "pack": BuiltinFunction("table.pack", _table_pack),
            "unpack": BuiltinFunction("table.unpack", _table_unpack),
            "move": BuiltinFunction("table.move", _table_move),
        },
    )

    math_members = {
        "abs": BuiltinFunction("math.abs", _math_abs),
        "ceil": BuiltinFunction("math.ceil", _math_ceil),
        "floor": BuiltinFunction("math.floor", _math_floor),
        "sqrt": BuiltinFunction("math.sqrt", _math_unary("sqrt", math.sqrt)),
        "sin": BuiltinFunction("math.sin", _math_unary("sin", math.sin)),
        "cos": BuiltinFunction("math.cos", _math_unary("cos", math.cos)),
        "tan": BuiltinFunction("math.tan", _math_unary("tan", math.tan)),
        "asin": BuiltinFunction("math.asin", _math_unary("asin", math.asin)),
        "acos": BuiltinFunction("math.acos", _math_unary("acos", math.acos)),
        "atan": BuiltinFunction("math.atan", _math_atan),
        "exp": BuiltinFunction("math.exp", _math_unary("exp", math.exp)),
        "log": BuiltinFunction("math.log", _math_log),
        "deg": BuiltinFunction("math.deg", _math_unary("deg", math.degrees)),
        "rad": BuiltinFunction("math.rad", _math_unary("rad", math.radians)),
        "fmod": BuiltinFunction("math.fmod", _math_fmod),
        "modf": BuiltinFunction("math.modf", _math_modf),
        "max": BuiltinFunction("math.max", _math_extreme("max", lambda a, b: a > b)),
        "min": BuiltinFunction("math.min", _math_extreme("min", lambda a, b: a < b)),
        "tointeger": BuiltinFunction("math.tointeger", _math_tointeger),
        "type": BuiltinFunction("math.type", _math_type),
        "ult": BuiltinFunction("math.ult", _math_ult),
        "pi": math.pi,
        "huge": math.inf,
        "maxinteger": MAX_INTEGER,
        "mininteger": MIN_INTEGER,
    }
    math_members.update(_create_random_builtins(random.Random()))
    _register_library(runtime, "math", math_members)

    _register_library(
        runtime,
        "coroutine",
        {
            "create": BuiltinFunction("coroutine.create", _coroutine_create),
            "resume": BuiltinFunction("coroutine.resume", _coroutine_resume),
            "yield": BuiltinFunction("coroutine.yield", _coroutine_yield, allow_yield=True),
            "status": BuiltinFunction("coroutine.status", _coroutine_status),
            "wrap": BuiltinFunction("coroutine.wrap", _coroutine_wrap),
            "running": BuiltinFunction("coroutine.running", _coroutine_running),
            "isyieldable": BuiltinFunction("coroutine.isyieldable", _coroutine_isyieldable),
        },
    )


__all__ = ["install_stdlib", "tostring"]
