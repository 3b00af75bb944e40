from __future__ import annotations

import math
import weakref
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple


class _BoolKey:
    """Boolean keys are boxed so that ``True`` does not collide with ``1``."""

    __slots__ = ("value",)

    def __init__(self, value: bool) -> None:
        self.value = value

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return "true" if self.value else "false"


_TRUE_KEY = _BoolKey(True)
_FALSE_KEY = _BoolKey(False)


class TableKeyError(RuntimeError):
    pass


def _normalize(key: Any) -> Any:
    if key is True:
        return _TRUE_KEY
    if key is False:
        return _FALSE_KEY
    if isinstance(key, float) and key.is_integer():
        return int(key)
    return key


def _denormalize(key: Any) -> Any:
    if isinstance(key, _BoolKey):
        return key.value
    return key


def _collectable(key: Any) -> bool:
    return not isinstance(key, (str, int, float, _BoolKey))


class LuaTable:
    """Hybrid table supporting Lua-style array and dictionary access."""

    __slots__ = ("array", "map", "weak", "metatable", "_keys", "_positions", "__weakref__")

    def __init__(self, array: Iterable[Any] | None = None, mapping: Dict[Any, Any] | None = None) -> None:
        self.array: List[Any] = []
        self.map: Dict[Any, Any] = {}
        self.weak: Optional[weakref.WeakKeyDictionary] = None
        self.metatable: Optional[LuaTable] = None
        self._keys: Optional[List[Any]] = None
        self._positions: Dict[Any, int] = {}
        if array is not None:
            self.extend(array)
        if mapping is not None:
            for key, value in mapping.items():
                self.raw_set(key, value)

    # ---------------------------- array helpers ---------------------------- #
    def append(self, value: Any) -> None:
        self.raw_set(len(self.array) + 1, value)

    def extend(self, values: Iterable[Any]) -> None:
        index = self.lua_len()
        for value in values:
            index += 1
            self.raw_set(index, value)

    def insert(self, index: int, value: Any) -> None:
        end = self.lua_len() + 1
        if index < 1 or index > end:
            raise TableKeyError("bad argument #2 to 'insert' (position out of bounds)")
        for pos in range(end, index, -1):
            self.raw_set(pos, self.raw_get(pos - 1))
        self.raw_set(index, value)

    def remove(self, index: int | None = None) -> Any:
        size = self.lua_len()
        if index is None:
            index = size
        if index != size and not 1 <= index <= size + 1:
            raise TableKeyError("bad argument #2 to 'remove' (position out of bounds)")
        value = self.raw_get(index)
        pos = index
        while pos < size:
            self.raw_set(pos, self.raw_get(pos + 1))
            pos += 1
        self.raw_set(pos, None)
        return value

    def lua_len(self) -> int:
        count = len(self.array)
        if count:
            return count
        # array part empty: search the hash part for a sequence start
        if self.map.get(1) is None:
            return 0
        count = 1
        while self.map.get(count + 1) is not None:
            count += 1
        return count

    # --------------------------- raw table access -------------------------- #
    def raw_get(self, key: Any) -> Any:
        if type(key) is int and 1 <= key <= len(self.array):
            return self.array[key - 1]
        key = _normalize(key)
        if type(key) is int and 1 <= key <= len(self.array):
            return self.array[key - 1]
        if self.weak is not None and _collectable(key):
            return self.weak.get(key)
        return self.map.get(key)

    def raw_set(self, key: Any, value: Any) -> None:
        if key is None:
            raise TableKeyError("table index is nil")
        key = _normalize(key)
        if isinstance(key, float) and math.isnan(key):
            raise TableKeyError("table index is NaN")
        if type(key) is int:
            size = len(self.array)
            if 1 <= key <= size:
                self.array[key - 1] = value
                if value is None and key == size:
                    self._trim_array()
                return
            if key == size + 1:
                if value is None:
                    self._remove_key(key)
                    return
                self.map.pop(key, None)
                self.array.append(value)
                self._migrate_from_map()
                return
        if value is None:
            self._remove_key(key)
            return
        if self.weak is not None and _collectable(key):
            if key not in self.weak:
                self._keys = None
            self.weak[key] = value
            return
        if key not in self.map:
            self._keys = None
        self.map[key] = value

    def next(self, key: Any) -> Optional[Tuple[Any, Any]]:
        """Returns the entry following ``key`` or ``None`` at the end of the traversal."""
        start = 0
        if key is not None:
            norm = _normalize(key)
            self._key_snapshot()
            position = self._positions.get(norm)
            if position is not None:
                return self._next_in_hash(position + 1)
            if type(norm) is int and norm >= 1:
                start = norm
            else:
                raise TableKeyError("invalid key to 'next'")
        for index in range(start, len(self.array)):
            value = self.array[index]
            if value is not None:
                return index + 1, value
        return self._next_in_hash(0)

    # ---------------------------- iteration helpers --------------------------- #
    def iter_items(self) -> Iterator[Tuple[Any, Any]]:
        for idx, value in enumerate(list(self.array), start=1):
            if value is not None:
                yield idx, value
        for key, value in list(self.map.items()):
            yield _denormalize(key), value
        if self.weak is not None:
            for key, value in list(self.weak.items()):
                yield key, value

    def set_metatable(self, metatable: Optional["LuaTable"]) -> None:
        self.metatable = metatable
        mode = metatable.raw_get("__mode") if metatable is not None else None
        if isinstance(mode, str) and "k" in mode:
            if self.weak is None:
                self.weak = weakref.WeakKeyDictionary()
                for key in [k for k in self.map if _collectable(k)]:
                    self.weak[key] = self.map.pop(key)
                self._keys = None
        elif self.weak is not None:
            for key, value in list(self.weak.items()):
                self.map[key] = value
            self.weak = None
            self._keys = None

    def get_metatable(self) -> Optional["LuaTable"]:
        return self.metatable

    # ------------------------------- internals ----------------------------- #
    def _remove_key(self, key: Any) -> None:
        # deletions keep the traversal snapshot valid
        if self.weak is not None and _collectable(key):
            self.weak.pop(key, None)
        else:
            self.map.pop(key, None)

    def _key_snapshot(self) -> List[Any]:
        if self._keys is None:
            keys = list(self.map.keys())
            if self.weak is not None:
                keys.extend(self.weak.keys())
            self._keys = keys
            self._positions = {k: i for i, k in enumerate(keys)}
        return self._keys

    def _next_in_hash(self, start: int) -> Optional[Tuple[Any, Any]]:
        keys = self._key_snapshot()
        for position in range(start, len(keys)):
            key = keys[position]
            if self.weak is not None and _collectable(key):
                value = self.weak.get(key)
            else:
                value = self.map.get(key)
            if value is not None:
                return _denormalize(key), value
        if self.weak is not None:
            # a finished traversal must not keep weak keys alive
            self._keys = None
            self._positions = {}
        return None

    def _migrate_from_map(self) -> None:
        while self.map:
            value = self.map.pop(len(self.array) + 1, None)
            if value is None:
                break
            self.array.append(value)

    def _trim_array(self) -> None:
        while self.array and self.array[-1] is None:
            self.array.pop()

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"LuaTable(array={self.array!r}, map={self.map!r})"


__all__ = ["LuaTable", "TableKeyError"]
