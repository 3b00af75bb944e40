"""Lua string patterns.

A backtracking matcher with the semantics of the reference string library:
character classes, sets, the ``* + - ?`` quantifiers, anchors, captures
(including position captures and back references), ``%b`` and ``%f``.
"""

from __future__ import annotations

import string
from typing import Callable, Iterator, List, Optional, Tuple

MAX_RECURSION = 200
SPECIALS = "^$*+?.([%-"

_CAP_UNFINISHED = -1
_CAP_POSITION = -2

_PUNCTUATION = frozenset(string.punctuation)
_SPACE = frozenset(" \t\n\r\f\v")
_HEX = frozenset(string.hexdigits)


class PatternError(RuntimeError):
    pass


def _is_class(char: str, code: str) -> Optional[bool]:
    o = ord(char)
    if code == "a":
        return char.isascii() and char.isalpha()
    if code == "c":
        return o < 32 or o == 127
    if code == "d":
        return "0" <= char <= "9"
    if code == "g":
        return 33 <= o <= 126
    if code == "l":
        return "a" <= char <= "z"
    if code == "p":
        return char in _PUNCTUATION
    if code == "s":
        return char in _SPACE
    if code == "u":
        return "A" <= char <= "Z"
    if code == "w":
        return char.isascii() and char.isalnum()
    if code == "x":
        return char in _HEX
    return None


def match_class(char: str, code: str) -> bool:
    result = _is_class(char, code.lower())
    if result is None:
        return code == char
    return (not result) if code.isupper() else result


class _MatchState:
    __slots__ = ("src", "pattern", "captures", "depth")

    def __init__(self, src: str, pattern: str):
        self.src = src
        self.pattern = pattern
        self.captures: List[List[int]] = []
        self.depth = 0

    # -------------------------------------------------------------- classes
    def class_end(self, p: int) -> int:
        pat = self.pattern
        n = len(pat)
        char = pat[p]
        p += 1
        if char == "%":
            if p >= n:
                raise PatternError("malformed pattern (ends with '%')")
            return p + 1
        if char == "[":
            if p < n and pat[p] == "^":
                p += 1
            while True:
                if p >= n:
                    raise PatternError("malformed pattern (missing ']')")
                char = pat[p]
                p += 1
                if char == "%" and p < n:
                    p += 1
                if p >= n:
                    raise PatternError("malformed pattern (missing ']')")
                if pat[p] == "]":
                    return p + 1
        return p

    def match_bracket(self, char: str, p: int, ec: int) -> bool:
        pat = self.pattern
        sig = True
        if pat[p + 1] == "^":
            sig = False
            p += 1
        p += 1
        while p < ec:
            current = pat[p]
            if current == "%":
                p += 1
                if match_class(char, pat[p]):
                    return sig
            elif p + 2 < ec and pat[p + 1] == "-":
                if pat[p] <= char <= pat[p + 2]:
                    return sig
                p += 2
            elif current == char:
                return sig
            p += 1
        return not sig

    def single_match(self, s: int, p: int, ep: int) -> bool:
        if s >= len(self.src):
            return False
        char = self.src[s]
        code = self.pattern[p]
        if code == ".":
            return True
        if code == "%":
            return match_class(char, self.pattern[p + 1])
        if code == "[":
            return self.match_bracket(char, p, ep - 1)
        return code == char

    # -------------------------------------------------------------- matching
    def match(self, s: int, p: int) -> Optional[int]:
        self.depth += 1
        if self.depth > MAX_RECURSION:
            raise PatternError("pattern too complex")
        try:
            return self._match(s, p)
        finally:
            self.depth -= 1

    def _match(self, s: int, p: int) -> Optional[int]:
        pat = self.pattern
        n = len(pat)
        while True:
            if p == n:
                return s
            char = pat[p]
            if char == "(":
                if p + 1 < n and pat[p + 1] == ")":
                    return self.start_capture(s, p + 2, _CAP_POSITION)
                return self.start_capture(s, p + 1, _CAP_UNFINISHED)
            if char == ")":
                return self.end_capture(s, p + 1)
            if char == "$" and p + 1 == n:
                return s if s == len(self.src) else None
            if char == "%" and p + 1 < n:
                code = pat[p + 1]
                if code == "b":
                    s = self.match_balance(s, p + 2)
                    if s is None:
                        return None
                    p += 4
                    continue
                if code == "f":
                    p += 2
                    if p >= n or pat[p] != "[":
                        raise PatternError("missing '[' after '%f' in pattern")
                    ep = self.class_end(p)
                    previous = self.src[s - 1] if s > 0 else "\0"
                    current = self.src[s] if s < len(self.src) else "\0"
                    if not self.match_bracket(previous, p, ep - 1) and self.match_bracket(current, p, ep - 1):
                        p = ep
                        continue
                    return None
                if code.isdigit():
                    s = self.match_capture(s, code)
                    if s is None:
                        return None
                    p += 2
                    continue
            ep = self.class_end(p)
            suffix = pat[ep] if ep < n else ""
            if not self.single_match(s, p, ep):
                if suffix in ("*", "?", "-"):
                    p = ep + 1
                    continue
                return None
            if suffix == "?":
                result = self.match(s + 1, ep + 1)
                if result is not None:
                    return result
                p = ep + 1
                continue
            if suffix == "+":
                return self.max_expand(s + 1, p, ep)
            if suffix == "*":
                return self.max_expand(s, p, ep)
            if suffix == "-":
                return self.min_expand(s, p, ep)
            s += 1
            p = ep

    def max_expand(self, s: int, p: int, ep: int) -> Optional[int]:
        count = 0
        while self.single_match(s + count, p, ep):
            count += 1
        while count >= 0:
            result = self.match(s + count, ep + 1)
            if result is not None:
                return result
            count -= 1
        return None

    def min_expand(self, s: int, p: int, ep: int) -> Optional[int]:
        while True:
            result = self.match(s, ep + 1)
            if result is not None:
                return result
            if not self.single_match(s, p, ep):
                return None
            s += 1

    def start_capture(self, s: int, p: int, what: int) -> Optional[int]:
        self.captures.append([s, what])
        result = self.match(s, p)
        if result is None:
            self.captures.pop()
        return result

    def end_capture(self, s: int, p: int) -> Optional[int]:
        level = self.capture_to_close()
        capture = self.captures[level]
        capture[1] = s - capture[0]
        result = self.match(s, p)
        if result is None:
            capture[1] = _CAP_UNFINISHED
        return result

    def capture_to_close(self) -> int:
        for level in range(len(self.captures) - 1, -1, -1):
            if self.captures[level][1] == _CAP_UNFINISHED:
                return level
        raise PatternError("invalid pattern capture")

    def match_balance(self, s: int, p: int) -> Optional[int]:
        pat = self.pattern
        if p + 1 >= len(pat):
            raise PatternError("malformed pattern (missing arguments to '%b')")
        src = self.src
        if s >= len(src) or src[s] != pat[p]:
            return None
        opener, closer = pat[p], pat[p + 1]
        depth = 1
        for index in range(s + 1, len(src)):
            char = src[index]
            if char == closer:
                depth -= 1
                if depth == 0:
                    return index + 1
            elif char == opener:
                depth += 1
        return None

    def match_capture(self, s: int, digit: str) -> Optional[int]:
        level = int(digit) - 1
        if level < 0 or level >= len(self.captures) or self.captures[level][1] == _CAP_UNFINISHED:
            raise PatternError(f"invalid capture index %{level + 1}")
        start, length = self.captures[level]
        captured = self.src[start:start + length]
        if self.src.startswith(captured, s):
            return s + len(captured)
        return None

    def get_capture(self, index: int, s: int, e: int):
        if index >= len(self.captures):
            if index == 0:
                return self.src[s:e]
            raise PatternError(f"invalid capture index %{index + 1}")
        start, length = self.captures[index]
        if length == _CAP_UNFINISHED:
            raise PatternError("unfinished capture")
        if length == _CAP_POSITION:
            return start + 1
        return self.src[start:start + length]


class Match:
    """A successful match: 0-based ``start``/``end`` plus its captures."""

    __slots__ = ("start", "end", "_state")

    def __init__(self, start: int, end: int, state: _MatchState):
        self.start = start
        self.end = end
        self._state = state

    def captures(self, whole_if_none: bool = True) -> list:
        count = len(self._state.captures)
        if count == 0 and whole_if_none:
            count = 1
        return [self._state.get_capture(i, self.start, self.end) for i in range(count)]

    def capture(self, index: int):
        return self._state.get_capture(index, self.start, self.end)

    @property
    def text(self) -> str:
        return self._state.src[self.start:self.end]


def has_specials(pattern: str) -> bool:
    return any(char in SPECIALS for char in pattern)


def search(src: str, pattern: str, init: int = 0) -> Optional[Match]:
    anchor = pattern.startswith("^")
    p = 1 if anchor else 0
    s = init
    while True:
        state = _MatchState(src, pattern)
        end = state.match(s, p)
        if end is not None:
            return Match(s, end, state)
        s += 1
        if anchor or s > len(src):
            return None


def iterate(src: str, pattern: str) -> Iterator[Match]:
    position = 0
    last_end = None
    while position <= len(src):
        state = _MatchState(src, pattern)
        end = state.match(position, 0)
        if end is not None and end != last_end:
            yield Match(position, end, state)
            position = last_end = end
        else:
            position += 1


def substitute(
    src: str,
    pattern: str,
    replace: Callable[[Match], Optional[str]],
    max_count: Optional[int] = None,
) -> Tuple[str, int]:
    """Replaces matches; ``replace`` returning ``None`` keeps the original text."""
    anchor = pattern.startswith("^")
    p = 1 if anchor else 0
    pieces: List[str] = []
    s = 0
    count = 0
    last_end = None
    while max_count is None or count < max_count:
        state = _MatchState(src, pattern)
        end = state.match(s, p)
        if end is not None and end != last_end:
            count += 1
            found = Match(s, end, state)
            replacement = replace(found)
            pieces.append(found.text if replacement is None else replacement)
            s = last_end = end
        elif s < len(src):
            pieces.append(src[s])
            s += 1
        else:
            break
        if anchor:
            break
    pieces.append(src[s:])
    return "".join(pieces), count


__all__ = ["Match", "PatternError", "has_specials", "iterate", "match_class", "search", "substitute"]
