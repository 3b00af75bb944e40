from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

KEYWORDS = {
    "and",
    "break",
    "do",
    "else",
    "elseif",
    "end",
    "false",
    "for",
    "function",
    "goto",
    "if",
    "in",
    "local",
    "nil",
    "not",
    "or",
    "repeat",
    "return",
    "then",
    "true",
    "until",
    "while",
}

_THREE_CHAR_OPS = {"..."}
_TWO_CHAR_OPS = {"==", "~=", "<=", ">=", "//", "..", "<<", ">>"}
_ONE_CHAR_OPS = set("+-*/%^#&~|<>=")
_PUNCTUATION = set("(){}[];:,.")

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "\n": "\n",
}


class LexerError(SyntaxError):
    def __init__(self, message: str, line: int, column: int):
        super().__init__(message)
        self.line = line
        self.column = column


@dataclass
class Token:
    kind: str
    value: str
    line: int
    column: int

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Token({self.kind!r}, {self.value!r}, {self.line}:{self.column})"


class LuaLexer:
    def __init__(self, source: str):
        self.source = source
        self.length = len(source)
        self.pos = 0
        self.line = 1
        self.column = 1
        if source.startswith("#"):
            # shebang line
            while self._peek() not in {"\n", "\0"}:
                self._advance()

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            token = self._next_token()
            if token is None:
                break
            tokens.append(token)
        tokens.append(Token("EOF", "", self.line, self.column))
        return tokens

    # ------------------------------- internals ---------------------------- #
    def _peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        if idx >= self.length:
            return "\0"
        return self.source[idx]

    def _advance(self, count: int = 1) -> str:
        ch = ""
        for _ in range(count):
            if self.pos >= self.length:
                return "\0"
            ch = self.source[self.pos]
            self.pos += 1
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return ch

    def _error(self, message: str, line: int, col: int) -> LexerError:
        return LexerError(message, line, col)

    def _next_token(self) -> Optional[Token]:
        while True:
            ch = self._peek()
            if ch in " \t\r\n\f\v":
                self._advance()
                continue
            if ch == "-" and self._peek(1) == "-":
                self._advance(2)
                level = self._long_bracket_level()
                if level >= 0:
                    self._long_bracket(level, self.line, self.column)
                    continue
                while self._peek() not in {"\n", "\0"}:
                    self._advance()
                continue
            break

        start_line, start_col = self.line, self.column
        ch = self._peek()
        if ch == "\0":
            return None

        if ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
            return self._number(start_line, start_col)
        if ch == '"' or ch == "'":
            return self._string(start_line, start_col)
        if ch == "[":
            level = self._long_bracket_level()
            if level >= 0:
                value = self._long_bracket(level, start_line, start_col)
                return Token("STRING", value, start_line, start_col)
        if ch.isalpha() or ch == "_":
            return self._identifier(start_line, start_col)

        three_char = ch + self._peek(1) + self._peek(2)
        if three_char in _THREE_CHAR_OPS:
            self._advance(3)
            return Token("VARARG", "...", start_line, start_col)
        two_char = ch + self._peek(1)
        if two_char == "::":
            self._advance(2)
            return Token("::", "::", start_line, start_col)
        if two_char in _TWO_CHAR_OPS:
            self._advance(2)
            return Token("OP", two_char, start_line, start_col)
        if ch in _ONE_CHAR_OPS:
            self._advance()
            return Token("OP", ch, start_line, start_col)
        if ch in _PUNCTUATION:
            self._advance()
            return Token(ch, ch, start_line, start_col)

        raise self._error(f"Unexpected character {ch!r}", start_line, start_col)

    def _number(self, line: int, col: int) -> Token:
        start = self.pos
        if self._peek() == "0" and self._peek(1) in "xX":
            self._advance(2)
            exponent = "pP"
            digits = "0123456789abcdefABCDEF"
        else:
            exponent = "eE"
            digits = "0123456789"
        while True:
            ch = self._peek()
            if ch in exponent and ch != "\0":
                self._advance()
                if self._peek() in "+-":
                    self._advance()
            elif ch == "." or (ch in digits and ch != "\0"):
                self._advance()
            else:
                break
        if self._peek().isalpha() or self._peek() == "_":
            raise self._error(f"malformed number near '{self.source[start:self.pos + 1]}'", line, col)
        value = self.source[start:self.pos]
        return Token("NUMBER", value, line, col)

    def _string(self, line: int, col: int) -> Token:
        quote = self._advance()
        parts: List[str] = []
        while True:
            ch = self._peek()
            if ch == "\0" or ch == "\n":
                raise self._error("unfinished string", line, col)
            if ch == quote:
                break
            if ch == "\\":
                self._advance()
                parts.append(self._escape(line, col))
                continue
            parts.append(self._advance())
        self._advance()  # closing quote
        return Token("STRING", "".join(parts), line, col)

    def _escape(self, line: int, col: int) -> str:
        ch = self._peek()
        if ch in _ESCAPES:
            self._advance()
            return _ESCAPES[ch]
        if ch == "x":
            self._advance()
            digits = self._peek() + self._peek(1)
            try:
                code = int(digits, 16)
            except ValueError:
                raise self._error("hexadecimal digit expected", line, col) from None
            self._advance(2)
            return chr(code)
        if ch == "z":
            self._advance()
            while self._peek() in " \t\r\n\f\v" and self._peek() != "\0":
                self._advance()
            return ""
        if ch == "u":
            self._advance()
            if self._peek() != "{":
                raise self._error("missing '{' in \\u{xxxx}", line, col)
            self._advance()
            start = self.pos
            while self._peek() not in {"}", "\0"}:
                self._advance()
            digits = self.source[start:self.pos]
            self._advance()
            try:
                return chr(int(digits, 16))
            except ValueError:
                raise self._error("UTF-8 value too large", line, col) from None
        if ch.isdigit():
            start = self.pos
            while self.pos - start < 3 and self._peek().isdigit():
                self._advance()
            code = int(self.source[start:self.pos])
            if code > 255:
                raise self._error("decimal escape too large", line, col)
            return chr(code)
        raise self._error("invalid escape sequence", line, col)

    def _long_bracket_level(self) -> int:
        """Returns the level of a long bracket opening at the cursor, or -1."""
        if self._peek() != "[":
            return -1
        offset = 1
        while self._peek(offset) == "=":
            offset += 1
        if self._peek(offset) == "[":
            return offset - 1
        return -1

    def _long_bracket(self, level: int, line: int, col: int) -> str:
        self._advance(level + 2)
        if self._peek() == "\r":
            self._advance()
        if self._peek() == "\n":
            self._advance()
        closing = "]" + "=" * level + "]"
        end = self.source.find(closing, self.pos)
        if end < 0:
            raise self._error("unfinished long string", line, col)
        value = self.source[self.pos:end]
        self._advance(end - self.pos + len(closing))
        return value

    def _identifier(self, line: int, col: int) -> Token:
        start = self.pos
        while True:
            ch = self._peek()
            if not (ch.isalnum() or ch == "_"):
                break
            self._advance()
        value = self.source[start:self.pos]
        kind = value if value in KEYWORDS else "IDENT"
        return Token(kind, value, line, col)


__all__ = ["LuaLexer", "LexerError", "Token", "KEYWORDS"]
