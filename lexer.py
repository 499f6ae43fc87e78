from __future__ import annotations
from dataclasses import dataclass
from typing import List


class IntcodeError(Exception):
    """Base class for interpreter errors."""


class IntcodeParseError(IntcodeError):
    """Raised when a program image or an input line cannot be parsed."""


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


SYMBOLS = {
    ",": "COMMA",
}

DIGITS = "0123456789"


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r\n":
                _advance()
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch in "+-" or ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            raise IntcodeParseError(
                f"Unexpected character '{ch}' at {self.filename}:{self.line}:{self.column}"
            )
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        # Swallow everything up to the next separator so a bad token is
        # reported whole ("12a" rather than "a").
        while self.index < n and text[self.index] not in ", \t\r\n":
            chars.append(text[self.index])
            self._advance()
        value = "".join(chars)
        if not _is_integer_literal(value):
            raise IntcodeParseError(
                f"Invalid integer '{value}' at {self.filename}:{line}:{col}"
            )
        return Token("NUMBER", value, line, col)

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def _is_integer_literal(value: str) -> bool:
    if value[:1] in ("+", "-"):
        value = value[1:]
    return value != "" and all(c in DIGITS for c in value)


def parse_int(text: str) -> int:
    """Parse one trimmed decimal integer, as supplied on an input line."""
    stripped = text.strip()
    if not _is_integer_literal(stripped):
        raise IntcodeParseError(f"Invalid integer input '{stripped}'")
    return int(stripped)
