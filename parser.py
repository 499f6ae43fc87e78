from __future__ import annotations
from dataclasses import dataclass
from typing import List

from lexer import IntcodeParseError, Lexer, Token


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Program:
    location: SourceLocation
    image: List[int]


class Parser:
    """Turns image tokens into memory words: NUMBER (COMMA NUMBER)* [COMMA] EOF."""

    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> Program:
        start = self._peek()
        image: List[int] = []
        if start.type == "EOF":
            return Program(location=self._location_from_token(start), image=image)
        while True:
            token = self._consume("NUMBER")
            image.append(int(token.value))
            if not self._match("COMMA"):
                break
            if self._peek().type == "EOF":
                # Trailing comma.
                break
        self._consume("EOF")
        return Program(location=self._location_from_token(start), image=image)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            found = repr(token.value) if token.value else token.type
            raise IntcodeParseError(
                f"Expected {token_type} but found {found} at {self.filename}:{token.line}:{token.column}"
            )
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse_program(text: str, filename: str = "<string>") -> Program:
    tokens = Lexer(text, filename).tokenize()
    return Parser(tokens, filename, text.splitlines()).parse()


def read_program(text: str, filename: str = "<string>") -> List[int]:
    """Parse comma separated program text into a list of memory words."""
    return parse_program(text.strip(), filename).image


def read_program_file(path: str) -> List[int]:
    with open(path, "r", encoding="utf-8") as handle:
        return read_program(handle.read(), path)
