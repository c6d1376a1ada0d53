"""
Tokenizer for template text.

Text outside the delimiters becomes TEXT tokens; inside an action the input is
split into identifiers, fields, variables, literals and punctuation. Trim
markers (`{{- ` and ` -}}`) strip adjacent whitespace from the surrounding
text and comments (`{{/* ... */}}`) are dropped.
"""
import bisect
import enum
import re
from dataclasses import dataclass
from typing import List

from salvage.salvage_errors import ParseError


class ItemType(enum.Enum):
    EOF = "EOF"
    TEXT = "text"
    LEFT_DELIM = "left delim"
    RIGHT_DELIM = "right delim"
    SPACE = "space"
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    FIELD = "field"
    VARIABLE = "variable"
    DECLARE = ":="
    ASSIGN = "="
    PIPE = "|"
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"
    CHAR = "char"
    STRING = "string"
    RAW_STRING = "raw string"
    CHAR_CONSTANT = "character constant"
    NUMBER = "number"
    BOOL = "bool"
    NIL = "nil"
    DOT = "."


KEYWORDS = {"block", "define", "else", "end", "if", "range", "template", "with"}
SPACE_CHARS = " \t\r\n"

_NUMBER_RE = re.compile(
    r"[+-]?(?:0[xX][0-9a-fA-F_]+|0[bB][01_]+|0[oO][0-7_]+"
    r"|(?:[0-9][0-9_]*(?:\.[0-9_]*)?|\.[0-9][0-9_]*)(?:[eE][+-]?[0-9]+)?)"
)


@dataclass(frozen=True)
class Token:
    typ: ItemType
    val: str
    pos: int

    def __str__(self):
        if self.typ is ItemType.EOF:
            return "EOF"
        if self.typ is ItemType.KEYWORD:
            return f"<{self.val}>"
        if len(self.val) > 10:
            return f"{self.val[:10]!r}..."
        return repr(self.val)


class Lexer:
    """Splits one template source into a flat list of tokens."""

    def __init__(self, name: str, text: str, left: str = "{{", right: str = "}}"):
        self.name = name
        self.text = text
        self.left = left or "{{"
        self.right = right or "}}"
        self.pos = 0
        self.items: List[Token] = []
        self._newlines = [i for i, ch in enumerate(text) if ch == "\n"]

    def line_at(self, pos: int) -> int:
        return bisect.bisect_left(self._newlines, pos) + 1

    def error(self, message: str, pos: int = None):
        line = self.line_at(self.pos if pos is None else pos)
        raise ParseError(f"template: {self.name}:{line}: {message}", self.name)

    def emit(self, typ: ItemType, start: int, end: int):
        self.items.append(Token(typ, self.text[start:end], start))

    def lex(self) -> List[Token]:
        text = self.text
        while True:
            idx = text.find(self.left, self.pos)
            if idx < 0:
                if self.pos < len(text):
                    self.emit(ItemType.TEXT, self.pos, len(text))
                self.items.append(Token(ItemType.EOF, "", len(text)))
                return self.items
            after = idx + len(self.left)
            left_trim = text.startswith("-", after) and after + 1 < len(text) and text[after + 1] in SPACE_CHARS
            end = idx
            if left_trim:
                while end > self.pos and text[end - 1] in SPACE_CHARS:
                    end -= 1
            if end > self.pos:
                self.emit(ItemType.TEXT, self.pos, end)
            self.pos = after + (2 if left_trim else 0)
            if text.startswith("/*", self.pos):
                right_trim = self._lex_comment(idx)
            else:
                self.emit(ItemType.LEFT_DELIM, idx, after)
                right_trim = self._lex_inside_action()
            if right_trim:
                while self.pos < len(text) and text[self.pos] in SPACE_CHARS:
                    self.pos += 1

    def _at_right_delim(self):
        """Returns (is_delim, trim, length) for the current position."""
        text = self.text
        if text.startswith(self.right, self.pos):
            return True, False, len(self.right)
        if text[self.pos:self.pos + 1] in (" ", "\t", "\r", "\n") and \
                text.startswith("-" + self.right, self.pos + 1):
            return True, True, 2 + len(self.right)
        return False, False, 0

    def _lex_comment(self, start: int) -> bool:
        end = self.text.find("*/", self.pos + 2)
        if end < 0:
            self.error("unclosed comment", start)
        self.pos = end + 2
        is_delim, trim, length = self._at_right_delim()
        if not is_delim:
            self.error("comment ends before closing delimiter", start)
        self.pos += length
        return trim

    def _lex_inside_action(self) -> bool:
        text = self.text
        depth = 0
        while True:
            if self.pos >= len(text):
                self.error("unclosed action")
            if text.startswith(self.right, self.pos):
                if depth:
                    self.error("unclosed left paren")
                self.emit(ItemType.RIGHT_DELIM, self.pos, self.pos + len(self.right))
                self.pos += len(self.right)
                return False
            start = self.pos
            c = text[start]
            if c in SPACE_CHARS:
                while self.pos < len(text) and text[self.pos] in SPACE_CHARS:
                    self.pos += 1
                if text.startswith("-" + self.right, self.pos):
                    if depth:
                        self.error("unclosed left paren")
                    self.emit(ItemType.RIGHT_DELIM, self.pos + 1, self.pos + 1 + len(self.right))
                    self.pos += 1 + len(self.right)
                    return True
                self.emit(ItemType.SPACE, start, self.pos)
            elif c == "=":
                self.pos += 1
                self.emit(ItemType.ASSIGN, start, self.pos)
            elif c == ":":
                if not text.startswith(":=", start):
                    self.error("expected :=")
                self.pos += 2
                self.emit(ItemType.DECLARE, start, self.pos)
            elif c == "|":
                self.pos += 1
                self.emit(ItemType.PIPE, start, self.pos)
            elif c == '"':
                self._lex_quote(start, '"', ItemType.STRING, "unterminated quoted string")
            elif c == "'":
                self._lex_quote(start, "'", ItemType.CHAR_CONSTANT, "unterminated character constant")
            elif c == "`":
                end = text.find("`", start + 1)
                if end < 0:
                    self.error("unterminated raw quoted string")
                self.pos = end + 1
                self.emit(ItemType.RAW_STRING, start, self.pos)
            elif c == "$":
                self.pos += 1
                self._scan_word()
                self._check_terminator(start)
                self.emit(ItemType.VARIABLE, start, self.pos)
            elif c == "." and start + 1 < len(text) and text[start + 1].isdigit():
                self._lex_number(start)
            elif c == ".":
                self.pos += 1
                if self._scan_word():
                    self._check_terminator(start)
                    self.emit(ItemType.FIELD, start, self.pos)
                else:
                    self.emit(ItemType.DOT, start, self.pos)
            elif c in "+-" or c.isdigit():
                self._lex_number(start)
            elif c == "_" or c.isalpha():
                self._scan_word()
                self._check_terminator(start)
                word = text[start:self.pos]
                if word in KEYWORDS:
                    typ = ItemType.KEYWORD
                elif word in ("true", "false"):
                    typ = ItemType.BOOL
                elif word == "nil":
                    typ = ItemType.NIL
                else:
                    typ = ItemType.IDENTIFIER
                self.emit(typ, start, self.pos)
            elif c == "(":
                depth += 1
                self.pos += 1
                self.emit(ItemType.LEFT_PAREN, start, self.pos)
            elif c == ")":
                depth -= 1
                if depth < 0:
                    self.error(f"unexpected right paren {c!r}")
                self.pos += 1
                self.emit(ItemType.RIGHT_PAREN, start, self.pos)
            elif c == ",":
                self.pos += 1
                self.emit(ItemType.CHAR, start, self.pos)
            else:
                self.error(f"unrecognized character in action: {c!r}")

    def _scan_word(self) -> bool:
        text = self.text
        start = self.pos
        while self.pos < len(text) and (text[self.pos] == "_" or text[self.pos].isalnum()):
            self.pos += 1
        return self.pos > start

    def _at_terminator(self) -> bool:
        if self.pos >= len(self.text):
            return True
        c = self.text[self.pos]
        if c in SPACE_CHARS or c in ".,|:()=":
            return True
        return self.text.startswith(self.right, self.pos)

    def _check_terminator(self, start: int):
        if not self._at_terminator():
            self.error(f"bad character {self.text[self.pos]!r}", start)

    def _lex_quote(self, start: int, quote: str, typ: ItemType, message: str):
        text = self.text
        i = start + 1
        while True:
            if i >= len(text) or text[i] == "\n":
                self.error(message, start)
            c = text[i]
            if c == "\\":
                i += 2
                continue
            if c == quote:
                break
            i += 1
        self.pos = i + 1
        self.emit(typ, start, self.pos)

    def _lex_number(self, start: int):
        m = _NUMBER_RE.match(self.text, start)
        if not m or m.end() == start or self.text[start:m.end()] in ("+", "-"):
            self.error(f"bad number syntax: {self.text[start:start + 1]!r}", start)
        self.pos = m.end()
        if self.pos < len(self.text) and self.text[self.pos] == "i":
            self.error(f"complex numbers are not supported: {self.text[start:self.pos + 1]!r}", start)
        if not self._at_terminator():
            end = self.pos
            while end < len(self.text) and not (self.text[end] in SPACE_CHARS or
                                                 self.text.startswith(self.right, end)):
                end += 1
            self.error(f"bad number syntax: {self.text[start:end]!r}", start)
        self.emit(ItemType.NUMBER, start, self.pos)
