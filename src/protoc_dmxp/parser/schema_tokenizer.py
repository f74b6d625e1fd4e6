"""Tokenizer for DMXP schema (.proto) files.

Besides the flat token stream, ``split_statements`` regroups the tokens into
logical lines: one statement per line, ending at ``;`` or ``{``, with every
``}`` on a line of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List


class SchemaTokenType(Enum):
    # Keywords
    SYNTAX = auto()
    PACKAGE = auto()
    IMPORT = auto()
    OPTION = auto()
    MESSAGE = auto()
    ENUM = auto()
    SERVICE = auto()
    RPC = auto()
    RETURNS = auto()
    STREAM = auto()
    REPEATED = auto()
    OPTIONAL = auto()
    REQUIRED = auto()
    MAP = auto()
    ONEOF = auto()
    EXTEND = auto()
    EXTENSIONS = auto()
    RESERVED = auto()
    CHANNEL = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LANGLE = auto()
    RANGLE = auto()
    COMMA = auto()
    SEMICOLON = auto()
    EQUALS = auto()

    # Literals
    IDENT = auto()
    NUMBER = auto()
    STRING_LIT = auto()

    # Special
    EOF = auto()


KEYWORDS = {
    "syntax": SchemaTokenType.SYNTAX,
    "package": SchemaTokenType.PACKAGE,
    "import": SchemaTokenType.IMPORT,
    "option": SchemaTokenType.OPTION,
    "message": SchemaTokenType.MESSAGE,
    "enum": SchemaTokenType.ENUM,
    "service": SchemaTokenType.SERVICE,
    "rpc": SchemaTokenType.RPC,
    "returns": SchemaTokenType.RETURNS,
    "stream": SchemaTokenType.STREAM,
    "repeated": SchemaTokenType.REPEATED,
    "optional": SchemaTokenType.OPTIONAL,
    "required": SchemaTokenType.REQUIRED,
    "map": SchemaTokenType.MAP,
    "oneof": SchemaTokenType.ONEOF,
    "extend": SchemaTokenType.EXTEND,
    "extensions": SchemaTokenType.EXTENSIONS,
    "reserved": SchemaTokenType.RESERVED,
    "channel": SchemaTokenType.CHANNEL,
}

LABEL_TOKENS = (
    SchemaTokenType.REPEATED,
    SchemaTokenType.OPTIONAL,
    SchemaTokenType.REQUIRED,
)

_PUNCTUATION = {
    "{": SchemaTokenType.LBRACE,
    "}": SchemaTokenType.RBRACE,
    "(": SchemaTokenType.LPAREN,
    ")": SchemaTokenType.RPAREN,
    "[": SchemaTokenType.LBRACKET,
    "]": SchemaTokenType.RBRACKET,
    "<": SchemaTokenType.LANGLE,
    ">": SchemaTokenType.RANGLE,
    ",": SchemaTokenType.COMMA,
    ";": SchemaTokenType.SEMICOLON,
    "=": SchemaTokenType.EQUALS,
}


@dataclass
class SchemaToken:
    type: SchemaTokenType
    value: str
    line: int
    col: int
    pos: int = 0
    end: int = 0

    @property
    def is_word(self) -> bool:
        """True for identifiers and keywords alike (keywords are legal names)."""
        return self.type == SchemaTokenType.IDENT or self.value in KEYWORDS


@dataclass
class SourceLine:
    """One logical statement and the 1-based line it starts on."""

    text: str
    line: int


def _is_number_start(text: str, i: int) -> bool:
    ch = text[i]
    if ch.isdigit():
        return True
    nxt = text[i + 1] if i + 1 < len(text) else ""
    return ch in "+-." and nxt.isdigit()


def tokenize_schema(text: str) -> List[SchemaToken]:
    """Tokenize schema source into a list of tokens ending with EOF."""
    tokens: List[SchemaToken] = []
    n = len(text)
    i = 0
    line = 1
    line_start = 0

    while i < n:
        ch = text[i]

        if ch == "\n":
            i += 1
            line += 1
            line_start = i
            continue
        if ch.isspace():
            i += 1
            continue

        if text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
            continue
        if text.startswith("/*", i):
            close = text.find("*/", i + 2)
            stop = n if close == -1 else close + 2
            newlines = text.count("\n", i, stop)
            if newlines:
                line += newlines
                line_start = text.rfind("\n", i, stop) + 1
            i = stop
            continue

        col = i - line_start + 1
        start = i

        if ch in _PUNCTUATION:
            i += 1
            tokens.append(SchemaToken(_PUNCTUATION[ch], ch, line, col, start, i))
            continue

        if ch in ('"', "'"):
            i += 1
            while i < n and text[i] != ch and text[i] != "\n":
                i += 2 if text[i] == "\\" else 1
            value = text[start + 1:i]
            if i < n and text[i] == ch:
                i += 1
            tokens.append(SchemaToken(SchemaTokenType.STRING_LIT, value, line, col, start, i))
            continue

        if _is_number_start(text, i):
            i += 1
            while i < n and (text[i].isalnum() or text[i] == "." or
                             (text[i] in "+-" and text[i - 1] in "eE")):
                i += 1
            tokens.append(SchemaToken(SchemaTokenType.NUMBER, text[start:i], line, col, start, i))
            continue

        if ch.isalpha() or ch == "_" or ch == ".":
            while i < n and (text[i].isalnum() or text[i] in "_."):
                i += 1
            word = text[start:i]
            tok_type = KEYWORDS.get(word, SchemaTokenType.IDENT)
            tokens.append(SchemaToken(tok_type, word, line, col, start, i))
            continue

        # Stray characters are dropped.
        i += 1

    tokens.append(SchemaToken(SchemaTokenType.EOF, "", line, n - line_start + 1, n, n))
    return tokens


def split_statements(text: str) -> List[SourceLine]:
    """Regroup schema source into one logical line per statement."""
    lines: List[SourceLine] = []
    group: List[SchemaToken] = []

    def flush() -> None:
        if group:
            lines.append(SourceLine(text[group[0].pos:group[-1].end].strip(), group[0].line))
            group.clear()

    for tok in tokenize_schema(text):
        if tok.type == SchemaTokenType.EOF:
            break
        if tok.type == SchemaTokenType.RBRACE:
            flush()
            lines.append(SourceLine("}", tok.line))
            continue
        if tok.type == SchemaTokenType.SEMICOLON and not group:
            # stray ";" after a closing brace
            continue
        group.append(tok)
        if tok.type in (SchemaTokenType.SEMICOLON, SchemaTokenType.LBRACE):
            flush()

    flush()
    return lines
