"""Stateless classification of single schema lines.

Every function here looks at one trimmed, non-empty, non-comment line and
never at its neighbours.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from .schema_ast import OptionValue, ProtoOption
from .schema_tokenizer import (
    LABEL_TOKENS,
    SchemaToken,
    SchemaTokenType,
    tokenize_schema,
)

# Lines starting with one of these are never fields.
CONSTRUCT_TOKENS = (
    SchemaTokenType.MESSAGE,
    SchemaTokenType.SERVICE,
    SchemaTokenType.ENUM,
    SchemaTokenType.OPTION,
    SchemaTokenType.RPC,
    SchemaTokenType.ONEOF,
    SchemaTokenType.EXTEND,
    SchemaTokenType.EXTENSIONS,
    SchemaTokenType.RESERVED,
    SchemaTokenType.CHANNEL,
    SchemaTokenType.IMPORT,
    SchemaTokenType.SYNTAX,
    SchemaTokenType.PACKAGE,
)

# name = value, where name may be wrapped in parentheses and value may be quoted
_ASSIGNMENT_RE = re.compile(
    r"(\(\s*[\w.]+\s*\)(?:\.[\w.]+)?|[\w.]+)\s*=\s*"
    r"(\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*'|[^;,\]]*)"
)

_OPTION_LINE_RE = re.compile(
    r"^option\s+(\(\s*[\w.]+\s*\)(?:\.[\w.]+)?|[\w.]+)\s*=\s*(.*?)\s*;?\s*$"
)


class OptionKey(Enum):
    """The DMXP option keys understood by the parser."""

    DMXP_CHANNEL = "dmxp_channel"
    DMXP_CHANNELS = "dmxp_channels"
    DMXP_PERSISTENT = "dmxp_persistent"
    DMXP_BUFFER_SIZE = "dmxp_buffer_size"
    DMXP_WAL_ENABLED = "dmxp_wal_enabled"
    DMXP_SWAP_ENABLED = "dmxp_swap_enabled"
    DMXP_PRIORITY = "dmxp_priority"
    DMXP_TIMEOUT_MS = "dmxp_timeout_ms"
    DMXP_RETRY_COUNT = "dmxp_retry_count"
    DMXP_ASYNC = "dmxp_async"


_STRING_KEYS = (OptionKey.DMXP_CHANNEL, OptionKey.DMXP_CHANNELS)
_BOOL_KEYS = (
    OptionKey.DMXP_PERSISTENT,
    OptionKey.DMXP_WAL_ENABLED,
    OptionKey.DMXP_SWAP_ENABLED,
    OptionKey.DMXP_ASYNC,
)


@dataclass(frozen=True)
class OptionSetting:
    """A decoded DMXP option: the key and its value already typed for that key."""

    key: OptionKey
    value: Union[str, bool, int]


def _tokens(line: str) -> List[SchemaToken]:
    return tokenize_schema(line)[:-1]


def _token_is(tokens: List[SchemaToken], index: int, tok_type: SchemaTokenType) -> bool:
    return index < len(tokens) and tokens[index].type == tok_type


def classify_as_field(line: str) -> bool:
    """Return True if ``line`` looks like ``[label] <type> <name> = ...``."""
    tokens = _tokens(line)
    if not tokens or tokens[0].type in CONSTRUCT_TOKENS:
        return False

    start = 1 if tokens[0].type in LABEL_TOKENS else 0
    if _token_is(tokens, start, SchemaTokenType.MAP):
        for idx in range(start, len(tokens)):
            if tokens[idx].type == SchemaTokenType.RANGLE:
                return _token_is(tokens, idx + 2, SchemaTokenType.EQUALS)
        return False

    if _token_is(tokens, 2, SchemaTokenType.EQUALS):
        return True
    return start == 1 and _token_is(tokens, 3, SchemaTokenType.EQUALS)


def _bare_name(name: str) -> str:
    return name.replace("(", "").replace(")", "").replace(" ", "")


def _name_matches(name: str, key: str) -> bool:
    bare = _bare_name(name)
    return bare == key or bare.endswith("." + key)


def _unquote(value: str) -> str:
    value = value.strip().rstrip(";").strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def extract_literal(line: str, key: str) -> Optional[str]:
    """Extract the value assigned to ``key`` in ``key = value;`` or ``(key) = value;``.

    Returns None when the key or the ``=`` is missing. The key must match a
    whole option name (or its last dotted segment), so ``dmxp_channel`` never
    matches ``dmxp_channels``.
    """
    for match in _ASSIGNMENT_RE.finditer(line):
        if _name_matches(match.group(1), key):
            return _unquote(match.group(2))
    return None


def extract_bool(line: str, key: str) -> Optional[bool]:
    literal = extract_literal(line, key)
    if literal == "true":
        return True
    if literal == "false":
        return False
    return None


def extract_uint(line: str, key: str) -> Optional[int]:
    literal = extract_literal(line, key)
    return _parse_uint(literal) if literal is not None else None


def _parse_uint(literal: str) -> Optional[int]:
    try:
        value = int(literal)
    except ValueError:
        return None
    return value if value >= 0 else None


def parse_option(line: str) -> Optional[ProtoOption]:
    """Parse any ``option name = value;`` line into a generic ProtoOption."""
    match = _OPTION_LINE_RE.match(line.strip())
    if not match:
        return None
    name = match.group(1).replace(" ", "")
    return ProtoOption(name=name, value=OptionValue.from_literal(match.group(2)))


def decode_option(line: str) -> Optional[OptionSetting]:
    """Map an option line onto one DMXP ``OptionKey`` with a typed value.

    Unknown keys and literals of the wrong type give None.
    """
    option = parse_option(line)
    if option is None:
        return None
    bare = _bare_name(option.name)
    try:
        key = OptionKey(bare.rsplit(".", 1)[-1])
    except ValueError:
        return None

    literal = extract_literal(line, bare)
    if literal is None:
        return None
    if key in _STRING_KEYS:
        return OptionSetting(key, literal)
    if key in _BOOL_KEYS:
        value = extract_bool(line, bare)
        return OptionSetting(key, value) if value is not None else None
    number = _parse_uint(literal)
    return OptionSetting(key, number) if number is not None else None
