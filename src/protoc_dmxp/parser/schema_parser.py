"""Recursive descent parser for DMXP schema (.proto) files.

The source is first regrouped into logical lines (one statement each, see
``split_statements``). Each construct is parsed by its own method, which
consumes lines up to and including its closing ``}`` and drives an
``AstBuilder``.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple, Union

from protoc_dmxp.loader import load_schema

from .ast_builder import AstBuilder
from .line_classifier import (
    OptionKey,
    OptionSetting,
    classify_as_field,
    decode_option,
    extract_literal,
    parse_option,
)
from .schema_ast import (
    Channel,
    ChannelBinding,
    ChannelDirection,
    ChannelOptions,
    EnumValue,
    Extension,
    Field,
    FieldLabel,
    FieldType,
    MapType,
    Method,
    MethodChannelBinding,
    OptionValue,
    OptionValueKind,
    ProtoOption,
    ScalarType,
    SchemaFile,
    ServiceChannelBinding,
    TypeRef,
)
from .schema_tokenizer import (
    SchemaToken,
    SchemaTokenType,
    SourceLine,
    split_statements,
    tokenize_schema,
)

logger = logging.getLogger(__name__)

_KEYWORD_RE = re.compile(r"^[A-Za-z_]\w*")
_BLOCK_HEADER_RE = re.compile(r"^(message|service|enum|extend|channel|oneof)\s+([\w.]+)\s*\{$")
_PACKAGE_RE = re.compile(r"^package\s+([\w.]+)\s*;?$")
_RPC_RE = re.compile(
    r"^rpc\s+(\w+)\s*\(\s*([\w.]+)\s*\)\s*returns\s*\(\s*([\w.]+)\s*\)\s*(;|\{)?\s*(//.*)?$"
)

_LABELS = {
    SchemaTokenType.REPEATED: FieldLabel.REPEATED,
    SchemaTokenType.OPTIONAL: FieldLabel.OPTIONAL,
    SchemaTokenType.REQUIRED: FieldLabel.REQUIRED,
}

# OptionKey -> attribute of the binding it merges into, per owner kind.
_MESSAGE_KEYS = {
    OptionKey.DMXP_CHANNEL: "channel",
    OptionKey.DMXP_PERSISTENT: "persistent",
    OptionKey.DMXP_BUFFER_SIZE: "buffer_size",
    OptionKey.DMXP_WAL_ENABLED: "wal_enabled",
    OptionKey.DMXP_SWAP_ENABLED: "swap_enabled",
    OptionKey.DMXP_PRIORITY: "priority",
}
_SERVICE_KEYS = {
    OptionKey.DMXP_CHANNELS: "channels",
    OptionKey.DMXP_TIMEOUT_MS: "timeout_ms",
    OptionKey.DMXP_RETRY_COUNT: "retry_count",
}
_METHOD_KEYS = {
    OptionKey.DMXP_CHANNEL: "channel",
    OptionKey.DMXP_TIMEOUT_MS: "timeout_ms",
    OptionKey.DMXP_ASYNC: "is_async",
}
_CHANNEL_KEYS = {
    OptionKey.DMXP_BUFFER_SIZE: "buffer_size",
    OptionKey.DMXP_PERSISTENT: "persistent",
    OptionKey.DMXP_WAL_ENABLED: "wal_enabled",
    OptionKey.DMXP_SWAP_ENABLED: "swap_enabled",
    OptionKey.DMXP_PRIORITY: "priority",
    OptionKey.DMXP_TIMEOUT_MS: "timeout_ms",
}

Binding = Union[ChannelBinding, ServiceChannelBinding, MethodChannelBinding, ChannelOptions]


class SchemaParseError(ValueError):
    """Raised for structural errors; no partial AST is returned."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            super().__init__(f"Line {line}: {message}")
        else:
            super().__init__(message)


def merge_setting(binding: Binding, setting: OptionSetting, keys: Dict[OptionKey, str]) -> bool:
    """Merge one decoded option into ``binding``; list attributes accumulate.

    Returns False when the key does not apply to this kind of binding.
    """
    attr = keys.get(setting.key)
    if attr is None:
        return False
    current = getattr(binding, attr)
    if isinstance(current, list):
        current.append(setting.value)
    else:
        setattr(binding, attr, setting.value)
    return True


def _field_type(name: str) -> FieldType:
    scalar = ScalarType.from_keyword(name)
    return scalar if scalar is not None else TypeRef(name)


def _keyword(text: str) -> str:
    match = _KEYWORD_RE.match(text)
    return match.group(0) if match else ""


class SchemaParser:
    """Recursive descent parser over the logical lines of one schema."""

    def __init__(self, text: str):
        self._lines: List[SourceLine] = split_statements(text)
        self._pos = 0

    # -- public API --

    def parse(self) -> SchemaFile:
        """Parse the whole schema into a SchemaFile AST."""
        builder = AstBuilder()

        while not self._at_end():
            line = self._peek()
            kw = _keyword(line.text)

            if kw == "syntax":
                self._parse_syntax(builder, line)
            elif kw == "package":
                self._parse_package(builder, line)
            elif kw == "option":
                option = parse_option(line.text)
                if option is not None:
                    builder.add_file_option(option)
                self._advance()
            elif kw == "message":
                self._parse_message(builder)
            elif kw == "service":
                self._parse_service(builder)
            elif kw == "enum":
                self._parse_enum(builder)
            elif kw == "extend":
                self._parse_extend(builder)
            elif kw == "channel":
                self._parse_channel(builder)
            elif line.text.endswith("{"):
                logger.debug("Skipping unrecognised block at line %d: %s", line.line, line.text)
                self._skip_block()
            else:
                logger.debug("Skipping top-level line %d: %s", line.line, line.text)
                self._advance()

        schema = builder.build()
        logger.debug(
            "Parsed schema: %d message(s), %d service(s), %d enum(s), %d channel(s)",
            len(schema.messages), len(schema.services), len(schema.enums), len(schema.channels),
        )
        return schema

    # -- file level statements --

    def _parse_syntax(self, builder: AstBuilder, line: SourceLine) -> None:
        syntax = extract_literal(line.text, "syntax")
        if syntax:
            builder.set_syntax(syntax)
        self._advance()

    def _parse_package(self, builder: AstBuilder, line: SourceLine) -> None:
        match = _PACKAGE_RE.match(line.text)
        if match:
            builder.set_package(match.group(1))
        self._advance()

    def _open_block(self, keyword: str) -> Tuple[str, int]:
        """Consume a ``<keyword> <Name> {`` header and return (name, line)."""
        line = self._peek()
        match = _BLOCK_HEADER_RE.match(line.text)
        if not match or match.group(1) != keyword:
            raise SchemaParseError(f"Malformed {keyword} declaration: {line.text}", line.line)
        self._advance()
        return match.group(2), line.line

    def _close_or_fail(self, what: str, start_line: int) -> bool:
        """Consume a lone ``}`` and return True; fail if input ran out."""
        if self._at_end():
            raise SchemaParseError(f"Unterminated block: {what}", start_line)
        if self._peek().text == "}":
            self._advance()
            return True
        return False

    # -- messages --

    def _parse_message(self, builder: AstBuilder) -> None:
        name, start = self._open_block("message")
        builder.start_message(name)
        self._parse_message_body(builder, f"message {name}", start)
        builder.end_message()

    def _parse_message_body(self, builder: AstBuilder, what: str, start: int) -> None:
        while not self._close_or_fail(what, start):
            line = self._peek()
            kw = _keyword(line.text)

            if kw == "message":
                self._parse_message(builder)
            elif kw == "enum":
                self._parse_enum(builder)
            elif kw == "oneof":
                # oneof members are ordinary fields of the enclosing message
                name, oneof_start = self._open_block("oneof")
                self._parse_message_body(builder, f"oneof {name}", oneof_start)
            elif kw == "option":
                self._parse_message_option(builder, line)
                self._advance()
            elif classify_as_field(line.text):
                builder.add_field(self._parse_field(line))
                self._advance()
            elif line.text.endswith("{"):
                self._skip_block()
            else:
                logger.debug("Skipping message line %d: %s", line.line, line.text)
                self._advance()

    def _parse_message_option(self, builder: AstBuilder, line: SourceLine) -> None:
        option = parse_option(line.text)
        if option is not None:
            builder.add_message_option(option)
        setting = decode_option(line.text)
        if setting is None or setting.key not in _MESSAGE_KEYS:
            return
        binding = builder.message_channel_binding()
        if binding is not None:
            merge_setting(binding, setting, _MESSAGE_KEYS)

    # -- fields --

    def _parse_field(self, line: SourceLine) -> Field:
        """Parse: [label] <type> <name> = <number> [options];"""
        text = line.text
        tokens = tokenize_schema(text)[:-1]
        idx = 0
        label = FieldLabel.OPTIONAL
        if tokens and tokens[0].type in _LABELS:
            label = _LABELS[tokens[0].type]
            idx = 1

        if idx < len(tokens) and tokens[idx].type == SchemaTokenType.MAP:
            field_type, idx = self._parse_map_type(tokens, idx, line)
        elif idx < len(tokens) and tokens[idx].is_word:
            field_type = _field_type(tokens[idx].value)
            idx += 1
        else:
            raise SchemaParseError(f"Missing field type in: {text}", line.line)

        if len(tokens) < idx + 2:
            raise SchemaParseError(f"Too few tokens for field declaration: {text}", line.line)
        name_tok, eq_tok = tokens[idx], tokens[idx + 1]
        if not name_tok.is_word or eq_tok.type != SchemaTokenType.EQUALS:
            raise SchemaParseError(f"Malformed field declaration: {text}", line.line)

        number = self._parse_number(tokens, idx + 2, line, what="field number")
        if number <= 0:
            raise SchemaParseError(f"Field number must be positive, got {number}: {text}", line.line)

        field = Field(name=name_tok.value, field_type=field_type, number=number, label=label)
        rest = idx + 3
        if rest < len(tokens) and tokens[rest].type == SchemaTokenType.LBRACKET:
            field.options, field.default_value = self._parse_option_list(tokens, rest, line)
        return field

    def _parse_map_type(
        self, tokens: List[SchemaToken], idx: int, line: SourceLine
    ) -> Tuple[MapType, int]:
        """Parse: MAP LANGLE <key> COMMA <value> RANGLE"""
        shape = tokens[idx:idx + 6]
        expected = [
            SchemaTokenType.MAP, SchemaTokenType.LANGLE, None,
            SchemaTokenType.COMMA, None, SchemaTokenType.RANGLE,
        ]
        ok = len(shape) == 6 and all(
            tok.is_word if want is None else tok.type == want
            for tok, want in zip(shape, expected)
        )
        if not ok:
            raise SchemaParseError(f"Malformed map type in: {line.text}", line.line)
        return MapType(_field_type(shape[2].value), _field_type(shape[4].value)), idx + 6

    @staticmethod
    def _parse_number(tokens: List[SchemaToken], idx: int, line: SourceLine, what: str) -> int:
        if idx >= len(tokens) or tokens[idx].type in (
            SchemaTokenType.SEMICOLON, SchemaTokenType.LBRACKET,
        ):
            raise SchemaParseError(f"Empty {what} in: {line.text}", line.line)
        raw = tokens[idx].value
        if tokens[idx].type != SchemaTokenType.NUMBER:
            raise SchemaParseError(f"Invalid {what} {raw!r} in: {line.text}", line.line)
        try:
            return int(raw, 0) if raw.lower().startswith(("0x", "-0x")) else int(raw)
        except ValueError:
            raise SchemaParseError(f"Invalid {what} {raw!r} in: {line.text}", line.line) from None

    @staticmethod
    def _parse_option_list(
        tokens: List[SchemaToken], idx: int, line: SourceLine
    ) -> Tuple[List[ProtoOption], Optional[OptionValue]]:
        """Parse ``[name = value, (custom) = value]`` starting at the LBRACKET."""
        options: List[ProtoOption] = []
        default: Optional[OptionValue] = None
        idx += 1
        while idx < len(tokens) and tokens[idx].type != SchemaTokenType.RBRACKET:
            tok = tokens[idx]
            if tok.type == SchemaTokenType.LPAREN:
                if idx + 2 >= len(tokens) or tokens[idx + 2].type != SchemaTokenType.RPAREN:
                    raise SchemaParseError(f"Malformed option list in: {line.text}", line.line)
                name = f"({tokens[idx + 1].value})"
                idx += 3
                if idx < len(tokens) and tokens[idx].type == SchemaTokenType.IDENT \
                        and tokens[idx].value.startswith("."):
                    name += tokens[idx].value
                    idx += 1
            elif tok.is_word:
                name = tok.value
                idx += 1
            else:
                raise SchemaParseError(f"Malformed option list in: {line.text}", line.line)

            if idx + 1 >= len(tokens) or tokens[idx].type != SchemaTokenType.EQUALS:
                raise SchemaParseError(f"Malformed option list in: {line.text}", line.line)
            value_tok = tokens[idx + 1]
            if value_tok.type == SchemaTokenType.STRING_LIT:
                value = OptionValue(OptionValueKind.STRING, value_tok.value)
            else:
                value = OptionValue.from_literal(value_tok.value)
            idx += 2

            if name == "default":
                default = value
            else:
                options.append(ProtoOption(name=name, value=value))
            if idx < len(tokens) and tokens[idx].type == SchemaTokenType.COMMA:
                idx += 1

        if idx >= len(tokens):
            raise SchemaParseError(f"Unterminated option list in: {line.text}", line.line)
        return options, default

    # -- services --

    def _parse_service(self, builder: AstBuilder) -> None:
        name, start = self._open_block("service")
        builder.start_service(name)
        what = f"service {name}"

        while not self._close_or_fail(what, start):
            line = self._peek()
            kw = _keyword(line.text)
            if kw == "option":
                self._parse_service_option(builder, line)
                self._advance()
            elif kw == "rpc":
                self._parse_method(builder, line)
            elif line.text.endswith("{"):
                self._skip_block()
            else:
                logger.debug("Skipping service line %d: %s", line.line, line.text)
                self._advance()

        builder.end_service()

    def _parse_service_option(self, builder: AstBuilder, line: SourceLine) -> None:
        option = parse_option(line.text)
        if option is not None:
            builder.add_service_option(option)
        setting = decode_option(line.text)
        if setting is None or setting.key not in _SERVICE_KEYS:
            return
        binding = builder.service_channel_binding()
        if binding is not None:
            merge_setting(binding, setting, _SERVICE_KEYS)

    def _parse_method(self, builder: AstBuilder, line: SourceLine) -> None:
        """Parse: rpc <Name>(<In>) returns (<Out>) followed by ``;`` or an option body."""
        match = _RPC_RE.match(line.text)
        if not match:
            raise SchemaParseError(f"Malformed rpc declaration: {line.text}", line.line)
        method = Method(name=match.group(1), input_type=match.group(2), output_type=match.group(3))
        self._advance()

        if match.group(4) != "{":
            builder.add_method(method)
            return

        builder.start_method(method)
        what = f"rpc {method.name}"
        while not self._close_or_fail(what, line.line):
            body_line = self._peek()
            if _keyword(body_line.text) == "option":
                option = parse_option(body_line.text)
                if option is not None:
                    builder.add_method_option(option)
                setting = decode_option(body_line.text)
                if setting is not None and setting.key in _METHOD_KEYS:
                    binding = builder.method_channel_binding()
                    if binding is not None:
                        merge_setting(binding, setting, _METHOD_KEYS)
                self._advance()
            elif body_line.text.endswith("{"):
                self._skip_block()
            else:
                self._advance()
        builder.end_method()

    # -- enums --

    def _parse_enum(self, builder: AstBuilder) -> None:
        name, start = self._open_block("enum")
        builder.start_enum(name)
        what = f"enum {name}"

        while not self._close_or_fail(what, start):
            line = self._peek()
            if _keyword(line.text) == "option":
                option = parse_option(line.text)
                if option is not None:
                    builder.add_enum_option(option)
            elif "=" in line.text:
                builder.add_enum_value(self._parse_enum_value(line))
            elif line.text.endswith("{"):
                self._skip_block()
                continue
            else:
                logger.debug("Skipping enum line %d: %s", line.line, line.text)
            self._advance()

        builder.end_enum()

    def _parse_enum_value(self, line: SourceLine) -> EnumValue:
        """Parse: NAME = <number> [options];"""
        name, _, rhs = line.text.partition("=")
        name = name.strip()
        if not name:
            raise SchemaParseError(f"Missing enum value name in: {line.text}", line.line)
        tokens = tokenize_schema(rhs)[:-1]
        number = self._parse_number(tokens, 0, line, what="enum value number")
        value = EnumValue(name=name, number=number)
        if len(tokens) > 1 and tokens[1].type == SchemaTokenType.LBRACKET:
            value.options, _ = self._parse_option_list(tokens, 1, line)
        elif len(tokens) > 1 and tokens[1].type != SchemaTokenType.SEMICOLON:
            raise SchemaParseError(f"Invalid enum value number in: {line.text}", line.line)
        return value

    # -- extensions --

    def _parse_extend(self, builder: AstBuilder) -> None:
        extendee, start = self._open_block("extend")
        what = f"extend {extendee}"

        while not self._close_or_fail(what, start):
            line = self._peek()
            if classify_as_field(line.text):
                field = self._parse_field(line)
                builder.add_extension(Extension(
                    name=field.name,
                    field_type=field.field_type,
                    number=field.number,
                    options=field.options,
                    extendee=extendee,
                ))
                self._advance()
            elif line.text.endswith("{"):
                self._skip_block()
            else:
                self._advance()

    # -- channels --

    def _parse_channel(self, builder: AstBuilder) -> None:
        """Parse a ``channel <name> { message_type = T; direction = d; options }`` block."""
        name, start = self._open_block("channel")
        channel = Channel(name=name, message_type="")

        while not self._close_or_fail(f"channel {name}", start):
            line = self._peek()
            if _keyword(line.text) == "option":
                setting = decode_option(line.text)
                if setting is not None:
                    merge_setting(channel.options, setting, _CHANNEL_KEYS)
            else:
                message_type = extract_literal(line.text, "message_type")
                if message_type:
                    channel.message_type = message_type
                direction = extract_literal(line.text, "direction")
                if direction is not None:
                    try:
                        channel.direction = ChannelDirection(direction.lower())
                    except ValueError:
                        raise SchemaParseError(
                            f"Unknown channel direction {direction!r} in: {line.text}", line.line
                        ) from None
            self._advance()

        if not channel.message_type:
            raise SchemaParseError(f"Channel {name} has no message_type", start)
        builder.add_channel(channel)

    # -- skip helpers --

    def _skip_block(self) -> None:
        """Skip a block whose header is the current line, through its matching ``}``."""
        start = self._peek()
        self._advance()
        depth = 1
        while depth > 0:
            if self._at_end():
                raise SchemaParseError(f"Unterminated block: {start.text}", start.line)
            text = self._peek().text
            if text == "}":
                depth -= 1
            elif text.endswith("{"):
                depth += 1
            self._advance()

    # -- cursor helpers --

    def _peek(self) -> SourceLine:
        return self._lines[self._pos]

    def _advance(self) -> None:
        self._pos += 1

    def _at_end(self) -> bool:
        return self._pos >= len(self._lines)


def parse_schema(text: str) -> SchemaFile:
    """Parse schema source text into a SchemaFile."""
    return SchemaParser(text).parse()


def parse_schema_file(file_path: str) -> SchemaFile:
    """Load a schema file and parse it."""
    return parse_schema(load_schema(file_path))
