"""AST node definitions for DMXP schema (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum as _Enum
from typing import List, Optional, Set, Union


class ScalarType(_Enum):
    DOUBLE = "double"
    FLOAT = "float"
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    SINT32 = "sint32"
    SINT64 = "sint64"
    FIXED32 = "fixed32"
    FIXED64 = "fixed64"
    SFIXED32 = "sfixed32"
    SFIXED64 = "sfixed64"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"

    @classmethod
    def from_keyword(cls, keyword: str) -> Optional[ScalarType]:
        try:
            return cls(keyword)
        except ValueError:
            return None


@dataclass(frozen=True)
class TypeRef:
    """A reference to a user-defined message or enum, by name.

    Whether the name denotes a message or an enum is not decided at parse
    time; see ``SchemaFile.enum_names`` for a file-local lookup.
    """

    name: str


@dataclass(frozen=True)
class MapType:
    key: FieldType
    value: FieldType


FieldType = Union[ScalarType, TypeRef, MapType]


class FieldLabel(_Enum):
    OPTIONAL = "optional"
    REQUIRED = "required"
    REPEATED = "repeated"


class OptionValueKind(_Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    IDENTIFIER = "identifier"


@dataclass(frozen=True)
class OptionValue:
    kind: OptionValueKind
    value: Union[str, float, bool]

    @classmethod
    def from_literal(cls, text: str) -> OptionValue:
        """Classify a raw option literal (``"x"``, ``42``, ``true``, ``FOO``)."""
        text = text.strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
            return cls(OptionValueKind.STRING, text[1:-1])
        if text in ("true", "false"):
            return cls(OptionValueKind.BOOLEAN, text == "true")
        try:
            return cls(OptionValueKind.NUMBER, float(text))
        except ValueError:
            return cls(OptionValueKind.IDENTIFIER, text)


@dataclass
class ProtoOption:
    name: str
    value: OptionValue


@dataclass
class ChannelBinding:
    """DMXP channel metadata attached to a message."""

    channel: Optional[str] = None
    persistent: Optional[bool] = None
    buffer_size: Optional[int] = None
    wal_enabled: Optional[bool] = None
    swap_enabled: Optional[bool] = None
    priority: Optional[int] = None


@dataclass
class ServiceChannelBinding:
    channels: List[str] = field(default_factory=list)
    timeout_ms: Optional[int] = None
    retry_count: Optional[int] = None


@dataclass
class MethodChannelBinding:
    channel: Optional[str] = None
    timeout_ms: Optional[int] = None
    is_async: Optional[bool] = None


@dataclass
class Field:
    """A field declaration: [label] Type name = number [options];"""

    name: str
    field_type: FieldType
    number: int
    label: FieldLabel = FieldLabel.OPTIONAL
    options: List[ProtoOption] = field(default_factory=list)
    default_value: Optional[OptionValue] = None


@dataclass
class EnumValue:
    name: str
    number: int
    options: List[ProtoOption] = field(default_factory=list)


@dataclass
class Enum:
    name: str
    values: List[EnumValue] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)


@dataclass
class Message:
    """A message definition, possibly containing nested messages and enums."""

    name: str
    fields: List[Field] = field(default_factory=list)
    nested_messages: List[Message] = field(default_factory=list)
    nested_enums: List[Enum] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    channel_binding: Optional[ChannelBinding] = None

    @property
    def channel(self) -> Optional[str]:
        if self.channel_binding is None:
            return None
        return self.channel_binding.channel

    @property
    def has_channel(self) -> bool:
        return self.channel is not None


@dataclass
class Method:
    name: str
    input_type: str
    output_type: str
    options: List[ProtoOption] = field(default_factory=list)
    channel_binding: Optional[MethodChannelBinding] = None


@dataclass
class Service:
    name: str
    methods: List[Method] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    channel_binding: Optional[ServiceChannelBinding] = None

    @property
    def channels(self) -> List[str]:
        if self.channel_binding is None:
            return []
        return list(self.channel_binding.channels)


@dataclass
class Extension:
    """A field added to ``extendee`` by a top-level ``extend`` block."""

    name: str
    field_type: FieldType
    number: int
    options: List[ProtoOption] = field(default_factory=list)
    extendee: str = ""


class ChannelDirection(_Enum):
    PUBLISH = "publish"
    SUBSCRIBE = "subscribe"
    BIDIRECTIONAL = "bidirectional"


@dataclass
class ChannelOptions:
    buffer_size: Optional[int] = None
    persistent: Optional[bool] = None
    wal_enabled: Optional[bool] = None
    swap_enabled: Optional[bool] = None
    priority: Optional[int] = None
    timeout_ms: Optional[int] = None


@dataclass
class Channel:
    """An explicit top-level ``channel`` declaration."""

    name: str
    message_type: str
    direction: ChannelDirection = ChannelDirection.BIDIRECTIONAL
    options: ChannelOptions = field(default_factory=ChannelOptions)


DEFAULT_SYNTAX = "proto3"


@dataclass
class SchemaFile:
    """Top-level parsed representation of a schema file."""

    syntax: str = DEFAULT_SYNTAX
    package: str = ""
    options: List[ProtoOption] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    services: List[Service] = field(default_factory=list)
    enums: List[Enum] = field(default_factory=list)
    extensions: List[Extension] = field(default_factory=list)
    channels: List[Channel] = field(default_factory=list)

    def find_message(self, name: str) -> Optional[Message]:
        return next((m for m in self.messages if m.name == name), None)

    def find_service(self, name: str) -> Optional[Service]:
        return next((s for s in self.services if s.name == name), None)

    def find_enum(self, name: str) -> Optional[Enum]:
        return next((e for e in self.enums if e.name == name), None)

    def channel_messages(self) -> List[Message]:
        return [m for m in self.messages if m.has_channel]

    def channel_services(self) -> List[Service]:
        return [s for s in self.services if s.channel_binding is not None]

    def enum_names(self) -> Set[str]:
        """Names of every enum declared in the file, at any depth."""
        names = {e.name for e in self.enums}
        stack = list(self.messages)
        while stack:
            msg = stack.pop()
            names.update(e.name for e in msg.nested_enums)
            stack.extend(msg.nested_messages)
        return names
