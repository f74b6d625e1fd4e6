"""Incremental construction of a SchemaFile.

The builder keeps an explicit stack of open frames (messages, enums, services
and rpc methods). Closing a frame commits the finished node into the nearest
enclosing owner, or into the file when there is none.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Type, TypeVar, Union

from .schema_ast import (
    Channel,
    ChannelBinding,
    Enum,
    EnumValue,
    Extension,
    Field,
    Message,
    Method,
    MethodChannelBinding,
    ProtoOption,
    SchemaFile,
    Service,
    ServiceChannelBinding,
)

logger = logging.getLogger(__name__)

Frame = Union[Message, Enum, Service, Method]
_F = TypeVar("_F", Message, Enum, Service, Method)


class BuilderStateError(RuntimeError):
    """Raised when frames are closed out of order or left open at build time."""


class AstBuilder:
    """Sequential, single-pass construction API for a SchemaFile."""

    def __init__(self) -> None:
        self._file = SchemaFile()
        self._frames: List[Frame] = []

    # -- file level --

    def set_syntax(self, syntax: str) -> None:
        self._file.syntax = syntax

    def set_package(self, package: str) -> None:
        self._file.package = package

    def add_file_option(self, option: ProtoOption) -> None:
        self._file.options.append(option)

    def add_extension(self, extension: Extension) -> None:
        self._file.extensions.append(extension)

    def add_channel(self, channel: Channel) -> None:
        self._file.channels.append(channel)

    # -- frame helpers --

    @property
    def depth(self) -> int:
        return len(self._frames)

    def _innermost(self, kind: Type[_F]) -> Optional[_F]:
        for frame in reversed(self._frames):
            if isinstance(frame, kind):
                return frame
        return None

    def _top(self, kind: Type[_F]) -> Optional[_F]:
        if self._frames and isinstance(self._frames[-1], kind):
            return self._frames[-1]
        return None

    def _pop(self, kind: Type[_F]) -> _F:
        frame = self._top(kind)
        if frame is None:
            open_kind = type(self._frames[-1]).__name__ if self._frames else "nothing"
            raise BuilderStateError(
                f"Cannot close {kind.__name__}: innermost open frame is {open_kind}"
            )
        self._frames.pop()
        return frame

    def _ignored(self, what: str) -> None:
        logger.debug("No open frame for %s; ignored", what)

    # -- messages --

    def start_message(self, name: str) -> None:
        self._frames.append(Message(name=name))

    def end_message(self) -> Message:
        message = self._pop(Message)
        parent = self._top(Message)
        if parent is not None:
            parent.nested_messages.append(message)
        else:
            self._file.messages.append(message)
        return message

    def add_field(self, field: Field) -> None:
        message = self._top(Message)
        if message is None:
            self._ignored(f"field {field.name!r}")
            return
        message.fields.append(field)

    def add_message_option(self, option: ProtoOption) -> None:
        message = self._top(Message)
        if message is None:
            self._ignored(f"message option {option.name!r}")
            return
        message.options.append(option)

    def message_channel_binding(self) -> Optional[ChannelBinding]:
        """Return the open message's binding, creating an empty one on first use."""
        message = self._top(Message)
        if message is None:
            return None
        if message.channel_binding is None:
            message.channel_binding = ChannelBinding()
        return message.channel_binding

    def set_message_channel_binding(self, binding: ChannelBinding) -> None:
        message = self._top(Message)
        if message is None:
            self._ignored("message channel binding")
            return
        message.channel_binding = binding

    # -- enums --

    def start_enum(self, name: str) -> None:
        self._frames.append(Enum(name=name))

    def end_enum(self) -> Enum:
        enum = self._pop(Enum)
        parent = self._innermost(Message)
        if parent is not None:
            parent.nested_enums.append(enum)
        else:
            self._file.enums.append(enum)
        return enum

    def add_enum_value(self, value: EnumValue) -> None:
        enum = self._top(Enum)
        if enum is None:
            self._ignored(f"enum value {value.name!r}")
            return
        enum.values.append(value)

    def add_enum_option(self, option: ProtoOption) -> None:
        enum = self._top(Enum)
        if enum is None:
            self._ignored(f"enum option {option.name!r}")
            return
        enum.options.append(option)

    # -- services and methods --

    def start_service(self, name: str) -> None:
        self._frames.append(Service(name=name))

    def end_service(self) -> Service:
        service = self._pop(Service)
        self._file.services.append(service)
        return service

    def add_service_option(self, option: ProtoOption) -> None:
        service = self._top(Service)
        if service is None:
            self._ignored(f"service option {option.name!r}")
            return
        service.options.append(option)

    def service_channel_binding(self) -> Optional[ServiceChannelBinding]:
        service = self._top(Service)
        if service is None:
            return None
        if service.channel_binding is None:
            service.channel_binding = ServiceChannelBinding()
        return service.channel_binding

    def set_service_channel_binding(self, binding: ServiceChannelBinding) -> None:
        service = self._top(Service)
        if service is None:
            self._ignored("service channel binding")
            return
        service.channel_binding = binding

    def add_method(self, method: Method) -> None:
        service = self._top(Service)
        if service is None:
            self._ignored(f"method {method.name!r}")
            return
        service.methods.append(method)

    def start_method(self, method: Method) -> None:
        """Open an rpc body so its option lines land on ``method``."""
        self._frames.append(method)

    def end_method(self) -> Method:
        method = self._pop(Method)
        self.add_method(method)
        return method

    def add_method_option(self, option: ProtoOption) -> None:
        method = self._top(Method)
        if method is None:
            self._ignored(f"method option {option.name!r}")
            return
        method.options.append(option)

    def method_channel_binding(self) -> Optional[MethodChannelBinding]:
        method = self._top(Method)
        if method is None:
            return None
        if method.channel_binding is None:
            method.channel_binding = MethodChannelBinding()
        return method.channel_binding

    def set_method_channel_binding(self, binding: MethodChannelBinding) -> None:
        method = self._top(Method)
        if method is None:
            self._ignored("method channel binding")
            return
        method.channel_binding = binding

    # -- finalisation --

    def build(self) -> SchemaFile:
        """Finalise and return the SchemaFile; all frames must be closed."""
        if self._frames:
            names = ", ".join(getattr(f, "name", "?") for f in self._frames)
            raise BuilderStateError(f"Unclosed declarations: {names}")
        schema = self._file
        self._file = SchemaFile()
        return schema
