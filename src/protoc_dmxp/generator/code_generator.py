from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields as dataclass_fields, replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from jinja2 import Environment, FileSystemLoader

from protoc_dmxp.parser.schema_ast import (
    Channel,
    Enum,
    Field,
    FieldLabel,
    FieldType,
    MapType,
    Message,
    SchemaFile,
    Service,
    TypeRef,
)

from .type_tables import Target, TargetTable, get_table

logger = logging.getLogger(__name__)

DEFAULT_STEM = "schema"


@dataclass
class GeneratorOptions:
    include_dmxp: bool = True
    use_async: bool = False
    package_override: Optional[str] = None
    extra_imports: List[str] = field(default_factory=list)


def _get_template_env() -> Environment:
    template_dir = Path(__file__).parent.parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _walk_messages(messages: Iterable[Message], prefix: str = "") -> Iterator[Tuple[str, Message]]:
    """Depth-first, parent before its nested messages, in declaration order.

    Yields ``(qualified name, message)`` where the qualified name is the
    dotted path from the outermost message, e.g. ``Outer.Inner``.
    """
    for msg in messages:
        qualified = f"{prefix}{msg.name}"
        yield qualified, msg
        yield from _walk_messages(msg.nested_messages, qualified + ".")


def _all_enums(schema: SchemaFile) -> List[Tuple[str, Enum]]:
    enums = [(e.name, e) for e in schema.enums]
    for qualified, msg in _walk_messages(schema.messages):
        enums.extend((f"{qualified}.{e.name}", e) for e in msg.nested_enums)
    return enums


class _TypeNamer:
    """Resolves references against the file's own declarations, scope by scope.

    A reference that matches no declaration is left as written. Whether a
    name denotes a message or an enum is never decided here.
    """

    def __init__(self, schema: SchemaFile, table: TargetTable):
        self.table = table
        self.package = schema.package
        self.declared: Set[str] = {q for q, _ in _walk_messages(schema.messages)}
        self.declared.update(q for q, _ in _all_enums(schema))

    def resolve(self, name: str, scope: str = "") -> str:
        name = name.lstrip(".")
        if self.package and name.startswith(self.package + "."):
            local = name[len(self.package) + 1:]
            if local in self.declared:
                return local
        parts = scope.split(".") if scope else []
        while True:
            candidate = ".".join(parts + [name])
            if candidate in self.declared:
                return candidate
            if not parts:
                return name
            parts.pop()

    def resolved_type(self, field_type: FieldType, scope: str) -> FieldType:
        if isinstance(field_type, TypeRef):
            return TypeRef(self.resolve(field_type.name, scope))
        if isinstance(field_type, MapType):
            return MapType(
                self.resolved_type(field_type.key, scope),
                self.resolved_type(field_type.value, scope),
            )
        return field_type

    def ref(self, name: str, scope: str = "") -> str:
        return self.table.type_name(TypeRef(self.resolve(name, scope)), self.declared)

    def member_type(self, f: Field, scope: str) -> str:
        resolved = replace(f, field_type=self.resolved_type(f.field_type, scope))
        return self.table.member_type(resolved, self.declared)


def _knobs(binding, skip: Iterable[str] = ()) -> str:
    """Render the set fields of a binding as ``key=value`` pairs."""
    if binding is None:
        return ""
    parts = []
    for f in dataclass_fields(binding):
        value = getattr(binding, f.name)
        if f.name in skip or value is None or value == []:
            continue
        if isinstance(value, bool):
            value = str(value).lower()
        parts.append(f"{f.name}={value}")
    return ", ".join(parts)


def _package_stem(schema: SchemaFile, options: GeneratorOptions) -> str:
    package = options.package_override or schema.package
    return package.rsplit(".", 1)[-1] if package else DEFAULT_STEM


def _message_view(
    qualified: str, msg: Message, namer: _TypeNamer, options: GeneratorOptions
) -> Dict:
    table = namer.table
    fields = []
    for f in msg.fields:
        fields.append({
            "name": table.field_identifier(f.name),
            "original_name": f.name,
            "type": namer.member_type(f, qualified),
            "number": f.number,
        })

    channel = None
    if options.include_dmxp and msg.has_channel:
        channel = {
            "name": msg.channel,
            "knobs": _knobs(msg.channel_binding, skip=("channel",)),
        }

    return {
        "name": table.declaration_name(qualified),
        "fields": fields,
        "channel": channel,
        "nested": [
            _message_view(f"{qualified}.{m.name}", m, namer, options)
            for m in msg.nested_messages
        ],
        "enums": [_enum_view(f"{qualified}.{e.name}", e, table) for e in msg.nested_enums],
    }


def _flatten(views: List[Dict]) -> Iterator[Dict]:
    for view in views:
        yield view
        yield from _flatten(view["nested"])


def _enum_view(qualified: str, enum: Enum, table: TargetTable) -> Dict:
    name = table.declaration_name(qualified)
    # "values" would resolve to dict.values inside templates
    return {
        "name": name,
        "members": [
            {"name": table.enum_value_identifier(name, v.name), "number": v.number}
            for v in enum.values
        ],
    }


def _service_view(service: Service, namer: _TypeNamer, options: GeneratorOptions) -> Dict:
    table = namer.table
    methods = []
    for m in service.methods:
        binding = m.channel_binding if options.include_dmxp else None
        is_async = options.use_async or bool(binding and binding.is_async)
        methods.append({
            "name": table.method_identifier(m.name),
            "input": namer.ref(m.input_type),
            "output": namer.ref(m.output_type),
            "is_async": is_async,
            "comment": _knobs(binding, skip=("is_async",)),
        })

    channels: List[str] = []
    knobs = ""
    if options.include_dmxp:
        channels = service.channels
        knobs = _knobs(service.channel_binding, skip=("channels",))

    return {
        "name": service.name,
        "methods": methods,
        "channels": channels,
        "knobs": knobs,
        "const_name": table.constant_identifier(f"{service.name}_channels"),
    }


def _channel_view(channel: Channel, namer: _TypeNamer) -> Dict:
    return {
        "const_name": namer.table.constant_identifier(f"{channel.name}_channel"),
        "value": channel.name,
        "message_type": namer.ref(channel.message_type),
        "direction": channel.direction.value,
        "knobs": _knobs(channel.options),
    }


def _features(schema: SchemaFile, messages: List[Message], options: GeneratorOptions) -> Set[str]:
    found: Set[str] = set()
    if messages:
        found.add("message")
    for msg in messages:
        for f in msg.fields:
            if isinstance(f.field_type, MapType):
                found.add("map")
            elif f.label == FieldLabel.REPEATED:
                found.add("repeated")
        if options.include_dmxp and msg.has_channel:
            found.add("channel")
    if schema.services:
        found.add("service")
    for service in schema.services:
        for m in service.methods:
            if options.use_async or (
                options.include_dmxp and m.channel_binding and m.channel_binding.is_async
            ):
                found.add("async")
    return found


def generate(schema: SchemaFile, target: Target, options: Optional[GeneratorOptions] = None) -> str:
    """Generate source text for ``target`` from a parsed schema."""
    options = options or GeneratorOptions()
    table = get_table(target)
    namer = _TypeNamer(schema, table)
    env = _get_template_env()
    template = env.get_template(table.template)

    messages = [msg for _, msg in _walk_messages(schema.messages)]
    imports = table.imports_for(_features(schema, messages, options))
    imports.extend(i for i in options.extra_imports if i not in imports)

    stem = _package_stem(schema, options)
    logger.debug("Generating %s for %d message(s)", target.value, len(messages))

    # Roots keep nested declarations inside their parent; the flat lists
    # hold every declaration once, parent first.
    message_views = [_message_view(m.name, m, namer, options) for m in schema.messages]
    enum_views = [_enum_view(e.name, e, table) for e in schema.enums]
    all_messages = list(_flatten(message_views))
    all_enums = enum_views + [e for view in all_messages for e in view["enums"]]

    return template.render(
        package=options.package_override or schema.package,
        go_package=stem.lower(),
        outer_class=Path(table.file_name(stem)).stem,
        syntax=schema.syntax,
        imports=imports,
        messages=message_views,
        enums=enum_views,
        all_messages=all_messages,
        all_enums=all_enums,
        services=[_service_view(s, namer, options) for s in schema.services],
        channels=[_channel_view(c, namer) for c in schema.channels] if options.include_dmxp else [],
    )


def generate_all(
    schema: SchemaFile,
    targets: Iterable[Target],
    options: Optional[GeneratorOptions] = None,
) -> Dict[Target, str]:
    """Generate every requested target from the same AST."""
    return {target: generate(schema, target, options) for target in targets}


def output_file_name(
    schema: SchemaFile, target: Target, options: Optional[GeneratorOptions] = None
) -> str:
    return get_table(target).file_name(_package_stem(schema, options or GeneratorOptions()))
