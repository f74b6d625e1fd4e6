"""Per-target conversion tables: field types, labels and identifier casing.

Every backend reads these tables and nothing else for naming and typing, so
adding a target means adding one ``TargetTable`` and one template.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Callable, Dict, FrozenSet, Iterable, List, Tuple

from protoc_dmxp.parser.schema_ast import (
    Field,
    FieldLabel,
    FieldType,
    MapType,
    ScalarType,
)


class Target(Enum):
    RUST = "rust"
    GO = "go"
    JAVA = "java"


def to_pascal(name: str) -> str:
    parts = re.split(r"[_\-.]", name)
    return "".join(p[:1].upper() + p[1:] for p in parts if p)


def to_camel(name: str) -> str:
    pascal = to_pascal(name)
    return pascal[:1].lower() + pascal[1:]


def to_snake(name: str) -> str:
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    return re.sub(r"[\-.]", "_", s).lower()


def to_screaming_snake(name: str) -> str:
    return to_snake(name).upper()


_RUST_KEYWORDS = frozenset({
    "as", "async", "await", "box", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in", "let",
    "loop", "match", "mod", "move", "mut", "pub", "ref", "return", "static",
    "struct", "super", "trait", "true", "type", "unsafe", "use", "where", "while",
})

_JAVA_KEYWORDS = frozenset({
    "abstract", "boolean", "break", "byte", "case", "catch", "char", "class",
    "const", "continue", "default", "do", "double", "else", "enum", "extends",
    "final", "finally", "float", "for", "goto", "if", "implements", "import",
    "instanceof", "int", "interface", "long", "native", "new", "package",
    "private", "protected", "public", "return", "short", "static", "super",
    "switch", "synchronized", "this", "throw", "throws", "transient", "try",
    "void", "volatile", "while",
})


# Keywords that cannot be written as raw identifiers.
_RUST_NON_RAW = frozenset({"self", "Self", "super", "crate"})


def _rust_ident(name: str) -> str:
    if name in _RUST_NON_RAW:
        return f"{name}_"
    return f"r#{name}" if name in _RUST_KEYWORDS else name


def _rust_local_name(qualified: str) -> str:
    """Flatten ``Outer.Inner`` into ``OuterInner``."""
    return "".join(seg[:1].upper() + seg[1:] for seg in qualified.split("."))


def _java_ident(name: str) -> str:
    return f"{name}_" if name in _JAVA_KEYWORDS else name


@dataclass(frozen=True)
class TargetTable:
    """How one target language spells types, labels and names."""

    target: Target
    scalars: Dict[ScalarType, str]
    map_format: str
    reference: Callable[[str], str]
    local_name: Callable[[str], str]
    labels: Dict[FieldLabel, Tuple[str, str]]
    field_case: Callable[[str], str]
    method_case: Callable[[str], str]
    enum_value_case: Callable[[str, str], str]
    constant_case: Callable[[str], str]
    template: str
    file_name_format: str
    feature_imports: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    # Nested declarations are emitted inside their parent instead of flattened.
    nests_types: bool = False

    def type_name(self, field_type: FieldType, declared: AbstractSet[str] = frozenset()) -> str:
        """Spell ``field_type``; references found in ``declared`` are local types."""
        if isinstance(field_type, ScalarType):
            return self.scalars[field_type]
        if isinstance(field_type, MapType):
            return self.map_format.format(
                key=self.type_name(field_type.key, declared),
                value=self.type_name(field_type.value, declared),
            )
        if field_type.name in declared:
            return self.local_name(field_type.name)
        return self.reference(field_type.name)

    def declaration_name(self, qualified: str) -> str:
        """The name a declared message or enum is emitted under."""
        if self.nests_types:
            return qualified.rsplit(".", 1)[-1]
        return self.local_name(qualified)

    def label_wrapper(self, label: FieldLabel) -> Tuple[str, str]:
        return self.labels[label]

    def member_type(self, field: Field, declared: AbstractSet[str] = frozenset()) -> str:
        """The declared member type: the field type wrapped by its label.

        Maps are already containers and are never wrapped.
        """
        base = self.type_name(field.field_type, declared)
        if isinstance(field.field_type, MapType):
            return base
        prefix, suffix = self.label_wrapper(field.label)
        return f"{prefix}{base}{suffix}"

    def field_identifier(self, name: str) -> str:
        return self.field_case(name)

    def method_identifier(self, name: str) -> str:
        return self.method_case(name)

    def enum_value_identifier(self, enum_name: str, value_name: str) -> str:
        return self.enum_value_case(enum_name, value_name)

    def constant_identifier(self, name: str) -> str:
        return self.constant_case(name)

    def imports_for(self, features: Iterable[str]) -> List[str]:
        found = {imp for feat in features for imp in self.feature_imports.get(feat, ())}
        return sorted(found)

    def file_name(self, stem: str) -> str:
        return self.file_name_format.format(snake=to_snake(stem), pascal=to_pascal(stem))


RUST_TABLE = TargetTable(
    target=Target.RUST,
    scalars={
        ScalarType.DOUBLE: "f64",
        ScalarType.FLOAT: "f32",
        ScalarType.INT32: "i32",
        ScalarType.INT64: "i64",
        ScalarType.UINT32: "u32",
        ScalarType.UINT64: "u64",
        ScalarType.SINT32: "i32",
        ScalarType.SINT64: "i64",
        ScalarType.FIXED32: "u32",
        ScalarType.FIXED64: "u64",
        ScalarType.SFIXED32: "i32",
        ScalarType.SFIXED64: "i64",
        ScalarType.BOOL: "bool",
        ScalarType.STRING: "String",
        ScalarType.BYTES: "Vec<u8>",
    },
    map_format="HashMap<{key}, {value}>",
    reference=lambda name: name.replace(".", "::"),
    local_name=_rust_local_name,
    labels={
        FieldLabel.OPTIONAL: ("Option<", ">"),
        FieldLabel.REQUIRED: ("", ""),
        FieldLabel.REPEATED: ("Vec<", ">"),
    },
    field_case=_rust_ident,
    method_case=lambda name: _rust_ident(to_snake(name)),
    enum_value_case=lambda enum_name, value: to_pascal(value.lower()),
    constant_case=to_screaming_snake,
    template="rust.rs.j2",
    file_name_format="{snake}.rs",
    feature_imports={"map": ("std::collections::HashMap",)},
)

GO_TABLE = TargetTable(
    target=Target.GO,
    scalars={
        ScalarType.DOUBLE: "float64",
        ScalarType.FLOAT: "float32",
        ScalarType.INT32: "int32",
        ScalarType.INT64: "int64",
        ScalarType.UINT32: "uint32",
        ScalarType.UINT64: "uint64",
        ScalarType.SINT32: "int32",
        ScalarType.SINT64: "int64",
        ScalarType.FIXED32: "uint32",
        ScalarType.FIXED64: "uint64",
        ScalarType.SFIXED32: "int32",
        ScalarType.SFIXED64: "int64",
        ScalarType.BOOL: "bool",
        ScalarType.STRING: "string",
        ScalarType.BYTES: "[]byte",
    },
    map_format="map[{key}]{value}",
    reference=lambda name: name.replace(".", "_"),
    local_name=lambda name: name.replace(".", "_"),
    labels={
        FieldLabel.OPTIONAL: ("*", ""),
        FieldLabel.REQUIRED: ("", ""),
        FieldLabel.REPEATED: ("[]", ""),
    },
    field_case=to_pascal,
    method_case=to_pascal,
    enum_value_case=lambda enum_name, value: f"{enum_name}_{value}",
    constant_case=to_pascal,
    template="go.go.j2",
    file_name_format="{snake}.go",
    feature_imports={"service": ("context",), "channel": ("dmxp",)},
)

# Boxed types so that every member is nullable.
JAVA_TABLE = TargetTable(
    target=Target.JAVA,
    scalars={
        ScalarType.DOUBLE: "Double",
        ScalarType.FLOAT: "Float",
        ScalarType.INT32: "Integer",
        ScalarType.INT64: "Long",
        ScalarType.UINT32: "Integer",
        ScalarType.UINT64: "Long",
        ScalarType.SINT32: "Integer",
        ScalarType.SINT64: "Long",
        ScalarType.FIXED32: "Integer",
        ScalarType.FIXED64: "Long",
        ScalarType.SFIXED32: "Integer",
        ScalarType.SFIXED64: "Long",
        ScalarType.BOOL: "Boolean",
        ScalarType.STRING: "String",
        ScalarType.BYTES: "byte[]",
    },
    map_format="Map<{key}, {value}>",
    reference=lambda name: name,
    local_name=lambda name: name,
    labels={
        FieldLabel.OPTIONAL: ("", ""),
        FieldLabel.REQUIRED: ("", ""),
        FieldLabel.REPEATED: ("List<", ">"),
    },
    field_case=lambda name: _java_ident(to_camel(name)),
    method_case=lambda name: _java_ident(to_camel(name)),
    enum_value_case=lambda enum_name, value: value,
    constant_case=to_screaming_snake,
    template="java.java.j2",
    file_name_format="{pascal}Proto.java",
    feature_imports={
        "message": ("lombok.Builder", "lombok.Getter", "lombok.Setter"),
        "repeated": ("java.util.List",),
        "map": ("java.util.Map",),
        "channel": ("java.util.function.Consumer",),
        "async": ("java.util.concurrent.CompletableFuture",),
    },
    nests_types=True,
)

TABLES: Dict[Target, TargetTable] = {
    Target.RUST: RUST_TABLE,
    Target.GO: GO_TABLE,
    Target.JAVA: JAVA_TABLE,
}

SUPPORTED_TARGETS: FrozenSet[str] = frozenset(t.value for t in Target)


def get_table(target: Target) -> TargetTable:
    return TABLES[target]
