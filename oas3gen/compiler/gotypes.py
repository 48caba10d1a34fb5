"""Mapping of IR schemas onto Go type expressions."""

from __future__ import annotations

from typing import Final

from .ir import (
    Array,
    Composition,
    Custom,
    Enum,
    Field,
    Named,
    Object,
    Primitive,
    PrimitiveKind,
    Program,
    SchemaIR,
)
from .sink import CodeSink

# Import paths used by generated code
CHI: Final = "github.com/go-chi/chi/v5"
VALIDATION: Final = "github.com/go-ozzo/ozzo-validation/v4"
UUID: Final = "github.com/google/uuid"
COUNTRY: Final = "github.com/mikekonan/go-types/v2/country"
CURRENCY: Final = "github.com/mikekonan/go-types/v2/currency"
EMAIL: Final = "github.com/mikekonan/go-types/v2/email"

PRIMITIVE_TYPES: Final[dict[PrimitiveKind, tuple[str, str]]] = {
    PrimitiveKind.BOOL: ("", "bool"),
    PrimitiveKind.INT: ("", "int"),
    PrimitiveKind.FLOAT: ("", "float64"),
    PrimitiveKind.STRING: ("", "string"),
    PrimitiveKind.TIME: ("", "string"),
    PrimitiveKind.BYTES: ("", "[]byte"),
    PrimitiveKind.UUID: (UUID, "UUID"),
    PrimitiveKind.EMAIL: (EMAIL, "Email"),
    PrimitiveKind.RAW_JSON: ("encoding/json", "RawMessage"),
    PrimitiveKind.COUNTRY_A2: (COUNTRY, "Alpha2Code"),
    PrimitiveKind.COUNTRY_A3: (COUNTRY, "Alpha3Code"),
    PrimitiveKind.CURRENCY_CODE: (CURRENCY, "Code"),
}

# Kinds whose Go type has an underlying string
STRING_KINDS: Final[frozenset[PrimitiveKind]] = frozenset({
    PrimitiveKind.STRING,
    PrimitiveKind.TIME,
    PrimitiveKind.EMAIL,
})

NUMBER_KINDS: Final[frozenset[PrimitiveKind]] = frozenset({
    PrimitiveKind.INT,
    PrimitiveKind.FLOAT,
})

ENUM_BASES: Final[dict[PrimitiveKind, str]] = {
    PrimitiveKind.STRING: "string",
    PrimitiveKind.INT: "int",
    PrimitiveKind.FLOAT: "float64",
    PrimitiveKind.BOOL: "bool",
}


class TypeMapper:
    """Renders IR schemas as Go types inside a given sink."""

    def __init__(self, program: Program, components_path: str) -> None:
        self.program = program
        self.components_path = components_path

    def resolve(self, schema: SchemaIR) -> SchemaIR:
        return self.program.resolve(schema)

    def expr(self, schema: SchemaIR, sink: CodeSink) -> str:
        """Return the Go type expression of a schema."""
        if isinstance(schema, Primitive):
            return sink.qual(*PRIMITIVE_TYPES[schema.kind])
        if isinstance(schema, Array):
            return "[]" + self.expr(schema.element, sink)
        if isinstance(schema, Named):
            return sink.qual(self.components_path, schema.qualified_name)
        if isinstance(schema, Custom):
            return sink.qual(schema.target_type.package, schema.target_type.name)
        if isinstance(schema, Enum):
            return self.expr(schema.base, sink)
        if isinstance(schema, Object):
            return self.map_expr(schema, sink) or "interface{}"
        if isinstance(schema, Composition):
            return "interface{}"
        raise TypeError(f"unsupported schema node {schema!r}")

    def map_expr(self, schema: Object, sink: CodeSink) -> str | None:
        """Return the map type of an object with additional properties, if any."""
        additional = schema.additional
        if additional.override is not None:
            override = additional.override
            key = sink.qual(override.key.package, override.key.name)
            value = sink.qual(override.value.package, override.value.name)
            return f"map[{key}]{'[]' if override.value_is_slice else ''}{value}"
        if not additional.allowed:
            return None
        value = "interface{}" if additional.value is None else self.expr(additional.value, sink)
        return f"map[string]{value}"

    def is_pointer(self, field: Field) -> bool:
        """Whether the field is represented as a pointer.

        Slices, maps and interfaces already carry their own nil state.
        """
        if not field.pointer:
            return False
        resolved = self.resolve(field.schema)
        if isinstance(resolved, (Array, Composition)):
            return False
        if isinstance(resolved, Primitive) and resolved.kind in (PrimitiveKind.BYTES, PrimitiveKind.RAW_JSON):
            return False
        if isinstance(resolved, Object) and not resolved.fields:
            return False
        return True

    def field_type(self, field: Field, sink: CodeSink) -> str:
        prefix = "*" if self.is_pointer(field) else ""
        return prefix + self.expr(field.schema, sink)

    def primitive_kind(self, schema: SchemaIR) -> PrimitiveKind | None:
        """The primitive kind of a schema after following references."""
        resolved = self.resolve(schema)
        if isinstance(resolved, Primitive):
            return resolved.kind
        return None


def go_literal(value: str | int | float | bool, kind: PrimitiveKind) -> str:
    """Render a literal of the given primitive kind."""
    if kind is PrimitiveKind.BOOL or isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return go_string(value)
    if kind is PrimitiveKind.FLOAT or (isinstance(value, float) and not value.is_integer()):
        return repr(float(value))
    return str(int(value))


def go_string(value: str) -> str:
    """Render an interpreted Go string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def go_raw_string(value: str) -> str:
    """Render a raw string literal, falling back to an interpreted one."""
    if "`" in value or "\r" in value:
        return go_string(value)
    return f"`{value}`"
