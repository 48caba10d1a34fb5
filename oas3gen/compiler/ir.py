"""Closed intermediate representation of lowered OpenAPI documents.

All nodes are frozen so the IR cannot change once lowering is done.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum as _Enum
from typing import Any, Union


class PrimitiveKind(_Enum):
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BYTES = "bytes"
    TIME = "time"
    UUID = "uuid"
    EMAIL = "email"
    RAW_JSON = "raw_json"
    COUNTRY_A2 = "country_alpha2"
    COUNTRY_A3 = "country_alpha3"
    CURRENCY_CODE = "currency_code"


class ParameterLocation(_Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"

    @property
    def title(self) -> str:
        return self.value.capitalize()


# Emission order of parameter groups
LOCATION_ORDER: tuple[ParameterLocation, ...] = (
    ParameterLocation.PATH,
    ParameterLocation.QUERY,
    ParameterLocation.HEADER,
)


class SecurityKind(_Enum):
    HTTP_BEARER = "bearer"
    HTTP_BASIC = "basic"
    API_KEY = "apiKey"
    OAUTH2 = "oauth2"
    OPAQUE = "opaque"


@dataclass(frozen=True, slots=True)
class QualifiedName:
    """A Go identifier, optionally qualified by its import path."""

    package: str
    name: str

    @classmethod
    def parse(cls, value: str) -> QualifiedName:
        """Split ``github.com/x/pkg.Type`` at the last dot."""
        package, dot, name = value.rpartition(".")
        if not dot:
            return cls(package="", name=value)
        return cls(package=package, name=name)

    def __str__(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name


@dataclass(frozen=True, slots=True)
class Primitive:
    kind: PrimitiveKind
    format_hint: str | None = None


@dataclass(frozen=True, slots=True)
class Array:
    element: SchemaIR
    min_items: int | None = None
    max_items: int | None = None


@dataclass(frozen=True, slots=True)
class MapOverride:
    """Key/value types given by ``x-go-map-type``."""

    key: QualifiedName
    value: QualifiedName
    value_is_slice: bool = False


@dataclass(frozen=True, slots=True)
class AdditionalPolicy:
    """How an object treats properties it does not declare."""

    allowed: bool = False
    value: SchemaIR | None = None
    override: MapOverride | None = None


@dataclass(frozen=True, slots=True)
class Field:
    """An object property, parameter or response header."""

    name: str
    ident: str
    schema: SchemaIR
    required: bool = False
    nullable: bool = False
    pointer: bool = False
    omitempty: bool = False
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    trimmable: bool = False
    skip_validation: bool = False


@dataclass(frozen=True, slots=True)
class Object:
    fields: tuple[Field, ...] = ()
    required: frozenset[str] = frozenset()
    additional: AdditionalPolicy = AdditionalPolicy()
    skip_validation: bool = False


@dataclass(frozen=True, slots=True)
class EnumMember:
    tag_name: str
    literal: str | int | float


@dataclass(frozen=True, slots=True)
class Enum:
    base: Primitive
    members: tuple[EnumMember, ...]


@dataclass(frozen=True, slots=True)
class Named:
    qualified_name: str


@dataclass(frozen=True, slots=True)
class Composition:
    members: tuple[SchemaIR, ...]


@dataclass(frozen=True, slots=True)
class AnyOf(Composition):
    pass


@dataclass(frozen=True, slots=True)
class OneOf(Composition):
    pass


@dataclass(frozen=True, slots=True)
class AllOf(Composition):
    pass


@dataclass(frozen=True, slots=True)
class Custom:
    """A type supplied by ``x-go-type``."""

    target_type: QualifiedName
    parse_fn: QualifiedName | None = None
    validate: bool = True


SchemaIR = Union[Primitive, Array, Object, Enum, Named, AnyOf, OneOf, AllOf, Custom]


@dataclass(frozen=True, slots=True)
class Component:
    """A named schema registered in the component table."""

    name: str
    schema: SchemaIR
    source: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class Parameter:
    location: ParameterLocation
    field: Field


@dataclass(frozen=True, slots=True)
class MediaType:
    content_type: str
    tag: str
    schema: SchemaIR


@dataclass(frozen=True, slots=True)
class Response:
    status: str
    ident: str
    headers: tuple[Field, ...] = ()
    content: tuple[MediaType, ...] = ()

    @property
    def numeric(self) -> bool:
        return self.status.isdecimal()


@dataclass(frozen=True, slots=True)
class SecurityRequirement:
    """All schemes of one requirement map must pass."""

    schemes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Operation:
    name: str
    method: str
    path: str
    tag: str
    summary: str = ""
    parameters: tuple[Parameter, ...] = ()
    bodies: tuple[MediaType, ...] = ()
    responses: tuple[Response, ...] = ()
    security: tuple[SecurityRequirement, ...] = ()
    skip_security: bool = False

    def parameters_in(self, location: ParameterLocation) -> tuple[Parameter, ...]:
        return tuple(p for p in self.parameters if p.location is location)


@dataclass(frozen=True, slots=True)
class SecurityScheme:
    key: str
    ident: str
    kind: SecurityKind
    location: str | None = None
    parameter_name: str | None = None


@dataclass(frozen=True)
class Program:
    """The complete IR of a document."""

    components: tuple[Component, ...]
    operations: tuple[Operation, ...]
    security_schemes: tuple[SecurityScheme, ...] = ()
    document: dict[str, Any] = field(default_factory=dict, compare=False)
    config: Any = field(default=None, compare=False)

    def component(self, name: str) -> Component | None:
        for component in self.components:
            if component.name == name:
                return component
        return None

    def resolve(self, schema: SchemaIR) -> SchemaIR:
        """Follow ``Named`` references to the underlying schema."""
        seen: set[str] = set()
        while isinstance(schema, Named) and schema.qualified_name not in seen:
            seen.add(schema.qualified_name)
            component = self.component(schema.qualified_name)
            if component is None:
                break
            schema = component.schema
        return schema

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(sorted({operation.tag for operation in self.operations}))

    def artifacts(self) -> list[Any]:
        """Render the components and router artifacts, in that order."""
        from .main import emit_artifacts

        return emit_artifacts(self, self.config)

    def render(self, writer: Any) -> list[Any]:
        """Write every artifact and return the written paths."""
        return [writer.write(artifact) for artifact in self.artifacts()]
