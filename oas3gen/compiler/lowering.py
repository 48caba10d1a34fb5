"""
Schema lowering - turns a loaded OpenAPI document into the closed IR.

Lowering is a single forward pass:
- components/schemas are registered under their normalised names
- security schemes are classified
- operations are lowered with their parameters, bodies, responses and security
- inline objects and enums are hoisted into the component table under
  synthesised names so that every Named resolves before emission
"""

from __future__ import annotations

import dataclasses
from typing import Any, Final, Iterable

from ..shared.errors import NameCollision, SchemaInvalid
from ..shared.loader import SCHEMAS_PREFIX, Document
from ..shared.naming import content_type_tag, is_identifier, normalise, normalise_operation
from .extensions import Extensions, parse_extensions
from .ir import (
    AdditionalPolicy,
    AllOf,
    AnyOf,
    Array,
    Component,
    Composition,
    Custom,
    Enum,
    EnumMember,
    Field,
    MediaType,
    Named,
    Object,
    OneOf,
    Operation,
    Parameter,
    ParameterLocation,
    Primitive,
    PrimitiveKind,
    Program,
    Response,
    SchemaIR,
    SecurityKind,
    SecurityRequirement,
    SecurityScheme,
)

# HTTP methods in the order they are looked up on a path item
HTTP_METHODS: Final[tuple[str, ...]] = (
    "get", "put", "post", "delete", "options", "head", "patch", "trace",
)

SCHEMA_TYPES: Final[frozenset[str]] = frozenset({
    "string", "integer", "number", "boolean", "array", "object",
})

STRING_FORMATS: Final[dict[str, PrimitiveKind]] = {
    "byte": PrimitiveKind.BYTES,
    "binary": PrimitiveKind.BYTES,
    "date": PrimitiveKind.TIME,
    "date-time": PrimitiveKind.TIME,
    "uuid": PrimitiveKind.UUID,
    "email": PrimitiveKind.EMAIL,
    "iso4217-currency-code": PrimitiveKind.CURRENCY_CODE,
    "iso3166-alpha-2": PrimitiveKind.COUNTRY_A2,
    "iso3166-alpha-3": PrimitiveKind.COUNTRY_A3,
    "json": PrimitiveKind.RAW_JSON,
}

# Formats whose Go type already restricts the value set
DOMAIN_FORMATS: Final[frozenset[str]] = frozenset({
    "iso4217-currency-code", "iso3166-alpha-2", "iso3166-alpha-3",
})

OCTET_STREAM: Final = "application/octet-stream"

# Keywords a property inherits from the schema its $ref points at
CONSTRAINT_KEYWORDS: Final[tuple[str, ...]] = (
    "pattern",
    "minLength",
    "maxLength",
    "minimum",
    "maximum",
    "exclusiveMinimum",
    "exclusiveMaximum",
)

PHASE: Final = "lowering"


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def _invalid(message: str, path: str, **context: Any) -> SchemaInvalid:
    return SchemaInvalid(message, path, operation=PHASE, context=context)


def schema_type(node: dict[str, Any], path: str) -> tuple[str | None, bool]:
    """Return the declared type and whether ``null`` is allowed.

    Accepts both the 3.0 ``nullable`` keyword and 3.1 type lists.
    """
    raw = node.get("type")
    nullable = node.get("nullable") is True
    if raw is None:
        return None, nullable
    if isinstance(raw, list):
        types = [t for t in raw if t != "null"]
        nullable = nullable or len(types) != len(raw)
        if len(types) != 1:
            return None, nullable
        raw = types[0]
    if not isinstance(raw, str) or raw not in SCHEMA_TYPES:
        raise _invalid(
            "Unsupported schema type",
            path,
            received_value=repr(raw),
            expected_types=", ".join(sorted(SCHEMA_TYPES)),
        )
    return raw, nullable


def _int_keyword(node: dict[str, Any], keyword: str, path: str) -> int | None:
    value = node.get(keyword)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise _invalid(
            f"'{keyword}' must be a non-negative integer",
            path,
            received_value=repr(value),
        )
    return value


def _number(value: Any, keyword: str, path: str) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _invalid(f"'{keyword}' must be a number", path, received_value=repr(value))
    return value


def _bound(
    node: dict[str, Any],
    keyword: str,
    exclusive_keyword: str,
    path: str,
) -> tuple[int | float | None, bool]:
    """Read a numeric bound, accepting boolean (3.0) and numeric (3.1) exclusivity."""
    bound = node.get(keyword)
    if bound is not None:
        bound = _number(bound, keyword, path)

    exclusive = node.get(exclusive_keyword)
    if exclusive is None:
        return bound, False
    if isinstance(exclusive, bool):
        return bound, exclusive and bound is not None
    return _number(exclusive, exclusive_keyword, path), True


def _enum_tag(literal: str | int | float | bool) -> str:
    if isinstance(literal, bool):
        return "True" if literal else "False"
    if isinstance(literal, str):
        return normalise(literal) or "Empty"
    text = repr(literal).replace("-", "Minus").replace("+", "").replace(".", "_")
    return text


class Lowerer:
    """Lowers a Document into a Program.

    Component names are claimed before anything is lowered so that hoisted
    and synthesised names cannot silently shadow document components.
    """

    def __init__(self, document: Document) -> None:
        self._document = document
        self._names: dict[str, str] = {}
        self._claimed: dict[str, str] = {}
        self._components: dict[str, Component] = {}
        self._inline_refs: list[str] = []

    def lower(self) -> Program:
        """Run all lowering steps and return the frozen Program."""
        self._lower_components()
        schemes = self._lower_security_schemes()
        operations = self._lower_operations(schemes)

        self._break_value_cycles()
        components = tuple(sorted(self._components.values(), key=lambda c: c.name))
        self._check_ref_closure(components, operations)

        return Program(
            components=components,
            operations=tuple(operations),
            security_schemes=tuple(sorted(schemes.values(), key=lambda s: s.ident)),
            document=self._document.data,
        )

    # -- component table -------------------------------------------------

    def _claim(self, name: str, source: str) -> None:
        if not is_identifier(name):
            raise _invalid(
                f"Name '{name}' is not a valid identifier",
                source,
                reason="normalised names must be non-empty and must not start with a digit",
            )
        if name in self._claimed:
            raise NameCollision(name, self._claimed[name], source, scope="components")
        self._claimed[name] = source

    def _register(self, name: str, schema: SchemaIR, source: str, description: str = "") -> None:
        self._components[name] = Component(
            name=name,
            schema=schema,
            source=source,
            description=description,
        )

    def _lower_components(self) -> None:
        schemas = self._document.schemas
        if not isinstance(schemas, dict):
            raise _invalid("'components.schemas' must be a mapping", "#/components/schemas")

        for key in sorted(schemas):
            name = normalise(key)
            source = SCHEMAS_PREFIX + _escape(key)
            self._claim(name, source)
            self._names[key] = name

        for key in sorted(schemas):
            source = SCHEMAS_PREFIX + _escape(key)
            node = schemas[key]
            schema = self._lower(node, source, self._names[key], root=True)
            description = node.get("description", "") if isinstance(node, dict) else ""
            self._register(self._names[key], schema, source, str(description))

    def _struct_target(self, schema: SchemaIR) -> str | None:
        """Name of the struct a field embeds by value, following aliases."""
        target: str | None = None
        seen: set[str] = set()
        while isinstance(schema, Named) and schema.qualified_name not in seen:
            seen.add(schema.qualified_name)
            component = self._components.get(schema.qualified_name)
            if component is None:
                return None
            target, schema = component.name, component.schema
        if isinstance(schema, Object) and schema.fields:
            return target
        return None

    def _break_value_cycles(self) -> None:
        """Turn struct fields that close a by-value cycle into pointers.

        A field is part of a cycle when its owner is reachable from the
        struct it embeds.
        """
        targets: dict[str, list[str | None]] = {}
        for component in self._components.values():
            if isinstance(component.schema, Object):
                targets[component.name] = [
                    None if field.pointer else self._struct_target(field.schema)
                    for field in component.schema.fields
                ]

        def reaches(start: str, goal: str) -> bool:
            pending, visited = [start], set()
            while pending:
                name = pending.pop()
                if name == goal:
                    return True
                if name not in visited:
                    visited.add(name)
                    pending.extend(t for t in targets.get(name, ()) if t is not None)
            return False

        for name in sorted(targets):
            component = self._components[name]
            schema = component.schema
            fields = tuple(
                dataclasses.replace(field, pointer=True)
                if target is not None and reaches(target, name)
                else field
                for field, target in zip(schema.fields, targets[name])
            )
            if fields != schema.fields:
                self._components[name] = dataclasses.replace(
                    component, schema=dataclasses.replace(schema, fields=fields),
                )

    def _resolve(self, schema: SchemaIR) -> SchemaIR:
        seen: set[str] = set()
        while isinstance(schema, Named) and schema.qualified_name not in seen:
            seen.add(schema.qualified_name)
            component = self._components.get(schema.qualified_name)
            if component is None:
                break
            schema = component.schema
        return schema

    # -- schemas ---------------------------------------------------------

    def _hoist(
        self,
        schema: SchemaIR,
        hint: str | None,
        suffix: str,
        path: str,
        root: bool,
    ) -> SchemaIR:
        if root or hint is None:
            return schema
        name = hint + suffix
        self._claim(name, path)
        self._register(name, schema, path)
        return Named(name)

    def _lower(
        self,
        node: Any,
        path: str,
        hint: str | None,
        *,
        root: bool = False,
    ) -> SchemaIR:
        """Lower one schema node.

        Args:
            node: The schema mapping.
            path: JSON pointer of the node, used in diagnostics.
            hint: Name used when an inline object or enum is hoisted; None
                keeps nested schemas inline.
            root: The node is itself a registered component.

        Returns:
            The IR node.

        Raises:
            SchemaInvalid: If the schema has an unsupported shape.
            ExtensionTypeMismatch: If a vendor extension is malformed.
        """
        if not isinstance(node, dict):
            raise _invalid("Schema must be a mapping", path, received_type=type(node).__name__)

        ref = node.get("$ref")
        if isinstance(ref, str):
            return self._lower_ref(ref, path, hint)

        ext = parse_extensions(node, path)
        if ext.go_type is not None:
            return Custom(
                target_type=ext.go_type,
                parse_fn=ext.string_parse,
                validate=not ext.skip_validation,
            )

        for keyword, variant in (("allOf", AllOf), ("oneOf", OneOf), ("anyOf", AnyOf)):
            if keyword in node:
                return self._lower_composition(node[keyword], variant, f"{path}/{keyword}", hint)

        type_name, _ = schema_type(node, path)
        schema_format = node.get("format") if isinstance(node.get("format"), str) else None

        if "enum" in node and not (type_name == "string" and schema_format in DOMAIN_FORMATS):
            return self._hoist(self._lower_enum(node, type_name, path), hint, "Enum", path, root)

        if type_name == "string":
            return Primitive(STRING_FORMATS.get(schema_format or "", PrimitiveKind.STRING), schema_format)
        if type_name == "integer":
            return Primitive(PrimitiveKind.INT, schema_format)
        if type_name == "number":
            return Primitive(PrimitiveKind.FLOAT, schema_format)
        if type_name == "boolean":
            return Primitive(PrimitiveKind.BOOL, schema_format)
        if type_name == "array" or (type_name is None and "items" in node):
            return self._lower_array(node, path, hint)

        obj = self._lower_object(node, path, hint, ext)
        if obj.fields:
            return self._hoist(obj, hint, "", path, root)
        return obj

    def _lower_ref(self, ref: str, path: str, hint: str | None) -> SchemaIR:
        if ref.startswith(SCHEMAS_PREFIX) and "/" not in ref[len(SCHEMAS_PREFIX):]:
            key = ref[len(SCHEMAS_PREFIX):].replace("~1", "/").replace("~0", "~")
            if key not in self._names:
                raise _invalid(
                    f"Reference '{ref}' does not name a component schema",
                    path,
                    received_value=ref,
                )
            return Named(self._names[key])

        if ref in self._inline_refs:
            raise _invalid(
                f"Reference cycle through '{ref}'",
                path,
                reason="only references to components/schemas may be recursive",
            )
        self._inline_refs.append(ref)
        try:
            return self._lower(self._document.resolve(ref), ref, hint)
        finally:
            self._inline_refs.pop()

    def _lower_composition(
        self,
        members: Any,
        variant: type[Composition],
        path: str,
        hint: str | None,
    ) -> SchemaIR:
        if not isinstance(members, list) or not members:
            raise _invalid("Composition must list at least one schema", path)

        refs = [m for m in members if isinstance(m, dict) and isinstance(m.get("$ref"), str)]
        if variant is AllOf and len(refs) == 1:
            return self._lower_ref(refs[0]["$ref"], path, hint)

        return variant(members=tuple(
            self._lower(member, f"{path}/{index}", None)
            for index, member in enumerate(members)
        ))

    def _lower_enum(self, node: dict[str, Any], type_name: str | None, path: str) -> Enum:
        values = node.get("enum")
        if not isinstance(values, list):
            raise _invalid("'enum' must be a list", path, received_type=type(values).__name__)
        values = [value for value in values if value is not None]
        if not values:
            raise _invalid("Enum must declare at least one member", path)

        if type_name is None:
            if all(isinstance(v, str) for v in values):
                type_name = "string"
            elif all(isinstance(v, bool) for v in values):
                type_name = "boolean"
            elif all(isinstance(v, int) and not isinstance(v, bool) for v in values):
                type_name = "integer"
            elif all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
                type_name = "number"

        checks = {
            "string": (PrimitiveKind.STRING, lambda v: isinstance(v, str)),
            "integer": (PrimitiveKind.INT, lambda v: isinstance(v, int) and not isinstance(v, bool)),
            "number": (
                PrimitiveKind.FLOAT,
                lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
            ),
            "boolean": (PrimitiveKind.BOOL, lambda v: isinstance(v, bool)),
        }
        if type_name not in checks:
            raise _invalid(
                "Enum members must share a primitive base type",
                path,
                received_value=repr(values),
                expected_types="string, integer, number, boolean",
            )
        kind, accepts = checks[type_name]

        members: list[EnumMember] = []
        seen: dict[str, Any] = {}
        for value in values:
            if not accepts(value):
                raise _invalid(
                    f"Enum member {value!r} does not match the base type '{type_name}'",
                    path,
                    received_type=type(value).__name__,
                    expected_types=type_name,
                )
            tag = _enum_tag(value)
            if tag in seen:
                raise NameCollision(tag, f"{path} ({seen[tag]!r})", f"{path} ({value!r})", scope="enum")
            seen[tag] = value
            members.append(EnumMember(tag_name=tag, literal=value))

        return Enum(base=Primitive(kind), members=tuple(members))

    def _lower_array(self, node: dict[str, Any], path: str, hint: str | None) -> Array:
        items = node.get("items")
        element: SchemaIR = Object()
        if items is not None:
            element = self._lower(items, f"{path}/items", hint + "Item" if hint else None)
        return Array(
            element=element,
            min_items=_int_keyword(node, "minItems", path),
            max_items=_int_keyword(node, "maxItems", path),
        )

    def _lower_object(
        self,
        node: dict[str, Any],
        path: str,
        hint: str | None,
        ext: Extensions,
    ) -> Object:
        properties = node.get("properties") or {}
        if not isinstance(properties, dict):
            raise _invalid("'properties' must be a mapping", path)
        required = node.get("required") or []
        if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
            raise _invalid("'required' must be a list of property names", path)

        fields: list[Field] = []
        idents: dict[str, str] = {}
        for name, prop in sorted(properties.items()):
            prop_path = f"{path}/properties/{_escape(name)}"
            field = self._lower_field(name, prop, prop_path, hint, name in required)
            if field.ident in idents:
                raise NameCollision(field.ident, idents[field.ident], prop_path, scope="object fields")
            idents[field.ident] = prop_path
            fields.append(field)

        return Object(
            fields=tuple(fields),
            required=frozenset(name for name in required if name in properties),
            additional=self._lower_additional(node, path, hint, ext),
            skip_validation=ext.skip_validation,
        )

    def _lower_additional(
        self,
        node: dict[str, Any],
        path: str,
        hint: str | None,
        ext: Extensions,
    ) -> AdditionalPolicy:
        if ext.map_type is not None:
            return AdditionalPolicy(allowed=True, override=ext.map_type)

        raw = node.get("additionalProperties")
        if raw is None or raw is False:
            return AdditionalPolicy()
        if raw is True or raw == {}:
            return AdditionalPolicy(allowed=True)
        if isinstance(raw, dict):
            value = self._lower(raw, f"{path}/additionalProperties", hint + "Value" if hint else None)
            return AdditionalPolicy(allowed=True, value=value)
        raise _invalid(
            "'additionalProperties' must be a boolean or a schema",
            path,
            received_type=type(raw).__name__,
        )

    def _lower_field(
        self,
        name: str,
        node: Any,
        path: str,
        parent_hint: str | None,
        required: bool,
    ) -> Field:
        ident = normalise(name)
        if not is_identifier(ident):
            raise _invalid(f"Property '{name}' does not produce a valid identifier", path, identifier=ident)
        if not isinstance(node, dict):
            raise _invalid("Schema must be a mapping", path, received_type=type(node).__name__)

        ext = parse_extensions(node, path)
        schema = self._lower(node, path, parent_hint + ident if parent_hint else None)
        return self._field(name, ident, self._constraints(node), schema, ext, required, path)

    def _constraints(self, node: dict[str, Any]) -> dict[str, Any]:
        """Overlay ``node`` on the constraint keywords of the schema it references."""
        inherited: dict[str, Any] = {}
        seen: set[str] = set()
        target: Any = node
        while isinstance(target, dict) and isinstance(target.get("$ref"), str) and target["$ref"] not in seen:
            seen.add(target["$ref"])
            target = self._document.resolve(target["$ref"])
            if isinstance(target, dict):
                for keyword in CONSTRAINT_KEYWORDS:
                    if keyword in target:
                        inherited.setdefault(keyword, target[keyword])
        if not inherited:
            return node
        return {**inherited, **node}

    def _field(
        self,
        name: str,
        ident: str,
        node: dict[str, Any],
        schema: SchemaIR,
        ext: Extensions,
        required: bool,
        path: str,
        *,
        pointer: bool | None = None,
    ) -> Field:
        _, nullable = schema_type(node, path)
        pattern = ext.regex or node.get("pattern")
        if pattern is not None and not isinstance(pattern, str):
            raise _invalid("'pattern' must be a string", path, received_type=type(pattern).__name__)

        minimum, exclusive_minimum = _bound(node, "minimum", "exclusiveMinimum", path)
        maximum, exclusive_maximum = _bound(node, "maximum", "exclusiveMaximum", path)

        if pointer is None:
            pointer = ext.pointer or (not required and nullable)

        return Field(
            name=name,
            ident=ident,
            schema=schema,
            required=required,
            nullable=nullable,
            pointer=pointer,
            omitempty=ext.omitempty,
            pattern=pattern,
            min_length=_int_keyword(node, "minLength", path),
            max_length=_int_keyword(node, "maxLength", path),
            minimum=minimum,
            maximum=maximum,
            exclusive_minimum=exclusive_minimum,
            exclusive_maximum=exclusive_maximum,
            trimmable=ext.trimmable,
            skip_validation=ext.skip_validation,
        )

    # -- security --------------------------------------------------------

    def _lower_security_schemes(self) -> dict[str, SecurityScheme]:
        components = self._document.data.get("components") or {}
        raw = components.get("securitySchemes") or {}
        if not isinstance(raw, dict):
            raise _invalid("'components.securitySchemes' must be a mapping", "#/components/securitySchemes")

        schemes: dict[str, SecurityScheme] = {}
        idents: dict[str, str] = {}
        for key in sorted(raw):
            path = f"#/components/securitySchemes/{_escape(key)}"
            node = self._document.deref(raw[key])
            if not isinstance(node, dict):
                raise _invalid("Security scheme must be a mapping", path)

            ident = normalise(key)
            if not is_identifier(ident):
                raise _invalid(f"Security scheme '{key}' does not produce a valid identifier", path)
            if ident in idents:
                raise NameCollision(ident, idents[ident], path, scope="security schemes")
            idents[ident] = path

            schemes[key] = self._security_scheme(key, ident, node, path)
        return schemes

    def _security_scheme(self, key: str, ident: str, node: dict[str, Any], path: str) -> SecurityScheme:
        scheme_type = node.get("type")
        if scheme_type == "http":
            scheme = str(node.get("scheme", "")).lower()
            kind = {
                "bearer": SecurityKind.HTTP_BEARER,
                "basic": SecurityKind.HTTP_BASIC,
            }.get(scheme, SecurityKind.OPAQUE)
            return SecurityScheme(key=key, ident=ident, kind=kind)
        if scheme_type == "apiKey":
            location = node.get("in")
            name = node.get("name")
            if location not in ("header", "query", "cookie"):
                raise _invalid(
                    "apiKey security scheme has an unsupported location",
                    path,
                    received_value=repr(location),
                    expected_types="header, query, cookie",
                )
            if not isinstance(name, str) or not name:
                raise _invalid("apiKey security scheme requires a 'name'", path)
            return SecurityScheme(
                key=key,
                ident=ident,
                kind=SecurityKind.API_KEY,
                location=location,
                parameter_name=name,
            )
        if scheme_type in ("oauth2", "openIdConnect"):
            return SecurityScheme(key=key, ident=ident, kind=SecurityKind.OAUTH2)
        if scheme_type == "mutualTLS":
            return SecurityScheme(key=key, ident=ident, kind=SecurityKind.OPAQUE)
        raise _invalid(
            "Unsupported security scheme type",
            path,
            received_value=repr(scheme_type),
            expected_types="http, apiKey, oauth2, openIdConnect, mutualTLS",
        )

    def _lower_security(
        self,
        value: Any,
        schemes: dict[str, SecurityScheme],
        path: str,
    ) -> tuple[SecurityRequirement, ...]:
        if value is None:
            return ()
        if not isinstance(value, list):
            raise _invalid("'security' must be a list of requirement maps", path)

        requirements: list[SecurityRequirement] = []
        for index, requirement in enumerate(value):
            if not isinstance(requirement, dict):
                raise _invalid("Security requirement must be a mapping", f"{path}/{index}")
            for key in requirement:
                if key not in schemes:
                    raise SchemaInvalid(
                        f"Security requirement references unknown scheme '{key}'",
                        f"{path}/{index}",
                        operation=PHASE,
                        context={"scheme": key, "declared": ", ".join(sorted(schemes)) or "<none>"},
                        hints=("Declare the scheme under components.securitySchemes",),
                    )
            requirements.append(SecurityRequirement(schemes=tuple(sorted(requirement))))
        return tuple(requirements)

    # -- operations ------------------------------------------------------

    def _lower_operations(self, schemes: dict[str, SecurityScheme]) -> list[Operation]:
        paths = self._document.data.get("paths") or {}
        if not isinstance(paths, dict):
            raise _invalid("'paths' must be a mapping", "#/paths")

        root_security = self._document.data.get("security")
        names: dict[str, str] = {}
        operations: list[Operation] = []

        for path in sorted(paths):
            item = self._document.deref(paths[path])
            if not isinstance(item, dict):
                raise _invalid("Path item must be a mapping", f"#/paths/{_escape(path)}")
            path_parameters = item.get("parameters") or []

            for method in HTTP_METHODS:
                node = item.get(method)
                if node is None:
                    continue
                location = f"#/paths/{_escape(path)}/{method}"
                if not isinstance(node, dict):
                    raise _invalid("Operation must be a mapping", location)

                name = normalise_operation(path, method)
                if not is_identifier(name):
                    raise _invalid(f"Operation name '{name}' is not a valid identifier", location)
                if name in names:
                    raise NameCollision(name, names[name], location, scope="operations")
                names[name] = location

                operations.append(self._lower_operation(
                    name, method, path, node, path_parameters, schemes, root_security, location,
                ))

        operations.sort(key=lambda op: (op.path, op.method))
        return operations

    def _lower_operation(
        self,
        name: str,
        method: str,
        path: str,
        node: dict[str, Any],
        path_parameters: list[Any],
        schemes: dict[str, SecurityScheme],
        root_security: Any,
        location: str,
    ) -> Operation:
        tags = node.get("tags") or []
        tag = normalise(str(tags[0])) if tags else "Default"
        if not is_identifier(tag):
            raise _invalid(f"Tag '{tags[0]}' does not produce a valid identifier", location)

        parameters = self._lower_parameters(
            name, self._merge_parameters(path_parameters, node.get("parameters") or [], location), location,
        )
        ext = parse_extensions(node, location)
        security = node["security"] if "security" in node else root_security

        return Operation(
            name=name,
            method=method,
            path=path,
            tag=tag,
            summary=str(node.get("summary", "") or "").strip(),
            parameters=parameters,
            bodies=self._lower_request_body(node.get("requestBody"), name, location),
            responses=self._lower_responses(node.get("responses") or {}, name, location),
            security=self._lower_security(security, schemes, f"{location}/security"),
            skip_security=ext.skip_security_check,
        )

    def _merge_parameters(
        self,
        path_level: Iterable[Any],
        operation_level: Iterable[Any],
        location: str,
    ) -> list[dict[str, Any]]:
        merged: dict[tuple[str, str], dict[str, Any]] = {}
        for raw in [*path_level, *operation_level]:
            node = self._document.deref(raw)
            if not isinstance(node, dict):
                raise _invalid("Parameter must be a mapping", f"{location}/parameters")
            merged[(str(node.get("name")), str(node.get("in")))] = node
        return list(merged.values())

    def _lower_parameters(
        self,
        operation: str,
        nodes: list[dict[str, Any]],
        location: str,
    ) -> tuple[Parameter, ...]:
        parameters: list[Parameter] = []
        idents: dict[tuple[ParameterLocation, str], str] = {}
        for index, node in enumerate(nodes):
            path = f"{location}/parameters/{index}"
            parameter = self._lower_parameter(operation, node, path)
            key = (parameter.location, parameter.field.ident)
            if key in idents:
                raise NameCollision(parameter.field.ident, idents[key], path, scope=f"{operation} parameters")
            idents[key] = path
            parameters.append(parameter)
        return tuple(parameters)

    def _lower_parameter(self, operation: str, node: dict[str, Any], path: str) -> Parameter:
        name = node.get("name")
        if not isinstance(name, str) or not name:
            raise _invalid("Parameter requires a 'name'", path)

        raw_location = node.get("in")
        try:
            location = ParameterLocation(raw_location)
        except ValueError as e:
            raise SchemaInvalid(
                f"Parameter '{name}' has an unsupported location",
                path,
                operation=PHASE,
                context={"received_value": repr(raw_location), "expected_types": "path, query, header"},
                hints=("Cookie parameters are not parsed; read them in the service instead",),
            ) from e

        schema_node = node.get("schema")
        if not isinstance(schema_node, dict):
            raise _invalid(f"Parameter '{name}' requires a 'schema'", path)

        ident = normalise(name)
        if not is_identifier(ident):
            raise _invalid(f"Parameter '{name}' does not produce a valid identifier", path)

        schema_path = f"{path}/schema"
        schema = self._lower(schema_node, schema_path, operation + ident)
        constraints = self._document.deref(schema_node)
        schema_ext = parse_extensions(constraints, schema_path)
        parameter_ext = parse_extensions(node, path)
        ext = Extensions(
            regex=parameter_ext.regex or schema_ext.regex,
            trimmable=parameter_ext.trimmable or schema_ext.trimmable,
            skip_validation=parameter_ext.skip_validation or schema_ext.skip_validation,
        )

        required = location is ParameterLocation.PATH or node.get("required") is True
        resolved = self._resolve(schema)
        self._check_parameter_schema(name, location, resolved, path)

        field = self._field(
            name,
            ident,
            constraints,
            schema,
            ext,
            required,
            schema_path,
            pointer=not required and not isinstance(resolved, Array),
        )
        return Parameter(location=location, field=field)

    def _check_parameter_schema(
        self,
        name: str,
        location: ParameterLocation,
        schema: SchemaIR,
        path: str,
    ) -> None:
        if isinstance(schema, (Primitive, Enum, Custom)):
            return
        if isinstance(schema, Array) and location is ParameterLocation.QUERY:
            element = self._resolve(schema.element)
            if isinstance(element, Primitive) and element.kind is PrimitiveKind.STRING:
                return
        raise SchemaInvalid(
            f"Parameter '{name}' cannot be parsed from a string",
            path,
            operation=PHASE,
            context={"received_type": type(schema).__name__, "location": location.value},
            hints=("Use a primitive, enum or x-go-type schema; arrays of strings are accepted in query",),
        )

    def _lower_media(
        self,
        content: Any,
        path: str,
        synthesised: str,
    ) -> tuple[MediaType, ...]:
        if not isinstance(content, dict):
            raise _invalid("'content' must be a mapping", path)

        media_types: list[MediaType] = []
        tags: dict[str, str] = {}
        for content_type in sorted(content):
            tag = content_type_tag(content_type)
            media_path = f"{path}/{_escape(content_type)}/schema"
            if tag in tags:
                raise NameCollision(tag, tags[tag], media_path, scope="content types")
            tags[tag] = media_path

            media = content[content_type] or {}
            schema_node = media.get("schema") if isinstance(media, dict) else None
            name = synthesised.format(tag=tag)
            if schema_node is None:
                schema: SchemaIR = Object()
            elif isinstance(schema_node, dict) and "$ref" in schema_node:
                schema = self._lower(schema_node, media_path, name)
            else:
                self._claim(name, media_path)
                self._register(name, self._lower(schema_node, media_path, name, root=True), media_path)
                schema = Named(name)
            media_types.append(MediaType(content_type=content_type, tag=tag, schema=schema))
        return tuple(media_types)

    def _lower_request_body(self, node: Any, operation: str, location: str) -> tuple[MediaType, ...]:
        if node is None:
            return ()
        body = self._document.deref(node)
        if not isinstance(body, dict):
            raise _invalid("Request body must be a mapping", f"{location}/requestBody")

        bodies = self._lower_media(
            body.get("content") or {},
            f"{location}/requestBody/content",
            operation + "{tag}RequestBody",
        )
        for media in bodies:
            if media.content_type != OCTET_STREAM:
                continue
            resolved = self._resolve(media.schema)
            if not (isinstance(resolved, Primitive) and resolved.kind is PrimitiveKind.BYTES):
                raise SchemaInvalid(
                    "application/octet-stream bodies must be raw bytes",
                    f"{location}/requestBody/content/{_escape(OCTET_STREAM)}/schema",
                    operation=PHASE,
                    context={"received_type": type(resolved).__name__},
                    hints=("Use 'type: string, format: binary'",),
                )
        return bodies

    def _lower_responses(self, responses: Any, operation: str, location: str) -> tuple[Response, ...]:
        if not isinstance(responses, dict):
            raise _invalid("'responses' must be a mapping", f"{location}/responses")

        def order(status: str) -> tuple[int, str]:
            return (0, status.zfill(3)) if status.isdecimal() else (1, status)

        lowered: list[Response] = []
        for status in sorted((str(key) for key in responses), key=order):
            raw = responses[status] if status in responses else responses[int(status)]
            path = f"{location}/responses/{_escape(status)}"
            node = self._document.deref(raw)
            if not isinstance(node, dict):
                raise _invalid("Response must be a mapping", path)

            ident = normalise(status)
            if not ident:
                raise _invalid(f"Response status '{status}' does not produce a valid identifier", path)

            lowered.append(Response(
                status=status,
                ident=ident,
                headers=self._lower_headers(node.get("headers") or {}, operation + ident, path),
                content=self._lower_media(
                    node.get("content") or {},
                    f"{path}/content",
                    operation + ident + "{tag}ResponseBody",
                ),
            ))
        return tuple(lowered)

    def _lower_headers(self, headers: Any, hint: str, path: str) -> tuple[Field, ...]:
        if not isinstance(headers, dict):
            raise _invalid("'headers' must be a mapping", f"{path}/headers")

        fields: list[Field] = []
        idents: dict[str, str] = {}
        for name, raw in sorted(headers.items()):
            if name.lower() == "content-type":
                continue
            header_path = f"{path}/headers/{_escape(name)}"
            node = self._document.deref(raw)
            if not isinstance(node, dict):
                raise _invalid("Header must be a mapping", header_path)
            schema_node = node.get("schema") or {"type": "string"}

            ident = normalise(name)
            if not is_identifier(ident):
                raise _invalid(f"Header '{name}' does not produce a valid identifier", header_path)
            if ident in idents:
                raise NameCollision(ident, idents[ident], header_path, scope="response headers")
            idents[ident] = header_path

            field = self._lower_field(name, schema_node, f"{header_path}/schema", hint, node.get("required") is True)
            fields.append(field)
        return tuple(fields)

    # -- checks ----------------------------------------------------------

    def _check_ref_closure(
        self,
        components: tuple[Component, ...],
        operations: list[Operation],
    ) -> None:
        for component in components:
            for name in _named_references(component.schema):
                if name not in self._components:
                    raise _invalid(f"Unresolved reference to '{name}'", component.source)

        for operation in operations:
            schemas: list[SchemaIR] = [p.field.schema for p in operation.parameters]
            schemas.extend(m.schema for m in operation.bodies)
            for response in operation.responses:
                schemas.extend(h.schema for h in response.headers)
                schemas.extend(m.schema for m in response.content)
            for schema in schemas:
                for name in _named_references(schema):
                    if name not in self._components:
                        raise _invalid(f"Unresolved reference to '{name}'", operation.name)


def _named_references(schema: SchemaIR) -> Iterable[str]:
    """Yield every Named reference reachable without crossing a component."""
    if isinstance(schema, Named):
        yield schema.qualified_name
    elif isinstance(schema, Array):
        yield from _named_references(schema.element)
    elif isinstance(schema, Object):
        for field in schema.fields:
            yield from _named_references(field.schema)
        if schema.additional.value is not None:
            yield from _named_references(schema.additional.value)
    elif isinstance(schema, Composition):
        for member in schema.members:
            yield from _named_references(member)


def lower(document: Document) -> Program:
    """Lower a document into a Program."""
    return Lowerer(document).lower()
