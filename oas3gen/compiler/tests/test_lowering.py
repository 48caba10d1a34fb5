import pytest

from oas3gen.compiler.ir import (
    AllOf,
    Array,
    Custom,
    Enum,
    Named,
    Object,
    OneOf,
    ParameterLocation,
    Primitive,
    PrimitiveKind,
    QualifiedName,
    SecurityKind,
    SecurityRequirement,
)
from oas3gen.compiler.lowering import lower, schema_type
from oas3gen.shared.errors import ExtensionTypeMismatch, LoadFailed, NameCollision, SchemaInvalid
from oas3gen.shared.loader import Document


def document(schemas=None, paths=None, **extra):
    data = {"openapi": "3.0.3", "info": {"title": "t", "version": "1"}, "paths": paths or {}}
    components = {}
    if schemas is not None:
        components["schemas"] = schemas
    if "securitySchemes" in extra:
        components["securitySchemes"] = extra.pop("securitySchemes")
    if components:
        data["components"] = components
    data.update(extra)
    return Document(data)


def field_of(program, component, name):
    schema = program.component(component).schema
    return next(f for f in schema.fields if f.name == name)


class TestSchemaType:
    def test_nullable_keyword(self):
        assert schema_type({"type": "string", "nullable": True}, "#") == ("string", True)

    def test_type_list(self):
        assert schema_type({"type": ["integer", "null"]}, "#") == ("integer", True)

    def test_missing(self):
        assert schema_type({}, "#") == (None, False)

    def test_unsupported(self):
        with pytest.raises(SchemaInvalid) as info:
            schema_type({"type": "file"}, "#/x")
        assert info.value.schema_path == "#/x"
        assert info.value.context["received_value"] == "'file'"


class TestComponents:
    def test_primitives_and_formats(self):
        program = lower(document({
            "Thing": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "format": "uuid"},
                    "created": {"type": "string", "format": "date-time"},
                    "email": {"type": "string", "format": "email"},
                    "blob": {"type": "string", "format": "byte"},
                    "count": {"type": "integer", "format": "int64"},
                    "ratio": {"type": "number"},
                    "flag": {"type": "boolean"},
                    "currency": {"type": "string", "format": "iso4217-currency-code"},
                    "country": {"type": "string", "format": "iso3166-alpha-2"},
                    "extra": {"type": "string", "format": "json"},
                },
            },
        }))
        kinds = {f.name: f.schema.kind for f in program.component("Thing").schema.fields}
        assert kinds == {
            "id": PrimitiveKind.UUID,
            "created": PrimitiveKind.TIME,
            "email": PrimitiveKind.EMAIL,
            "blob": PrimitiveKind.BYTES,
            "count": PrimitiveKind.INT,
            "ratio": PrimitiveKind.FLOAT,
            "flag": PrimitiveKind.BOOL,
            "currency": PrimitiveKind.CURRENCY_CODE,
            "country": PrimitiveKind.COUNTRY_A2,
            "extra": PrimitiveKind.RAW_JSON,
        }

    def test_sorted_by_name(self):
        program = lower(document({"zeta": {"type": "string"}, "alpha": {"type": "string"}}))
        assert [c.name for c in program.components] == ["Alpha", "Zeta"]

    def test_source_and_description(self):
        program = lower(document({"user_account": {"type": "object", "description": "An account."}}))
        component = program.component("UserAccount")
        assert component.source == "#/components/schemas/user_account"
        assert component.description == "An account."

    def test_optional_marker(self):
        """Only optional nullable fields (or x-go-pointer) get the optional marker."""
        program = lower(document({
            "A": {
                "type": "object",
                "required": ["req"],
                "properties": {
                    "req": {"type": "string", "nullable": True},
                    "opt": {"type": "string"},
                    "optNull": {"type": "string", "nullable": True},
                    "forced": {"type": "string", "x-go-pointer": True},
                },
            },
        }))
        assert not field_of(program, "A", "req").pointer
        assert field_of(program, "A", "req").required
        assert not field_of(program, "A", "opt").pointer
        assert field_of(program, "A", "optNull").pointer
        assert field_of(program, "A", "forced").pointer

    def test_constraints(self):
        program = lower(document({
            "A": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 2, "maxLength": 5, "pattern": "^[a-z]+$"},
                    "legacy": {"type": "integer", "minimum": 1, "exclusiveMinimum": True, "maximum": 9},
                    "modern": {"type": "number", "exclusiveMinimum": 0.5, "exclusiveMaximum": 10},
                    "override": {"type": "string", "pattern": "^a$", "x-go-regex": "^b$"},
                },
            },
        }))
        name = field_of(program, "A", "name")
        assert (name.min_length, name.max_length, name.pattern) == (2, 5, "^[a-z]+$")
        legacy = field_of(program, "A", "legacy")
        assert (legacy.minimum, legacy.exclusive_minimum, legacy.maximum, legacy.exclusive_maximum) == (1, True, 9, False)
        modern = field_of(program, "A", "modern")
        assert (modern.minimum, modern.exclusive_minimum, modern.maximum, modern.exclusive_maximum) == (0.5, True, 10, True)
        assert field_of(program, "A", "override").pattern == "^b$"

    def test_hoists_inline_object_and_enum(self):
        program = lower(document({
            "Order": {
                "type": "object",
                "properties": {
                    "address": {"type": "object", "properties": {"city": {"type": "string"}}},
                    "status": {"type": "string", "enum": ["open", "closed"]},
                    "items": {
                        "type": "array",
                        "items": {"type": "object", "properties": {"sku": {"type": "string"}}},
                    },
                },
            },
        }))
        assert [c.name for c in program.components] == ["Order", "OrderAddress", "OrderItemsItem", "OrderStatusEnum"]
        assert field_of(program, "Order", "address").schema == Named("OrderAddress")
        assert field_of(program, "Order", "status").schema == Named("OrderStatusEnum")
        assert field_of(program, "Order", "items").schema == Array(element=Named("OrderItemsItem"))
        assert program.component("OrderAddress").source == "#/components/schemas/Order/properties/address"

    def test_free_form_object_stays_inline(self):
        program = lower(document({"A": {"type": "object", "properties": {"meta": {"type": "object"}}}}))
        assert field_of(program, "A", "meta").schema == Object()
        assert [c.name for c in program.components] == ["A"]

    def test_enum_tags(self):
        program = lower(document({
            "Rate": {"type": "number", "enum": [1, -2, 2.5]},
            "Flag": {"enum": [True, False]},
            "Mode": {"type": "string", "enum": ["fast-mode", "", None]},
        }))
        rate = program.component("Rate").schema
        assert isinstance(rate, Enum)
        assert rate.base == Primitive(PrimitiveKind.FLOAT)
        assert [m.tag_name for m in rate.members] == ["1", "Minus2", "2_5"]
        flag = program.component("Flag").schema
        assert flag.base.kind is PrimitiveKind.BOOL
        assert [m.tag_name for m in flag.members] == ["True", "False"]
        mode = program.component("Mode").schema
        assert [(m.tag_name, m.literal) for m in mode.members] == [("FastMode", "fast-mode"), ("Empty", "")]

    def test_enum_mixed_types(self):
        with pytest.raises(SchemaInvalid, match="share a primitive base type"):
            lower(document({"Bad": {"enum": ["a", 1]}}))

    def test_enum_member_type_mismatch(self):
        with pytest.raises(SchemaInvalid, match="does not match the base type"):
            lower(document({"Bad": {"type": "integer", "enum": [1, "two"]}}))

    def test_enum_tag_collision(self):
        with pytest.raises(NameCollision) as info:
            lower(document({"Bad": {"type": "string", "enum": ["a-b", "a_b"]}}))
        assert info.value.name == "AB"

    def test_domain_format_enum_is_not_an_enum(self):
        program = lower(document({"Cur": {"type": "string", "format": "iso4217-currency-code", "enum": ["USD"]}}))
        assert program.component("Cur").schema == Primitive(PrimitiveKind.CURRENCY_CODE, "iso4217-currency-code")

    def test_compositions(self):
        program = lower(document({
            "Base": {"type": "object", "properties": {"id": {"type": "string"}}},
            "Child": {"allOf": [{"$ref": "#/components/schemas/Base"}, {"description": "more"}]},
            "Either": {"oneOf": [{"$ref": "#/components/schemas/Base"}, {"type": "string"}]},
            "Both": {"allOf": [{"$ref": "#/components/schemas/Base"}, {"$ref": "#/components/schemas/Either"}]},
        }))
        assert program.component("Child").schema == Named("Base")
        assert program.component("Either").schema == OneOf((Named("Base"), Primitive(PrimitiveKind.STRING)))
        assert isinstance(program.component("Both").schema, AllOf)

    def test_go_type(self):
        program = lower(document({
            "Price": {
                "type": "string",
                "x-go-type": "github.com/shopspring/decimal.Decimal",
                "x-go-type-string-parse": "github.com/shopspring/decimal.NewFromString",
                "x-go-skip-validation": True,
            },
        }))
        assert program.component("Price").schema == Custom(
            target_type=QualifiedName("github.com/shopspring/decimal", "Decimal"),
            parse_fn=QualifiedName("github.com/shopspring/decimal", "NewFromString"),
            validate=False,
        )

    def test_additional_properties(self):
        program = lower(document({
            "Labels": {"type": "object", "additionalProperties": {"type": "string"}},
            "Anything": {"type": "object", "additionalProperties": True},
            "Typed": {"type": "object", "x-go-map-type": "map[string][]int"},
        }))
        labels = program.component("Labels").schema
        assert labels.additional.allowed
        assert labels.additional.value == Primitive(PrimitiveKind.STRING)
        assert program.component("Anything").schema.additional.value is None
        assert program.component("Typed").schema.additional.override.value_is_slice

    def test_recursive_component(self):
        program = lower(document({
            "Node": {
                "type": "object",
                "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}}},
            },
        }))
        assert field_of(program, "Node", "children").schema == Array(element=Named("Node"))
        assert not field_of(program, "Node", "children").pointer

    def test_self_reference_becomes_pointer(self):
        program = lower(document({
            "Item": {
                "type": "object",
                "required": ["parent"],
                "properties": {
                    "parent": {"$ref": "#/components/schemas/Item"},
                    "label": {"type": "string"},
                },
            },
        }))
        assert field_of(program, "Item", "parent").pointer
        assert field_of(program, "Item", "parent").required
        assert not field_of(program, "Item", "label").pointer

    def test_mutual_references_become_pointers(self):
        program = lower(document({
            "A": {"type": "object", "properties": {"b": {"$ref": "#/components/schemas/B"}}},
            "B": {"type": "object", "properties": {"a": {"$ref": "#/components/schemas/AliasA"}}},
            "AliasA": {"$ref": "#/components/schemas/A"},
            "C": {"type": "object", "properties": {"a": {"$ref": "#/components/schemas/A"}}},
        }))
        assert field_of(program, "A", "b").pointer
        assert field_of(program, "B", "a").pointer
        assert not field_of(program, "C", "a").pointer

    def test_properties_are_sorted(self):
        program = lower(document({
            "Pair": {"type": "object", "properties": {"b": {"type": "string"}, "a": {"type": "integer"}}},
        }))
        assert [f.name for f in program.component("Pair").schema.fields] == ["a", "b"]

    def test_referenced_constraints(self):
        program = lower(document({
            "Code": {"type": "string", "pattern": "^[A-Z]{3}$", "minLength": 3},
            "Score": {"type": "integer", "minimum": 1, "maximum": 5, "exclusiveMaximum": True},
            "Entry": {
                "type": "object",
                "required": ["code"],
                "properties": {
                    "code": {"$ref": "#/components/schemas/Code"},
                    "score": {"$ref": "#/components/schemas/Score"},
                },
            },
        }))
        code = field_of(program, "Entry", "code")
        assert code.schema == Named("Code")
        assert code.pattern == "^[A-Z]{3}$"
        assert code.min_length == 3
        score = field_of(program, "Entry", "score")
        assert (score.minimum, score.maximum, score.exclusive_maximum) == (1, 5, True)

    def test_local_constraints_override_referenced_ones(self):
        program = lower(document({
            "Code": {"type": "string", "maxLength": 10},
            "Entry": {
                "type": "object",
                "properties": {"code": {"$ref": "#/components/schemas/Code", "maxLength": 4}},
            },
        }))
        assert field_of(program, "Entry", "code").max_length == 4

    def test_type_list_nullable(self):
        program = lower(document({"A": {"type": "object", "properties": {"v": {"type": ["string", "null"]}}}}))
        field = field_of(program, "A", "v")
        assert field.nullable and field.pointer
        assert field.schema == Primitive(PrimitiveKind.STRING)


class TestComponentDiagnostics:
    def test_component_name_collision(self):
        with pytest.raises(NameCollision) as info:
            lower(document({"user_id": {"type": "string"}, "userId": {"type": "string"}}))
        assert info.value.name == "UserID"
        assert info.value.first == "#/components/schemas/userId"
        assert info.value.second == "#/components/schemas/user_id"

    def test_field_name_collision(self):
        with pytest.raises(NameCollision, match="object fields"):
            lower(document({"A": {"type": "object", "properties": {"a_b": {"type": "string"}, "aB": {"type": "string"}}}}))

    def test_hoisted_name_collides_with_component(self):
        with pytest.raises(NameCollision) as info:
            lower(document({
                "A": {"type": "object", "properties": {"b": {"type": "object", "properties": {"c": {"type": "string"}}}}},
                "AB": {"type": "string"},
            }))
        assert info.value.name == "AB"

    def test_extension_mismatch(self):
        with pytest.raises(ExtensionTypeMismatch) as info:
            lower(document({"A": {"type": "object", "properties": {"v": {"type": "string", "x-go-pointer": "yes"}}}}))
        assert info.value.schema_path == "#/components/schemas/A/properties/v"

    def test_unknown_ref(self):
        with pytest.raises(SchemaInvalid, match="does not name a component schema"):
            lower(document({"A": {"$ref": "#/components/schemas/Missing"}}))

    def test_invalid_identifier(self):
        with pytest.raises(SchemaInvalid, match="not a valid identifier"):
            lower(document({"123": {"type": "string"}}))

    def test_negative_length(self):
        with pytest.raises(SchemaInvalid, match="non-negative integer"):
            lower(document({"A": {"type": "object", "properties": {"v": {"type": "string", "minLength": -1}}}}))

    def test_bad_pointer_in_inline_ref(self):
        with pytest.raises(LoadFailed):
            lower(document({"A": {"$ref": "#/definitions/Missing"}}))


def operation_document(operation, path="/items", method="get", schemas=None, **extra):
    return document(schemas or {}, {path: {method: operation}}, **extra)


class TestOperations:
    def test_names_tags_and_order(self):
        program = lower(document({}, {
            "/b": {"get": {"tags": ["beta things"], "responses": {}}},
            "/a": {"post": {"responses": {}}, "get": {"tags": ["alpha"], "responses": {}}},
        }))
        assert [(op.name, op.tag) for op in program.operations] == [
            ("GetA", "Alpha"),
            ("PostA", "Default"),
            ("GetB", "BetaThings"),
        ]
        assert program.tags == ("Alpha", "BetaThings", "Default")

    def test_operation_name_collision(self):
        with pytest.raises(NameCollision, match="operations"):
            lower(document({}, {
                "/a-b": {"get": {"responses": {}}},
                "/a_b": {"get": {"responses": {}}},
            }))

    def test_parameters(self):
        program = lower(document({}, {
            "/users/{id}": {
                "parameters": [{"name": "id", "in": "path", "schema": {"type": "integer"}}],
                "get": {
                    "parameters": [
                        {"name": "include", "in": "query", "schema": {"type": "string", "pattern": "^a"}},
                        {"name": "tags", "in": "query", "schema": {"type": "array", "items": {"type": "string"}}},
                        {"name": "X-Trace", "in": "header", "required": True, "schema": {"type": "string"}},
                    ],
                    "responses": {},
                },
            },
        }))
        operation = program.operations[0]
        (path,) = operation.parameters_in(ParameterLocation.PATH)
        assert path.field.ident == "ID" and path.field.required and not path.field.pointer
        include, tags = operation.parameters_in(ParameterLocation.QUERY)
        assert include.field.pointer and include.field.pattern == "^a"
        assert not tags.field.pointer
        (header,) = operation.parameters_in(ParameterLocation.HEADER)
        assert header.field.ident == "XTrace" and header.field.required

    def test_operation_parameter_overrides_path_level(self):
        program = lower(document({}, {
            "/items": {
                "parameters": [{"name": "q", "in": "query", "schema": {"type": "string"}}],
                "get": {"parameters": [{"name": "q", "in": "query", "schema": {"type": "integer"}}], "responses": {}},
            },
        }))
        (parameter,) = program.operations[0].parameters
        assert parameter.field.schema == Primitive(PrimitiveKind.INT)

    def test_parameter_ref(self):
        doc = document({}, {"/items": {"get": {"parameters": [{"$ref": "#/components/parameters/Limit"}], "responses": {}}}})
        doc.data["components"]["parameters"] = {
            "Limit": {"name": "limit", "in": "query", "schema": {"type": "integer", "maximum": 100}},
        }
        (parameter,) = lower(doc).operations[0].parameters
        assert parameter.location is ParameterLocation.QUERY
        assert parameter.field.ident == "Limit"
        assert parameter.field.maximum == 100

    def test_parameter_schema_ref_keeps_constraints(self):
        program = lower(operation_document(
            {"parameters": [{"name": "code", "in": "query", "schema": {"$ref": "#/components/schemas/Code"}}], "responses": {}},
            schemas={"Code": {"type": "string", "pattern": "^[A-Z]{3}$", "maxLength": 3}},
        ))
        (parameter,) = program.operations[0].parameters
        assert parameter.field.schema == Named("Code")
        assert parameter.field.pattern == "^[A-Z]{3}$"
        assert parameter.field.max_length == 3

    def test_missing_parameter_ref(self):
        with pytest.raises(LoadFailed, match="cannot be resolved"):
            lower(operation_document({"parameters": [{"$ref": "#/components/parameters/Nope"}], "responses": {}}))

    def test_cookie_parameter_rejected(self):
        with pytest.raises(SchemaInvalid) as info:
            lower(operation_document({
                "parameters": [{"name": "session", "in": "cookie", "schema": {"type": "string"}}],
                "responses": {},
            }))
        assert "Cookie parameters are not parsed" in info.value.hints[0]

    def test_object_parameter_rejected(self):
        with pytest.raises(SchemaInvalid, match="cannot be parsed from a string"):
            lower(operation_document({
                "parameters": [{"name": "f", "in": "query", "schema": {"type": "object", "properties": {"a": {"type": "string"}}}}],
                "responses": {},
            }))

    def test_inline_parameter_enum_is_hoisted(self):
        program = lower(operation_document({
            "parameters": [{"name": "sort", "in": "query", "schema": {"type": "string", "enum": ["asc", "desc"]}}],
            "responses": {},
        }))
        assert program.component("GetItemsSortEnum") is not None
        assert program.operations[0].parameters[0].field.schema == Named("GetItemsSortEnum")

    def test_request_bodies(self):
        program = lower(operation_document(
            {
                "requestBody": {
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/Item"}},
                        "application/xml": {"schema": {"type": "object", "properties": {"a": {"type": "string"}}}},
                        "application/octet-stream": {"schema": {"type": "string", "format": "binary"}},
                    },
                },
                "responses": {},
            },
            method="post",
            schemas={"Item": {"type": "object", "properties": {"a": {"type": "string"}}}},
        ))
        bodies = program.operations[0].bodies
        assert [(b.content_type, b.tag) for b in bodies] == [
            ("application/json", "ApplicationJson"),
            ("application/octet-stream", "ApplicationOctetStream"),
            ("application/xml", "ApplicationXml"),
        ]
        assert bodies[0].schema == Named("Item")
        assert bodies[2].schema == Named("PostItemsApplicationXmlRequestBody")
        assert program.component("PostItemsApplicationOctetStreamRequestBody").schema.kind is PrimitiveKind.BYTES

    def test_octet_stream_must_be_bytes(self):
        with pytest.raises(SchemaInvalid, match="raw bytes"):
            lower(operation_document({
                "requestBody": {"content": {"application/octet-stream": {"schema": {"type": "string"}}}},
                "responses": {},
            }, method="post"))

    def test_responses(self):
        program = lower(operation_document({
            "responses": {
                "default": {"description": "error"},
                "404": {"description": "missing"},
                200: {
                    "description": "ok",
                    "headers": {
                        "Content-Type": {"schema": {"type": "string"}},
                        "X-Rate-Limit": {"required": True, "schema": {"type": "integer"}},
                    },
                    "content": {"application/json": {"schema": {"type": "array", "items": {"type": "string"}}}},
                },
            },
        }))
        responses = program.operations[0].responses
        assert [(r.status, r.ident, r.numeric) for r in responses] == [
            ("200", "200", True),
            ("404", "404", True),
            ("default", "Default", False),
        ]
        ok = responses[0]
        assert [h.name for h in ok.headers] == ["X-Rate-Limit"]
        assert ok.headers[0].required
        assert ok.content[0].schema == Named("GetItems200ApplicationJsonResponseBody")

    def test_security(self):
        program = lower(document(
            {},
            {
                "/a": {"get": {"responses": {}}},
                "/b": {"get": {"security": [], "responses": {}}},
                "/c": {"get": {"security": [{"key": [], "basic": []}, {"oauth": ["read"]}], "responses": {}}},
                "/d": {"get": {"x-go-skip-security-check": True, "responses": {}}},
            },
            security=[{"bearer": []}],
            securitySchemes={
                "bearer": {"type": "http", "scheme": "bearer"},
                "basic": {"type": "http", "scheme": "basic"},
                "key": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
                "oauth": {"type": "oauth2", "flows": {}},
            },
        ))
        by_name = {op.name: op for op in program.operations}
        assert by_name["GetA"].security == (SecurityRequirement(("bearer",)),)
        assert by_name["GetB"].security == ()
        assert by_name["GetC"].security == (SecurityRequirement(("basic", "key")), SecurityRequirement(("oauth",)))
        assert by_name["GetD"].skip_security

        schemes = {s.key: s for s in program.security_schemes}
        assert schemes["bearer"].kind is SecurityKind.HTTP_BEARER
        assert schemes["basic"].kind is SecurityKind.HTTP_BASIC
        assert schemes["key"].parameter_name == "X-API-Key"
        assert schemes["oauth"].kind is SecurityKind.OAUTH2
        assert [s.ident for s in program.security_schemes] == ["Basic", "Bearer", "Key", "Oauth"]

    def test_unknown_security_scheme(self):
        with pytest.raises(SchemaInvalid) as info:
            lower(operation_document({"security": [{"missing": []}], "responses": {}}))
        assert info.value.context["scheme"] == "missing"

    def test_unsupported_api_key_location(self):
        with pytest.raises(SchemaInvalid, match="unsupported location"):
            lower(document({}, {}, securitySchemes={"k": {"type": "apiKey", "in": "body", "name": "k"}}))
