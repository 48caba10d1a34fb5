"""
Type emitter - renders the component table into the components file.

Each component becomes one of:
- an object DTO with an optional shadow struct, decoder and validator
- an enum newtype with constants, Check() and a decoder
- a named map type
- a type alias for everything else
"""

from __future__ import annotations

from typing import Any, Final

from ..shared.naming import decapitalize
from .gotypes import STRING_KINDS, TypeMapper, go_literal, go_raw_string
from .ir import Component, Custom, Enum, Field, Object, Program
from .sink import CodeBlock, CodeSink, align
from .validation import TRIMMABLE_KINDS, Validators, render_struct_validation

# RequestProcessingResultType constants, in iota order
PROCESSING_RESULTS: Final[tuple[str, ...]] = (
    "ParseSucceed",
    "BodyUnmarshalFailed",
    "BodyValidationFailed",
    "HeaderParseFailed",
    "HeaderValidationFailed",
    "QueryParseFailed",
    "QueryValidationFailed",
    "PathParseFailed",
    "PathValidationFailed",
    "SecurityParseFailed",
    "SecurityCheckFailed",
)

RUNTIME_DECLARATIONS: Final[tuple[str, ...]] = (
    "ErrRequiredFieldMissing",
    "ErrRequiredFieldNull",
    "ErrInvalidEnumValue",
    "ErrRegexNotMatched",
    "ErrValueNotTrimmed",
    "FieldError",
    "requiredFieldError",
    "CheckTrimmed",
    "RequestProcessingResultType",
    "RequestProcessingResult",
    "NewRequestProcessingResult",
    *PROCESSING_RESULTS,
)

RUNTIME_IMPORTS: Final[tuple[str, ...]] = ("encoding/json", "errors", "fmt", "strings")


def doc_comment(description: str) -> list[str]:
    return [f"// {line}".rstrip() for line in description.strip().splitlines()]


class ComponentEmitter:
    """Emits every component of a program into the components sink."""

    def __init__(
        self,
        program: Program,
        mapper: TypeMapper,
        validators: Validators,
        sink: CodeSink,
        runtime_template: Any,
    ) -> None:
        self.program = program
        self.mapper = mapper
        self.validators = validators
        self.sink = sink
        self.runtime_template = runtime_template
        self._regexes: dict[str, str] = {}

    def emit(self) -> None:
        for import_path in RUNTIME_IMPORTS:
            self.sink.use(import_path)
        for name in RUNTIME_DECLARATIONS:
            self.sink.declare(name, "runtime")
        self.sink.add(self.runtime_template.render(result_types=PROCESSING_RESULTS))

        for component in self.program.components:
            self.emit_component(component)

    def emit_component(self, component: Component) -> None:
        """Emit the declarations of one component."""
        self.sink.declare(component.name, component.source)
        schema = component.schema

        if isinstance(schema, Object) and schema.fields:
            self._emit_object(component, schema)
        elif isinstance(schema, Enum):
            self._emit_enum(component, schema)
        elif isinstance(schema, Object) and self.mapper.map_expr(schema, self.sink):
            code = CodeBlock().lines(doc_comment(component.description))
            code.line(f"type {component.name} {self.mapper.map_expr(schema, self.sink)}")
            self.sink.add(code)
        else:
            code = CodeBlock().lines(doc_comment(component.description))
            code.line(f"type {component.name} = {self.mapper.expr(schema, self.sink)}")
            self.sink.add(code)

    # -- objects ---------------------------------------------------------

    def _struct_rows(self, fields: tuple[Field, ...], shadow: bool) -> list[tuple[str, ...]]:
        rows = []
        for field in fields:
            tag = f'`json:"{field.name}{",omitempty" if field.omitempty else ""}"`'
            go_type = self._shadow_type(field) if shadow else self.mapper.field_type(field, self.sink)
            rows.append((field.ident, go_type, tag))
        return rows

    def _parse_fn(self, field: Field) -> Custom | None:
        resolved = self.mapper.resolve(field.schema)
        if isinstance(resolved, Custom) and resolved.parse_fn is not None:
            return resolved
        return None

    def _shadow_type(self, field: Field) -> str:
        pointer = self.mapper.is_pointer(field)
        if self._parse_fn(field) is not None:
            return "*string" if pointer or field.required else "string"
        public = self.mapper.field_type(field, self.sink)
        if field.required and not pointer:
            return "*" + public
        return public

    def _has_regex(self, field: Field) -> bool:
        return field.pattern is not None and self.mapper.primitive_kind(field.schema) in STRING_KINDS

    def _is_trimmed(self, field: Field) -> bool:
        return field.trimmable and self.mapper.primitive_kind(field.schema) in TRIMMABLE_KINDS

    def needs_decoder(self, schema: Object) -> bool:
        return any(
            field.required
            or self._has_regex(field)
            or self._is_trimmed(field)
            or self._parse_fn(field) is not None
            for field in schema.fields
        )

    def _regex_var(self, owner: str, field: Field) -> str:
        pattern = field.pattern or ""
        if pattern not in self._regexes:
            name = decapitalize(f"{owner}{field.ident}Regex")
            self.sink.declare(name, f"{owner}.{field.ident}")
            self.sink.add(f"var {name} = {self.sink.use('regexp')}.MustCompile({go_raw_string(pattern)})")
            self._regexes[pattern] = name
        return self._regexes[pattern]

    def _emit_object(self, component: Component, schema: Object) -> None:
        name = component.name
        decoder = self.needs_decoder(schema)
        regexes = {f.ident: self._regex_var(name, f) for f in schema.fields if self._has_regex(f)}

        if decoder:
            shadow = decapitalize(name)
            self.sink.declare(shadow, component.source)
            code = CodeBlock()
            with code.block(f"type {shadow} struct"):
                code.lines(align(self._struct_rows(schema.fields, shadow=True)))
            self.sink.add(code)

        code = CodeBlock().lines(doc_comment(component.description))
        with code.block(f"type {name} struct"):
            code.lines(align(self._struct_rows(schema.fields, shadow=False)))
        self.sink.add(code)

        if decoder:
            self.sink.add(self._decoder(name, schema, regexes))

        if not schema.skip_validation and self.validators.has_validator(name):
            self.sink.add(self._validator(name, schema))

    def _decoder(self, name: str, schema: Object, regexes: dict[str, str]) -> CodeBlock:
        json_pkg = self.sink.use("encoding/json")
        required = [f for f in schema.fields if f.required]
        code = CodeBlock()
        with code.block(f"func (body *{name}) UnmarshalJSON(data []byte) error"):
            if required:
                code.line(f"var raw map[string]{json_pkg}.RawMessage")
                with code.block(f"if err := {json_pkg}.Unmarshal(data, &raw); err != nil"):
                    code.line("return err")
                code.blank()

            code.line(f"var value {decapitalize(name)}")
            with code.block(f"if err := {json_pkg}.Unmarshal(data, &value); err != nil"):
                code.line("return err")

            if required:
                code.blank()
            for field in required:
                with code.block(f"if value.{field.ident} == nil"):
                    code.line(f'return requiredFieldError(raw, "{field.name}")')

            code.blank()
            for field in schema.fields:
                self._assign(code, field)

            for field in schema.fields:
                if field.ident in regexes:
                    self._regex_check(code, field, regexes[field.ident])

            code.blank()
            code.line("return nil")
        return code

    def _assign(self, code: CodeBlock, field: Field) -> None:
        pointer = self.mapper.is_pointer(field)
        # The shadow holds a pointer whenever the public field does or the field is required
        shadow_pointer = pointer or field.required
        source = f"value.{field.ident}"
        target = f"body.{field.ident}"
        custom = self._parse_fn(field)

        if custom is not None:
            parse = self.sink.qual(custom.parse_fn.package, custom.parse_fn.name)
            argument = f"*{source}" if shadow_pointer else source
            if field.required:
                header = ""
            elif pointer:
                header = f"if {source} != nil"
            else:
                header = f'if {source} != ""'
            with code.block(header):
                code.line(f"parsed, err := {parse}({argument})")
                with code.block("if err != nil"):
                    code.line(f'return &FieldError{{Field: "{field.name}", Err: err}}')
                code.line(f"{target} = &parsed" if pointer else f"{target} = parsed")
            return

        if self._is_trimmed(field):
            trim = f"{self.sink.use('strings')}.TrimSpace"
            if pointer:
                with code.block(f"if {source} != nil"):
                    code.line(f"trimmed := {trim}(*{source})")
                    code.line(f"{target} = &trimmed")
            elif field.required:
                code.line(f"{target} = {trim}(*{source})")
            else:
                code.line(f"{target} = {trim}({source})")
            return

        if field.required and not pointer:
            code.line(f"{target} = *{source}")
        else:
            code.line(f"{target} = {source}")

    def _regex_check(self, code: CodeBlock, field: Field, regex: str) -> None:
        fmt = self.sink.use("fmt")
        target = f"body.{field.ident}"
        if self.mapper.is_pointer(field):
            condition = f"{target} != nil && !{regex}.MatchString(string(*{target}))"
        elif field.required:
            condition = f"!{regex}.MatchString(string({target}))"
        else:
            condition = f'{target} != "" && !{regex}.MatchString(string({target}))'
        code.blank()
        with code.block(f"if {condition}"):
            code.line(
                f'return &FieldError{{Field: "{field.name}", Err: '
                f'{fmt}.Errorf("%w: %s", ErrRegexNotMatched, {regex}.String())}}'
            )

    def _validator(self, name: str, schema: Object) -> CodeBlock:
        call = render_struct_validation(
            self.validators,
            [(field, field.ident) for field in schema.fields],
            "body",
            self.sink,
        )
        code = CodeBlock()
        with code.block(f"func (body {name}) Validate() error"):
            if call is None:
                code.line("return nil")
            else:
                code.line("return " + call[0])
                code.lines(call[1:])
        return code

    # -- enums -----------------------------------------------------------

    def _emit_enum(self, component: Component, schema: Enum) -> None:
        name = component.name
        kind = schema.base.kind
        base = self.mapper.expr(schema.base, self.sink)
        fmt = self.sink.use("fmt")
        json_pkg = self.sink.use("encoding/json")

        constants = []
        for member in schema.members:
            constant = f"{name}{member.tag_name}"
            self.sink.declare(constant, f"{component.source}/enum")
            constants.append((constant, name, f"= {go_literal(member.literal, kind)}"))

        code = CodeBlock().lines(doc_comment(component.description))
        code.line(f"type {name} {base}")
        self.sink.add(code)

        code = CodeBlock()
        code.line("const (")
        with code.indented():
            code.lines(align(constants))
        code.line(")")
        self.sink.add(code)

        code = CodeBlock()
        with code.block(f"func (enum {name}) Check() error"):
            code.line("switch enum {")
            code.line(f"case {', '.join(c[0] for c in constants)}:")
            with code.indented():
                code.line("return nil")
            code.line("}")
            code.blank()
            code.line(
                f'return {fmt}.Errorf("%w: invalid %s enum value \'%v\'", ErrInvalidEnumValue, "{name}", enum)'
            )
        self.sink.add(code)

        code = CodeBlock()
        with code.block(f"func (enum *{name}) UnmarshalJSON(data []byte) error"):
            code.line(f"var value {base}")
            with code.block(f"if err := {json_pkg}.Unmarshal(data, &value); err != nil"):
                code.line("return err")
            code.blank()
            code.line(f"enumValue := {name}(value)")
            with code.block("if err := enumValue.Check(); err != nil"):
                code.line("return err")
            code.blank()
            code.line("*enum = enumValue")
            code.blank()
            code.line("return nil")
        self.sink.add(code)


def emit_components(
    program: Program,
    mapper: TypeMapper,
    validators: Validators,
    sink: CodeSink,
    runtime_template: Any,
) -> CodeSink:
    """Fill ``sink`` with the component declarations of ``program``."""
    ComponentEmitter(program, mapper, validators, sink, runtime_template).emit()
    return sink

