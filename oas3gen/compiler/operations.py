"""
Operation emitter - request DTOs, parsers, handlers and response builders.

For every operation the router file receives:
- a request DTO grouping path, query and header parameters with the body
- a parser running security, parameter, body and validation steps in order
- a handler calling the service and writing its response
- a response interface with a fluent builder cascade:
  ResponseBuilder() -> StatusCodeNNN() -> [Headers()] -> [<ContentType>() -> Body()] -> Build()
"""

from __future__ import annotations

import re
from typing import Callable, Final

from ..shared.naming import decapitalize
from .gotypes import CHI, COUNTRY, CURRENCY, EMAIL, STRING_KINDS, UUID, VALIDATION, TypeMapper, go_raw_string, go_string
from .ir import (
    LOCATION_ORDER,
    Array,
    Custom,
    Enum,
    Field,
    MediaType,
    Operation,
    Parameter,
    ParameterLocation,
    PrimitiveKind,
    Program,
    Response,
    SchemaIR,
)
from .security import SecurityEmitter, runtime_prefix
from .sink import CodeBlock, CodeSink, align
from .validation import Validators, render_struct_validation

OCTET_STREAM: Final = "application/octet-stream"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Fail = Callable[[CodeBlock, str], None]


def is_xml(content_type: str) -> bool:
    return content_type in ("application/xml", "text/xml") or content_type.endswith("+xml")


class OperationEmitter:
    """Emits the router-file declarations of single operations."""

    def __init__(
        self,
        program: Program,
        mapper: TypeMapper,
        validators: Validators,
        security: SecurityEmitter,
        sink: CodeSink,
    ) -> None:
        self.program = program
        self.mapper = mapper
        self.validators = validators
        self.security = security
        self.sink = sink
        self.rt = runtime_prefix(sink, mapper.components_path)
        self._regexes: dict[str, str] = {}

    # -- naming ----------------------------------------------------------

    @staticmethod
    def variants(operation: Operation) -> list[tuple[str, MediaType | None]]:
        """One (name suffix, body) pair per request content type."""
        if len(operation.bodies) > 1:
            return [(media.tag, media) for media in operation.bodies]
        return [("", operation.bodies[0] if operation.bodies else None)]

    @staticmethod
    def source(operation: Operation) -> str:
        return f"{operation.method.upper()} {operation.path}"

    def service_methods(self, operation: Operation) -> list[dict[str, object]]:
        context = self.sink.use("context")
        doc = [f"// {line}".rstrip() for line in operation.summary.splitlines()]
        return [
            {
                "doc": doc,
                "signature": (
                    f"{operation.name}{suffix}(ctx {context}.Context, "
                    f"request {operation.name}{suffix}Request) {operation.name}Response"
                ),
            }
            for suffix, _ in self.variants(operation)
        ]

    @staticmethod
    def route(operation: Operation) -> dict[str, str]:
        return {
            "method": operation.method.capitalize(),
            "path": operation.path,
            "handler": decapitalize(operation.name),
        }

    # -- emission --------------------------------------------------------

    def emit(self, operation: Operation, router: str) -> None:
        """Emit every declaration of one operation."""
        variants = self.variants(operation)
        for suffix, body in variants:
            self._request_type(operation, suffix, body)
            self._parser(operation, suffix, body, router)
            self._handler(operation, suffix, router)
        if len(variants) > 1:
            self._dispatcher(operation, router)
        self._responses(operation)

    def _hook(self, code: CodeBlock, hook: str, arguments: str) -> None:
        with code.block(f"if router.hooks.{hook} != nil"):
            code.line(f"router.hooks.{hook}({arguments})")

    def _errorf(self, template: str, *arguments: str) -> str:
        return f"{self.sink.use('fmt')}.Errorf({', '.join([go_string(template), *arguments])})"

    def _fail(self, code: CodeBlock, result: str, error: str, hook: str, arguments: str) -> None:
        code.line(f"request.ProcessingResult = {self.rt}NewRequestProcessingResult({self.rt}{result}, {error})")
        self._hook(code, hook, arguments)
        code.blank()
        code.line("return")

    def _request_type(self, operation: Operation, suffix: str, body: MediaType | None) -> None:
        name = f"{operation.name}{suffix}Request"
        self.sink.declare(name, self.source(operation))

        code = CodeBlock()
        with code.block(f"type {name} struct"):
            for location in LOCATION_ORDER:
                parameters = operation.parameters_in(location)
                if not parameters:
                    continue
                with code.block(f"{location.title} struct"):
                    code.lines(align([
                        (p.field.ident, self.mapper.field_type(p.field, self.sink)) for p in parameters
                    ]))
            if body is not None:
                code.line(f"Body {self.mapper.expr(body.schema, self.sink)}")
            code.blank()
            code.line(f"ProcessingResult {self.rt}RequestProcessingResult")
        self.sink.add(code)

    def _parser(self, operation: Operation, suffix: str, body: MediaType | None, router: str) -> None:
        http = self.sink.use("net/http")
        name = f"{operation.name}{suffix}"
        code = CodeBlock()
        with code.block(f"func (router *{router}) parse{name}Request(r *{http}.Request) (request {name}Request)"):
            code.line(f"request.ProcessingResult = {self.rt}NewRequestProcessingResult({self.rt}ParseSucceed, nil)")

            requirements = self.security.requirements(operation)
            if requirements is not None:
                code.blank()
                check = f'checkSecurity(r, router.hooks, router.processors, "{operation.name}", {requirements})'
                with code.block(f"if result, ok := {check}; !ok"):
                    code.line("request.ProcessingResult = result")
                    code.blank()
                    code.line("return")

            for location in LOCATION_ORDER:
                parameters = operation.parameters_in(location)
                if parameters:
                    self._parse_location(code, operation, location, parameters)

            if body is not None:
                self._parse_body(code, operation, body)

            code.blank()
            self._hook(code, "RequestParseCompleted", f'r, "{operation.name}"')
            code.blank()
            code.line("return")
        self.sink.add(code)

    # -- parameters ------------------------------------------------------

    def _parse_location(
        self,
        code: CodeBlock,
        operation: Operation,
        location: ParameterLocation,
        parameters: tuple[Parameter, ...],
    ) -> None:
        title = location.title
        code.blank()
        if location is ParameterLocation.QUERY:
            code.line("query := r.URL.Query()")
            code.blank()

        for parameter in parameters:
            self._parse_parameter(code, operation, parameter)
            code.blank()

        self._hook(code, f"Request{title}ParseCompleted", f'r, "{operation.name}"')

        call = render_struct_validation(
            self.validators,
            [(p.field, p.field.ident) for p in parameters],
            f"request.{title}",
            self.sink,
        )
        if call is None:
            return

        code.blank()
        code.line(f"if err := {call[0]}")
        with code.indented():
            code.lines([line.lstrip("\t") for line in call[1:-1]])
        code.line("); err != nil {")
        with code.indented():
            self._fail(
                code,
                f"{title}ValidationFailed",
                "err",
                f"Request{title}ValidationFailed",
                f'r, "{operation.name}", request.ProcessingResult',
            )
        code.line("}")

    def _parse_parameter(self, code: CodeBlock, operation: Operation, parameter: Parameter) -> None:
        field = parameter.field
        location = parameter.location
        title = location.title
        name = go_string(field.name)
        target = f"request.{title}.{field.ident}"

        def fail(block: CodeBlock, error: str) -> None:
            self._fail(
                block,
                f"{title}ParseFailed",
                error,
                f"Request{title}ParseFailed",
                f'r, "{operation.name}", {name}, request.ProcessingResult',
            )

        def missing() -> str:
            return self._errorf(f"{location.value} parameter '%s' is required", name)

        if isinstance(self.mapper.resolve(field.schema), Array):
            if field.required:
                with code.block(""):
                    code.line(f"values, ok := query[{name}]")
                    with code.block("if !ok"):
                        fail(code, missing())
                    code.blank()
                    code.line(f"{target} = values")
            else:
                with code.block(f"if values, ok := query[{name}]; ok"):
                    code.line(f"{target} = values")
            return

        if location is ParameterLocation.PATH:
            source = f"{self.sink.use(CHI)}.URLParam(r, {name})"
        elif location is ParameterLocation.QUERY:
            source = f"query.Get({name})"
        else:
            source = f"r.Header.Get({name})"

        if field.required:
            with code.block(""):
                code.line(f"value := {source}")
                with code.block('if value == ""'):
                    fail(code, missing())
                self._convert_and_assign(code, operation, parameter, target, fail)
        else:
            with code.block(f'if value := {source}; value != ""'):
                self._convert_and_assign(code, operation, parameter, target, fail)

    def _regex_var(self, operation: Operation, parameter: Parameter) -> str:
        pattern = parameter.field.pattern or ""
        if pattern not in self._regexes:
            name = decapitalize(f"{operation.name}{parameter.location.title}{parameter.field.ident}Regex")
            self.sink.declare(name, self.source(operation))
            self.sink.add(f"var {name} = {self.sink.use('regexp')}.MustCompile({go_raw_string(pattern)})")
            self._regexes[pattern] = name
        return self._regexes[pattern]

    def _convert_and_assign(
        self,
        code: CodeBlock,
        operation: Operation,
        parameter: Parameter,
        target: str,
        fail: Fail,
    ) -> None:
        field = parameter.field
        location = parameter.location.value
        name = go_string(field.name)

        if field.pattern is not None:
            regex = self._regex_var(operation, parameter)
            code.blank()
            with code.block(f"if !{regex}.MatchString(value)"):
                fail(code, self._errorf(
                    f"{location} parameter '%s' not matched by the '%s' regex", name, f"{regex}.String()",
                ))

        def wrap(error: str) -> str:
            return self._errorf(f"{location} parameter '%s': %w", name, error)

        code.blank()
        expression = self._convert(code, field.schema, fail, wrap)
        code.blank()
        if self.mapper.is_pointer(field):
            if not _IDENTIFIER.match(expression):
                code.line(f"converted := {expression}")
                expression = "converted"
            code.line(f"{target} = &{expression}")
        else:
            code.line(f"{target} = {expression}")

    def _convert(
        self,
        code: CodeBlock,
        schema: SchemaIR,
        fail: Fail,
        wrap: Callable[[str], str],
    ) -> str:
        """Emit the statements turning ``value`` into the schema's Go type.

        Returns:
            The Go expression holding the converted value.
        """
        resolved = self.mapper.resolve(schema)

        if isinstance(resolved, Enum):
            base = self._convert_primitive(code, resolved.base.kind, fail, wrap)
            code.line(f"enumValue := {self.mapper.expr(schema, self.sink)}({base})")
            with code.block("if err := enumValue.Check(); err != nil"):
                fail(code, wrap("err"))
            return "enumValue"

        if isinstance(resolved, Custom):
            if resolved.parse_fn is None:
                return f"{self.mapper.expr(schema, self.sink)}(value)"
            parse = self.sink.qual(resolved.parse_fn.package, resolved.parse_fn.name)
            code.line(f"parsed, err := {parse}(value)")
            with code.block("if err != nil"):
                fail(code, wrap("err"))
            return "parsed"

        kind = self.mapper.primitive_kind(schema)
        if kind is None:
            return "value"
        return self._convert_primitive(code, kind, fail, wrap)

    def _convert_primitive(
        self,
        code: CodeBlock,
        kind: PrimitiveKind,
        fail: Fail,
        wrap: Callable[[str], str],
    ) -> str:
        if kind in (PrimitiveKind.STRING, PrimitiveKind.TIME):
            return "value"
        if kind is PrimitiveKind.EMAIL:
            return f"{self.sink.use(EMAIL)}.Email(value)"
        if kind is PrimitiveKind.BYTES:
            return "[]byte(value)"
        if kind is PrimitiveKind.RAW_JSON:
            return f"{self.sink.use('encoding/json')}.RawMessage(value)"

        if kind is PrimitiveKind.INT:
            call, result = f"{self.sink.use('strconv')}.Atoi(value)", "parsed"
        elif kind is PrimitiveKind.FLOAT:
            call, result = f"{self.sink.use('strconv')}.ParseFloat(value, 64)", "parsed"
        elif kind is PrimitiveKind.BOOL:
            call, result = f"{self.sink.use('strconv')}.ParseBool(value)", "parsed"
        elif kind is PrimitiveKind.UUID:
            call, result = f"{self.sink.use(UUID)}.Parse(value)", "parsed"
        elif kind is PrimitiveKind.CURRENCY_CODE:
            call, result = f"{self.sink.use(CURRENCY)}.ByCodeStrErr(value)", "parsed.Code()"
        elif kind is PrimitiveKind.COUNTRY_A2:
            call, result = f"{self.sink.use(COUNTRY)}.ByAlpha2CodeStrErr(value)", "parsed.Alpha2Code()"
        else:
            call, result = f"{self.sink.use(COUNTRY)}.ByAlpha3CodeStrErr(value)", "parsed.Alpha3Code()"

        code.line(f"parsed, err := {call}")
        with code.block("if err != nil"):
            fail(code, wrap("err"))
        code.blank()
        return result

    # -- body ------------------------------------------------------------

    def _parse_body(self, code: CodeBlock, operation: Operation, body: MediaType) -> None:
        arguments = f'r, "{operation.name}", request.ProcessingResult'
        code.blank()

        if body.content_type == OCTET_STREAM:
            code.line(f"body, err := {self.sink.use('io')}.ReadAll(r.Body)")
            with code.block("if err != nil"):
                self._fail(code, "BodyUnmarshalFailed", "err", "RequestBodyUnmarshalFailed", arguments)
            code.blank()
            code.line("request.Body = body")
        else:
            codec = self.sink.use("encoding/xml" if is_xml(body.content_type) else "encoding/json")
            with code.block(f"if err := {codec}.NewDecoder(r.Body).Decode(&request.Body); err != nil"):
                self._fail(code, "BodyUnmarshalFailed", "err", "RequestBodyUnmarshalFailed", arguments)

        code.blank()
        self._hook(code, "RequestBodyUnmarshalCompleted", f'r, "{operation.name}"')

        if self.validators.validates(body.schema):
            code.blank()
            with code.block(f"if err := {self.sink.use(VALIDATION)}.Validate(request.Body); err != nil"):
                self._fail(code, "BodyValidationFailed", "err", "RequestBodyValidationFailed", arguments)

    # -- handlers --------------------------------------------------------

    def _handler(self, operation: Operation, suffix: str, router: str) -> None:
        http = self.sink.use("net/http")
        name = f"{operation.name}{suffix}"
        code = CodeBlock()
        with code.block(f"func (router *{router}) {decapitalize(name)}(w {http}.ResponseWriter, r *{http}.Request)"):
            code.line(f"request := router.parse{name}Request(r)")
            code.line(f"response := router.service.{name}(r.Context(), request)")
            code.blank()
            self._hook(code, "ServiceCompleted", f'r, "{operation.name}"')
            code.blank()
            code.line(f'writeResponse(w, r, router.hooks, "{operation.name}", response.raw())')
            code.blank()
            self._hook(code, "RequestProcessingCompleted", f'r, "{operation.name}"')
        self.sink.add(code)

    def _dispatcher(self, operation: Operation, router: str) -> None:
        http = self.sink.use("net/http")
        mime = self.sink.use("mime")
        handler = decapitalize(operation.name)
        default, *others = operation.bodies

        code = CodeBlock()
        with code.block(f"func (router *{router}) {handler}(w {http}.ResponseWriter, r *{http}.Request)"):
            code.line(f'mediaType, _, _ := {mime}.ParseMediaType(r.Header.Get("Content-Type"))')
            code.blank()
            code.line("switch mediaType {")
            for media in others:
                code.line(f"case {go_string(media.content_type)}:")
                with code.indented():
                    code.line(f"router.{handler}{media.tag}(w, r)")
            code.line("default:")
            with code.indented():
                code.line(f"router.{handler}{default.tag}(w, r)")
            code.line("}")
        self.sink.add(code)

    # -- responses -------------------------------------------------------

    def _builder_struct(self, name: str, source: str) -> None:
        self.sink.declare(name, source)
        code = CodeBlock()
        with code.block(f"type {name} struct"):
            code.line("response *Response")
        self.sink.add(code)

    def _stage(self, code: CodeBlock, receiver: str, method: str, next_stage: str, statements: list[str]) -> None:
        with code.block(f"func (builder *{receiver}) {method} *{next_stage}"):
            code.lines(statements)
            code.blank()
            code.line(f"return &{next_stage}{{response: builder.response}}")

    def _responses(self, operation: Operation) -> None:
        source = self.source(operation)
        public = f"{operation.name}Response"
        private = decapitalize(public)
        op = decapitalize(operation.name)
        http = self.sink.use("net/http")

        for name in (public, private, f"{operation.name}ResponseBuilder"):
            self.sink.declare(name, source)

        code = CodeBlock()
        with code.block(f"type {public} interface"):
            code.line(f"is{public}()")
            code.line("raw() *Response")
            code.line(f"WriteTo(w {http}.ResponseWriter) error")
        self.sink.add(code)

        code = CodeBlock()
        with code.block(f"type {private} struct"):
            code.line("*Response")
        self.sink.add(code)
        self.sink.add(f"func ({private}) is{public}() {{}}")

        entry = f"{op}StatusCodeResponseBuilder"
        code = CodeBlock()
        with code.block(f"func {operation.name}ResponseBuilder() *{entry}"):
            code.line(f"return &{entry}{{response: &Response{{}}}}")
        self.sink.add(code)

        self._builder_struct(entry, source)
        code = CodeBlock()
        for response in operation.responses:
            next_stage = self._next_after_status(op, response)
            if response.numeric:
                method, statement = f"StatusCode{response.ident}()", f"builder.response.statusCode = {response.status}"
            else:
                method, statement = f"StatusCode{response.ident}(code int)", "builder.response.statusCode = code"
            code.blank()
            self._stage(code, entry, method, next_stage, [statement])
        if code:
            self.sink.add(code)

        for response in operation.responses:
            self._response_stages(operation, op, response, private)

    @staticmethod
    def _next_after_status(op: str, response: Response) -> str:
        if response.headers:
            return f"{op}{response.ident}HeadersBuilder"
        if response.content:
            return f"{op}{response.ident}ContentTypeBuilder"
        return f"{op}{response.ident}ResponseAssembler"

    def _response_stages(self, operation: Operation, op: str, response: Response, private: str) -> None:
        source = f"{self.source(operation)} {response.status}"
        status = response.ident
        assembler = f"{op}{status}ResponseAssembler"
        after_headers = f"{op}{status}ContentTypeBuilder" if response.content else assembler

        if response.headers:
            headers_type = f"{operation.name}{status}Headers"
            self.sink.declare(headers_type, source)
            self.sink.add(self._headers_type(headers_type, response.headers))

            builder = f"{op}{status}HeadersBuilder"
            self._builder_struct(builder, source)
            code = CodeBlock()
            self._stage(
                code, builder, f"Headers(headers {headers_type})", after_headers,
                ["builder.response.headers = headers.toMap()"],
            )
            self.sink.add(code)

        if response.content:
            builder = f"{op}{status}ContentTypeBuilder"
            self._builder_struct(builder, source)
            code = CodeBlock()
            for media in response.content:
                code.blank()
                self._stage(
                    code, builder, f"{media.tag}()", f"{op}{status}{media.tag}BodyBuilder",
                    [f"builder.response.contentType = {go_string(media.content_type)}"],
                )
            self.sink.add(code)

            for media in response.content:
                body_builder = f"{op}{status}{media.tag}BodyBuilder"
                self._builder_struct(body_builder, source)
                code = CodeBlock()
                self._stage(
                    code, body_builder, f"Body(body {self.mapper.expr(media.schema, self.sink)})", assembler,
                    ["builder.response.body = body"],
                )
                self.sink.add(code)

        self._builder_struct(assembler, source)
        code = CodeBlock()
        with code.block(f"func (builder *{assembler}) Build() {operation.name}Response"):
            code.line(f"return {private}{{builder.response}}")
        self.sink.add(code)

    def _headers_type(self, name: str, headers: tuple[Field, ...]) -> CodeBlock:
        code = CodeBlock()
        with code.block(f"type {name} struct"):
            code.lines(align([(h.ident, self.mapper.field_type(h, self.sink)) for h in headers]))
        code.line()

        with code.block(f"func (headers {name}) toMap() map[string]string"):
            code.line("result := map[string]string{}")
            for header in headers:
                key = go_string(header.name)
                value = f"headers.{header.ident}"
                code.blank()
                if self.mapper.is_pointer(header):
                    with code.block(f"if {value} != nil"):
                        code.line(f"result[{key}] = {self.sink.use('fmt')}.Sprint(*{value})")
                elif self.mapper.primitive_kind(header.schema) in STRING_KINDS:
                    with code.block(f'if {value} != ""'):
                        code.line(f"result[{key}] = string({value})")
                else:
                    code.line(f"result[{key}] = {self.sink.use('fmt')}.Sprint({value})")
            code.blank()
            code.line("return result")
        return code
