"""Security scheme constants, extractors and the requirement check."""

from __future__ import annotations

from typing import Any

from .ir import Operation, Program, SecurityKind, SecurityScheme
from .sink import CodeBlock, CodeSink, align
from .gotypes import go_string

# Authorization header prefix per HTTP scheme
HTTP_PREFIXES = {
    SecurityKind.HTTP_BEARER: "Bearer ",
    SecurityKind.HTTP_BASIC: "Basic ",
}


def scheme_constant(scheme: SecurityScheme) -> str:
    return f"SecurityScheme{scheme.ident}"


def runtime_prefix(sink: CodeSink, components_path: str) -> str:
    """Qualifier prefix of the components runtime, empty inside the same package."""
    name = "RequestProcessingResult"
    return sink.qual(components_path, name)[: -len(name)]


class SecurityEmitter:
    """Emits the security surface of the router file."""

    def __init__(self, program: Program, sink: CodeSink, components_path: str, template: Any) -> None:
        self.program = program
        self.sink = sink
        self.components_path = components_path
        self.template = template
        self._schemes = {scheme.key: scheme for scheme in program.security_schemes}

    @property
    def enabled(self) -> bool:
        return bool(self._schemes)

    def emit(self) -> None:
        if not self.enabled:
            return

        for name in (
            "SecurityScheme",
            "SecuritySchemeExtractors",
            "securityProcessor",
            "NewSecurityProcessor",
            "NewCustomSecurityProcessor",
            "checkSecurity",
            "runSecurityProcessor",
        ):
            self.sink.declare(name, "#/components/securitySchemes")

        self.sink.add("type SecurityScheme string")

        rows = []
        for scheme in self.program.security_schemes:
            constant = scheme_constant(scheme)
            self.sink.declare(constant, f"#/components/securitySchemes/{scheme.key}")
            rows.append((constant, "SecurityScheme", f"= {go_string(scheme.key)}"))
        code = CodeBlock().line("const (")
        with code.indented():
            code.lines(align(rows))
        code.line(")")
        self.sink.add(code)

        self.sink.add(self._extractors())

        self.sink.use("fmt")
        self.sink.use("net/http")
        self.sink.add(self.template.render(rt=runtime_prefix(self.sink, self.components_path)))

    def _extractors(self) -> CodeBlock:
        http = self.sink.use("net/http")
        code = CodeBlock()
        with code.block(f"var SecuritySchemeExtractors = map[SecurityScheme]func(r *{http}.Request) (string, string, bool)", literal=True):
            for scheme in self.program.security_schemes:
                if scheme.kind in HTTP_PREFIXES or scheme.kind is SecurityKind.API_KEY:
                    with code.block(f"{scheme_constant(scheme)}: func(r *{http}.Request) (string, string, bool)", closer="},"):
                        self._extractor_body(code, scheme)
        return code

    def _extractor_body(self, code: CodeBlock, scheme: SecurityScheme) -> None:
        if scheme.kind in HTTP_PREFIXES:
            prefix = HTTP_PREFIXES[scheme.kind]
            code.line('value := r.Header.Get("Authorization")')
            with code.block(f'if !{self.sink.use("strings")}.HasPrefix(value, {go_string(prefix)})'):
                code.line('return "", "", false')
            code.blank()
            code.line(f"value = value[{len(prefix)}:]")
            code.blank()
            code.line('return "Authorization", value, value != ""')
            return

        name = go_string(scheme.parameter_name or "")
        if scheme.location == "cookie":
            code.line(f"cookie, err := r.Cookie({name})")
            with code.block("if err != nil"):
                code.line('return "", "", false')
            code.blank()
            code.line(f'return {name}, cookie.Value, cookie.Value != ""')
            return

        source = "r.URL.Query().Get" if scheme.location == "query" else "r.Header.Get"
        code.line(f"value := {source}({name})")
        code.blank()
        code.line(f'return {name}, value, value != ""')

    def requirements(self, operation: Operation) -> str | None:
        """Render the ``[][]SecurityScheme`` literal of an operation, if it is checked."""
        if operation.skip_security or not operation.security:
            return None
        alternatives = []
        for requirement in operation.security:
            names = ", ".join(scheme_constant(self._schemes[key]) for key in requirement.schemes)
            alternatives.append(f"{{{names}}}")
        return f"[][]SecurityScheme{{{', '.join(alternatives)}}}"
