"""
Router emitter - assembles the router file.

The file holds the hook record, the response runtime, the security surface,
one service interface and router per tag, the per-operation declarations,
and the canonical document as ``OpenAPISpec``.
"""

from __future__ import annotations

import json
from typing import Any, Final

from .gotypes import CHI
from .ir import Program
from .operations import OperationEmitter
from .security import SecurityEmitter, runtime_prefix
from .sink import CodeBlock, CodeSink, align

# Hook fields of the Hooks record, with their parameters
HOOKS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("RequestSecurityParseFailed", ("r", "operation", "result")),
    ("RequestSecurityParseCompleted", ("r", "operation")),
    ("RequestSecurityCheckFailed", ("r", "operation", "scheme", "result")),
    ("RequestSecurityCheckCompleted", ("r", "operation", "scheme")),
    ("RequestBodyUnmarshalFailed", ("r", "operation", "result")),
    ("RequestHeaderParseFailed", ("r", "operation", "parameter", "result")),
    ("RequestPathParseFailed", ("r", "operation", "parameter", "result")),
    ("RequestQueryParseFailed", ("r", "operation", "parameter", "result")),
    ("RequestBodyValidationFailed", ("r", "operation", "result")),
    ("RequestHeaderValidationFailed", ("r", "operation", "result")),
    ("RequestPathValidationFailed", ("r", "operation", "result")),
    ("RequestQueryValidationFailed", ("r", "operation", "result")),
    ("RequestBodyUnmarshalCompleted", ("r", "operation")),
    ("RequestHeaderParseCompleted", ("r", "operation")),
    ("RequestPathParseCompleted", ("r", "operation")),
    ("RequestQueryParseCompleted", ("r", "operation")),
    ("RequestParseCompleted", ("r", "operation")),
    ("RequestProcessingCompleted", ("r", "operation")),
    ("RequestRedirectStarted", ("r", "operation", "redirectURL")),
    ("ResponseBodyMarshalCompleted", ("r", "operation")),
    ("ResponseBodyWriteCompleted", ("r", "operation", "count")),
    ("ResponseBodyMarshalFailed", ("w", "r", "operation", "err")),
    ("ResponseBodyWriteFailed", ("r", "operation", "count", "err")),
    ("ServiceCompleted", ("r", "operation")),
)

RUNTIME_IMPORTS: Final[tuple[str, ...]] = ("encoding/json", "encoding/xml", "net/http", "strings")


def canonical_json(document: dict[str, Any]) -> str:
    """Serialise a document with sorted keys and no insignificant whitespace."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class RouterEmitter:
    """Fills the router sink for a whole program."""

    def __init__(
        self,
        program: Program,
        sink: CodeSink,
        operations: OperationEmitter,
        security: SecurityEmitter,
        templates: Any,
    ) -> None:
        self.program = program
        self.sink = sink
        self.operations = operations
        self.security = security
        self.templates = templates

    def emit(self) -> None:
        for import_path in RUNTIME_IMPORTS:
            self.sink.use(import_path)
        for name in ("Hooks", "Response", "writeResponse", "OpenAPISpec"):
            self.sink.declare(name, "runtime")

        self.sink.add(self._hooks())
        self.sink.add(self.templates.router_runtime_template.render())
        self.security.emit()

        for tag in self.program.tags:
            self._emit_router(tag)

        self.sink.add(f"var OpenAPISpec = []byte({json.dumps(canonical_json(self.program.document), ensure_ascii=False)})")

    def _hooks(self) -> CodeBlock:
        http = self.sink.use("net/http")
        parameters = {
            "r": f"r *{http}.Request",
            "w": f"w {http}.ResponseWriter",
            "operation": "operation string",
            "parameter": "parameter string",
            "scheme": "scheme string",
            "redirectURL": "redirectURL string",
            "count": "count int",
            "err": "err error",
            "result": f"result {runtime_prefix(self.sink, self.operations.mapper.components_path)}RequestProcessingResult",
        }
        code = CodeBlock()
        code.line("// Hooks observe every stage of request processing. Nil hooks are skipped.")
        with code.block("type Hooks struct"):
            code.lines(align([
                (name, f"func({', '.join(parameters[p] for p in params)})") for name, params in HOOKS
            ]))
        return code

    def _emit_router(self, tag: str) -> None:
        router = f"{tag}Router"
        for name in (router, f"{tag}Service", f"New{tag}Router"):
            self.sink.declare(name, f"tag '{tag}'")

        operations = [op for op in self.program.operations if op.tag == tag]
        chi = self.sink.use(CHI)
        has_security = self.security.enabled

        fields = [("router", f"*{chi}.Mux"), ("service", f"{tag}Service"), ("hooks", "*Hooks")]
        values = [("router:", f"{chi}.NewRouter(),"), ("service:", "service,"), ("hooks:", "hooks,")]
        if has_security:
            fields.append(("processors", "[]securityProcessor"))
            values.append(("processors:", "processors,"))

        methods = []
        for operation in operations:
            methods.extend(self.operations.service_methods(operation))

        self.sink.add(self.templates.router_template.render(
            tag=tag,
            chi=chi,
            methods=methods,
            fields=align(fields),
            values=align(values),
            has_security=has_security,
            routes=[self.operations.route(operation) for operation in operations],
        ))

        for operation in operations:
            self.operations.emit(operation, router)
