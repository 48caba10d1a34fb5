"""Compiler diagnostics.

Every diagnostic is fatal and carries enough context to be rendered as a
structured, multi-line report:

- the phase or operation that failed
- the location (schema path) of the offending node
- ordered context key/value pairs (received vs expected, names, reasons)
- actionable hints
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping


class CompileError(Exception):
    """Base exception for fatal compiler diagnostics."""

    kind: str = "CompileError"

    def __init__(
        self,
        message: str,
        schema_path: str | None = None,
        *,
        operation: str | None = None,
        context: Mapping[str, Any] | None = None,
        hints: Iterable[str] = (),
    ) -> None:
        self.message = message
        self.schema_path = schema_path
        self.operation = operation
        self.context: dict[str, Any] = dict(context or {})
        self.hints: tuple[str, ...] = tuple(hints)
        full_message = f"{message}" if not schema_path else f"[{schema_path}] {message}"
        super().__init__(full_message)

    def render(self) -> str:
        """Render the diagnostic as a multi-line report."""
        lines = [f"{self.kind}: {self.message}"]
        if self.schema_path:
            lines.append(f"  Location: {self.schema_path}")
        if self.operation:
            lines.append(f"  Operation: {self.operation}")
        if self.context:
            lines.append("  Context:")
            lines.extend(f"    - {key}: {value}" for key, value in self.context.items())
        if self.hints:
            lines.append("  Hints:")
            lines.extend(f"    - {hint}" for hint in self.hints)
        return "\n".join(lines)


class LoadFailed(CompileError):
    """Raised when a document cannot be loaded or its references resolved."""

    kind = "LoadFailed"

    def __init__(
        self,
        message: str,
        source: str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
        hints: Iterable[str] = (),
    ) -> None:
        self.source = source
        super().__init__(message, source, operation="load", context=context, hints=hints)


class SchemaInvalid(CompileError):
    """Raised when a schema cannot be lowered into the IR."""

    kind = "SchemaInvalid"


class ExtensionTypeMismatch(CompileError):
    """Raised when a vendor extension carries an unexpected value shape."""

    kind = "ExtensionTypeMismatch"

    def __init__(
        self,
        extension: str,
        value: Any,
        expected: Iterable[str],
        schema_path: str | None = None,
        *,
        reason: str | None = None,
    ) -> None:
        self.extension = extension
        self.value = value
        self.expected: tuple[str, ...] = tuple(expected)
        context: dict[str, Any] = {
            "extension_name": extension,
            "received_type": type(value).__name__,
            "received_value": repr(value),
            "expected_types": ", ".join(self.expected),
        }
        if reason:
            context["reason"] = reason
        super().__init__(
            f"Extension '{extension}' has an unexpected value",
            schema_path,
            operation="vendor extension parsing",
            context=context,
            hints=(f"Set '{extension}' to a value of type {' or '.join(self.expected)}",),
        )


class NameCollision(CompileError):
    """Raised when two sources normalise to the same identifier."""

    kind = "NameCollision"

    def __init__(
        self,
        name: str,
        first: str,
        second: str,
        *,
        scope: str = "document",
    ) -> None:
        self.name = name
        self.first = first
        self.second = second
        super().__init__(
            f"Identifier '{name}' is produced twice in {scope}",
            second,
            operation="naming",
            context={"identifier": name, "first_source": first, "second_source": second},
            hints=("Rename one of the sources so their normalised names differ",),
        )


class WriteFailed(CompileError):
    """Raised when an output artifact cannot be written."""

    kind = "WriteFailed"

    def __init__(self, path: str, reason: str, *, hints: Iterable[str] = ()) -> None:
        self.path = path
        super().__init__(
            f"Failed to write '{path}': {reason}",
            operation="write",
            context={"file_path": path, "reason": reason},
            hints=hints,
        )
