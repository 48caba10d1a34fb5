"""Import-aware accumulation of Go declarations for one output file."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from ..shared.errors import NameCollision
from ..shared.naming import go_package_name

INDENT = "\t"


def align(rows: list[tuple[str, ...]]) -> list[str]:
    """Pad columns the way gofmt aligns struct fields and const blocks."""
    if not rows:
        return []
    widths = [
        max(len(row[column]) for row in rows if column < len(row) - 1)
        for column in range(max(len(row) for row in rows) - 1)
    ]
    lines = []
    for row in rows:
        cells = [cell.ljust(widths[i]) for i, cell in enumerate(row[:-1])]
        lines.append(" ".join([*cells, row[-1]]).rstrip())
    return lines


class CodeBlock:
    """Indented Go source built line by line."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._level = 0

    def line(self, text: str = "") -> CodeBlock:
        self._lines.append(INDENT * self._level + text if text else "")
        return self

    def lines(self, texts: list[str]) -> CodeBlock:
        for text in texts:
            self.line(text)
        return self

    def blank(self) -> CodeBlock:
        """Add a blank line unless the block is empty or already ends with one."""
        if self._lines and self._lines[-1] and not self._lines[-1].endswith("{"):
            self._lines.append("")
        return self

    @contextmanager
    def block(self, header: str, closer: str = "}", *, literal: bool = False) -> Iterator[CodeBlock]:
        """Open ``header {`` and close it with ``closer`` on exit.

        Composite literals (``literal=True``) take the brace without a space.
        """
        if not header:
            self.line("{")
        else:
            self.line(f"{header}{{" if literal else f"{header} {{")
        self._level += 1
        try:
            yield self
        finally:
            self._level -= 1
            self.line(closer)

    @contextmanager
    def indented(self) -> Iterator[CodeBlock]:
        self._level += 1
        try:
            yield self
        finally:
            self._level -= 1

    def __bool__(self) -> bool:
        return bool(self._lines)

    def render(self) -> str:
        return "\n".join(self._lines)


class CodeSink:
    """Collects the declarations and imports of one Go file.

    Every type reference goes through :meth:`qual`, which returns the bare
    name inside the sink's own package and records an import otherwise.
    The recorded references feed the closure check run after emission.
    """

    def __init__(
        self,
        import_path: str,
        package: str | None = None,
        *,
        declared: dict[str, str] | None = None,
    ) -> None:
        self.import_path = import_path
        self.package = package or go_package_name(import_path)
        self.references: dict[str, set[str]] = {}
        self._imports: dict[str, str] = {}
        # Files of one package share their identifier table
        self._declared: dict[str, str] = declared if declared is not None else {}
        self._declarations: list[str] = []

    def use(self, import_path: str) -> str:
        """Import a package and return the alias to reference it by."""
        if import_path in self._imports:
            return self._imports[import_path]

        base = go_package_name(import_path)
        alias = base
        taken = set(self._imports.values()) | {self.package}
        suffix = 2
        while alias in taken:
            alias = f"{base}{suffix}"
            suffix += 1
        self._imports[import_path] = alias
        return alias

    def qual(self, import_path: str, name: str) -> str:
        """Reference ``name`` declared in ``import_path``."""
        if not import_path:
            return name
        self.references.setdefault(import_path, set()).add(name)
        if import_path == self.import_path:
            return name
        return f"{self.use(import_path)}.{name}"

    def declare(self, name: str, source: str) -> None:
        """Claim a package-level identifier.

        Raises:
            NameCollision: If the identifier is already declared in this file.
        """
        if name in self._declared:
            raise NameCollision(name, self._declared[name], source, scope=f"package '{self.package}'")
        self._declared[name] = source

    def declares(self, name: str) -> bool:
        return name in self._declared

    @property
    def declared(self) -> dict[str, str]:
        return self._declared

    def add(self, code: str | CodeBlock) -> None:
        text = code.render() if isinstance(code, CodeBlock) else code
        text = text.strip("\n")
        if text:
            self._declarations.append(text)

    @property
    def declarations(self) -> list[str]:
        return list(self._declarations)

    def imports(self) -> tuple[list[str], list[str]]:
        """Return the formatted standard and third-party import lines."""
        standard: list[str] = []
        external: list[str] = []
        for import_path in sorted(self._imports):
            alias = self._imports[import_path]
            default = import_path.rstrip("/").rsplit("/", 1)[-1]
            spec = f'"{import_path}"' if alias == default else f'{alias} "{import_path}"'
            first = import_path.split("/", 1)[0]
            (external if "." in first else standard).append(spec)
        return standard, external

    def template_context(self) -> dict[str, object]:
        standard, external = self.imports()
        return {
            "package": self.package,
            "std_imports": standard,
            "external_imports": external,
            "declarations": self.declarations,
        }
