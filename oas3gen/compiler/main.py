#!/usr/bin/env python3
"""
Generate a Go HTTP server scaffold from an OpenAPI 3.0 document.

Writes ``components_gen.go`` (types, decoders, validation and the shared
runtime) and ``routes_gen.go`` (request DTOs, parsers, response builders,
security and one chi router per tag).
"""

from __future__ import annotations

import argparse
import dataclasses
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Final

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..shared.errors import CompileError, LoadFailed, SchemaInvalid
from ..shared.loader import Document, Loader
from ..shared.naming import go_package_name
from ..shared.writer import Artifact, Writer
from .components import ComponentEmitter
from .gotypes import TypeMapper
from .ir import Program
from .lowering import lower
from .operations import OperationEmitter
from .routers import RouterEmitter
from .security import SecurityEmitter
from .sink import CodeSink
from .validation import Validators

COMPONENTS_FILE: Final = "components_gen.go"
ROUTES_FILE: Final = "routes_gen.go"


def _resolve_dir(value: str) -> Path:
    path = Path(value)
    if value.startswith("."):
        return Path.cwd() / path
    return path


@dataclass(frozen=True, slots=True)
class Config:
    """Generator settings, as given on the command line."""

    package: str
    path: str
    swagger_addr: str = "swagger.yaml"
    components_package: str | None = None
    components_path: str | None = None
    authorization: str = ""

    @property
    def effective_components_package(self) -> str:
        return self.components_package or self.package

    @property
    def effective_components_path(self) -> str:
        return self.components_path or self.path

    @property
    def package_name(self) -> str:
        return go_package_name(self.package)

    @property
    def components_package_name(self) -> str:
        return go_package_name(self.effective_components_package)

    @property
    def shared_package(self) -> bool:
        return self.effective_components_package == self.package

    @property
    def routes_dir(self) -> Path:
        return _resolve_dir(self.path)

    @property
    def components_dir(self) -> Path:
        return _resolve_dir(self.effective_components_path)

    def headers(self) -> dict[str, str]:
        """Parse ``key:value,key:value`` into request headers.

        Raises:
            LoadFailed: If a pair has no ``:`` or an empty key.
        """
        headers: dict[str, str] = {}
        for pair in self.authorization.split(","):
            if not pair.strip():
                continue
            key, sep, value = pair.partition(":")
            if not sep or not key.strip():
                raise LoadFailed(
                    "Malformed authorization header pair",
                    self.swagger_addr,
                    context={"received_value": pair, "expected": "key:value"},
                    hints=("Pass headers as --authorization 'Key:Value,Other:Value'",),
                )
            headers[key.strip()] = value.strip()
        return headers

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> Config:
        return cls(
            package=args.package,
            path=args.path,
            swagger_addr=args.swagger_addr,
            components_package=args.components_package,
            components_path=args.components_path,
            authorization=args.authorization or "",
        )


@dataclass
class GeneratorContext:
    """Context for code generation with cached resources."""
    template_env: Environment = field(init=False)
    _file_template: Any = field(init=False)
    _components_runtime_template: Any = field(init=False)
    _router_runtime_template: Any = field(init=False)
    _security_template: Any = field(init=False)
    _router_template: Any = field(init=False)

    def __post_init__(self) -> None:
        templates_dir = Path(__file__).parent / "templates"
        self.template_env = Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
            auto_reload=False,
        )
        # Pre-compile templates
        self._file_template = self.template_env.get_template("file.go.j2")
        self._components_runtime_template = self.template_env.get_template("components_runtime.go.j2")
        self._router_runtime_template = self.template_env.get_template("router_runtime.go.j2")
        self._security_template = self.template_env.get_template("security.go.j2")
        self._router_template = self.template_env.get_template("router.go.j2")

    @property
    def file_template(self):
        return self._file_template

    @property
    def components_runtime_template(self):
        return self._components_runtime_template

    @property
    def router_runtime_template(self):
        return self._router_runtime_template

    @property
    def security_template(self):
        return self._security_template

    @property
    def router_template(self):
        return self._router_template


@lru_cache(maxsize=1)
def generator_context() -> GeneratorContext:
    return GeneratorContext()


def _check_closure(sinks: list[CodeSink], components: CodeSink) -> None:
    """Every reference into the components package must be declared there."""
    for sink in sinks:
        for name in sorted(sink.references.get(components.import_path, ())):
            if not components.declares(name):
                raise SchemaInvalid(
                    f"Generated code references undeclared type '{name}'",
                    operation="emission",
                    context={"package": components.import_path, "file": sink.import_path},
                )


def emit_artifacts(
    program: Program,
    config: Config,
    context: GeneratorContext | None = None,
) -> list[Artifact]:
    """Render the components and router files of a lowered program.

    Raises:
        NameCollision: If two declarations claim the same Go identifier.
        SchemaInvalid: If emitted code refers to an undeclared component.
    """
    if config is None:
        raise ValueError("Program has no configuration; compile it with Compiler")
    ctx = context or generator_context()
    components_package = config.effective_components_package

    components = CodeSink(components_package, config.components_package_name)
    router = CodeSink(
        config.package,
        config.package_name,
        declared=components.declared if config.shared_package else None,
    )

    mapper = TypeMapper(program, components_package)
    validators = Validators(mapper)
    ComponentEmitter(program, mapper, validators, components, ctx.components_runtime_template).emit()

    security = SecurityEmitter(program, router, components_package, ctx.security_template)
    operations = OperationEmitter(program, mapper, validators, security, router)
    RouterEmitter(program, router, operations, security, ctx).emit()

    _check_closure([components, router], components)

    return [
        Artifact(COMPONENTS_FILE, config.components_dir, ctx.file_template.render(**components.template_context())),
        Artifact(ROUTES_FILE, config.routes_dir, ctx.file_template.render(**router.template_context())),
    ]


class Compiler:
    """Loads and lowers a document into a program bound to its configuration."""

    def __init__(self, config: Config, loader: Loader | None = None) -> None:
        self.config = config
        self.loader = loader

    def load(self) -> Document:
        loader = self.loader or Loader(headers=self.config.headers())
        return loader.load(self.config.swagger_addr)

    def compile(self, document: Document | None = None) -> Program:
        """Lower ``document`` (loaded from the configured address by default)."""
        if document is None:
            document = self.load()
        return dataclasses.replace(lower(document), config=self.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--swagger-addr", default="swagger.yaml", help="Path or URL of the OpenAPI document")
    parser.add_argument("--package", required=True, help="Go import path of the router package")
    parser.add_argument("--path", required=True, help="Output directory for routes_gen.go")
    parser.add_argument("--componentsPackage", "--components-package", dest="components_package", default=None, help="Go import path of the components package (defaults to --package)")
    parser.add_argument("--componentsPath", "--components-path", dest="components_path", default=None, help="Output directory for components_gen.go (defaults to --path)")
    parser.add_argument("-a", "--authorization", default="", help="Comma separated key:value headers sent when fetching the document by URL")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = Config.from_args(args)

    try:
        program = Compiler(config).compile()
        components, routes = program.render(Writer())
    except CompileError as e:
        raise SystemExit(f"Error: {e.render()}") from e

    print(f"Generated components -> {components}")
    print(f"Generated routes -> {routes}")


def check(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Load and compile an OpenAPI document without writing files")
    parser.add_argument("--swagger-addr", default="swagger.yaml", help="Path or URL of the OpenAPI document")
    parser.add_argument("-a", "--authorization", default="", help="Comma separated key:value headers sent when fetching the document by URL")
    args = parser.parse_args(argv)
    config = Config(package="check", path=".", swagger_addr=args.swagger_addr, authorization=args.authorization)

    try:
        program = Compiler(config).compile()
        program.artifacts()
    except CompileError as e:
        raise SystemExit(f"Error: {e.render()}") from e

    print(
        f"OK {config.swagger_addr}: {len(program.components)} components, "
        f"{len(program.operations)} operations, {len(program.security_schemes)} security schemes"
    )


if __name__ == "__main__":
    main()
