"""Compiler - lowers OpenAPI documents and emits the Go server scaffold."""

from .ir import (
    Program,
    Component,
    Operation,
    SecurityScheme,
)
from .lowering import Lowerer, lower
from .main import (
    Config,
    Compiler,
    GeneratorContext,
    emit_artifacts,
    COMPONENTS_FILE,
    ROUTES_FILE,
)

__all__ = [
    # IR
    "Program",
    "Component",
    "Operation",
    "SecurityScheme",
    # Lowering
    "Lowerer",
    "lower",
    # Generation
    "Config",
    "Compiler",
    "GeneratorContext",
    "emit_artifacts",
    "COMPONENTS_FILE",
    "ROUTES_FILE",
]
