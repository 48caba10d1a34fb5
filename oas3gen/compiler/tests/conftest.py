from pathlib import Path

import pytest

from oas3gen.compiler.main import COMPONENTS_FILE, ROUTES_FILE, Compiler, Config
from oas3gen.shared.loader import Document, Loader

FIXTURES = Path(__file__).parents[2] / "tests" / "fixtures"


def build_document(schemas=None, paths=None, security_schemes=None, **root):
    """Build a minimal OpenAPI 3.0 document around the given sections."""
    data = {"openapi": "3.0.3", "info": {"title": "Test", "version": "1.0.0"}, "paths": paths or {}}
    components = {}
    if schemas:
        components["schemas"] = schemas
    if security_schemes:
        components["securitySchemes"] = security_schemes
    if components:
        data["components"] = components
    data.update(root)
    return data


@pytest.fixture
def openapi():
    return build_document


@pytest.fixture
def generate():
    """Compile a document and return ``(components_gen.go, routes_gen.go)`` sources."""

    def _generate(data, **options):
        options.setdefault("package", "example.com/api")
        options.setdefault("path", ".")
        config = Config(**options)
        program = Compiler(config).compile(Document(data))
        files = {artifact.file_name: artifact.content for artifact in program.artifacts()}
        return files[COMPONENTS_FILE], files[ROUTES_FILE]

    return _generate


@pytest.fixture
def transactions():
    return Loader().load(str(FIXTURES / "transactions.yaml")).data
