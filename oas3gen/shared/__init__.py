"""Shared utilities for the generator."""

from .errors import (
    CompileError,
    LoadFailed,
    SchemaInvalid,
    ExtensionTypeMismatch,
    NameCollision,
    WriteFailed,
)
from .loader import (
    CacheKey,
    Document,
    DocumentCache,
    Loader,
    fetch_document,
    load_document_file,
)
from .naming import (
    normalise,
    normalise_operation,
    content_type_tag,
    ref_local_name,
    decapitalize,
    title_case,
    go_package_name,
    GO_KEYWORDS,
)
from .writer import Artifact, Writer

__all__ = [
    # Errors
    "CompileError",
    "LoadFailed",
    "SchemaInvalid",
    "ExtensionTypeMismatch",
    "NameCollision",
    "WriteFailed",
    # Document loading
    "CacheKey",
    "Document",
    "DocumentCache",
    "Loader",
    "fetch_document",
    "load_document_file",
    # Naming utilities
    "normalise",
    "normalise_operation",
    "content_type_tag",
    "ref_local_name",
    "decapitalize",
    "title_case",
    "go_package_name",
    "GO_KEYWORDS",
    # Output
    "Artifact",
    "Writer",
]
