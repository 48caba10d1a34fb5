"""Typed parsing of the ``x-go-*`` vendor extensions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Final, Mapping

from ..shared.errors import ExtensionTypeMismatch
from .ir import MapOverride, QualifiedName

GO_TYPE: Final = "x-go-type"
GO_MAP_TYPE: Final = "x-go-map-type"
GO_TYPE_STRING_PARSE: Final = "x-go-type-string-parse"
GO_POINTER: Final = "x-go-pointer"
GO_REGEX: Final = "x-go-regex"
GO_STRING_TRIMMABLE: Final = "x-go-string-trimmable"
GO_OMITEMPTY: Final = "x-go-omitempty"
GO_SKIP_VALIDATION: Final = "x-go-skip-validation"
GO_SKIP_SECURITY_CHECK: Final = "x-go-skip-security-check"

BOOL_EXTENSIONS: Final[frozenset[str]] = frozenset({
    GO_POINTER,
    GO_STRING_TRIMMABLE,
    GO_OMITEMPTY,
    GO_SKIP_VALIDATION,
    GO_SKIP_SECURITY_CHECK,
})

STRING_EXTENSIONS: Final[frozenset[str]] = frozenset({
    GO_TYPE,
    GO_MAP_TYPE,
    GO_TYPE_STRING_PARSE,
    GO_REGEX,
})

_MAP_TYPE = re.compile(r"^map\[(?P<key>[^\[\]]+)\](?P<slice>\[\])?(?P<value>[^\[\]]+)$")


@dataclass(frozen=True, slots=True)
class Extensions:
    """The vendor extensions of one schema, parameter or operation node."""

    go_type: QualifiedName | None = None
    map_type: MapOverride | None = None
    string_parse: QualifiedName | None = None
    pointer: bool = False
    regex: str | None = None
    trimmable: bool = False
    omitempty: bool = False
    skip_validation: bool = False
    skip_security_check: bool = False


def _string(node: Mapping[str, Any], name: str, path: str) -> str | None:
    if name not in node:
        return None
    value = node[name]
    if not isinstance(value, str) or not value.strip():
        raise ExtensionTypeMismatch(name, value, ("non-empty string",), path)
    return value


def _bool(node: Mapping[str, Any], name: str, path: str) -> bool:
    if name not in node:
        return False
    value = node[name]
    if not isinstance(value, bool):
        raise ExtensionTypeMismatch(name, value, ("bool",), path)
    return value


def _qualified(name: str, value: str, path: str, *, require_package: bool) -> QualifiedName:
    qualified = QualifiedName.parse(value)
    if not qualified.name or (require_package and not qualified.package):
        raise ExtensionTypeMismatch(
            name,
            value,
            ("string 'import/path.Name'",),
            path,
            reason="expected a package-qualified identifier",
        )
    return qualified


def parse_map_type(value: str, path: str) -> MapOverride:
    """Parse an ``x-go-map-type`` value such as ``map[string][]pkg.Type``.

    Raises:
        ExtensionTypeMismatch: If the value is not a map type expression.
    """
    match = _MAP_TYPE.match(value.replace(" ", ""))
    if match is None:
        raise ExtensionTypeMismatch(
            GO_MAP_TYPE,
            value,
            ("string 'map[Key]Value'",),
            path,
            reason="value is not a map type expression",
        )
    return MapOverride(
        key=QualifiedName.parse(match.group("key")),
        value=QualifiedName.parse(match.group("value")),
        value_is_slice=match.group("slice") is not None,
    )


def parse_extensions(node: Mapping[str, Any], path: str) -> Extensions:
    """Parse every consumed ``x-go-*`` extension of a node.

    Args:
        node: The schema, parameter or operation mapping.
        path: Location of the node, used in diagnostics.

    Returns:
        The typed extensions; absent extensions take their neutral value.

    Raises:
        ExtensionTypeMismatch: If any extension has an unexpected value shape.
    """
    go_type = _string(node, GO_TYPE, path)
    map_type = _string(node, GO_MAP_TYPE, path)
    string_parse = _string(node, GO_TYPE_STRING_PARSE, path)

    if string_parse is not None and go_type is None:
        raise ExtensionTypeMismatch(
            GO_TYPE_STRING_PARSE,
            string_parse,
            ("string 'import/path.Func'",),
            path,
            reason=f"'{GO_TYPE_STRING_PARSE}' requires '{GO_TYPE}' on the same schema",
        )

    return Extensions(
        go_type=_qualified(GO_TYPE, go_type, path, require_package=False) if go_type else None,
        map_type=parse_map_type(map_type, path) if map_type else None,
        string_parse=(
            _qualified(GO_TYPE_STRING_PARSE, string_parse, path, require_package=True)
            if string_parse
            else None
        ),
        pointer=_bool(node, GO_POINTER, path),
        regex=_string(node, GO_REGEX, path),
        trimmable=_bool(node, GO_STRING_TRIMMABLE, path),
        omitempty=_bool(node, GO_OMITEMPTY, path),
        skip_validation=_bool(node, GO_SKIP_VALIDATION, path),
        skip_security_check=_bool(node, GO_SKIP_SECURITY_CHECK, path),
    )
