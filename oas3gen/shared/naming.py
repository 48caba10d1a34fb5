"""Naming utilities for code generation."""

from __future__ import annotations

import re
from functools import lru_cache

SEPARATORS: frozenset[str] = frozenset("-#@!$&=.+:;_~ (){}[],")

GO_KEYWORDS: frozenset[str] = frozenset({
    "break",
    "case",
    "chan",
    "const",
    "continue",
    "default",
    "defer",
    "else",
    "fallthrough",
    "for",
    "func",
    "go",
    "goto",
    "if",
    "import",
    "interface",
    "map",
    "package",
    "range",
    "return",
    "select",
    "struct",
    "switch",
    "type",
    "var",
})

# Import aliases that cannot be derived from the last path segment
KNOWN_ALIASES: dict[str, str] = {
    "github.com/go-ozzo/ozzo-validation/v4": "validation",
    "github.com/go-ozzo/ozzo-validation": "validation",
}

_VERSION_SEGMENT = re.compile(r"^v\d+$")


def _camelise(value: str) -> str:
    """Drop separators and upper-case the letter following each of them."""
    result: list[str] = []
    cap_next = True
    for char in value.strip(" "):
        if char.isupper() or char.isdecimal():
            result.append(char)
        elif char.islower():
            result.append(char.upper() if cap_next else char)
        cap_next = char in SEPARATORS
    return "".join(result)


@lru_cache(maxsize=2048)
def normalise(value: str) -> str:
    """Convert an arbitrary identifier into an exported Go identifier.

    Separators are removed and the following letter capitalised; other
    non-alphanumeric characters are dropped. A trailing ``uuid`` becomes
    ``UUID``, then a trailing ``id`` becomes ``ID``.

    Examples:
        >>> normalise("hello_world")
        'HelloWorld'
        >>> normalise("user-id")
        'UserID'
    """
    name = _camelise(value)
    if len(name) > 3 and name[-4:].lower() == "uuid":
        name = name[:-4] + "UUID"
    if len(name) > 1 and name[-2:].lower() == "id":
        name = name[:-2] + "ID"
    return name


@lru_cache(maxsize=1024)
def normalise_operation(path: str, method: str) -> str:
    """Build the operation name from its method and path template."""
    return normalise((method.lower() + path).replace("/", "-"))


@lru_cache(maxsize=256)
def content_type_tag(content_type: str) -> str:
    """Convert a media type into an identifier fragment.

    ``application/json`` becomes ``ApplicationJson`` and
    ``multipart/form-data`` becomes ``MultipartFormData``.
    """
    return "".join(_camelise(segment) for segment in content_type.split("/") if segment)


def ref_local_name(ref: str) -> str:
    """Return the normalised last path component of a ``$ref``."""
    if not ref:
        return ""
    return normalise(ref[ref.rfind("/") + 1:])


def decapitalize(value: str) -> str:
    """Lower-case the first letter."""
    return value[:1].lower() + value[1:]


def title_case(value: str) -> str:
    """Upper-case the first letter, leaving the rest untouched."""
    return value[:1].upper() + value[1:]


def is_identifier(value: str) -> bool:
    """Check that a normalised name is usable as a Go identifier."""
    return bool(value) and not value[0].isdecimal() and value not in GO_KEYWORDS


@lru_cache(maxsize=256)
def go_package_name(import_path: str) -> str:
    """Derive the package name (and default import alias) of a Go import path."""
    if import_path in KNOWN_ALIASES:
        return KNOWN_ALIASES[import_path]

    segments = [segment for segment in import_path.strip("/").split("/") if segment]
    if not segments:
        return ""
    name = segments[-1]
    if _VERSION_SEGMENT.match(name) and len(segments) > 1:
        name = segments[-2]
    name = name.removeprefix("go-").removesuffix("-go")
    name = name.split(".")[0]
    return re.sub(r"[^0-9a-zA-Z_]", "", name).lower()
