"""OpenAPI document loading with external reference import and caching."""

from __future__ import annotations

import copy
import datetime
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import unquote, urljoin, urlparse
from urllib.request import url2pathname

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import LoadFailed

SCHEMAS_PREFIX = "#/components/schemas/"

FETCH_TIMEOUT = 5


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Immutable cache key for document files."""

    path: Path
    mtime: float
    size: int

    @classmethod
    def from_path(cls, path: Path) -> CacheKey:
        """Create a cache key from a file path."""
        stat = path.stat()
        return cls(
            path=path.resolve(),
            mtime=stat.st_mtime,
            size=stat.st_size,
        )


class DocumentCache:
    """Cache of parsed documents, invalidated when the file changes."""

    __slots__ = ("_cache", "_max_size")

    def __init__(self, max_size: int = 100) -> None:
        self._cache: dict[Path, tuple[CacheKey, dict[str, Any]]] = {}
        self._max_size = max_size

    def get(self, path: Path) -> dict[str, Any]:
        """Get a parsed document, loading it if necessary.

        Args:
            path: Path to the document file.

        Returns:
            The parsed document data.

        Raises:
            LoadFailed: If the file cannot be read or parsed.
        """
        resolved = path.resolve()
        try:
            current_key = CacheKey.from_path(resolved)
        except OSError as e:
            raise LoadFailed(f"Failed to read document: {e}", str(path)) from e

        cached = self._cache.get(resolved)
        if cached is not None and cached[0] == current_key:
            return cached[1]

        data = load_document_file(resolved)

        if len(self._cache) >= self._max_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]

        self._cache[resolved] = (current_key, data)
        return data

    def invalidate(self, path: Path | None = None) -> None:
        """Invalidate cached documents.

        Args:
            path: Specific path to invalidate, or None to clear all.
        """
        if path is None:
            self._cache.clear()
        else:
            self._cache.pop(path.resolve(), None)

    def __len__(self) -> int:
        return len(self._cache)


def _json_compatible(value: Any) -> Any:
    """Coerce YAML-only values (non-string keys, dates) into JSON values."""
    if isinstance(value, dict):
        return {str(key): _json_compatible(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_json_compatible(item) for item in value]
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


def parse_document(content: str, source: str, *, prefer_json: bool) -> dict[str, Any]:
    """Parse JSON or YAML text into a mapping.

    Args:
        content: Raw document text.
        source: File path or URL, used in diagnostics.
        prefer_json: Parse as JSON first and fall back to YAML.

    Returns:
        The parsed mapping.

    Raises:
        LoadFailed: If the text is not a valid document.
    """
    data: Any
    if prefer_json:
        try:
            data = json.loads(content)
        except ValueError:
            data = _parse_yaml(content, source)
    else:
        data = _parse_yaml(content, source)

    if not isinstance(data, dict):
        raise LoadFailed("Document root must be a mapping", source)

    return _json_compatible(data)


def _parse_yaml(content: str, source: str) -> Any:
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise LoadFailed(f"Invalid YAML: {e}", source) from e


def load_document_file(path: Path) -> dict[str, Any]:
    """Load a JSON or YAML document from disk.

    Raises:
        LoadFailed: If the file cannot be read or parsed.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LoadFailed(f"Failed to read document: {e}", str(path)) from e

    return parse_document(content, str(path), prefer_json=path.suffix.lower() == ".json")


def fetch_document(url: str, headers: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Fetch a JSON/YAML document by URL.

    Uses urllib3 Retry via requests.adapters.HTTPAdapter.

    Raises:
        LoadFailed: If the request fails or the body is not a document.
    """
    session = requests.Session()
    retries = Retry(total=3, backoff_factor=0.5, status_forcelist=(500, 502, 503, 504))
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    try:
        resp = session.get(url, headers=dict(headers or {}), timeout=FETCH_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise LoadFailed(
            f"Failed to fetch document: {e}",
            url,
            hints=("Check the URL and any --authorization headers",),
        ) from e

    return parse_document(resp.text, url, prefer_json=True)


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def _file_url_to_path(value: str) -> Path:
    parsed = urlparse(value)
    path_str = url2pathname(parsed.path or "")
    if parsed.netloc and not path_str.startswith(parsed.netloc):
        path_str = parsed.netloc + path_str
    return Path(path_str).resolve()


def _unescape_pointer(token: str) -> str:
    return unquote(token).replace("~1", "/").replace("~0", "~")


def resolve_pointer(data: Any, fragment: str, source: str) -> Any:
    """Resolve a JSON pointer fragment (``#/a/b``) inside ``data``.

    Raises:
        LoadFailed: If any token of the pointer does not exist.
    """
    pointer = fragment.lstrip("#")
    node = data
    if not pointer or pointer == "/":
        return node
    for raw_token in pointer.lstrip("/").split("/"):
        token = _unescape_pointer(raw_token)
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdecimal() and int(token) < len(node):
            node = node[int(token)]
        else:
            raise LoadFailed(
                f"Reference '{fragment}' cannot be resolved",
                source,
                context={"missing_token": token},
            )
    return node


@dataclass
class Document:
    """A loaded OpenAPI document whose references are all local."""

    data: dict[str, Any]
    source: str = "<memory>"

    @property
    def version(self) -> str:
        return str(self.data.get("openapi", ""))

    @property
    def schemas(self) -> dict[str, Any]:
        components = self.data.get("components") or {}
        return components.get("schemas") or {}

    def resolve(self, ref: str) -> Any:
        """Resolve a local ``$ref`` into the node it points at."""
        if not ref.startswith("#"):
            raise LoadFailed(f"Reference '{ref}' is not local", self.source)
        return resolve_pointer(self.data, ref, self.source)

    def deref(self, node: Any) -> Any:
        """Follow a chain of ``$ref`` nodes to the referenced content."""
        seen: set[str] = set()
        while isinstance(node, dict) and isinstance(node.get("$ref"), str):
            ref = node["$ref"]
            if ref in seen:
                raise LoadFailed(f"Reference cycle through '{ref}'", self.source)
            seen.add(ref)
            node = self.resolve(ref)
        return node


def validate_version(data: dict[str, Any], source: str) -> None:
    """Reject documents that are not OpenAPI 3.x.

    Raises:
        LoadFailed: For Swagger 2.0 or a missing/unknown ``openapi`` version.
    """
    if "swagger" in data:
        raise LoadFailed(
            "Swagger/OpenAPI 2.0 documents are not supported",
            source,
            context={"swagger": data.get("swagger")},
            hints=("Convert the document to OpenAPI 3.0",),
        )
    version = str(data.get("openapi", ""))
    if not version.startswith("3."):
        raise LoadFailed(
            "Document does not declare a supported 'openapi' version",
            source,
            context={"received_value": version or "<missing>", "expected": "3.x"},
        )


@dataclass
class _Base:
    """Where a node was read from, used to resolve relative references."""

    location: str
    data: dict[str, Any]

    @property
    def is_root(self) -> bool:
        return self.location == ""


@dataclass
class Loader:
    """Loads documents from files or URLs and internalises external refs.

    External references to ``components/schemas`` entries are imported into
    the root document under their original key and rewritten as local refs.
    Any other external fragment is inlined in place.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    cache: DocumentCache = field(default_factory=DocumentCache)
    _remote: dict[str, dict[str, Any]] = field(default_factory=dict, init=False)

    def load(self, source: str) -> Document:
        """Load and validate a document, importing external references.

        Args:
            source: File path, ``file://`` URL or ``http(s)://`` URL.

        Returns:
            A Document with local references only.

        Raises:
            LoadFailed: If the document or any external reference fails to load.
        """
        if _is_url(source):
            data = copy.deepcopy(self._fetch(source))
            location = source
        else:
            path = _file_url_to_path(source) if source.startswith("file://") else Path(source)
            data = copy.deepcopy(self.cache.get(path))
            location = str(path.resolve())

        validate_version(data, source)

        importer = _RefImporter(self, root=data, root_location=location)
        importer.run()
        return Document(data=data, source=source)

    def _fetch(self, url: str) -> dict[str, Any]:
        if url not in self._remote:
            self._remote[url] = fetch_document(url, self.headers)
        return self._remote[url]

    def load_external(self, target: str) -> dict[str, Any]:
        """Load an external document referenced by absolute path or URL."""
        if _is_url(target):
            return self._fetch(target)
        return self.cache.get(Path(target))


class _RefImporter:
    """Walks a document and rewrites external references as local ones."""

    def __init__(self, loader: Loader, *, root: dict[str, Any], root_location: str) -> None:
        self._loader = loader
        self._root = root
        self._root_location = root_location
        self._imported: dict[str, str] = {}

    def run(self) -> None:
        self._walk(self._root, _Base(location="", data=self._root))

    def _absolute(self, target: str, base: _Base) -> str:
        base_location = self._root_location if base.is_root else base.location
        if _is_url(target):
            return target
        if target.startswith("file://"):
            return str(_file_url_to_path(target))
        if _is_url(base_location):
            return urljoin(base_location, target)
        return str((Path(base_location).parent / target).resolve())

    def _walk(self, node: Any, base: _Base) -> None:
        if isinstance(node, list):
            for item in node:
                self._walk(item, base)
            return
        if not isinstance(node, dict):
            return

        ref = node.get("$ref")
        if isinstance(ref, str):
            self._rewrite(node, ref, base)
            return

        # Imported schemas are added to components.schemas while it is walked
        for value in list(node.values()):
            self._walk(value, base)

    def _rewrite(self, node: dict[str, Any], ref: str, base: _Base) -> None:
        file_part, _, fragment = ref.partition("#")
        fragment = "#" + fragment if fragment or "#" in ref else ""

        if not file_part:
            if base.is_root:
                return
            # Local to an external document: treat as a reference into that file.
            target_location, target_data = base.location, base.data
        else:
            target_location = self._absolute(file_part, base)
            target_data = self._loader.load_external(target_location)

        target_base = _Base(location=target_location, data=target_data)

        if fragment.startswith(SCHEMAS_PREFIX) and fragment.count("/") == 3:
            name = _unescape_pointer(fragment[len(SCHEMAS_PREFIX):])
            self._import_schema(name, target_base, fragment)
            node["$ref"] = SCHEMAS_PREFIX + fragment[len(SCHEMAS_PREFIX):]
            return

        content = copy.deepcopy(resolve_pointer(target_data, fragment or "#", target_location))
        node.pop("$ref")
        if isinstance(content, dict):
            node.update(content)
            self._walk(node, target_base)
        else:
            raise LoadFailed(
                f"Reference '{ref}' does not point at an object",
                target_location,
            )

    def _import_schema(self, name: str, base: _Base, fragment: str) -> None:
        origin = f"{base.location}{fragment}"
        if self._imported.get(name) == origin:
            return

        schema = copy.deepcopy(resolve_pointer(base.data, fragment, base.location))
        schemas = self._root.setdefault("components", {}).setdefault("schemas", {})
        if name in schemas and name not in self._imported:
            if schemas[name] != schema:
                raise LoadFailed(
                    f"External schema '{name}' conflicts with a local schema of the same name",
                    origin,
                    hints=("Rename one of the schemas",),
                )
            self._imported[name] = origin
            return
        if name in self._imported:
            raise LoadFailed(
                f"External schema '{name}' is imported from two different documents",
                origin,
                context={"first_source": self._imported[name], "second_source": origin},
            )

        self._imported[name] = origin
        schemas[name] = schema
        self._walk(schema, base)
