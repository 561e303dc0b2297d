"""Parsing and serialization of managed file content.

JSON is written with a two-space indent and a trailing newline. YAML goes
through ruamel's round-trip loader so user comments and key order survive
a merge. Text files are handled as a single ``str``.
"""

from __future__ import annotations

import io
import json
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.error import YAMLError

from dotward_cli.errors import MergeConflict
from dotward_cli.schema.models import DocumentFormat


def _yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.indent(mapping=2, sequence=4, offset=2)
    return yaml


def _decode(data: bytes, path: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MergeConflict(path, f"not valid UTF-8 ({exc.reason})") from exc


def empty_document(fmt: DocumentFormat) -> Any:
    """Return the parsed form of a file that does not exist yet."""
    if fmt is DocumentFormat.JSON:
        return {}
    if fmt is DocumentFormat.YAML:
        return CommentedMap()
    return ""


def parse_document(fmt: DocumentFormat, data: bytes | None, path: str) -> Any:
    """Parse *data* as *fmt*; ``None`` or blank content is an empty document.

    Raises:
        MergeConflict: If the existing content cannot be parsed.
    """
    if data is None:
        return empty_document(fmt)
    text = _decode(data, path)
    if fmt is DocumentFormat.TEXT:
        return text
    if not text.strip():
        return empty_document(fmt)
    if fmt is DocumentFormat.JSON:
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MergeConflict(path, f"invalid JSON: {exc}") from exc
    if fmt is DocumentFormat.YAML:
        try:
            loaded = _yaml().load(text)
        except YAMLError as exc:
            raise MergeConflict(path, f"invalid YAML: {exc}") from exc
        return CommentedMap() if loaded is None else loaded
    raise TypeError(f"Unknown document format: {fmt!r}")


def serialize_document(fmt: DocumentFormat, document: Any) -> bytes:
    if fmt is DocumentFormat.TEXT:
        return str(document).encode("utf-8")
    if fmt is DocumentFormat.JSON:
        return (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8")
    if fmt is DocumentFormat.YAML:
        buffer = io.StringIO()
        _yaml().dump(document, buffer)
        return buffer.getvalue().encode("utf-8")
    raise TypeError(f"Unknown document format: {fmt!r}")


def is_empty_document(fmt: DocumentFormat, document: Any) -> bool:
    """True when *document* holds nothing worth keeping on disk."""
    if fmt is DocumentFormat.TEXT:
        return not str(document).strip()
    return document is None or document == {} or document == []
