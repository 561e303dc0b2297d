"""Schema data types: owned, managed and deprecated path declarations, plus
the directories the toolkit creates.

Merge strategies form a closed set of frozen dataclasses. Code that
dispatches on a strategy handles every member of ``MergeStrategy`` and
raises ``TypeError`` for anything else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union


class OwnershipKind(StrEnum):
    """How an owned file is kept in sync with its template."""

    ALWAYS_REGENERATE = "always_regenerate"
    CREATE_ONCE = "create_once"


class DocumentFormat(StrEnum):
    """Parsed representation used when merging into a managed file."""

    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class DeprecatedKind(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"


class TextPatchOperation(StrEnum):
    PREPEND = "prepend"
    APPEND = "append"


class DirectoryKind(StrEnum):
    """What reset may do with a declared directory."""

    OWNED = "owned"  # removed on reset once nothing foreign is left in it
    SHARED = "shared"  # the toolkit adds to it, the user owns it
    PRESERVED = "preserved"  # holds user data; never removed


@dataclass(frozen=True)
class FileDefinition:
    """A file whose whole content is produced from a template."""

    path: str
    ownership: OwnershipKind
    template_id: str
    executable: bool = False
    packs: tuple[str, ...] = ()


@dataclass(frozen=True)
class DirectoryDefinition:
    """A directory created on setup and upgrade."""

    path: str
    kind: DirectoryKind = DirectoryKind.OWNED
    packs: tuple[str, ...] = ()


@dataclass(frozen=True)
class KeyExtractor:
    """Extracts the identity of an array entry for union merges.

    ``path`` is dotted; a ``[]`` suffix on a segment fans out over a list
    (``hooks[].command``). When ``pattern`` is set only values matching the
    regex contribute, and the first capture group (or whole match) is used.
    Two entries are equivalent when their extracted keys share at least
    one value, so an entry registering several hooks matches each of them.
    """

    path: str
    pattern: str | None = None

    def extract(self, entry: Any) -> tuple[str, ...]:
        values = _collect(entry, self.path.split(".")) if self.path else [entry]
        keys: list[str] = []
        for value in values:
            if isinstance(value, (dict, list)) or value is None:
                continue
            text = str(value)
            if self.pattern:
                found = re.search(self.pattern, text)
                if not found:
                    continue
                text = found.group(1) if found.groups() else found.group(0)
            keys.append(text)
        return tuple(sorted(set(keys)))


def _collect(node: Any, segments: list[str]) -> list[Any]:
    if not segments:
        return [node]
    head, rest = segments[0], segments[1:]
    fan_out = head.endswith("[]")
    name = head[:-2] if fan_out else head
    if name:
        if not isinstance(node, dict) or name not in node:
            return []
        node = node[name]
    if not fan_out:
        return _collect(node, rest)
    if not isinstance(node, list):
        return []
    collected: list[Any] = []
    for item in node:
        collected.extend(_collect(item, rest))
    return collected


@dataclass(frozen=True)
class DeepMergeMissingKeys:
    """Add keys missing at any depth; never overwrite existing ones."""


@dataclass(frozen=True)
class ArrayUnionByKey:
    """Append array entries whose extracted key is not already present."""

    target: str
    key: KeyExtractor


@dataclass(frozen=True)
class ScriptAppend:
    """Add keys to a flat string map only when absent."""

    target: str


@dataclass(frozen=True)
class TextPatch:
    """Ensure a text block identified by ``marker`` is present."""

    operation: TextPatchOperation
    marker: str


MergeStrategy = Union[DeepMergeMissingKeys, ArrayUnionByKey, ScriptAppend, TextPatch]


@dataclass(frozen=True)
class MergeFragment:
    strategy: MergeStrategy
    payload: Any


@dataclass(frozen=True)
class ManagedFileDefinition:
    """A file the user owns but which must contain certain fragments."""

    path: str
    format: DocumentFormat
    fragments: tuple[MergeFragment, ...]
    create_if_missing: bool = True
    remove_if_empty: bool = False
    packs: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeprecatedEntry:
    """A path an older schema version owned and this one no longer does."""

    path: str
    kind: DeprecatedKind
    since_version: str
    historical_fingerprints: tuple[str, ...] = field(default_factory=tuple)


class _NotFound:
    """Sentinel returned by ``SchemaRegistry.resolve`` for unknown paths."""

    _instance: _NotFound | None = None

    def __new__(cls) -> _NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()

Definition = Union[FileDefinition, ManagedFileDefinition, DirectoryDefinition, DeprecatedEntry]
