"""Immutable, versioned registry of every path the toolkit cares about.

The registry is constructed explicitly and handed to the orchestrator.
All ownership invariants are checked in the constructor so a broken
schema fails before any file is read or written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import replace
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Mapping

from packaging.version import InvalidVersion, Version

from dotward_cli.errors import SchemaIntegrityError
from dotward_cli.schema.models import (
    NOT_FOUND,
    DeprecatedEntry,
    DeprecatedKind,
    DirectoryDefinition,
    DocumentFormat,
    FileDefinition,
    ManagedFileDefinition,
    TextPatch,
    _NotFound,
)

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Return the canonical project-relative POSIX form of *path*."""
    return PurePosixPath(path.replace("\\", "/")).as_posix()


def _path_problem(path: str) -> str | None:
    pure = PurePosixPath(path.replace("\\", "/"))
    if not path or path in {".", "/"}:
        return f"empty path {path!r}"
    if pure.is_absolute():
        return f"path must be project-relative: {path}"
    if ".." in pure.parts:
        return f"path must not reference a parent directory: {path}"
    return None


def _fragment_problems(key: str, definition: ManagedFileDefinition) -> list[str]:
    problems: list[str] = []
    is_text = definition.format is DocumentFormat.TEXT
    for index, fragment in enumerate(definition.fragments):
        if isinstance(fragment.strategy, TextPatch):
            if not is_text:
                problems.append(f"{key}: fragment {index} is a text patch on a {definition.format} file")
            elif fragment.strategy.marker not in str(fragment.payload):
                # Without the marker in the block the patch would be re-applied every run.
                problems.append(f"{key}: fragment {index} payload does not contain its marker")
        elif is_text:
            problems.append(f"{key}: fragment {index} needs a structured document, not text")
    return problems


class SchemaRegistry:
    """Read-only lookup of owned, managed, directory and deprecated paths."""

    def __init__(
        self,
        version: str,
        owned: Iterable[FileDefinition] = (),
        managed: Iterable[ManagedFileDefinition] = (),
        deprecated: Iterable[DeprecatedEntry] = (),
        directories: Iterable[DirectoryDefinition] = (),
    ) -> None:
        problems: list[str] = []
        try:
            self._version = Version(version)
        except InvalidVersion:
            problems.append(f"invalid schema version: {version!r}")
            self._version = Version("0")
        self._version_text = version

        owned_map: dict[str, FileDefinition] = {}
        managed_map: dict[str, ManagedFileDefinition] = {}
        deprecated_map: dict[str, DeprecatedEntry] = {}
        directory_map: dict[str, DirectoryDefinition] = {}
        category_of: dict[str, str] = {}

        def claim(path: str, category: str) -> str | None:
            problem = _path_problem(path)
            if problem:
                problems.append(problem)
                return None
            key = normalize_path(path)
            previous = category_of.get(key)
            if previous is not None:
                if previous == category:
                    problems.append(f"{key} is declared twice in {category}")
                elif "deprecated" in (previous, category):
                    live = category if previous == "deprecated" else previous
                    problems.append(f"{key} is deprecated but still declared as {live}")
                else:
                    problems.append(f"{key} is declared as both {previous} and {category}")
                return None
            category_of[key] = category
            return key

        for definition in owned:
            key = claim(definition.path, "owned")
            if key is not None:
                owned_map[key] = replace(definition, path=key)
        for definition in managed:
            key = claim(definition.path, "managed")
            if key is not None:
                if not definition.fragments:
                    problems.append(f"managed file {key} declares no fragments")
                problems.extend(_fragment_problems(key, definition))
                managed_map[key] = replace(definition, path=key)
        for definition in directories:
            key = claim(definition.path, "directory")
            if key is not None:
                directory_map[key] = replace(definition, path=key)
        for entry in deprecated:
            key = claim(entry.path, "deprecated")
            if key is None:
                continue
            try:
                Version(entry.since_version)
            except InvalidVersion:
                problems.append(f"{key}: invalid since_version {entry.since_version!r}")
            deprecated_map[key] = replace(entry, path=key)

        for directory in (e.path for e in deprecated_map.values() if e.kind is DeprecatedKind.DIRECTORY):
            for live in sorted(set(owned_map) | set(managed_map) | set(directory_map)):
                if live.startswith(directory + "/"):
                    problems.append(f"{live} lives under deprecated directory {directory}")
        for directory in sorted(directory_map):
            for file_path in sorted(set(owned_map) | set(managed_map)):
                if directory.startswith(file_path + "/"):
                    problems.append(f"directory {directory} lies beneath file {file_path}")

        if problems:
            raise SchemaIntegrityError(
                f"Schema v{version} failed validation with {len(problems)} problem(s)",
                problems,
            )

        self._owned: Mapping[str, FileDefinition] = MappingProxyType(owned_map)
        self._managed: Mapping[str, ManagedFileDefinition] = MappingProxyType(managed_map)
        self._deprecated: Mapping[str, DeprecatedEntry] = MappingProxyType(deprecated_map)
        self._directories: Mapping[str, DirectoryDefinition] = MappingProxyType(directory_map)
        logger.debug(
            "Schema v%s: %d owned, %d managed, %d directories, %d deprecated",
            version,
            len(owned_map),
            len(managed_map),
            len(directory_map),
            len(deprecated_map),
        )

    @property
    def version(self) -> str:
        return self._version_text

    @property
    def parsed_version(self) -> Version:
        return self._version

    @property
    def owned(self) -> Mapping[str, FileDefinition]:
        return self._owned

    @property
    def managed(self) -> Mapping[str, ManagedFileDefinition]:
        return self._managed

    @property
    def deprecated(self) -> Mapping[str, DeprecatedEntry]:
        return self._deprecated

    @property
    def directories(self) -> Mapping[str, DirectoryDefinition]:
        return self._directories

    def resolve(
        self, path: str
    ) -> FileDefinition | ManagedFileDefinition | DirectoryDefinition | DeprecatedEntry | _NotFound:
        """Return the declaration for *path*, or ``NOT_FOUND``."""
        key = normalize_path(path)
        for table in (self._owned, self._managed, self._directories, self._deprecated):
            if key in table:
                return table[key]
        return NOT_FOUND

    def tracked_paths(self) -> set[str]:
        """Paths whose fingerprints belong in the manifest."""
        return set(self._owned) | set(self._managed)

    def enclosing_directory(self, path: str) -> str | None:
        """Nearest declared directory strictly above *path*, if any."""
        parents = PurePosixPath(normalize_path(path)).parents
        for parent in parents:
            if parent.as_posix() in self._directories:
                return parent.as_posix()
        return None

    def active_deprecations(self) -> Iterator[DeprecatedEntry]:
        """Deprecated entries whose ``since_version`` is not in the future."""
        for entry in self._deprecated.values():
            if Version(entry.since_version) <= self._version:
                yield entry

    def for_packs(self, packs: Iterable[str]) -> SchemaRegistry:
        """Return a registry narrowed to entries that apply to *packs*.

        Entries without pack tags always apply. Deprecations are kept as
        they are, since the sweeper proves safety per path.
        """
        enabled = set(packs)

        def applies(tags: tuple[str, ...]) -> bool:
            return not tags or bool(enabled.intersection(tags))

        return SchemaRegistry(
            self._version_text,
            owned=[d for d in self._owned.values() if applies(d.packs)],
            managed=[d for d in self._managed.values() if applies(d.packs)],
            deprecated=self._deprecated.values(),
            directories=[d for d in self._directories.values() if applies(d.packs)],
        )

    def __repr__(self) -> str:
        return (
            f"SchemaRegistry(version={self._version_text!r}, owned={len(self._owned)}, "
            f"managed={len(self._managed)}, directories={len(self._directories)}, "
            f"deprecated={len(self._deprecated)})"
        )
