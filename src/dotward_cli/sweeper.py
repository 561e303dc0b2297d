"""Deprecation sweep: removes paths the current schema no longer owns.

A path is only ever deleted when its bytes are provably framework-authored:
the hash matches one of the entry's historical fingerprints, or the hash
the fingerprint manifest recorded when this engine last wrote the path.
Anything else is reported as blocked and left in place.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotward_cli.fingerprints import FingerprintManifest, hash_file
from dotward_cli.plan import Action, ActionCategory, ActionKind
from dotward_cli.schema.models import DeprecatedEntry, DeprecatedKind
from dotward_cli.schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)


def _known_hashes(path: str, fingerprints: tuple[str, ...], manifest: FingerprintManifest) -> set[str]:
    known = set(fingerprints)
    last_applied = manifest.last_applied_hash(path)
    if last_applied:
        known.add(last_applied)
    return known


def _covered(path: str, deleted: set[str]) -> bool:
    return path in deleted or any(path.startswith(d + "/") for d in deleted)


def _blocked(path: str, reason: str) -> Action:
    logger.warning("Not removing deprecated %s: %s", path, reason)
    return Action(ActionKind.SKIP_BLOCKED, path, ActionCategory.DEPRECATED, reason)


def sweep_file(project_root: Path, entry: DeprecatedEntry, manifest: FingerprintManifest) -> Action | None:
    """Plan the removal of one deprecated file; ``None`` when it is already gone."""
    target = project_root / entry.path
    if target.is_dir():
        return _blocked(entry.path, "expected a file, found a directory")
    current = hash_file(target)
    if current is None:
        return None
    if current in _known_hashes(entry.path, entry.historical_fingerprints, manifest):
        return Action(
            ActionKind.DELETE,
            entry.path,
            ActionCategory.DEPRECATED,
            f"deprecated since v{entry.since_version}",
        )
    return _blocked(entry.path, "content does not match any framework fingerprint")


def sweep_directory(
    project_root: Path,
    entry: DeprecatedEntry,
    manifest: FingerprintManifest,
    deleted_files: set[str],
) -> Action | None:
    """Plan the removal of a deprecated directory.

    The directory goes only if every file under it is either already
    planned for deletion or itself proven framework-authored.
    """
    target = project_root / entry.path
    if not target.exists():
        return None
    if not target.is_dir():
        return _blocked(entry.path, "expected a directory, found a file")

    unknown: list[str] = []
    for child in sorted(target.rglob("*")):
        if child.is_dir() and not child.is_symlink():
            continue
        relative = child.relative_to(project_root).as_posix()
        if _covered(relative, deleted_files):
            continue
        digest = hash_file(child) if child.is_file() else None
        if digest is None or digest not in _known_hashes(relative, entry.historical_fingerprints, manifest):
            unknown.append(relative)

    if unknown:
        return _blocked(entry.path, f"contains {len(unknown)} file(s) not written by the framework")
    return Action(
        ActionKind.DELETE,
        entry.path,
        ActionCategory.DEPRECATED,
        f"deprecated since v{entry.since_version}",
    )


def plan_sweep(
    project_root: Path, registry: SchemaRegistry, manifest: FingerprintManifest
) -> list[Action]:
    """Plan deletions for every active deprecation of *registry*."""
    entries = sorted(registry.active_deprecations(), key=lambda e: e.path)
    actions: list[Action] = []
    deleted_files: set[str] = set()

    for entry in entries:
        if entry.kind is DeprecatedKind.FILE:
            action = sweep_file(project_root, entry, manifest)
            if action is not None:
                actions.append(action)
                if action.kind is ActionKind.DELETE:
                    deleted_files.add(entry.path)

    directories = [e for e in entries if e.kind is DeprecatedKind.DIRECTORY]
    for entry in sorted(directories, key=lambda e: -e.path.count("/")):
        action = sweep_directory(project_root, entry, manifest, deleted_files)
        if action is not None:
            actions.append(action)
            if action.kind is ActionKind.DELETE:
                deleted_files.add(entry.path)

    return actions
