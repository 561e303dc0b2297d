"""Turns drift reports into write actions and performs them.

Planning never touches the disk beyond reads. ``apply_action`` is the only
place a planned write or delete reaches the filesystem.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotward_cli.drift import DriftClassification, DriftReport, detect_drift
from dotward_cli.errors import MergeConflict
from dotward_cli.fingerprints import FingerprintManifest, hash_bytes
from dotward_cli.fs import (
    atomic_write,
    make_dir,
    read_bytes,
    remove_dir,
    remove_empty_dirs,
    remove_file,
    remove_tree,
)
from dotward_cli.merge import merge_managed
from dotward_cli.plan import Action, ActionCategory, ActionKind
from dotward_cli.schema.models import (
    DirectoryDefinition,
    FileDefinition,
    ManagedFileDefinition,
    OwnershipKind,
)

logger = logging.getLogger(__name__)


def _file_in_parents(project_root: Path, target: Path) -> str | None:
    for parent in target.parents:
        if parent == project_root:
            break
        if parent.exists() and not parent.is_dir():
            return parent.relative_to(project_root).as_posix()
    return None


def blocked_path(project_root: Path, path: str, category: ActionCategory) -> Action | None:
    """Return a blocked action when something other than a file holds *path*.

    A directory at the path itself, or a file where one of its parent
    directories should be, would make the write fail halfway through a run.
    """
    target = project_root / path
    if target.is_dir() and not target.is_symlink():
        return Action(ActionKind.SKIP_BLOCKED, path, category, "expected a file, found a directory")
    if (location := _file_in_parents(project_root, target)) is not None:
        return Action(
            ActionKind.SKIP_BLOCKED, path, category, f"expected a directory at {location}, found a file"
        )
    return None


def plan_directory(project_root: Path, definition: DirectoryDefinition) -> Action:
    """Create a declared directory unless it is already there."""
    path = definition.path
    target = project_root / path
    if target.is_dir():
        return Action(ActionKind.UNCHANGED, path, ActionCategory.DIRECTORY, str(definition.kind))
    if target.exists() or target.is_symlink():
        return Action(
            ActionKind.SKIP_BLOCKED, path, ActionCategory.DIRECTORY, "expected a directory, found a file"
        )
    if (location := _file_in_parents(project_root, target)) is not None:
        return Action(
            ActionKind.SKIP_BLOCKED,
            path,
            ActionCategory.DIRECTORY,
            f"expected a directory at {location}, found a file",
        )
    return Action(ActionKind.CREATE, path, ActionCategory.DIRECTORY, f"missing {definition.kind} directory")


def plan_owned(definition: FileDefinition, rendered: bytes, drift: DriftReport) -> Action:
    """Decide what to do with an owned file."""
    template_hash = hash_bytes(rendered)

    def action(kind: ActionKind, detail: str, routine: bool = False) -> Action:
        writes = kind in (ActionKind.CREATE, ActionKind.UPDATE)
        return Action(
            kind=kind,
            path=definition.path,
            category=ActionCategory.OWNED,
            detail=detail,
            content=rendered if writes else None,
            expected_hash=template_hash if kind is not ActionKind.SKIP_DRIFTED else None,
            executable=definition.executable,
            routine=routine,
        )

    classification = drift.classification
    if classification is DriftClassification.MISSING:
        return action(ActionKind.CREATE, "missing")

    if definition.ownership is OwnershipKind.CREATE_ONCE:
        return action(ActionKind.SKIP_DRIFTED, "create-once file already exists", routine=True)

    if classification is DriftClassification.FIRST_APPLY:
        if drift.current_hash == template_hash:
            return action(ActionKind.UNCHANGED, "already matches template")
        return action(ActionKind.CREATE, "replacing untracked file")
    if classification is DriftClassification.TEMPLATE_ONLY_CHANGED:
        return action(ActionKind.UPDATE, "template changed")
    if classification is DriftClassification.UNCHANGED:
        return action(ActionKind.UNCHANGED, "")
    if classification is DriftClassification.USER_MODIFIED:
        return action(ActionKind.SKIP_DRIFTED, "modified since last apply")
    raise TypeError(f"Unknown drift classification: {classification!r}")


def plan_managed(
    project_root: Path,
    definition: ManagedFileDefinition,
    manifest: FingerprintManifest,
) -> Action:
    """Merge every fragment into the current content and compare.

    The merge result plays the part of the template hash, so a file that
    already carries every fragment is ``Unchanged`` whatever the user
    added around them.
    """
    path = definition.path
    if (blocked := blocked_path(project_root, path, ActionCategory.MANAGED)) is not None:
        return blocked
    current = read_bytes(project_root / path)

    if current is None and not definition.create_if_missing:
        return Action(ActionKind.UNCHANGED, path, ActionCategory.MANAGED, "absent, not created")

    try:
        merged = merge_managed(definition, current)
    except MergeConflict as exc:
        logger.warning("Merge blocked for %s: %s", path, exc.reason)
        return Action(ActionKind.SKIP_BLOCKED, path, ActionCategory.MANAGED, exc.reason)

    merged_hash = hash_bytes(merged)
    drift = detect_drift(
        project_root,
        path,
        merged_hash,
        manifest,
        current_hash=hash_bytes(current) if current is not None else None,
    )
    logger.debug("%s: %s", path, drift.classification)

    if current is None:
        return Action(
            ActionKind.CREATE,
            path,
            ActionCategory.MANAGED,
            "missing",
            content=merged,
            expected_hash=merged_hash,
        )
    if merged == current:
        return Action(
            ActionKind.UNCHANGED, path, ActionCategory.MANAGED, expected_hash=merged_hash
        )
    return Action(
        ActionKind.MERGE,
        path,
        ActionCategory.MANAGED,
        f"adding missing fragments ({drift.classification})",
        content=merged,
        expected_hash=merged_hash,
    )


def apply_action(project_root: Path, action: Action) -> None:
    """Perform one mutating action under *project_root*."""
    target = project_root / action.path
    stop_at = project_root / action.keep_parent if action.keep_parent else project_root
    if action.category is ActionCategory.DIRECTORY:
        if action.kind is ActionKind.CREATE:
            make_dir(target)
            logger.debug("Created directory %s", action.path)
        elif action.kind is ActionKind.DELETE:
            remove_dir(target)
            remove_empty_dirs(target.parent, stop_at)
            logger.debug("Removed directory %s", action.path)
        return
    if action.writes:
        if action.content is None:
            raise ValueError(f"Write action for {action.path} carries no content")
        atomic_write(target, action.content, executable=action.executable)
        logger.debug("Wrote %s (%s)", action.path, action.kind)
    elif action.kind is ActionKind.DELETE:
        if target.is_dir() and not target.is_symlink():
            remove_tree(target)
        else:
            remove_file(target)
        remove_empty_dirs(target.parent, stop_at)
        logger.debug("Deleted %s", action.path)
