"""Backup transaction wrapping a destructive reconciliation.

``begin`` snapshots every path the plan will mutate into
``.dotward/backups/<stamp>/``, ``commit`` deletes the snapshot and
``rollback`` restores each path verbatim, including removing paths that
did not exist before along with any parent directories the run created
for them. The ``backup.json`` index is written last, so a
snapshot directory without one was never completed and the tree was never
touched after it.

A snapshot that survives process exit means the run was interrupted;
``find_stale_backups`` lets the next invocation notice it.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from types import TracebackType
from typing import Iterable

from dotward_cli.errors import FilesystemError
from dotward_cli.fs import atomic_write, remove_empty_dirs, remove_file, remove_tree

logger = logging.getLogger(__name__)

INDEX_FILENAME = "backup.json"
FILES_DIRNAME = "files"


class SnapshotKind(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"
    ABSENT = "absent"


class BackupTransaction:
    """Explicit begin/commit/rollback around a set of project paths.

    Also usable as a context manager: an exception inside the block rolls
    back, a clean exit commits.
    """

    def __init__(self, project_root: Path, backup_root: Path, paths: Iterable[str]) -> None:
        self.project_root = project_root
        self.backup_root = backup_root
        self.paths = sorted(set(paths))
        self.directory: Path | None = None
        self._index: dict[str, SnapshotKind] = {}
        # Nearest pre-existing ancestor of each absent path.
        self._anchors: dict[str, str] = {}
        self._closed = False

    @classmethod
    def resume(cls, project_root: Path, directory: Path) -> BackupTransaction:
        """Reopen a snapshot left behind by an interrupted run."""
        index = read_index(directory)
        transaction = cls(project_root, directory.parent, index)
        transaction.directory = directory
        transaction._index = index
        transaction._anchors = read_anchors(directory)
        return transaction

    @property
    def active(self) -> bool:
        return self.directory is not None and not self._closed

    def begin(self) -> Path:
        if self.directory is not None:
            raise RuntimeError("Backup transaction already started")
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        directory = self.backup_root / stamp
        anchors = {path: self._nearest_existing_parent(path) for path in self.paths}
        try:
            (directory / FILES_DIRNAME).mkdir(parents=True, exist_ok=False)
            for path in self.paths:
                self._index[path] = self._snapshot(path, directory / FILES_DIRNAME / path)
        except OSError as exc:
            shutil.rmtree(directory, ignore_errors=True)
            raise FilesystemError(directory, exc) from exc

        self._anchors = {p: a for p, a in anchors.items() if self._index[p] is SnapshotKind.ABSENT}
        index = {
            "created_at": stamp,
            "paths": {p: str(k) for p, k in self._index.items()},
            "anchors": self._anchors,
        }
        atomic_write(directory / INDEX_FILENAME, (json.dumps(index, indent=2) + "\n").encode("utf-8"))
        self.directory = directory
        logger.info("Backed up %d path(s) to %s", len(self.paths), directory)
        return directory

    def _nearest_existing_parent(self, path: str) -> str:
        parent = (self.project_root / path).parent
        while parent != self.project_root and not parent.is_dir():
            parent = parent.parent
        return parent.relative_to(self.project_root).as_posix()

    def _snapshot(self, path: str, destination: Path) -> SnapshotKind:
        source = self.project_root / path
        if source.is_symlink() or source.is_file():
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination, follow_symlinks=False)
            return SnapshotKind.FILE
        if source.is_dir():
            shutil.copytree(source, destination, symlinks=True)
            return SnapshotKind.DIRECTORY
        return SnapshotKind.ABSENT

    def commit(self) -> None:
        """Discard the snapshot; the new tree is final."""
        if not self.active:
            return
        self._discard()
        logger.info("Backup committed and removed")

    def rollback(self) -> None:
        """Restore every snapshotted path, then discard the snapshot."""
        if not self.active:
            return
        assert self.directory is not None
        files_dir = self.directory / FILES_DIRNAME
        for path, kind in sorted(self._index.items()):
            target = self.project_root / path
            try:
                self._clear(target)
                if kind is SnapshotKind.FILE:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(files_dir / path, target, follow_symlinks=False)
                elif kind is SnapshotKind.DIRECTORY:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copytree(files_dir / path, target, symlinks=True)
                else:
                    anchor = self.project_root / self._anchors.get(path, ".")
                    remove_empty_dirs(target.parent, anchor)
            except OSError as exc:
                raise FilesystemError(target, exc) from exc
        logger.warning("Rolled back %d path(s) from %s", len(self._index), self.directory)
        self._discard()

    @staticmethod
    def _clear(target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            remove_tree(target)
        elif target.exists() or target.is_symlink():
            remove_file(target)

    def _discard(self) -> None:
        assert self.directory is not None
        try:
            shutil.rmtree(self.directory)
        except OSError as exc:
            raise FilesystemError(self.directory, exc) from exc
        remove_empty_dirs(self.backup_root, self.project_root)
        self._closed = True

    def __enter__(self) -> BackupTransaction:
        self.begin()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()
        return False


def read_index(directory: Path) -> dict[str, SnapshotKind]:
    """Return the path index of a snapshot; empty when it was never completed."""
    index_path = directory / INDEX_FILENAME
    if not index_path.is_file():
        return {}
    try:
        data = json.loads(index_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise FilesystemError(index_path, exc) from exc
    except json.JSONDecodeError:
        logger.warning("Backup index %s is unreadable; treating snapshot as incomplete", index_path)
        return {}
    return {path: SnapshotKind(kind) for path, kind in data.get("paths", {}).items()}


def find_stale_backups(backup_root: Path) -> list[Path]:
    """Snapshot directories left behind by interrupted runs, oldest first."""
    if not backup_root.is_dir():
        return []
    return sorted(p for p in backup_root.iterdir() if p.is_dir())


def restore_stale_backup(project_root: Path, directory: Path) -> None:
    """Roll the project back to an interrupted run's snapshot."""
    BackupTransaction.resume(project_root, directory).rollback()


def discard_stale_backup(directory: Path) -> None:
    try:
        shutil.rmtree(directory)
    except OSError as exc:
        raise FilesystemError(directory, exc) from exc
    logger.info("Discarded stale backup %s", directory)


def read_anchors(directory: Path) -> dict[str, str]:
    """Nearest directory that existed before the run, per absent path."""
    index_path = directory / INDEX_FILENAME
    try:
        data = json.loads(index_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return dict(data.get("anchors", {}))
