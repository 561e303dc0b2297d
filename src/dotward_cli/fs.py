"""Filesystem primitives used while applying a plan.

Every write goes to a temporary file in the destination directory and is
moved into place with ``os.replace`` so an interrupted process never leaves
a half-written file behind.
"""

from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path

from dotward_cli.errors import FilesystemError

EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def read_bytes(path: Path) -> bytes | None:
    """Return the content of *path*, or None when it is not a file."""
    if not path.is_file():
        return None
    try:
        return path.read_bytes()
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def atomic_write(path: Path, data: bytes, executable: bool = False) -> None:
    """Write *data* to *path* atomically (temp file + rename).

    The temporary file is created next to *path* so the rename never
    crosses a filesystem boundary. Existing permission bits are kept;
    ``executable`` adds the execute bits on top.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        previous_mode = path.stat().st_mode if path.exists() else None
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            mode = stat.S_IMODE(previous_mode) if previous_mode is not None else 0o644
            if executable:
                mode |= EXECUTABLE_BITS
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def remove_empty_dirs(path: Path, stop_at: Path) -> None:
    """Remove *path* and its empty parents, never going above *stop_at*."""
    current = path
    stop = stop_at.resolve()
    while current.resolve() != stop and stop in current.resolve().parents:
        if not current.is_dir() or any(current.iterdir()):
            return
        try:
            current.rmdir()
        except OSError as exc:
            raise FilesystemError(current, exc) from exc
        current = current.parent


def remove_tree(path: Path) -> None:
    """Remove a directory whose contents have already been vetted."""
    if not path.is_dir():
        return
    for child in sorted(path.rglob("*"), reverse=True):
        try:
            if child.is_dir() and not child.is_symlink():
                child.rmdir()
            else:
                child.unlink()
        except OSError as exc:
            raise FilesystemError(child, exc) from exc
    try:
        path.rmdir()
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def make_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def remove_dir(path: Path) -> None:
    """Remove an empty directory; a non-empty one is an error."""
    if not path.is_dir():
        return
    try:
        path.rmdir()
    except OSError as exc:
        raise FilesystemError(path, exc) from exc
