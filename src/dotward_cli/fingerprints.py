"""Content fingerprints and the persisted fingerprint manifest.

The manifest is the engine's only durable state. It records, per owned
or managed path, the SHA256 of the bytes last written there and the
schema version that wrote them. It lives at ``.dotward/fingerprints.json``,
is read once at the start of an invocation and written once at commit.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from dotward_cli.errors import FilesystemError
from dotward_cli.fs import atomic_write

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "fingerprints.json"
MANIFEST_FORMAT = 1


def hash_bytes(data: bytes) -> str:
    """Return the 64-character lowercase SHA256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def hash_file(file_path: Path) -> str | None:
    """Compute SHA256 of a file's bytes, or None when it does not exist.

    Reads in 8KB chunks so large files are never held in memory.

    Raises:
        FilesystemError: If the file exists but cannot be read.
    """
    if not file_path.is_file():
        return None
    hasher = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(8192):
                hasher.update(chunk)
    except OSError as exc:
        raise FilesystemError(file_path, exc) from exc
    return hasher.hexdigest()


@dataclass(frozen=True)
class FingerprintEntry:
    path: str
    last_applied_hash: str
    schema_version_at_apply: str

    def to_dict(self) -> dict[str, str]:
        return {
            "path": self.path,
            "last_applied_hash": self.last_applied_hash,
            "schema_version_at_apply": self.schema_version_at_apply,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FingerprintEntry:
        return cls(
            path=data["path"],
            last_applied_hash=data["last_applied_hash"],
            schema_version_at_apply=data["schema_version_at_apply"],
        )


@dataclass(frozen=True)
class FingerprintManifest:
    """Per-path hashes from the last successful reconciliation.

    Instances are immutable; ``with_entry``/``without``/``pruned`` return
    updated copies so a rolled-back run can simply drop its copy.
    """

    schema_version: str | None = None
    entries: dict[str, FingerprintEntry] = field(default_factory=dict)
    updated_at: str | None = None

    @property
    def exists(self) -> bool:
        return self.schema_version is not None

    def get(self, path: str) -> FingerprintEntry | None:
        return self.entries.get(path)

    def last_applied_hash(self, path: str) -> str | None:
        entry = self.entries.get(path)
        return entry.last_applied_hash if entry else None

    def with_entry(self, path: str, digest: str, schema_version: str) -> FingerprintManifest:
        entries = dict(self.entries)
        entries[path] = FingerprintEntry(path, digest, schema_version)
        return replace(self, entries=entries)

    def without(self, paths: Iterable[str]) -> FingerprintManifest:
        drop = set(paths)
        return replace(self, entries={p: e for p, e in self.entries.items() if p not in drop})

    def pruned(self, keep: Iterable[str]) -> FingerprintManifest:
        """Drop orphan entries whose path is not in *keep*."""
        keep_set = set(keep)
        orphans = sorted(set(self.entries) - keep_set)
        if orphans:
            logger.debug("Pruning %d orphan fingerprint(s): %s", len(orphans), ", ".join(orphans))
        return self.without(orphans)

    def stamped(self, schema_version: str) -> FingerprintManifest:
        return replace(
            self,
            schema_version=schema_version,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": MANIFEST_FORMAT,
            "schema_version": self.schema_version,
            "updated_at": self.updated_at,
            "entries": {p: self.entries[p].to_dict() for p in sorted(self.entries)},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FingerprintManifest:
        raw_entries = data.get("entries") or {}
        return cls(
            schema_version=data.get("schema_version"),
            entries={path: FingerprintEntry.from_dict(raw) for path, raw in raw_entries.items()},
            updated_at=data.get("updated_at"),
        )


def manifest_path(state_dir: Path) -> Path:
    return state_dir / MANIFEST_FILENAME


def load_manifest(state_dir: Path) -> FingerprintManifest:
    """Load the manifest, returning an empty one when none was written yet.

    A corrupt manifest is logged and treated as absent, so every tracked
    file is classified ``FirstApply`` on this run.
    """
    path = manifest_path(state_dir)
    if not path.is_file():
        return FingerprintManifest()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return FingerprintManifest.from_dict(data)
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Ignoring unreadable fingerprint manifest %s: %s", path, exc)
        return FingerprintManifest()
    except OSError as exc:
        raise FilesystemError(path, exc) from exc


def save_manifest(state_dir: Path, manifest: FingerprintManifest) -> None:
    """Persist *manifest* atomically."""
    payload = json.dumps(manifest.to_dict(), indent=2, sort_keys=True) + "\n"
    atomic_write(manifest_path(state_dir), payload.encode("utf-8"))
