"""Drift classification for tracked files.

Compares three hashes for a path: what is on disk now, what the engine
last wrote there (from the fingerprint manifest), and what the current
schema would produce.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from dotward_cli.fingerprints import FingerprintManifest, hash_file
from dotward_cli.schema.models import OwnershipKind


class DriftClassification(StrEnum):
    UNCHANGED = "unchanged"
    TEMPLATE_ONLY_CHANGED = "template_only_changed"
    USER_MODIFIED = "user_modified"
    MISSING = "missing"
    FIRST_APPLY = "first_apply"


@dataclass(frozen=True)
class DriftReport:
    path: str
    classification: DriftClassification
    current_hash: str | None
    last_applied_hash: str | None
    template_hash: str | None

    @property
    def exists(self) -> bool:
        return self.current_hash is not None

    @property
    def matches_template(self) -> bool:
        return self.current_hash is not None and self.current_hash == self.template_hash


def classify(
    current_hash: str | None,
    last_applied_hash: str | None,
    template_hash: str | None,
    ownership: OwnershipKind | None = None,
) -> DriftClassification:
    """Classify a tracked path.

    Missing wins over everything, then FirstApply, then the hash table.
    An existing ``CreateOnce`` file is always ``USER_MODIFIED``.
    """
    if current_hash is None:
        return DriftClassification.MISSING
    if ownership is OwnershipKind.CREATE_ONCE:
        return DriftClassification.USER_MODIFIED
    if last_applied_hash is None:
        return DriftClassification.FIRST_APPLY
    if current_hash != last_applied_hash:
        return DriftClassification.USER_MODIFIED
    if template_hash == last_applied_hash:
        return DriftClassification.UNCHANGED
    return DriftClassification.TEMPLATE_ONLY_CHANGED


def detect_drift(
    project_root: Path,
    path: str,
    template_hash: str | None,
    manifest: FingerprintManifest,
    ownership: OwnershipKind | None = None,
    current_hash: str | None = None,
) -> DriftReport:
    """Hash *path* under *project_root* and classify it against *manifest*.

    Pass ``current_hash`` when the caller already read the file.
    """
    if current_hash is None:
        current_hash = hash_file(project_root / path)
    last_applied = manifest.last_applied_hash(path)
    return DriftReport(
        path=path,
        classification=classify(current_hash, last_applied, template_hash, ownership),
        current_hash=current_hash,
        last_applied_hash=last_applied,
        template_hash=template_hash,
    )
