"""Exception hierarchy for the reconciliation engine.

Fatal errors abort the whole invocation. ``MergeConflict`` is the only
recoverable one raised as an exception; the orchestrator turns it into a
``SkipBlocked`` action and keeps going.
"""

from __future__ import annotations

from pathlib import Path


class DotwardError(Exception):
    """Base exception for dotward errors."""


class ConfigError(DotwardError):
    """Raised when ``.dotward/config.yaml`` cannot be parsed."""


class SchemaIntegrityError(DotwardError):
    """Raised when a schema manifest violates an ownership invariant.

    Attributes:
        problems: Every violation found, so one run reports all of them.
    """

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems: list[str] = problems or []


class TemplateError(DotwardError):
    """Raised when a template is missing or cannot be rendered."""


class MergeConflict(DotwardError):
    """A managed file no longer has the structure a fragment expects."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class FilesystemError(DotwardError):
    """Raised when a read or write fails while applying a plan."""

    def __init__(self, path: Path | str, cause: OSError) -> None:
        self.path = str(path)
        self.cause = cause
        super().__init__(f"Filesystem error on {path}: {cause}")


class VerificationMismatch(DotwardError):
    """Raised when a written path does not hash to what the plan intended."""

    def __init__(self, path: str, expected: str | None, actual: str | None) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Verification failed for {path}: expected {expected or 'absent'}, "
            f"found {actual or 'absent'}"
        )


class StaleBackupError(DotwardError):
    """Raised when a backup from an interrupted run is still on disk."""

    def __init__(self, backups: list[Path]) -> None:
        self.backups = backups
        names = ", ".join(b.name for b in backups)
        super().__init__(
            f"Found backup(s) from an interrupted run: {names}. "
            "Restore or discard them before reconciling again."
        )


class DowngradeError(DotwardError):
    """Raised when the project was reconciled by a newer schema than the CLI ships."""

    def __init__(self, project_version: str, schema_version: str) -> None:
        self.project_version = project_version
        self.schema_version = schema_version
        super().__init__(
            f"Project was set up with schema v{project_version}, "
            f"but this CLI ships v{schema_version}. Update the CLI first."
        )
