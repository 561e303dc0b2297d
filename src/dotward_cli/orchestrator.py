"""Reconciliation orchestrator.

Sequences one invocation as a state machine::

    idle -> planning -> (backed_up) -> applying -> verifying -> committed
                                                            \\-> rolled_back
    (failed when a fatal error hits and no backup was taken)

Planning only reads. The plan is built once and never revised; applying
walks it in order. Destructive modes (upgrade, reset) snapshot every path
the plan mutates first, so any fatal error after that point restores the
tree byte for byte.

Usage::

    reconciler = Reconciler(project_root, registry, TemplateCatalog.bundled())
    report = reconciler.run(ReconcileMode.UPGRADE)
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from enum import StrEnum
from pathlib import Path
from typing import Any, Callable, Mapping

from packaging.version import InvalidVersion, Version
from transitions import Machine

from dotward_cli.backup import (
    BackupTransaction,
    discard_stale_backup,
    find_stale_backups,
    restore_stale_backup,
)
from dotward_cli.config import DEFAULT_BACKUP_DIR, state_dir
from dotward_cli.drift import detect_drift
from dotward_cli.errors import DotwardError, DowngradeError, MergeConflict, StaleBackupError, VerificationMismatch
from dotward_cli.fingerprints import (
    FingerprintManifest,
    hash_bytes,
    hash_file,
    load_manifest,
    manifest_path,
    save_manifest,
)
from dotward_cli.fs import read_bytes, remove_empty_dirs, remove_file
from dotward_cli.materializer import apply_action, blocked_path, plan_directory, plan_managed, plan_owned
from dotward_cli.merge import unmerge_managed
from dotward_cli.plan import Action, ActionCategory, ActionKind, ReconciliationPlan
from dotward_cli.report import ReconciliationReport
from dotward_cli.schema.models import DirectoryKind, FileDefinition, ManagedFileDefinition
from dotward_cli.schema.registry import SchemaRegistry
from dotward_cli.sweeper import plan_sweep
from dotward_cli.templates import TemplateRenderer

logger = logging.getLogger(__name__)

Installer = Callable[[Path], int]
ActionWriter = Callable[[Path, Action], None]


class ReconcileMode(StrEnum):
    SETUP = "setup"
    UPGRADE = "upgrade"
    RESET = "reset"
    CHECK = "check"


class OrchestratorState(StrEnum):
    IDLE = "idle"
    PLANNING = "planning"
    BACKED_UP = "backed_up"
    APPLYING = "applying"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class StaleBackupPolicy(StrEnum):
    """What to do with a snapshot left behind by an interrupted run."""

    ABORT = "abort"
    RESTORE = "restore"
    DISCARD = "discard"


_S = OrchestratorState

TRANSITIONS: list[dict[str, Any]] = [
    {"trigger": "start_planning", "source": _S.IDLE.value, "dest": _S.PLANNING.value},
    {"trigger": "mark_backed_up", "source": _S.PLANNING.value, "dest": _S.BACKED_UP.value},
    {
        "trigger": "start_applying",
        "source": [_S.PLANNING.value, _S.BACKED_UP.value],
        "dest": _S.APPLYING.value,
    },
    {"trigger": "start_verifying", "source": _S.APPLYING.value, "dest": _S.VERIFYING.value},
    {"trigger": "mark_committed", "source": _S.VERIFYING.value, "dest": _S.COMMITTED.value},
    {
        "trigger": "mark_rolled_back",
        "source": [_S.BACKED_UP.value, _S.APPLYING.value, _S.VERIFYING.value],
        "dest": _S.ROLLED_BACK.value,
    },
    {
        "trigger": "mark_failed",
        "source": [_S.PLANNING.value, _S.APPLYING.value, _S.VERIFYING.value],
        "dest": _S.FAILED.value,
    },
]

_DESTRUCTIVE_MODES = frozenset({ReconcileMode.UPGRADE, ReconcileMode.RESET})
_RECORDED_KINDS = frozenset(
    {ActionKind.CREATE, ActionKind.UPDATE, ActionKind.MERGE, ActionKind.UNCHANGED}
)


class Reconciler:
    """Runs one reconciliation of *registry* against *project_root*.

    Each instance drives a single invocation; ``run`` may only be called
    once. ``writer`` performs each mutating action and exists so callers
    can observe or interrupt individual writes.
    """

    def __init__(
        self,
        project_root: Path,
        registry: SchemaRegistry,
        renderer: TemplateRenderer,
        *,
        backup_root: Path | None = None,
        stale_backup_policy: StaleBackupPolicy = StaleBackupPolicy.ABORT,
        installers: Mapping[str, Installer] | None = None,
        writer: ActionWriter = apply_action,
    ) -> None:
        self.project_root = project_root
        self.registry = registry
        self.renderer = renderer
        self.state_dir = state_dir(project_root)
        self.backup_root = backup_root or project_root / DEFAULT_BACKUP_DIR
        self.stale_backup_policy = stale_backup_policy
        self.installers = dict(installers or {})
        self._writer = writer
        # Machine sets this to the initial state during construction.
        self.state: str = ""

        self._machine = Machine(
            model=self,
            states=[s.value for s in OrchestratorState],
            transitions=TRANSITIONS,
            initial=OrchestratorState.IDLE.value,
            auto_transitions=False,
            after_state_change="_log_state",
        )

    def _log_state(self) -> None:
        logger.info("Reconciliation state: %s", self.state)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, mode: ReconcileMode) -> ReconciliationReport:
        """Plan and, unless *mode* is ``check``, apply one reconciliation.

        Raises:
            StaleBackupError: If an interrupted run left a snapshot and the
                policy is ``ABORT``.
            DowngradeError: If the project was reconciled by a newer schema.
            TemplateError: If a template cannot be rendered.
        """
        if self.state != OrchestratorState.IDLE:
            raise RuntimeError("A Reconciler runs exactly once")

        self._recover_stale_backups()
        manifest = load_manifest(self.state_dir)
        if mode is not ReconcileMode.RESET:
            self._check_downgrade(manifest)

        self.start_planning()
        plan = self.build_plan(mode, manifest)
        logger.info("Planned %d action(s), %d mutating", len(plan), len(plan.mutating))

        if mode is ReconcileMode.CHECK:
            return self._report(mode, plan)

        transaction: BackupTransaction | None = None
        try:
            if mode in _DESTRUCTIVE_MODES and plan.has_changes:
                paths = [a.path for a in plan.mutating]
                paths.append(manifest_path(self.state_dir).relative_to(self.project_root).as_posix())
                transaction = BackupTransaction(self.project_root, self.backup_root, paths)
                transaction.begin()
                self.mark_backed_up()

            self.start_applying()
            for action in plan.mutating:
                self._writer(self.project_root, action)

            self.start_verifying()
            self.verify(plan)
            self._persist(mode, plan, manifest)
        except Exception as exc:
            if transaction is not None and transaction.active:
                transaction.rollback()
                self.mark_rolled_back()
            elif self.state != OrchestratorState.FAILED:
                self.mark_failed()
            if not isinstance(exc, DotwardError):
                raise
            logger.error("Reconciliation aborted: %s", exc)
            return self._report(mode, plan, failure=str(exc))

        if transaction is not None:
            transaction.commit()
        self.mark_committed()

        warnings = self._run_installers() if mode is not ReconcileMode.RESET else []
        return self._report(mode, plan, warnings=warnings)

    def _report(
        self,
        mode: ReconcileMode,
        plan: ReconciliationPlan,
        failure: str | None = None,
        warnings: list[str] | None = None,
    ) -> ReconciliationReport:
        return ReconciliationReport(
            mode=str(mode),
            schema_version=self.registry.version,
            state=self.state,
            plan=plan,
            failure=failure,
            warnings=tuple(warnings or ()),
        )

    # ------------------------------------------------------------------
    # Pre-flight checks
    # ------------------------------------------------------------------

    def _recover_stale_backups(self) -> None:
        stale = find_stale_backups(self.backup_root)
        if not stale:
            return
        if self.stale_backup_policy is StaleBackupPolicy.RESTORE:
            # Newest first, so the oldest snapshot's content is what remains.
            for directory in reversed(stale):
                logger.warning("Restoring stale backup %s", directory)
                restore_stale_backup(self.project_root, directory)
        elif self.stale_backup_policy is StaleBackupPolicy.DISCARD:
            for directory in stale:
                discard_stale_backup(directory)
        else:
            raise StaleBackupError(stale)

    def _check_downgrade(self, manifest: FingerprintManifest) -> None:
        if not manifest.exists:
            return
        try:
            recorded = Version(str(manifest.schema_version))
        except InvalidVersion:
            logger.warning("Ignoring unparseable schema version %r in manifest", manifest.schema_version)
            return
        if recorded > self.registry.parsed_version:
            raise DowngradeError(str(manifest.schema_version), self.registry.version)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def build_plan(self, mode: ReconcileMode, manifest: FingerprintManifest) -> ReconciliationPlan:
        """Resolve every schema entry against the tree. Reads only."""
        if mode is ReconcileMode.RESET:
            actions = self._plan_reset(manifest)
        else:
            actions = [plan_directory(self.project_root, d) for d in self.registry.directories.values()]
            actions.extend(self._plan_owned(d, manifest) for d in self.registry.owned.values())
            actions.extend(
                plan_managed(self.project_root, d, manifest) for d in self.registry.managed.values()
            )
            # A first setup has nothing of ours to sweep yet.
            if mode is not ReconcileMode.SETUP or manifest.exists:
                actions.extend(plan_sweep(self.project_root, self.registry, manifest))
        return ReconciliationPlan.build(self.registry.version, [self._bound_cleanup(a) for a in actions])

    def _bound_cleanup(self, action: Action) -> Action:
        if action.kind is not ActionKind.DELETE:
            return action
        return replace(action, keep_parent=self.registry.enclosing_directory(action.path))

    def _plan_owned(self, definition: FileDefinition, manifest: FingerprintManifest) -> Action:
        rendered = self.renderer.render(definition.template_id)
        if (blocked := blocked_path(self.project_root, definition.path, ActionCategory.OWNED)) is not None:
            return blocked
        drift = detect_drift(
            self.project_root,
            definition.path,
            hash_bytes(rendered),
            manifest,
            ownership=definition.ownership,
        )
        logger.debug("%s: %s", definition.path, drift.classification)
        return plan_owned(definition, rendered, drift)

    def _plan_reset(self, manifest: FingerprintManifest) -> list[Action]:
        actions = [
            action
            for definition in self.registry.owned.values()
            if (action := self._plan_owned_removal(definition, manifest)) is not None
        ]
        actions.extend(
            action
            for definition in self.registry.managed.values()
            if (action := self._plan_unmerge(definition)) is not None
        )
        actions.extend(plan_sweep(self.project_root, self.registry, manifest))
        actions.extend(self._plan_directory_removal(actions))
        return actions

    def _plan_owned_removal(
        self, definition: FileDefinition, manifest: FingerprintManifest
    ) -> Action | None:
        current = hash_file(self.project_root / definition.path)
        if current is None:
            return None
        last_applied = manifest.last_applied_hash(definition.path)
        if last_applied is None:
            proven = current == hash_bytes(self.renderer.render(definition.template_id))
        else:
            proven = current == last_applied
        if proven:
            return Action(ActionKind.DELETE, definition.path, ActionCategory.OWNED, "removing")
        return Action(
            ActionKind.SKIP_DRIFTED,
            definition.path,
            ActionCategory.OWNED,
            "modified since last apply; left in place",
        )

    def _plan_directory_removal(self, actions: list[Action]) -> list[Action]:
        """Remove owned directories this reset leaves empty, deepest first.

        Shared and preserved directories are never removed, and neither is
        an owned one still holding anything the plan does not delete.
        """
        removed = {a.path for a in actions if a.kind is ActionKind.DELETE}
        owned = [d for d in self.registry.directories.values() if d.kind is DirectoryKind.OWNED]
        planned: list[Action] = []
        for definition in sorted(owned, key=lambda d: (-d.path.count("/"), d.path)):
            target = self.project_root / definition.path
            if not target.is_dir() or target.is_symlink():
                continue
            leftover = _leftover_entries(self.project_root, target, removed)
            if leftover:
                planned.append(
                    Action(
                        ActionKind.UNCHANGED,
                        definition.path,
                        ActionCategory.DIRECTORY,
                        f"kept; {leftover} other item(s) remain",
                    )
                )
                continue
            planned.append(
                Action(ActionKind.DELETE, definition.path, ActionCategory.DIRECTORY, "empty after reset")
            )
            removed.add(definition.path)
        return planned

    def _plan_unmerge(self, definition: ManagedFileDefinition) -> Action | None:
        current = read_bytes(self.project_root / definition.path)
        if current is None:
            return None
        try:
            remaining = unmerge_managed(definition, current)
        except MergeConflict as exc:
            logger.warning("Cannot remove fragments from %s: %s", definition.path, exc.reason)
            return Action(ActionKind.SKIP_BLOCKED, definition.path, ActionCategory.MANAGED, exc.reason)
        if remaining is None:
            return Action(
                ActionKind.DELETE, definition.path, ActionCategory.MANAGED, "empty without our fragments"
            )
        if remaining == current:
            return Action(ActionKind.UNCHANGED, definition.path, ActionCategory.MANAGED)
        return Action(
            ActionKind.UPDATE,
            definition.path,
            ActionCategory.MANAGED,
            "removing fragments",
            content=remaining,
            expected_hash=hash_bytes(remaining),
        )

    # ------------------------------------------------------------------
    # Verification and commit
    # ------------------------------------------------------------------

    def verify(self, plan: ReconciliationPlan) -> None:
        """Re-hash every mutated path and compare with the plan.

        Raises:
            VerificationMismatch: On the first path that differs.
        """
        for action in plan.mutating:
            target = self.project_root / action.path
            if action.kind is ActionKind.DELETE:
                if target.exists() or target.is_symlink():
                    raise VerificationMismatch(action.path, None, hash_file(target) or "directory")
                continue
            if action.category is ActionCategory.DIRECTORY:
                if not target.is_dir():
                    raise VerificationMismatch(action.path, "directory", hash_file(target))
                continue
            actual = hash_file(target)
            if actual != action.expected_hash:
                raise VerificationMismatch(action.path, action.expected_hash, actual)

    def _persist(
        self, mode: ReconcileMode, plan: ReconciliationPlan, manifest: FingerprintManifest
    ) -> None:
        if mode is ReconcileMode.RESET:
            remove_file(manifest_path(self.state_dir))
            remove_empty_dirs(self.state_dir, self.project_root)
            return

        updated = next_manifest(self.registry, plan, manifest)
        if manifest.exists and updated.to_dict() == manifest.to_dict():
            logger.debug("Fingerprint manifest unchanged")
            return
        save_manifest(self.state_dir, updated.stamped(self.registry.version))

    def _run_installers(self) -> list[str]:
        warnings: list[str] = []
        for name, installer in self.installers.items():
            try:
                code = installer(self.project_root)
            except Exception as exc:
                logger.warning("Post-commit step %s raised: %s", name, exc)
                warnings.append(f"{name} failed: {exc}")
                continue
            if code != 0:
                logger.warning("Post-commit step %s exited with %d", name, code)
                warnings.append(f"{name} exited with status {code}")
        return warnings


def next_manifest(
    registry: SchemaRegistry, plan: ReconciliationPlan, manifest: FingerprintManifest
) -> FingerprintManifest:
    """Fold a successfully applied plan into *manifest*.

    Paths that were skipped keep their previous record, deleted paths
    lose theirs, and entries the schema no longer tracks are pruned.
    """
    updated = manifest
    for action in plan:
        if action.kind is ActionKind.DELETE:
            updated = updated.without([action.path])
        elif action.kind in _RECORDED_KINDS and action.expected_hash is not None:
            if updated.last_applied_hash(action.path) != action.expected_hash:
                updated = updated.with_entry(action.path, action.expected_hash, registry.version)
    updated = updated.pruned(registry.tracked_paths())
    if updated.schema_version != registry.version:
        updated = updated.stamped(registry.version)
    return updated


def _leftover_entries(project_root: Path, directory: Path, removed: set[str]) -> int:
    """Count files and empty directories under *directory* not covered by *removed*."""

    def covered(path: Path) -> bool:
        relative = path.relative_to(project_root).as_posix()
        return any(relative == p or relative.startswith(p + "/") for p in removed)

    count = 0
    for dirpath, dirnames, filenames in os.walk(directory):
        base = Path(dirpath)
        leaves = [base / name for name in filenames]
        leaves.extend(base / name for name in dirnames if (base / name).is_symlink())
        if base != directory and not dirnames and not filenames:
            leaves.append(base)
        count += sum(1 for leaf in leaves if not covered(leaf))
    return count
