"""``dotward upgrade``: bring a project up to the bundled schema version."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from dotward_cli.cli.helpers import (
    build_reconciler,
    configure_logging,
    emit_report,
    handle_errors,
    load_project,
    stale_backup_policy,
)
from dotward_cli.orchestrator import ReconcileMode


def upgrade(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root to reconcile"),
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Enable an optional pack for this run (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show unchanged paths and debug logs"),
    restore_backup: bool = typer.Option(
        False, "--restore-backup", help="Restore a backup left by an interrupted run first"
    ),
    discard_backup: bool = typer.Option(
        False, "--discard-backup", help="Delete a backup left by an interrupted run first"
    ),
) -> None:
    """Update framework files, merge new settings and sweep deprecated paths.

    Every path the upgrade touches is backed up first; if anything fails
    the project is restored exactly as it was.

    Examples:
        dotward upgrade
        dotward upgrade --json
        dotward upgrade --restore-backup
    """
    configure_logging(verbose)
    with handle_errors(json_output):
        project_root, config = load_project(path)
        policy = stale_backup_policy(
            project_root, config, restore_backup, discard_backup, interactive=not json_output
        )
        report = build_reconciler(project_root, config, pack, policy).run(ReconcileMode.UPGRADE)
    emit_report(report, json_output, verbose)
