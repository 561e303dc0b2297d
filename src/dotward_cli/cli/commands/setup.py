"""``dotward setup``: install the framework files into a project."""

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
from dotward_cli.config import save_packs
from dotward_cli.orchestrator import ReconcileMode


def setup(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root to reconcile"),
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Enable an optional pack (repeatable); saved to .dotward/config.yaml"
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
    """Create missing framework files and merge required settings.

    Existing files you edited are never overwritten; they are reported as
    skipped. Running setup twice in a row changes nothing.

    Examples:
        dotward setup
        dotward setup --pack python --pack typescript
    """
    configure_logging(verbose)
    with handle_errors(json_output):
        project_root, config = load_project(path)
        policy = stale_backup_policy(
            project_root, config, restore_backup, discard_backup, interactive=not json_output
        )
        reconciler = build_reconciler(project_root, config, pack, policy)
        report = reconciler.run(ReconcileMode.SETUP)
        if pack and report.succeeded:
            save_packs(project_root, pack)
    emit_report(report, json_output, verbose)
