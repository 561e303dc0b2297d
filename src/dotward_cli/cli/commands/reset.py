"""``dotward reset``: remove everything dotward contributed to a project."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from dotward_cli.cli.helpers import (
    build_reconciler,
    configure_logging,
    console,
    emit_report,
    handle_errors,
    load_project,
    stale_backup_policy,
)
from dotward_cli.orchestrator import ReconcileMode


def reset(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root to reset"),
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Also remove files of this optional pack (repeatable)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show unchanged paths and debug logs"),
    restore_backup: bool = typer.Option(
        False, "--restore-backup", help="Restore a backup left by an interrupted run first"
    ),
    discard_backup: bool = typer.Option(
        False, "--discard-backup", help="Delete a backup left by an interrupted run first"
    ),
) -> None:
    """Remove framework files and take framework settings back out.

    Files you modified are left in place and reported. Settings you added
    to managed files are kept.
    """
    configure_logging(verbose)
    with handle_errors(json_output):
        project_root, config = load_project(path)
        if not yes and not json_output:
            if not typer.confirm(f"Remove dotward files from {project_root}?", default=False):
                console.print("[yellow]Reset cancelled.[/yellow]")
                raise typer.Exit(0)
        policy = stale_backup_policy(
            project_root, config, restore_backup, discard_backup, interactive=not json_output
        )
        report = build_reconciler(project_root, config, pack, policy).run(ReconcileMode.RESET)
    emit_report(report, json_output, verbose)
