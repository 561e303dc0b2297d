"""``dotward check``: report drift without changing anything."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from dotward_cli.cli.helpers import build_reconciler, configure_logging, emit_report, handle_errors, load_project
from dotward_cli.orchestrator import ReconcileMode


def check(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root to inspect"),
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Enable an optional pack for this check (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show unchanged paths and debug logs"),
) -> None:
    """Plan an upgrade and report it without writing.

    Exits non-zero when any file would change, was edited outside the
    framework, or is blocked, which makes it suitable for CI.
    """
    configure_logging(verbose)
    with handle_errors(json_output):
        project_root, config = load_project(path)
        report = build_reconciler(project_root, config, pack).run(ReconcileMode.CHECK)
    emit_report(report, json_output, verbose)
