"""``dotward diff``: preview an upgrade as unified diffs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.syntax import Syntax

from dotward_cli.cli.helpers import build_reconciler, configure_logging, console, handle_errors, load_project
from dotward_cli.diff import plan_diffs
from dotward_cli.orchestrator import ReconcileMode


def diff(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root to inspect"),
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Enable an optional pack for this preview (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output diffs as JSON keyed by path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Show what ``dotward upgrade`` would write or delete."""
    configure_logging(verbose)
    with handle_errors(json_output):
        project_root, config = load_project(path)
        report = build_reconciler(project_root, config, pack).run(ReconcileMode.CHECK)
        diffs = plan_diffs(project_root, report.plan)

    if json_output:
        typer.echo(json.dumps(diffs, indent=2))
        return
    if not diffs:
        console.print("[green]No changes.[/green]")
        return
    for text in diffs.values():
        console.print(Syntax(text, "diff", theme="ansi_dark", word_wrap=True))
