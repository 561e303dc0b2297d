"""Shared plumbing for the dotward commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from dotward_cli.backup import find_stale_backups
from dotward_cli.config import ProjectConfig, load_config
from dotward_cli.errors import DotwardError, SchemaIntegrityError
from dotward_cli.orchestrator import Reconciler, StaleBackupPolicy
from dotward_cli.report import ReconciliationReport
from dotward_cli.schema import load_bundled_registry
from dotward_cli.templates import TemplateCatalog

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    """Route engine logs through rich; debug detail only with ``--verbose``."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


def resolve_project_root(path: Path) -> Path:
    root = path.expanduser().resolve()
    if not root.is_dir():
        console.print(f"[red]Error:[/red] {root} is not a directory")
        raise typer.Exit(1)
    return root


@contextmanager
def handle_errors(json_output: bool = False) -> Iterator[None]:
    """Turn fatal engine errors into a message and exit code 1."""
    try:
        yield
    except DotwardError as exc:
        if json_output:
            typer.echo(json.dumps({"success": False, "error": str(exc)}, indent=2))
        else:
            console.print(f"[red]Error:[/red] {exc}")
            if isinstance(exc, SchemaIntegrityError):
                for problem in exc.problems:
                    console.print(f"  [red]✗[/red] {problem}")
        raise typer.Exit(1)


def stale_backup_policy(
    project_root: Path,
    config: ProjectConfig,
    restore: bool,
    discard: bool,
    interactive: bool,
) -> StaleBackupPolicy:
    """Decide what to do with backups left by an interrupted run.

    Without an explicit flag the user is asked, unless output is
    machine-readable, in which case the run aborts.
    """
    if restore and discard:
        console.print("[red]Error:[/red] --restore-backup and --discard-backup are mutually exclusive")
        raise typer.Exit(1)
    if restore:
        return StaleBackupPolicy.RESTORE
    if discard:
        return StaleBackupPolicy.DISCARD

    stale = find_stale_backups(config.backup_root(project_root))
    if stale and interactive:
        console.print(
            f"[yellow]Found {len(stale)} backup(s) from an interrupted run:[/yellow] "
            + ", ".join(d.name for d in stale)
        )
        if typer.confirm("Restore the project from the backup before continuing?", default=True):
            return StaleBackupPolicy.RESTORE
    return StaleBackupPolicy.ABORT


def template_context(project_root: Path, config: ProjectConfig, schema_version: str) -> dict[str, str]:
    from dotward_cli import __version__

    context = {
        "project_name": project_root.name,
        "schema_version": schema_version,
        "dotward_version": __version__,
    }
    context.update(config.variables)
    return context


def build_reconciler(
    project_root: Path,
    config: ProjectConfig,
    packs: list[str] | None = None,
    policy: StaleBackupPolicy = StaleBackupPolicy.ABORT,
) -> Reconciler:
    """Load the bundled schema narrowed to the enabled packs and wire a reconciler.

    ``packs`` from the command line replace the packs in config.yaml.
    """
    registry = load_bundled_registry()
    enabled = packs if packs else config.packs
    registry = registry.for_packs(enabled)
    catalog = TemplateCatalog.bundled(template_context(project_root, config, registry.version))
    return Reconciler(
        project_root,
        registry,
        catalog,
        backup_root=config.backup_root(project_root),
        stale_backup_policy=policy,
    )


def load_project(path: Path) -> tuple[Path, ProjectConfig]:
    project_root = resolve_project_root(path)
    return project_root, load_config(project_root)


def emit_report(report: ReconciliationReport, json_output: bool, verbose: bool) -> None:
    """Print *report* and exit with its exit code when non-zero."""
    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        report.render(console, verbose=verbose)
    code = report.exit_code()
    if code:
        raise typer.Exit(code)
