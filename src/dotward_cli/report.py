"""Structured result of one reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dotward_cli.plan import SKIP_KINDS, Action, ActionKind, ReconciliationPlan

COUNT_LABELS: dict[ActionKind, str] = {
    ActionKind.CREATE: "created",
    ActionKind.UPDATE: "updated",
    ActionKind.MERGE: "merged",
    ActionKind.UNCHANGED: "unchanged",
    ActionKind.SKIP_DRIFTED: "skipped_drifted",
    ActionKind.DELETE: "deleted",
    ActionKind.SKIP_BLOCKED: "blocked",
}

_KIND_STYLES: dict[ActionKind, str] = {
    ActionKind.CREATE: "green",
    ActionKind.UPDATE: "cyan",
    ActionKind.MERGE: "cyan",
    ActionKind.UNCHANGED: "dim",
    ActionKind.SKIP_DRIFTED: "yellow",
    ActionKind.DELETE: "magenta",
    ActionKind.SKIP_BLOCKED: "red",
}


@dataclass(frozen=True)
class ReconciliationReport:
    """What a run planned, what it did, and how it ended.

    ``state`` is the orchestrator state the run finished in. A check run
    stops after planning, so nothing in its plan was applied.
    """

    mode: str
    schema_version: str
    state: str
    plan: ReconciliationPlan
    failure: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def applied(self) -> bool:
        return self.state == "committed"

    def counts(self) -> dict[str, int]:
        tally = self.plan.counts()
        return {label: tally.get(kind, 0) for kind, label in COUNT_LABELS.items()}

    def skipped(self) -> list[Action]:
        """Every drifted or blocked path, with the reason in ``detail``."""
        return [a for a in self.plan if a.kind in SKIP_KINDS]

    def exit_code(self) -> int:
        """0 on success; 1 on a fatal error, or when ``check`` finds work.

        A check run fails when anything would change, was edited outside
        the framework, or is blocked.
        """
        if self.failure is not None:
            return 1
        if self.mode == "check" and (self.plan.has_changes or self.plan.has_skips):
            return 1
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "schema_version": self.schema_version,
            "state": self.state,
            "success": self.succeeded,
            "failure": self.failure,
            "counts": self.counts(),
            "actions": [a.to_dict() for a in self.plan],
            "skipped": [a.to_dict() for a in self.skipped()],
            "warnings": list(self.warnings),
            "exit_code": self.exit_code(),
        }

    def render(self, console: Console, verbose: bool = False) -> None:
        """Print the report; unchanged paths are listed only when *verbose*."""
        rows = [a for a in self.plan if verbose or a.kind is not ActionKind.UNCHANGED]
        if rows:
            table = Table(title=f"dotward {self.mode} (schema v{self.schema_version})", header_style="bold cyan")
            table.add_column("Action", no_wrap=True)
            table.add_column("Path", style="bright_white")
            table.add_column("Detail", style="dim")
            for action in rows:
                style = _KIND_STYLES[action.kind]
                table.add_row(f"[{style}]{action.kind}[/{style}]", action.path, action.detail)
            console.print(table)

        summary = ", ".join(f"{count} {label.replace('_', ' ')}" for label, count in self.counts().items() if count)
        console.print(f"[bold]Summary:[/bold] {summary or 'nothing to do'}")

        for warning in self.warnings:
            console.print(f"  [yellow]![/yellow] {warning}")

        if self.failure is not None:
            title = "Rolled back" if self.state == "rolled_back" else "Failed"
            console.print(Panel(self.failure, title=title, border_style="red"))
        elif self.mode == "check" and self.exit_code():
            console.print("[yellow]Project is out of sync with schema.[/yellow]")
        elif self.mode == "check":
            console.print("[green]Project is in sync.[/green]")
