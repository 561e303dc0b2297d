"""Command modules for the dotward CLI."""

from __future__ import annotations

import typer

from .check import check
from .diff import diff
from .reset import reset
from .setup import setup
from .upgrade import upgrade


def register_commands(app: typer.Typer) -> None:
    """Attach every dotward command to *app*."""
    app.command()(setup)
    app.command()(upgrade)
    app.command()(reset)
    app.command()(check)
    app.command()(diff)


__all__ = ["register_commands"]
