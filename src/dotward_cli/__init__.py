"""
dotward - keeps a toolkit's configuration files correct inside your project.

Usage:
    dotward setup
    dotward upgrade
    dotward check
    dotward diff
    dotward reset
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dotward-cli")
except PackageNotFoundError:
    __version__ = "0.0.0+local"

import typer

from dotward_cli.cli.commands import register_commands

app = typer.Typer(
    name="dotward",
    help="Schema-driven reconciliation of a toolkit's files in your project",
    add_completion=False,
    no_args_is_help=True,
)

register_commands(app)


def main():
    app()


if __name__ == "__main__":
    main()
