"""Unified diffs of what a plan would write or delete."""

from __future__ import annotations

import difflib
from pathlib import Path

from dotward_cli.fs import read_bytes
from dotward_cli.plan import ActionCategory, ActionKind, ReconciliationPlan


def _lines(data: bytes | None) -> list[str]:
    if data is None:
        return []
    return data.decode("utf-8", errors="replace").splitlines(keepends=True)


def plan_diffs(project_root: Path, plan: ReconciliationPlan) -> dict[str, str]:
    """Map each mutated file path to its unified diff.

    Created and deleted directories are summarized in one line rather
    than diffed.
    """
    diffs: dict[str, str] = {}
    for action in plan.mutating:
        target = project_root / action.path
        if action.category is ActionCategory.DIRECTORY and action.kind is ActionKind.CREATE:
            diffs[action.path] = f"directory {action.path} would be created\n"
            continue
        if action.kind is ActionKind.DELETE and target.is_dir():
            diffs[action.path] = f"directory {action.path} would be removed\n"
            continue
        before = read_bytes(target)
        after = None if action.kind is ActionKind.DELETE else action.content
        diff = difflib.unified_diff(
            _lines(before),
            _lines(after),
            fromfile=f"a/{action.path}" if before is not None else "/dev/null",
            tofile=f"b/{action.path}" if after is not None else "/dev/null",
        )
        diffs[action.path] = "".join(line if line.endswith("\n") else line + "\n" for line in diff)
    return diffs
