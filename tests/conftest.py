from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from dotward_cli.schema import (
    ArrayUnionByKey,
    DeepMergeMissingKeys,
    DocumentFormat,
    FileDefinition,
    KeyExtractor,
    ManagedFileDefinition,
    MergeFragment,
    OwnershipKind,
    SchemaRegistry,
    ScriptAppend,
    TextPatch,
    TextPatchOperation,
)
from dotward_cli.templates import StaticRenderer

HOOK_KEY = KeyExtractor(path="hooks[].command", pattern=r"(\.tool/hooks/\S+)")

SETTINGS = ManagedFileDefinition(
    path=".claude/settings.json",
    format=DocumentFormat.JSON,
    fragments=(
        MergeFragment(DeepMergeMissingKeys(), {"env": {"TOOL_HOME": ".tool"}}),
        MergeFragment(
            ArrayUnionByKey(target="hooks.SessionStart", key=HOOK_KEY),
            [{"hooks": [{"type": "command", "command": "bash .tool/hooks/start.sh"}]}],
        ),
    ),
)

PACKAGE_JSON = ManagedFileDefinition(
    path="package.json",
    format=DocumentFormat.JSON,
    fragments=(MergeFragment(ScriptAppend(target="scripts"), {"lint": "eslint ."}),),
    create_if_missing=False,
)

AGENTS_MD = ManagedFileDefinition(
    path="AGENTS.md",
    format=DocumentFormat.TEXT,
    fragments=(
        MergeFragment(
            TextPatch(TextPatchOperation.PREPEND, "<!-- tool -->"),
            "<!-- tool -->\nRead .tool/guide.md first.\n",
        ),
    ),
    remove_if_empty=True,
)

OWNED_V1 = (
    FileDefinition(".tool/guide.md", OwnershipKind.ALWAYS_REGENERATE, "guide"),
    FileDefinition(".tool/hooks/start.sh", OwnershipKind.ALWAYS_REGENERATE, "hook", executable=True),
    FileDefinition(".tool/notes.md", OwnershipKind.CREATE_ONCE, "notes"),
)

TEMPLATES_V1 = {
    "guide": "# Guide v1\n",
    "hook": "#!/bin/sh\necho start\n",
    "notes": "# Notes\n",
}


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture()
def registry_v1() -> SchemaRegistry:
    return SchemaRegistry("1.0.0", owned=OWNED_V1, managed=(SETTINGS, PACKAGE_JSON, AGENTS_MD))


@pytest.fixture()
def renderer_v1() -> StaticRenderer:
    return StaticRenderer(TEMPLATES_V1)


@pytest.fixture()
def snapshot_tree() -> Callable[[Path], dict[str, bytes | None]]:
    """Return a function capturing every file (bytes) and directory (None) under a root."""

    def snapshot(root: Path) -> dict[str, bytes | None]:
        tree: dict[str, bytes | None] = {}
        for dirpath, dirnames, filenames in os.walk(root):
            base = Path(dirpath)
            for name in dirnames:
                tree[(base / name).relative_to(root).as_posix()] = None
            for name in filenames:
                path = base / name
                tree[path.relative_to(root).as_posix()] = path.read_bytes()
        return tree

    return snapshot
