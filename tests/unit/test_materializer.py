"""Tests for owned and managed file planning and action application."""

from __future__ import annotations

import json
import os
import stat

import pytest

from dotward_cli.drift import detect_drift
from dotward_cli.fingerprints import FingerprintManifest, hash_bytes
from dotward_cli.materializer import apply_action, blocked_path, plan_directory, plan_managed, plan_owned
from dotward_cli.plan import Action, ActionCategory, ActionKind
from dotward_cli.schema import (
    DeepMergeMissingKeys,
    DirectoryDefinition,
    DirectoryKind,
    DocumentFormat,
    FileDefinition,
    ManagedFileDefinition,
    MergeFragment,
    OwnershipKind,
    ScriptAppend,
)

GUIDE = FileDefinition("guide.md", OwnershipKind.ALWAYS_REGENERATE, "guide")
NOTES = FileDefinition("notes.md", OwnershipKind.CREATE_ONCE, "notes")
V1 = b"# v1\n"
V2 = b"# v2\n"


def _plan(project, definition, rendered, manifest):
    drift = detect_drift(project, definition.path, hash_bytes(rendered), manifest, definition.ownership)
    return plan_owned(definition, rendered, drift)


def _manifest(path: str, data: bytes) -> FingerprintManifest:
    return FingerprintManifest("1.0.0").with_entry(path, hash_bytes(data), "1.0.0")


# ============================================================================
# Owned files
# ============================================================================


class TestPlanOwned:
    def test_missing_file_is_created(self, project):
        action = _plan(project, GUIDE, V1, FingerprintManifest())
        assert action.kind is ActionKind.CREATE
        assert action.content == V1
        assert action.expected_hash == hash_bytes(V1)

    def test_template_change_on_pristine_file_updates(self, project):
        (project / "guide.md").write_bytes(V1)
        action = _plan(project, GUIDE, V2, _manifest("guide.md", V1))
        assert action.kind is ActionKind.UPDATE
        assert action.content == V2

    def test_unchanged_file_is_left_alone(self, project):
        (project / "guide.md").write_bytes(V1)
        action = _plan(project, GUIDE, V1, _manifest("guide.md", V1))
        assert action.kind is ActionKind.UNCHANGED
        assert not action.mutates

    def test_user_edit_is_skipped(self, project):
        (project / "guide.md").write_bytes(b"# mine\n")
        action = _plan(project, GUIDE, V2, _manifest("guide.md", V1))
        assert action.kind is ActionKind.SKIP_DRIFTED
        assert action.content is None
        assert action.expected_hash is None
        assert not action.routine

    def test_untracked_file_is_replaced(self, project):
        (project / "guide.md").write_bytes(b"# foreign\n")
        action = _plan(project, GUIDE, V1, FingerprintManifest())
        assert action.kind is ActionKind.CREATE
        assert "untracked" in action.detail

    def test_untracked_file_already_matching_is_unchanged(self, project):
        (project / "guide.md").write_bytes(V1)
        action = _plan(project, GUIDE, V1, FingerprintManifest())
        assert action.kind is ActionKind.UNCHANGED
        assert action.expected_hash == hash_bytes(V1)

    def test_create_once_is_never_rewritten(self, project):
        (project / "notes.md").write_bytes(V1)
        action = _plan(project, NOTES, V2, _manifest("notes.md", V1))
        assert action.kind is ActionKind.SKIP_DRIFTED
        assert action.routine

    def test_create_once_missing_is_created(self, project):
        assert _plan(project, NOTES, V1, _manifest("notes.md", V1)).kind is ActionKind.CREATE


# ============================================================================
# Managed files
# ============================================================================


SETTINGS = ManagedFileDefinition(
    "settings.json",
    DocumentFormat.JSON,
    (MergeFragment(DeepMergeMissingKeys(), {"env": {"A": "1"}}),),
)
PACKAGE = ManagedFileDefinition(
    "package.json",
    DocumentFormat.JSON,
    (MergeFragment(ScriptAppend("scripts"), {"lint": "eslint ."}),),
    create_if_missing=False,
)


class TestPlanManaged:
    def test_missing_file_is_created(self, project):
        action = plan_managed(project, SETTINGS, FingerprintManifest())
        assert action.kind is ActionKind.CREATE
        assert json.loads(action.content) == {"env": {"A": "1"}}

    def test_missing_file_without_create_is_untouched(self, project):
        action = plan_managed(project, PACKAGE, FingerprintManifest())
        assert action.kind is ActionKind.UNCHANGED
        assert action.expected_hash is None

    def test_missing_fragment_is_merged(self, project):
        (project / "settings.json").write_text('{"theme": "dark"}')
        action = plan_managed(project, SETTINGS, FingerprintManifest())
        assert action.kind is ActionKind.MERGE
        assert json.loads(action.content) == {"theme": "dark", "env": {"A": "1"}}

    def test_satisfied_file_is_unchanged(self, project):
        (project / "settings.json").write_text('{"env": {"A": "1", "B": "2"}}')
        action = plan_managed(project, SETTINGS, FingerprintManifest())
        assert action.kind is ActionKind.UNCHANGED
        assert action.expected_hash == hash_bytes((project / "settings.json").read_bytes())

    def test_unparseable_file_is_blocked(self, project):
        (project / "settings.json").write_text("{oops")
        action = plan_managed(project, SETTINGS, FingerprintManifest())
        assert action.kind is ActionKind.SKIP_BLOCKED
        assert "invalid JSON" in action.detail

    def test_wrong_shape_is_blocked(self, project):
        (project / "settings.json").write_text('{"env": "none"}')
        assert plan_managed(project, SETTINGS, FingerprintManifest()).kind is ActionKind.SKIP_BLOCKED

    def test_directory_at_path_is_blocked(self, project):
        (project / "settings.json").mkdir()
        action = plan_managed(project, SETTINGS, FingerprintManifest())
        assert action.kind is ActionKind.SKIP_BLOCKED
        assert action.detail == "expected a file, found a directory"


class TestBlockedPath:
    def test_free_path_is_not_blocked(self, project):
        (project / "hooks").mkdir()
        assert blocked_path(project, "hooks/start.sh", ActionCategory.OWNED) is None
        assert blocked_path(project, "new/dir/start.sh", ActionCategory.OWNED) is None

    def test_file_in_place_of_parent(self, project):
        (project / "hooks").write_text("not a directory")
        action = blocked_path(project, "hooks/lib/start.sh", ActionCategory.OWNED)
        assert action.kind is ActionKind.SKIP_BLOCKED
        assert action.category is ActionCategory.OWNED
        assert action.detail == "expected a directory at hooks, found a file"

    def test_symlink_to_directory_is_not_blocked(self, project):
        (project / "real").mkdir()
        (project / "link").symlink_to(project / "real")
        assert blocked_path(project, "link", ActionCategory.OWNED) is None


# ============================================================================
# Directories
# ============================================================================


class TestPlanDirectory:
    def test_missing_directory_is_created(self, project):
        action = plan_directory(project, DirectoryDefinition("a/b", DirectoryKind.PRESERVED))
        assert action.kind is ActionKind.CREATE
        assert action.category is ActionCategory.DIRECTORY
        assert action.detail == "missing preserved directory"
        assert not action.writes

    def test_existing_directory_is_unchanged(self, project):
        (project / "a").mkdir()
        assert plan_directory(project, DirectoryDefinition("a")).kind is ActionKind.UNCHANGED

    def test_file_in_place_is_blocked(self, project):
        (project / "a").write_text("x")
        action = plan_directory(project, DirectoryDefinition("a"))
        assert action.kind is ActionKind.SKIP_BLOCKED
        assert action.detail == "expected a directory, found a file"

    def test_file_in_place_of_parent_is_blocked(self, project):
        (project / "a").write_text("x")
        action = plan_directory(project, DirectoryDefinition("a/b"))
        assert action.kind is ActionKind.SKIP_BLOCKED
        assert action.detail == "expected a directory at a, found a file"


# ============================================================================
# apply_action
# ============================================================================


class TestApplyAction:
    def test_write_creates_parents_and_sets_executable(self, project):
        action = Action(
            ActionKind.CREATE,
            "hooks/start.sh",
            ActionCategory.OWNED,
            content=b"#!/bin/sh\n",
            executable=True,
        )

        apply_action(project, action)

        target = project / "hooks" / "start.sh"
        assert target.read_bytes() == b"#!/bin/sh\n"
        assert os.stat(target).st_mode & stat.S_IXUSR

    def test_existing_mode_is_kept(self, project):
        target = project / "run.sh"
        target.write_bytes(b"old")
        target.chmod(0o750)

        apply_action(project, Action(ActionKind.UPDATE, "run.sh", ActionCategory.OWNED, content=b"new"))

        assert stat.S_IMODE(target.stat().st_mode) == 0o750

    def test_write_without_content_is_rejected(self, project):
        with pytest.raises(ValueError):
            apply_action(project, Action(ActionKind.CREATE, "a.md", ActionCategory.OWNED))

    def test_delete_removes_empty_parents(self, project):
        nested = project / "a" / "b"
        nested.mkdir(parents=True)
        (nested / "old.sh").write_text("x")

        apply_action(project, Action(ActionKind.DELETE, "a/b/old.sh", ActionCategory.DEPRECATED))

        assert not (project / "a").exists()
        assert project.is_dir()

    def test_delete_directory(self, project):
        (project / "prompts" / "sub").mkdir(parents=True)
        (project / "prompts" / "sub" / "p.md").write_text("x")
        (project / "keep.md").write_text("y")

        apply_action(project, Action(ActionKind.DELETE, "prompts", ActionCategory.DEPRECATED))

        assert not (project / "prompts").exists()
        assert (project / "keep.md").exists()

    def test_non_mutating_action_is_a_no_op(self, project):
        apply_action(project, Action(ActionKind.UNCHANGED, "a.md", ActionCategory.OWNED))
        assert list(project.iterdir()) == []

    def test_create_directory(self, project):
        apply_action(project, Action(ActionKind.CREATE, "a/b", ActionCategory.DIRECTORY))
        assert (project / "a" / "b").is_dir()

    def test_remove_directory_prunes_up_to_kept_parent(self, project):
        (project / "keep" / "mid" / "gone").mkdir(parents=True)

        apply_action(
            project,
            Action(ActionKind.DELETE, "keep/mid/gone", ActionCategory.DIRECTORY, keep_parent="keep"),
        )

        assert not (project / "keep" / "mid").exists()
        assert (project / "keep").is_dir()

    def test_delete_stops_at_kept_parent(self, project):
        (project / "hooks" / "old").mkdir(parents=True)
        (project / "hooks" / "old" / "a.sh").write_text("x")

        apply_action(
            project,
            Action(ActionKind.DELETE, "hooks/old/a.sh", ActionCategory.DEPRECATED, keep_parent="hooks"),
        )

        assert not (project / "hooks" / "old").exists()
        assert (project / "hooks").is_dir()
