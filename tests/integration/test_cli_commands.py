"""CLI tests for the dotward commands against the bundled schema."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from dotward_cli import app
from dotward_cli.backup import BackupTransaction

runner = CliRunner()


@pytest.fixture(autouse=True)
def bundled_assets(monkeypatch):
    monkeypatch.delenv("DOTWARD_SCHEMA", raising=False)
    monkeypatch.delenv("DOTWARD_TEMPLATE_ROOT", raising=False)


def invoke(*args: str):
    return runner.invoke(app, list(args))


def test_setup_installs_framework_files(project: Path):
    result = invoke("setup", "--path", str(project))

    assert result.exit_code == 0, result.output
    assert "Summary:" in result.output
    assert "**project**" in (project / ".dotward" / "DOTWARD.md").read_text()
    assert (project / ".dotward" / "hooks" / "session-version.sh").exists()
    assert (project / ".dotward" / "fingerprints.json").exists()
    assert not (project / ".dotward" / "guides" / "python.md").exists()

    settings = json.loads((project / ".claude" / "settings.json").read_text())
    commands = [e["hooks"][0]["command"] for e in settings["hooks"]["SessionStart"]]
    assert len(commands) == 2
    assert (project / "AGENTS.md").read_text().startswith("**ALWAYS READ FIRST:**")


def test_check_passes_after_setup(project: Path):
    invoke("setup", "--path", str(project))

    result = invoke("check", "--path", str(project))

    assert result.exit_code == 0, result.output
    assert "in sync" in result.output


def test_check_fails_on_fresh_project(project: Path):
    result = invoke("check", "--path", str(project), "--json")

    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["mode"] == "check"
    assert data["state"] == "planning"
    assert data["counts"]["created"] > 0
    assert not (project / ".dotward").exists()


def test_setup_pack_is_saved_and_reused(project: Path):
    result = invoke("setup", "--path", str(project), "--pack", "python")
    assert result.exit_code == 0, result.output

    assert (project / ".dotward" / "guides" / "python.md").exists()
    assert "ruff-pre-commit" in (project / ".pre-commit-config.yaml").read_text()
    assert "python" in (project / ".dotward" / "config.yaml").read_text()

    assert invoke("check", "--path", str(project)).exit_code == 0


def test_config_variables_reach_templates(project: Path):
    (project / ".dotward").mkdir()
    (project / ".dotward" / "config.yaml").write_text("variables:\n  project_name: Acme\n")

    invoke("setup", "--path", str(project))

    assert (project / ".dotward" / "PROJECT.md").read_text().startswith("# Acme")


def test_upgrade_json_report(project: Path):
    result = invoke("upgrade", "--path", str(project), "--json")

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["success"] is True
    assert data["state"] == "committed"
    assert data["exit_code"] == 0
    assert not (project / ".dotward" / "backups").exists()


def test_upgrade_keeps_user_settings(project: Path):
    (project / ".claude").mkdir()
    (project / ".claude" / "settings.json").write_text(json.dumps({"model": "opus", "hooks": {}}))

    invoke("upgrade", "--path", str(project))

    settings = json.loads((project / ".claude" / "settings.json").read_text())
    assert settings["model"] == "opus"
    assert "$schema" in settings


def test_diff_previews_without_writing(project: Path):
    result = invoke("diff", "--path", str(project), "--json")

    assert result.exit_code == 0, result.output
    diffs = json.loads(result.stdout)
    assert diffs[".dotward/DOTWARD.md"].startswith("--- /dev/null\n+++ b/.dotward/DOTWARD.md\n")
    assert list(project.iterdir()) == []


def test_diff_reports_no_changes_after_setup(project: Path):
    invoke("setup", "--path", str(project))
    result = invoke("diff", "--path", str(project))
    assert "No changes." in result.output


def test_reset_removes_setup(project: Path):
    invoke("setup", "--path", str(project))

    result = invoke("reset", "--path", str(project), "--yes")

    assert result.exit_code == 0, result.output
    assert not (project / ".dotward" / "DOTWARD.md").exists()
    assert not (project / ".dotward" / "hooks").exists()
    assert not (project / ".dotward" / "fingerprints.json").exists()
    assert not (project / "AGENTS.md").exists()
    assert not (project / ".mcp.json").exists()


def test_setup_creates_declared_directories(project: Path):
    invoke("setup", "--path", str(project))

    assert (project / ".dotward" / "learnings").is_dir()
    assert (project / ".dotward" / "logs").is_dir()


def test_reset_keeps_preserved_directories(project: Path):
    invoke("setup", "--path", str(project))
    (project / ".dotward" / "learnings" / "auth.md").write_text("# what we learned\n")

    result = invoke("reset", "--path", str(project), "--yes")

    assert result.exit_code == 0, result.output
    assert (project / ".dotward" / "learnings" / "auth.md").read_text() == "# what we learned\n"
    assert (project / ".dotward" / "logs").is_dir()
    assert not (project / ".dotward" / "guides").exists()


def test_reset_can_be_cancelled(project: Path):
    invoke("setup", "--path", str(project))

    result = runner.invoke(app, ["reset", "--path", str(project)], input="n\n")

    assert result.exit_code == 0
    assert "cancelled" in result.output
    assert (project / ".dotward" / "DOTWARD.md").exists()


def test_stale_backup_aborts_in_json_mode(project: Path):
    invoke("setup", "--path", str(project))
    BackupTransaction(project, project / ".dotward" / "backups", [".dotward/DOTWARD.md"]).begin()

    result = invoke("upgrade", "--path", str(project), "--json")

    assert result.exit_code == 1
    assert "interrupted run" in json.loads(result.stdout)["error"]


def test_conflicting_backup_flags(project: Path):
    result = invoke("upgrade", "--path", str(project), "--restore-backup", "--discard-backup")
    assert result.exit_code == 1


def test_missing_project_directory(tmp_path: Path):
    result = invoke("setup", "--path", str(tmp_path / "missing"))
    assert result.exit_code == 1
    assert "not a directory" in result.output


def test_invalid_schema_override_lists_problems(project: Path, tmp_path: Path, monkeypatch):
    schema = tmp_path / "schema.yaml"
    schema.write_text(
        'version: "1.0.0"\n'
        "owned:\n"
        "  - {path: a.md, template: a}\n"
        "  - {path: a.md, template: b}\n"
    )
    monkeypatch.setenv("DOTWARD_SCHEMA", str(schema))

    result = invoke("check", "--path", str(project))

    assert result.exit_code == 1
    assert "a.md is declared twice in owned" in result.output
