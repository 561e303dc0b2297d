"""Tests for .dotward/config.yaml handling."""

from __future__ import annotations

from pathlib import Path

import pytest

from dotward_cli import config as config_module
from dotward_cli.config import DEFAULT_BACKUP_DIR, ProjectConfig, load_config, save_packs
from dotward_cli.errors import ConfigError


def _write(project: Path, text: str) -> None:
    (project / ".dotward").mkdir(exist_ok=True)
    (project / ".dotward" / "config.yaml").write_text(text, encoding="utf-8")


def test_missing_config_uses_defaults(project):
    config = load_config(project)
    assert config.packs == []
    assert config.backup_dir == DEFAULT_BACKUP_DIR
    assert config.backup_root(project) == project / ".dotward" / "backups"


def test_loads_packs_and_variables(project):
    _write(project, "packs: [python, ' typescript ']\nvariables:\n  project_name: Demo\n  year: 2025\n")

    config = load_config(project)

    assert config.packs == ["python", "typescript"]
    assert config.variables == {"project_name": "Demo", "year": "2025"}


def test_single_pack_string_is_accepted(project):
    _write(project, "packs: python\n")
    assert load_config(project).packs == ["python"]


@pytest.mark.parametrize(
    "text",
    [
        "packs: {a: 1}\n",
        "variables: [1, 2]\n",
        "backup_dir: /tmp/elsewhere\n",
        "backup_dir: ../outside\n",
        "- not\n- a mapping\n",
        "packs: [unclosed\n",
    ],
)
def test_invalid_config_raises(project, text):
    _write(project, text)
    with pytest.raises(ConfigError):
        load_config(project)


def test_save_packs_preserves_other_settings(project):
    _write(project, "# my config\nvariables:\n  project_name: 'Demo'\npacks: [python]\n")

    save_packs(project, ["typescript", "python", "typescript"])

    text = (project / ".dotward" / "config.yaml").read_text()
    assert "# my config" in text
    assert "project_name: 'Demo'" in text
    assert load_config(project).packs == ["python", "typescript"]


def test_save_packs_writes_through_atomic_write(project, monkeypatch):
    written = []
    real_write = config_module.atomic_write

    def recording_write(path, data, executable=False):
        written.append(path)
        real_write(path, data, executable)

    monkeypatch.setattr(config_module, "atomic_write", recording_write)

    save_packs(project, ["python"])

    config_path = project / ".dotward" / "config.yaml"
    assert written == [config_path]
    assert [p.name for p in config_path.parent.iterdir()] == ["config.yaml"]
    assert load_config(project).packs == ["python"]


def test_to_dict_roundtrip():
    config = ProjectConfig(packs=["python"], variables={"a": "b"})
    assert ProjectConfig.from_dict(config.to_dict()) == config
