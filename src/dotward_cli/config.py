"""Project-scoped configuration in .dotward/config.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from dotward_cli.errors import ConfigError
from dotward_cli.fs import atomic_write

STATE_DIRNAME = ".dotward"
CONFIG_FILENAME = "config.yaml"
DEFAULT_BACKUP_DIR = f"{STATE_DIRNAME}/backups"


def state_dir(project_root: Path) -> Path:
    return project_root / STATE_DIRNAME


def _config_path(project_root: Path) -> Path:
    return state_dir(project_root) / CONFIG_FILENAME


@dataclass(slots=True)
class ProjectConfig:
    """Settings stored inside .dotward/config.yaml."""

    packs: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    backup_dir: str = DEFAULT_BACKUP_DIR

    def backup_root(self, project_root: Path) -> Path:
        return project_root / self.backup_dir

    def to_dict(self) -> dict[str, object]:
        return {
            "packs": list(self.packs),
            "variables": dict(self.variables),
            "backup_dir": self.backup_dir,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object] | None) -> ProjectConfig:
        if not isinstance(data, dict):
            return cls()

        packs = data.get("packs") or []
        if isinstance(packs, str):
            packs = [packs]
        if not isinstance(packs, list):
            raise ConfigError("Invalid packs in config.yaml: expected a list of pack names")

        variables = data.get("variables") or {}
        if not isinstance(variables, dict):
            raise ConfigError("Invalid variables in config.yaml: expected a mapping")

        backup_dir = data.get("backup_dir") or DEFAULT_BACKUP_DIR
        if not isinstance(backup_dir, str) or Path(backup_dir).is_absolute() or ".." in Path(backup_dir).parts:
            raise ConfigError(f"Invalid backup_dir in config.yaml: {backup_dir!r}")

        return cls(
            packs=[str(p).strip() for p in packs if str(p).strip()],
            variables={str(k): str(v) for k, v in variables.items()},
            backup_dir=backup_dir,
        )


def load_config(project_root: Path) -> ProjectConfig:
    """Load .dotward/config.yaml, returning defaults when it does not exist."""
    config_path = _config_path(project_root)
    if not config_path.exists():
        return ProjectConfig()

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    except (OSError, YAMLError) as exc:
        raise ConfigError(f"Failed to parse {config_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return ProjectConfig.from_dict(payload)


def save_packs(project_root: Path, packs: list[str]) -> None:
    """Persist the enabled packs, preserving the rest of config.yaml."""
    config_path = _config_path(project_root)

    yaml = YAML()
    yaml.preserve_quotes = True

    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    else:
        payload = {}

    if not isinstance(payload, dict):
        payload = {}

    payload["packs"] = sorted(set(packs))

    buffer = StringIO()
    yaml.dump(payload, buffer)
    atomic_write(config_path, buffer.getvalue().encode("utf-8"))
