"""Load ``patchset.yaml`` and build the collaborators it describes."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ._logging import parse_level
from .errors import ConfigurationError
from .installer import CommandInstaller, CopyInstaller, Installer, NullInstaller

DEFAULT_CONFIG_NAME = "patchset.yaml"
DEFAULT_MANIFEST_NAME = "packages.yaml"


class SettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProjectSettings(SettingsModel):
    root: str = "."
    manifest: str = DEFAULT_MANIFEST_NAME


class InstallerSettings(SettingsModel):
    kind: Literal["copy", "command", "none"] = "copy"
    reinstall_command: Optional[str] = None


class LoggingSettings(SettingsModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        parse_level(value)
        return value


class Settings(SettingsModel):
    """Validated configuration; ``base_dir`` anchors relative paths."""

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    installer: InstallerSettings = Field(default_factory=InstallerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    @property
    def project_root(self) -> Path:
        return _resolve(self.base_dir, self.project.root)

    @property
    def manifest_path(self) -> Path:
        return _resolve(self.base_dir, self.project.manifest)

    def build_installer(self) -> Installer:
        """Return the installer configured under ``installer.kind``."""

        if self.installer.kind == "copy":
            return CopyInstaller()
        if self.installer.kind == "command":
            if not self.installer.reinstall_command:
                raise ConfigurationError(
                    "installer.reinstall_command is required when installer.kind is 'command'",
                    field="installer.reinstall_command",
                )
            return CommandInstaller(self.installer.reinstall_command, working_directory=self.project_root)
        return NullInstaller()


def _resolve(base: Path, value: str) -> Path:
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


def load_settings(config_path: Path | str, *, required: bool = True) -> Settings:
    """Load YAML configuration from disk; defaults apply when the file is optional and absent."""

    path = Path(config_path)
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}", path=path)
        return Settings(base_dir=Path.cwd())

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as error:
        raise ConfigurationError(f"Failed to parse config {path}: {error}", path=path) from error

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping at the top level.", path=path)

    return settings_from_mapping(data, base_dir=path.resolve().parent, path=path)


def settings_from_mapping(data: Dict[str, Any], *, base_dir: Path, path: Path | None = None) -> Settings:
    """Validate an already parsed configuration mapping."""

    try:
        return Settings.model_validate({**data, "base_dir": base_dir})
    except ValidationError as error:
        raise ConfigurationError(f"Invalid configuration {path or ''}: {error}".strip(), path=path) from error


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_MANIFEST_NAME",
    "InstallerSettings",
    "LoggingSettings",
    "ProjectSettings",
    "Settings",
    "load_settings",
    "settings_from_mapping",
]
