"""
Configuration loader — reads hostconverge.yml into a typed config.

The config file is optional: without one, hostconverge runs with the
built-in recipes and templates and writes its audit ledger under the
current directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "hostconverge.yml"


class ConfigError(Exception):
    """Raised when configuration or a recipe is invalid or missing."""


class ConvergeConfig(BaseModel):
    """Validated contents of hostconverge.yml.

    Relative paths are resolved against the directory holding the file.
    """

    model_config = ConfigDict(extra="forbid")

    recipe_dirs: list[Path] = Field(default_factory=list)
    template_dirs: list[Path] = Field(default_factory=list)
    strict_facts: bool = False
    attributes: dict[str, Any] = Field(default_factory=dict)
    audit_file: Path | None = None
    command_timeout: float | None = None

    root: Path = Field(default_factory=Path.cwd, exclude=True)

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else (self.root / path).resolve()

    @property
    def resolved_recipe_dirs(self) -> list[Path]:
        return [self.resolve(p) for p in self.recipe_dirs]

    @property
    def resolved_template_dirs(self) -> list[Path]:
        return [self.resolve(p) for p in self.template_dirs]

    @property
    def resolved_audit_file(self) -> Path | None:
        return self.resolve(self.audit_file) if self.audit_file else None


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for hostconverge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to hostconverge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(path: Path | None = None, search: bool = True) -> ConvergeConfig:
    """Load and validate configuration.

    Args:
        path: Explicit path to hostconverge.yml.
        search: When no path is given, search upward from cwd.  Finding
            nothing yields the default config.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None and search:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found; using defaults", CONFIG_FILE)
        return ConvergeConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = ConvergeConfig.model_validate({**data, "root": path.parent.resolve()})
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s (%d recipe dirs)", path, len(config.recipe_dirs))
    return config
