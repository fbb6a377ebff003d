"""
Bridge configuration.

Settings come from three layers, later ones winning:

    1. built-in defaults (``PASSWORD_STORE_DIR`` / ``PASSBRIDGE_HOME`` aware)
    2. ``<home>/config.yaml`` (or an explicit ``--config`` file)
    3. command line overrides
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import BRIDGE_HOME, PASSWORD_STORE
from .errors import ConfigurationError

logger = logging.getLogger("passbridge.config")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7277
CONFIG_FILE = "config.yaml"
PID_FILE = "passbridge.pid"
STATUS_FILE = "status.json"
LOG_DIR = "logs"


class BridgeConfig(BaseModel):
    """Validated settings for one bridge process."""

    model_config = ConfigDict(extra="forbid")

    store: Path = Field(default_factory=lambda: Path(PASSWORD_STORE))
    home: Path = Field(default_factory=lambda: Path(BRIDGE_HOME))
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    gpg: str = "gpg"
    gpg_options: list[str] = Field(default_factory=list)
    reencode: Literal["gpg", "builtin"] = "gpg"
    workers: int = Field(default=1, ge=1)
    max_body_bytes: int = Field(default=1024 * 1024, ge=1)
    log_level: str = "INFO"

    @field_validator("store", "home")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def pid_file(self) -> Path:
        return self.home / PID_FILE

    @property
    def status_file(self) -> Path:
        return self.home / STATUS_FILE

    @property
    def log_file(self) -> Path:
        return self.home / LOG_DIR / "passbridge.log"


def load_config(path: Optional[Path] = None, **overrides) -> BridgeConfig:
    """Build a BridgeConfig from file and overrides.

    Args:
        path: Explicit YAML file. Defaults to ``<home>/config.yaml`` when
            that exists; a missing default file is not an error.
        **overrides: Values that win over the file; ``None`` is ignored.

    Raises:
        ConfigurationError: Unreadable or invalid file, or invalid values.
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}

    if path is None:
        home = Path(overrides.get("home", BRIDGE_HOME)).expanduser()
        default = home / CONFIG_FILE
        path = default if default.exists() else None

    data: dict = {}
    if path is not None:
        path = Path(path).expanduser()
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"failed to read config {path}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"config {path} must be a mapping")
        data = loaded or {}
        logger.debug("Loaded config from %s", path)

    data.update(overrides)
    try:
        return BridgeConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
