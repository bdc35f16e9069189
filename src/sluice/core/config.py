"""Sluice configuration — reads from sluice.toml, env vars, and CLI args."""

import logging
import os
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from sluice.models.window import parse_duration

logger = logging.getLogger("sluice.config")


class SluiceSettings(BaseSettings):
    """Daemon and CLI settings."""

    log_level: str = "info"

    # Engine (DuckDB file, in-memory by default)
    database: str = Field(default=":memory:", alias="SLUICE_DATABASE")

    # Workflow definitions (YAML documents) loaded by the daemon
    workflows_dir: str = Field(default="./workflows", alias="SLUICE_WORKFLOWS_DIR")

    # Windowing and execution
    default_window_size: timedelta = timedelta(hours=1)
    table_timeout_seconds: float | None = None
    max_parallel: int = 1
    history_size: int = 50

    model_config = {"env_prefix": "SLUICE_", "env_file": ".env", "populate_by_name": True}

    @field_validator("default_window_size", mode="before")
    @classmethod
    def _parse_window_size(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("max_parallel")
    @classmethod
    def _positive_parallelism(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_parallel must be at least 1")
        return value


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from sluice.toml files.

    Searches for sluice.toml in:
    1. SLUICE_HOME (~/.sluice/sluice.toml by default)
    2. Current directory (./sluice.toml)

    Returns:
        Combined configuration dict, local values taking precedence
    """
    config: Dict[str, Any] = {}

    sluice_home = Path(os.environ.get("SLUICE_HOME", "~/.sluice")).expanduser()
    for path in (sluice_home / "sluice.toml", Path("sluice.toml")):
        if not path.exists():
            continue
        try:
            with path.open("rb") as f:
                config.update(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")

    return config


def get_settings(**overrides: Any) -> SluiceSettings:
    """Settings from sluice.toml, overridden by env vars, overridden by `overrides`."""
    toml_config = _load_toml_config()
    settings = SluiceSettings()

    # Env vars win over the toml file
    fields = SluiceSettings.model_fields
    values = {}
    for key, value in toml_config.items():
        if key not in fields:
            continue
        env_name = (fields[key].alias or f"SLUICE_{key}").upper()
        if env_name not in os.environ:
            values[key] = value
    values.update({k: v for k, v in overrides.items() if v is not None})

    if values:
        settings = SluiceSettings(**{**settings.model_dump(), **values})
    return settings
