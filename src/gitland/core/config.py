"""Application configuration management.

Handles loading and validating settings from multiple sources:
    - TOML/JSON settings file
    - Environment variables (LAND_* prefix)
    - Default values

Repository-scoped values (``land.remote`` / ``land.target`` in git config)
are layered underneath these by ``gitland.land.types.resolve_workflow_config``.

Key components:
    - LandSettings: Main settings model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from gitland.core.result import ConfigurationError

CONFIG_ENV_VAR = "GITLAND_CONFIG"

DEFAULT_REMOTE = "origin"
DEFAULT_TARGET = "main"
DEFAULT_LOCK_NAME = ".land-in-progress"

# git config keys read from the repository being landed
REMOTE_CONFIG_KEY = "land.remote"
TARGET_CONFIG_KEY = "land.target"


class ConfigError(ConfigurationError):
    """Raised when configuration cannot be loaded or validated."""


class LandSettings(BaseSettings):
    """User-level settings for the land command.

    ``remote`` and ``target`` stay ``None`` unless set by file or
    environment, so repository git config can fill them in later.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAND_",
        extra="ignore",
    )

    remote: str | None = Field(default=None, description="Remote used for fetch and push.")
    target: str | None = Field(default=None, description="Branch that branches are landed onto.")
    log_level: str = Field(default="WARNING", description="Log level for land output.")
    lock_name: str = Field(
        default=DEFAULT_LOCK_NAME,
        description="Name of the advisory marker file written at the repository root.",
    )
    stale_lock_seconds: float = Field(
        default=3600.0,
        description="Age after which an existing marker is considered abandoned.",
    )

    @field_validator("lock_name")
    @classmethod
    def lock_name_is_plain(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError("lock_name must be a plain file name")
        return v

    @field_validator("stale_lock_seconds")
    @classmethod
    def stale_lock_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("stale_lock_seconds must be positive")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".landconfig")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables (LAND_REMOTE etc)."""
    prefix = LandSettings.model_config.get("env_prefix", "")
    overrides: set[str] = set()
    for field in LandSettings.model_fields:
        if f"{prefix}{field}".upper() in env_vars:
            overrides.add(field)
    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[LandSettings, ConfigLoadResult]:
    """
    Load settings with Safe Mode fallback.
    If the file is invalid, returns default settings + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            settings = LandSettings(**file_data)
    except ValidationError as exc:
        error = str(exc)
        # Defaults only; constructing normally would re-read the bad environment.
        settings = LandSettings.model_construct()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return settings, load_result
