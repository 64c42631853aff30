"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (TOOLGATE_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
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

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_ENV_VAR = "TOOLGATE_CONFIG"

DEFAULT_ALLOWLIST: tuple[str, ...] = (
    "ls",
    "cat",
    "head",
    "tail",
    "grep",
    "find",
    "wc",
    "sort",
    "uniq",
    "cut",
    "echo",
    "date",
    "cal",
    "pwd",
    "whoami",
    "uname",
    "hostname",
    "uptime",
    "df",
    "du",
    "which",
    "file",
    "stat",
    "tree",
    "git",
)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ShellConfig(BaseModel):
    """Shell execution policy."""

    allowlist: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWLIST),
        description="Base commands the agent may run.",
    )
    command_timeout: float = Field(default=30.0, description="Deadline for a single command.")
    check_timeout: float = Field(
        default=10.0, description="Deadline for an external tool availability check."
    )

    @field_validator("allowlist", mode="after")
    @classmethod
    def dedupe_allowlist(cls, v: list[str]) -> list[str]:
        """Drop blanks and duplicates while keeping declaration order."""
        seen: dict[str, None] = {}
        for name in v:
            name = name.strip()
            if name:
                seen.setdefault(name, None)
        return list(seen)


class DiscoveryConfig(BaseModel):
    """Bounds for the tool discovery loop."""

    session_timeout: float = Field(default=60.0, description="Deadline for a whole session.")
    probe_timeout: float = Field(default=5.0, description="Deadline for one help probe.")
    max_iterations: int = Field(default=10, ge=1, description="Oracle round-trips per session.")
    step_output_chars: int = Field(
        default=2000, description="Characters of step output kept in the transcript."
    )
    prompt_output_chars: int = Field(
        default=1500, description="Characters of each step shown to the oracle."
    )
    prompt_recent_steps: int = Field(
        default=4, description="Steps quoted verbatim in the oracle prompt."
    )
    max_transcript_chars: int = Field(
        default=15000, description="Cap for the full discovery transcript."
    )


class OracleConfig(BaseModel):
    """Reasoning oracle used to steer discovery."""

    enabled: bool = Field(default=True, description="Use the oracle when a request is known.")
    base_url: str = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible endpoint (Ollama by default).",
    )
    model: str = Field(default="qwen2.5:14b", description="Model used for discovery prompts.")
    api_key_env: str = Field(
        default="OPENAI_API_KEY", description="Environment variable holding the API key."
    )


class PathsConfig(BaseModel):
    """On-disk locations."""

    tools_file: Path = Field(
        default_factory=lambda: Path.home() / ".toolgate" / "tools.toml",
        description="TOML/JSON file with external tool definitions.",
    )
    cache_dir: Path = Field(
        default_factory=lambda: Path.home() / ".toolgate" / "cache" / "schemas",
        description="Directory for discovered tool schemas.",
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLGATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    shell: ShellConfig = Field(default_factory=ShellConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    log_level: str = Field(default="INFO", description="Log level for toolgate output.")

    @field_validator("paths", mode="after")
    @classmethod
    def expand_paths(cls, v: PathsConfig) -> PathsConfig:
        v.tools_file = v.tools_file.expanduser()
        v.cache_dir = v.cache_dir.expanduser()
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
        # Environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = (
        config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".toolgate" / "config.toml")
    )
    return Path(candidate).expanduser()


def read_structured_file(path: Path) -> dict[str, Any]:
    """Parse a TOML or JSON file into a mapping; a missing file is empty."""
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
    """Detect which fields are overridden by environment variables.

    For nested models, detects vars like TOOLGATE_SHELL__COMMAND_TIMEOUT.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    nested_models: dict[str, type[BaseModel]] = {
        "shell": ShellConfig,
        "discovery": DiscoveryConfig,
        "oracle": OracleConfig,
        "paths": PathsConfig,
    }

    for group_name, model_cls in nested_models.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    if f"{prefix}LOG_LEVEL" in env_vars:
        overrides.add("log_level")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = read_structured_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result
