"""Configuration management for the drift monitor."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "drift.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/drift-monitor/drift.yml").expanduser(),
    Path("/config/drift.yml"),
]
_USER_SECRETS_PATHS = [
    Path("~/.config/drift-monitor/secrets.yml").expanduser(),
    Path("/config/secrets.yml"),
]

DEFAULT_ENGINE_CONFIG_PATH = _REPO_ROOT / "config" / "engine.yml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            merged.update(_load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "DRIFT_LOG_LEVEL": ("log_level", "str"),
        "DRIFT_LOG_JSON": ("log_json", "bool"),
        "DRIFT_ENGINE_CONFIG": ("engine.config_path", "str"),
        "DRIFT_MAX_CONCURRENCY": ("dispatch.max_concurrency", "int"),
        "DRIFT_SEND_TIMEOUT": ("dispatch.send_timeout_seconds", "float"),
        "DRIFT_MAX_ATTEMPTS": ("dispatch.max_attempts", "int"),
        "EMAIL_RELAY_URL": ("email.relay_url", "str"),
        "EMAIL_SENDER": ("email.sender", "str"),
        "DATABASE_URL": ("database.url", "str"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class EngineConfig(BaseModel):
    """Location of the static engine configuration (baselines, systems, policy)."""

    config_path: str = str(DEFAULT_ENGINE_CONFIG_PATH)


class DispatchConfig(BaseModel):
    """Worker pool, timeout and retry budget for notification sends."""

    max_concurrency: int = 4
    send_timeout_seconds: float = 5.0
    max_attempts: int = 2
    backoff_strategy: str = "exponential"
    backoff_base_seconds: float = 0.5

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, value: int) -> int:
        """Ensure the worker pool has at least one slot."""
        if value < 1:
            raise ValueError("dispatch.max_concurrency must be >= 1.")
        return value

    @field_validator("send_timeout_seconds")
    @classmethod
    def validate_send_timeout(cls, value: float) -> float:
        """Ensure sends are always timeout-bound."""
        if value <= 0:
            raise ValueError("dispatch.send_timeout_seconds must be > 0.")
        return value

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, value: int) -> int:
        """Ensure max attempts is positive."""
        if value < 1:
            raise ValueError("dispatch.max_attempts must be >= 1.")
        return value

    @field_validator("backoff_strategy")
    @classmethod
    def validate_backoff_strategy(cls, value: str) -> str:
        """Ensure backoff strategy is supported."""
        normalized = value.strip().lower()
        if normalized not in {"fixed", "exponential", "none"}:
            raise ValueError("dispatch.backoff_strategy must be fixed, exponential, or none.")
        return normalized

    @field_validator("backoff_base_seconds")
    @classmethod
    def validate_backoff_seconds(cls, value: float) -> float:
        """Ensure backoff base seconds is non-negative."""
        if value < 0:
            raise ValueError("dispatch.backoff_base_seconds must be >= 0.")
        return value


class EmailConfig(BaseModel):
    """Email relay endpoint used by the email transport."""

    relay_url: str = "http://mail-relay:8025/send"
    sender: str = "data.governance@healthcare.com"


class DatabaseConfig(BaseModel):
    """Optional database for durable audit persistence."""

    url: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_SECRETS_PATHS),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    engine: EngineConfig = Field(default_factory=EngineConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalize the log level name."""
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized


# Global settings instance
settings = Settings()
