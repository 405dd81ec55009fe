"""
Typed configuration for the Course Desk client.

A config file is optional: every section has defaults, and the backend
address can come from ``COURSEDESK_API_BASE`` alone. The bearer token is never
stored in the file; ``backend.token_env`` names the environment variable that
holds it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError

API_BASE_ENV = "COURSEDESK_API_BASE"
DEFAULT_TOKEN_ENV = "COURSEDESK_API_TOKEN"
CONFIG_PATH_ENV = "COURSEDESK_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/coursedesk.yaml")


class BackendConfig(BaseModel):
    """Connection info for the course REST backend."""

    api_base: str = Field(..., description="Base URL, e.g. https://lms.example.com/api")
    token_env: str = Field(default=DEFAULT_TOKEN_ENV, description="Env var holding the bearer token.")
    timeout: float = Field(default=30.0, gt=0.0, le=600.0)

    @model_validator(mode="before")
    @classmethod
    def fill_api_base_from_env(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("api_base"):
            return data
        env_base = os.getenv(API_BASE_ENV)
        if env_base:
            return {**data, "api_base": env_base}
        return data

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("api_base must not be empty")
        return cleaned

    def resolve_token(self) -> Optional[str]:
        token = os.getenv(self.token_env)
        return token.strip() if token and token.strip() else None


class TableConfig(BaseModel):
    """Defaults for the enrolled-students table."""

    page_size: int = Field(default=5, ge=1, le=100)
    default_sort: Literal["name", "email", "createdAt", "progress"] = "createdAt"
    default_direction: Literal["asc", "desc"] = "desc"

    @field_validator("default_direction", mode="before")
    @classmethod
    def normalize_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class StatisticsConfig(BaseModel):
    """Knobs for the cross-course statistics pass."""

    coalesce_progress_fetches: bool = Field(
        default=True,
        description="Fetch each course's progress once and reuse it for the roster.",
    )


class ClientConfig(BaseModel):
    """Top-level configuration for the aggregation engine and CLI."""

    backend: BackendConfig
    table: TableConfig = Field(default_factory=TableConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)

    @model_validator(mode="before")
    @classmethod
    def ensure_backend_present(cls, values: Any) -> Any:
        if isinstance(values, dict) and "backend" not in values:
            return {**values, "backend": {}}
        return values


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of {path}, received {type(data).__name__}")
    return data


def load_client_config(path: Path | None = None, *, base_dir: Path | None = None) -> ClientConfig:
    """Load config from ``path`` (or ``COURSEDESK_CONFIG``), falling back to env-only defaults."""

    load_dotenv((base_dir or Path.cwd()) / ".env")
    if path is None:
        env_path = os.getenv(CONFIG_PATH_ENV)
        if env_path:
            path = Path(env_path)
        elif DEFAULT_CONFIG_PATH.exists():
            path = DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path is not None:
        path = path.expanduser().resolve()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        data = read_yaml_file(path)

    source = str(path) if path is not None else "environment"
    try:
        return ClientConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid client config in {source}: {exc.errors()[0]['msg']}") from exc


def merge_table_config(base: TableConfig, overrides: Dict[str, Any]) -> TableConfig:
    """Return a new TableConfig with CLI-level overrides applied."""
    payload = base.model_dump()
    payload.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return TableConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError("Invalid overrides for table config") from exc


__all__ = [
    "API_BASE_ENV",
    "BackendConfig",
    "ClientConfig",
    "DEFAULT_TOKEN_ENV",
    "StatisticsConfig",
    "TableConfig",
    "load_client_config",
    "merge_table_config",
    "read_yaml_file",
]
