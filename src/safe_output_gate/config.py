"""Runtime configuration for the safe-output gate."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ExecutionSettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_seconds: float = Field(default=0.5, ge=0.0, le=60.0)
    retry_max_seconds: float = Field(default=8.0, ge=0.0, le=300.0)
    http_timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    max_concurrency: int = Field(default=4, ge=1, le=32)
    fail_fast: bool = Field(
        default=False,
        description=(
            "If True, a permanent failure aborts operations that have not started yet. "
            "Independent operations otherwise proceed."
        ),
    )


class PathSettings(BaseModel):
    config_path: str = Field(default="./safe_outputs_config.json")
    records_path: str = Field(default="./safe_outputs.jsonl")
    output_dir: str = Field(default="./safe_outputs_results")


class WorkflowSettings(BaseModel):
    """Facts about the workflow run that owns the batch."""

    repository: str | None = Field(default=None, description="owner/repo of the workflow")
    api_url: str = Field(default="https://api.github.com")
    server_url: str = Field(default="https://github.com")
    run_id: str | None = Field(default=None)
    workflow_name: str | None = Field(default=None)
    token: str | None = Field(default=None, repr=False)
    staged: bool | None = Field(
        default=None,
        description="Overrides the configuration's staged flag when set.",
    )
    config_sha256: str | None = Field(default=None)
    temporary_id_map: str | None = Field(
        default=None,
        description="JSON object mapping temporary ids resolved by earlier steps.",
    )

    @field_validator("api_url", "server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def run_url(self) -> str | None:
        if not self.repository or not self.run_id:
            return None
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "config_path": "GH_AW_SAFE_OUTPUTS_CONFIG_PATH",
    "records_path": "GH_AW_SAFE_OUTPUTS",
    "output_dir": "GH_AW_SAFE_OUTPUTS_OUTPUT_DIR",
    "config_sha256": "GH_AW_SAFE_OUTPUTS_CONFIG_SHA256",
    "staged": "GH_AW_SAFE_OUTPUTS_STAGED",
    "temporary_id_map": "GH_AW_TEMPORARY_ID_MAP",
    "repository": "GITHUB_REPOSITORY",
    "api_url": "GITHUB_API_URL",
    "server_url": "GITHUB_SERVER_URL",
    "run_id": "GITHUB_RUN_ID",
    "workflow_name": "GITHUB_WORKFLOW",
    "max_attempts": "SAFE_OUTPUTS_MAX_ATTEMPTS",
    "retry_base_seconds": "SAFE_OUTPUTS_RETRY_BASE_SECONDS",
    "retry_max_seconds": "SAFE_OUTPUTS_RETRY_MAX_SECONDS",
    "http_timeout_seconds": "SAFE_OUTPUTS_HTTP_TIMEOUT_SECONDS",
    "max_concurrency": "SAFE_OUTPUTS_MAX_CONCURRENCY",
    "fail_fast": "SAFE_OUTPUTS_FAIL_FAST",
}

# Checked in order; the first non-empty value wins.
_TOKEN_ENV_KEYS = ("GH_AW_GITHUB_TOKEN", "GITHUB_TOKEN")

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _resolve_path(path: str) -> str:
    return str(Path(path).expanduser().resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_optional_bool(key: str) -> bool | None:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_token() -> str | None:
    for key in _TOKEN_ENV_KEYS:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return None


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "execution": {
            "max_attempts": _env_int(
                ENV_KEYS["max_attempts"], ExecutionSettings().max_attempts
            ),
            "retry_base_seconds": _env_float(
                ENV_KEYS["retry_base_seconds"], ExecutionSettings().retry_base_seconds
            ),
            "retry_max_seconds": _env_float(
                ENV_KEYS["retry_max_seconds"], ExecutionSettings().retry_max_seconds
            ),
            "http_timeout_seconds": _env_float(
                ENV_KEYS["http_timeout_seconds"], ExecutionSettings().http_timeout_seconds
            ),
            "max_concurrency": _env_int(
                ENV_KEYS["max_concurrency"], ExecutionSettings().max_concurrency
            ),
            "fail_fast": _env_bool(ENV_KEYS["fail_fast"], ExecutionSettings().fail_fast),
        },
        "paths": {
            "config_path": _resolve_path(
                os.getenv(ENV_KEYS["config_path"], PathSettings().config_path)
            ),
            "records_path": _resolve_path(
                os.getenv(ENV_KEYS["records_path"], PathSettings().records_path)
            ),
            "output_dir": _resolve_path(
                os.getenv(ENV_KEYS["output_dir"], PathSettings().output_dir)
            ),
        },
        "workflow": {
            "repository": os.getenv(ENV_KEYS["repository"]) or None,
            "api_url": os.getenv(ENV_KEYS["api_url"], WorkflowSettings().api_url),
            "server_url": os.getenv(ENV_KEYS["server_url"], WorkflowSettings().server_url),
            "run_id": os.getenv(ENV_KEYS["run_id"]) or None,
            "workflow_name": os.getenv(ENV_KEYS["workflow_name"]) or None,
            "token": _env_token(),
            "staged": _env_optional_bool(ENV_KEYS["staged"]),
            "config_sha256": (os.getenv(ENV_KEYS["config_sha256"], "").strip() or None),
            "temporary_id_map": os.getenv(ENV_KEYS["temporary_id_map"]) or None,
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.execution.retry_max_seconds < settings.execution.retry_base_seconds:
        raise RuntimeError(
            "Invalid configuration: SAFE_OUTPUTS_RETRY_MAX_SECONDS must be >= "
            "SAFE_OUTPUTS_RETRY_BASE_SECONDS"
        )

    return settings
