"""Configuration management for the faultline harness."""

from __future__ import annotations

import logging
import os
import shlex
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ClientSettings(BaseModel):
    invoke_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="Upper bound on a single client invocation before it is recorded as timed out.",
    )


class StorageSettings(BaseModel):
    store_path: str = Field(default="./store")


class CheckerSettings(BaseModel):
    external_command: tuple[str, ...] = Field(
        default=(),
        description="Command line of the external checker; the run directory flag is appended.",
    )
    external_timeout_seconds: float = Field(default=600.0, gt=0)
    max_search_states: int = Field(
        default=1_000_000,
        ge=1,
        description="Per-key state budget of the built-in linearizability search.",
    )

    @field_validator("external_command", mode="before")
    @classmethod
    def _split_command(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(shlex.split(value))
        return value


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    checker: CheckerSettings = Field(default_factory=CheckerSettings)


ENV_KEYS = {
    "log_level": "FAULTLINE_LOG_LEVEL",
    "log_file": "FAULTLINE_LOG_FILE",
    "invoke_timeout": "FAULTLINE_INVOKE_TIMEOUT",
    "store_path": "FAULTLINE_STORE_PATH",
    "external_checker": "FAULTLINE_EXTERNAL_CHECKER",
    "external_checker_timeout": "FAULTLINE_EXTERNAL_CHECKER_TIMEOUT",
    "max_search_states": "FAULTLINE_MAX_SEARCH_STATES",
}


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((Path.cwd() / candidate).resolve())


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


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "client": {
            "invoke_timeout_seconds": _env_float(
                ENV_KEYS["invoke_timeout"],
                ClientSettings().invoke_timeout_seconds,
            ),
        },
        "storage": {
            "store_path": _resolve_path(
                os.getenv(ENV_KEYS["store_path"], StorageSettings().store_path)
            ),
        },
        "checker": {
            "external_command": os.getenv(ENV_KEYS["external_checker"]),
            "external_timeout_seconds": _env_float(
                ENV_KEYS["external_checker_timeout"],
                CheckerSettings().external_timeout_seconds,
            ),
            "max_search_states": _env_int(
                ENV_KEYS["max_search_states"],
                CheckerSettings().max_search_states,
            ),
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
