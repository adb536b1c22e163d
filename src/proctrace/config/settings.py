"""Process-chain tracing settings.

This module provides the TraceSettings class and settings singleton.
"""

import sys
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import structlog

from proctrace.config.env_loader import Environment, get_environment, load_env_files
from proctrace.config.validators import (
    parse_command,
    resolve_path,
    validate_log_format,
    validate_log_level,
)

log = structlog.get_logger(__name__)

DEFAULT_TRACE_DIR = Path("logs")


def _default_spawn_command() -> list[str]:
    return [sys.executable, "-m", "proctrace"]


class TraceSettings(BaseSettings):
    """Settings shared by every process of a chain.

    Loaded from PROCTRACE_* environment variables, .env files, and defaults.
    The protocol variables (RUN_ID, PARENT_ID, TRACEPARENT) are not part of
    this model: they are read once into an InheritedContext.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCTRACE_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    environment: Environment = Field(
        default_factory=get_environment, description="Current environment"
    )
    service_name: str = Field(
        default="proctrace", description="service.name resource attribute on exported spans"
    )

    # Trace output
    trace_dir: Path = Field(
        default=DEFAULT_TRACE_DIR, description="Root directory for per-run trace files"
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(default="console", description="Console log format (json or console)")
    log_file: Path | None = Field(
        default=None, description="Optional rotating JSON log file shared by the chain"
    )

    # Process chain
    work_duration_seconds: float = Field(
        default=0.5, ge=0, description="Simulated unit of work per process"
    )
    spawn_command: Annotated[list[str], NoDecode] = Field(
        default_factory=_default_spawn_command,
        description="Command prefix used to start the next process of the chain",
    )
    workload_command: Annotated[list[str] | None, NoDecode] = Field(
        default=None,
        description="Optional command the terminal process runs as its unit of work",
    )
    terminate_timeout_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Grace period a running child gets after SIGTERM before it is killed",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        return validate_log_level(v)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        return validate_log_format(v)

    @field_validator("trace_dir", mode="before")
    @classmethod
    def resolve_trace_dir(cls, v: Path | str | None) -> Path:
        """Resolve the trace directory to absolute; unset or empty means the default."""
        if v is None or v == "":
            v = DEFAULT_TRACE_DIR
        return resolve_path(v)

    @field_validator("log_file", mode="before")
    @classmethod
    def resolve_log_file(cls, v: Path | str | None) -> Path | None:
        """Resolve the log file to absolute; empty disables file logging."""
        if v is None or v == "":
            return None
        return resolve_path(v)

    @field_validator("spawn_command", "workload_command", mode="before")
    @classmethod
    def parse_commands(cls, v: str | list[str] | None) -> list[str] | None:
        """Parse commands from a JSON array, a whitespace string, or a list."""
        if v == "":
            return None
        return parse_command(v)


_settings: TraceSettings | None = None


def load_settings() -> TraceSettings:
    """Load and validate settings.

    This function:
    1. Loads .env files in priority order (via env_loader)
    2. Creates TraceSettings instance (reads from environment variables)
    3. Validates all values using Pydantic

    Returns:
        Validated TraceSettings instance.

    Raises:
        ValidationError: If configuration validation fails.
    """
    load_env_files()

    try:
        config = TraceSettings()
        log.debug(
            "settings_loaded",
            environment=config.environment.value,
            trace_dir=str(config.trace_dir),
            log_level=config.log_level,
        )
        return config
    except Exception as e:
        log.error("settings_load_failed", error=str(e), error_type=type(e).__name__)
        raise


def get_settings() -> TraceSettings:
    """Get the settings singleton.

    Returns:
        TraceSettings instance (singleton pattern).
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
