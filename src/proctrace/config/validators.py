"""Custom Pydantic validators for configuration.

This module provides validators for custom type conversions shared by
the settings model and the bootstrap helpers.
"""

import json
from pathlib import Path


def validate_log_level(value: str) -> str:
    """Validate log level is one of the standard levels.

    Args:
        value: Log level string.

    Returns:
        Validated log level.

    Raises:
        ValueError: If log level is not valid.
    """
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if value.upper() not in valid_levels:
        raise ValueError(f"log_level must be one of {valid_levels}, got {value}")
    return value.upper()


def validate_log_format(value: str) -> str:
    """Validate log format is 'json' or 'console'.

    Args:
        value: Log format string.

    Returns:
        Validated log format.

    Raises:
        ValueError: If log format is not valid.
    """
    valid_formats = {"json", "console"}
    if value.lower() not in valid_formats:
        raise ValueError(f"log_format must be one of {valid_formats}, got {value}")
    return value.lower()


def resolve_path(value: Path | str) -> Path:
    """Resolve relative paths against the current working directory.

    Child processes inherit the working directory of their launcher, so every
    process in a chain resolves the same relative trace directory.

    Args:
        value: Path value (can be string or Path).

    Returns:
        Resolved absolute Path object.
    """
    if isinstance(value, str):
        path = Path(value)
    else:
        path = value

    return path.expanduser().resolve()


def parse_command(value: str | list[str] | None) -> list[str] | None:
    """Parse a command line from string or list.

    Handles:
    - JSON array: '["python", "-m", "proctrace"]'
    - Space-separated: "python -m proctrace"
    - Already a list: ["python", "-m", "proctrace"]

    Args:
        value: Raw command value from the environment or constructor.

    Returns:
        Command as a list of arguments, or None when unset.

    Raises:
        ValueError: If the value has an unsupported type or is an empty command.
    """
    if value is None:
        return None

    if isinstance(value, list):
        command = [str(part) for part in value]
    elif isinstance(value, str):
        command = None
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                command = [str(part) for part in parsed]
        except json.JSONDecodeError:
            pass

        if command is None:
            command = value.split()
    else:
        raise ValueError(f"Invalid command type: {type(value)}")

    if not command:
        raise ValueError("command must not be empty")
    return command
