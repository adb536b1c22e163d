"""Unified configuration management for proctrace.

Settings come from PROCTRACE_* environment variables, .env files, and defaults.
"""

from proctrace.config.env_loader import Environment, get_environment, load_env_files
from proctrace.config.settings import TraceSettings, get_settings, load_settings

__all__ = [
    "TraceSettings",
    "get_settings",
    "load_settings",
    "Environment",
    "get_environment",
    "load_env_files",
]
