"""Environment variable file loader with priority-based loading.

Values already present in the process environment always win over .env files,
so protocol variables inherited from a launcher (RUN_ID, TRACEPARENT, ...)
can never be replaced by a file on disk.
"""

from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from proctrace.telemetry import get_logger

log = get_logger(__name__)


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


def get_environment() -> Environment:
    """Detect current environment from APP_ENV environment variable.

    Returns:
        Environment enum value.

    Environment variable mapping:
    - "production" or "prod" → Environment.PRODUCTION
    - "staging" or "stage" → Environment.STAGING
    - "test" → Environment.TEST
    - Default → Environment.DEVELOPMENT
    """
    import os  # noqa: PLC0415

    app_env = os.getenv("APP_ENV", "").lower()

    if app_env in ("production", "prod"):
        return Environment.PRODUCTION
    elif app_env in ("staging", "stage"):
        return Environment.STAGING
    elif app_env == "test":
        return Environment.TEST
    else:
        return Environment.DEVELOPMENT


def load_env_files(project_root: Path | None = None) -> list[Path]:
    """Load .env files in priority order.

    Priority (highest first):
    1. `.env.{environment}.local`
    2. `.env.{environment}`
    3. `.env.local`
    4. `.env`

    Args:
        project_root: Directory holding the .env files. Defaults to the
            current working directory.

    Returns:
        The files that were found and loaded, highest priority first.
    """
    if project_root is None:
        project_root = Path.cwd()

    env_name = get_environment().value

    env_files = [
        project_root / f".env.{env_name}.local",
        project_root / f".env.{env_name}",
        project_root / ".env.local",
        project_root / ".env",
    ]

    loaded_files: list[Path] = []
    for env_file in env_files:
        if env_file.exists():
            # override=False: anything set earlier (process env or a
            # higher-priority file) is kept.
            load_dotenv(env_file, override=False)
            loaded_files.append(env_file)

    if loaded_files:
        log.debug(
            "env_files_loaded",
            environment=env_name,
            files=[str(path.name) for path in loaded_files],
            project_root=str(project_root),
        )
    return loaded_files
