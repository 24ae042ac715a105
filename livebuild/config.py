"""
Process settings for livebuild.

Loads settings from environment variables (and a local .env file) with
sensible defaults. Settings are read once at startup and handed to the
components that need them.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ConfigError(Exception):
    """Raised when the project configuration cannot be used."""


def parse_log_level(value: str) -> int:
    """Convert a level name to a logging level, falling back to DEBUG."""
    level = LOG_LEVELS.get((value or "").strip().lower())
    if level is None:
        logger.warning(f"Unknown log level {value!r}, using debug")
        return logging.DEBUG
    return level


@dataclass
class Settings:
    """livebuild process settings."""

    # Project file
    config_file: Path = Path("livebuild.json")

    # Logging
    log_level: str = "info"
    log_file: Optional[Path] = None
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 5

    # Seconds a child gets between SIGTERM and SIGKILL
    stop_timeout: float = 5.0

    # Build group names to run; empty means all
    builds: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the environment, loading .env first."""
        load_dotenv(env_file or find_dotenv(usecwd=True))

        log_file = os.environ.get("LIVEBUILD_LOG_FILE", "")
        try:
            return cls(
                config_file=Path(os.environ.get("LIVEBUILD_CONFIG", "livebuild.json")),
                log_level=os.environ.get("LIVEBUILD_LOG_LEVEL", "info"),
                log_file=Path(log_file) if log_file else None,
                log_max_bytes=int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
                log_backup_count=int(os.environ.get("LOG_BACKUP_COUNT", "5")),
                stop_timeout=float(os.environ.get("STOP_TIMEOUT", "5")),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting in environment: {e}") from e

    @property
    def level(self) -> int:
        return parse_log_level(self.log_level)
