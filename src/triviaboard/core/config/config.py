"""
Static configuration management for Triviaboard.

Purpose
-------
Process-level settings read once from the environment (``.env`` supported)
at import time: deployment environment, logging switches, database URL,
and the directories the other layers read from.

Non-Responsibilities
--------------------
- Leaderboard tunables such as feed limits and field names (handled by
  ConfigManager and the YAML files under ``config/``)
- Secrets management (use environment variables)

Architecture Notes
------------------
- Class attributes, no instances; ``Config.load()`` re-reads the environment
- An unparseable value never fails startup: the default is used and the
  problem is recorded in the load report
- ``Config.validate()`` is the only hard gate, run once by the entry point

Environment Variables
---------------------
- ENVIRONMENT: development / testing / staging / production (default: development)
- DEBUG: Debug mode flag (default: False)
- LOG_LEVEL: Logging level (default: INFO)
- LOG_JSON: Force JSON console logs (default: production only)
- LOG_COLORS: Color console logs on a terminal (default: True)
- LOG_TO_FILE: Enable the rotating JSON log file (default: True)
- LOGS_DIR: Directory for log files (default: <project>/logs)
- DATABASE_URL: SQLAlchemy URL for the score table
  (default: sqlite+aiosqlite:///triviaboard.db)
- DATABASE_ECHO: Echo SQL statements (default: False)
- CONFIG_DIR: Directory holding YAML defaults (default: <project>/config)
"""

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")

_TRUTHY = frozenset({"true", "yes", "1", "on"})
_FALSY = frozenset({"false", "no", "0", "off"})


def _parse_bool(raw: str) -> bool:
    normalized = raw.lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    raise ValueError(f"{raw!r} is not a boolean")


def _parse_path(raw: str) -> Path:
    return Path(raw).expanduser()


def check_async_database_url(url: str) -> str:
    """
    Return `url` unchanged if it names an async SQLAlchemy driver.

    >>> check_async_database_url("sqlite+aiosqlite:///scores.db")
    'sqlite+aiosqlite:///scores.db'

    Raises ValueError for URLs such as ``sqlite:///scores.db``.
    """
    scheme, separator, _ = url.partition("://")
    if not separator or "+" not in scheme:
        raise ValueError(
            f"'{scheme}' is not an async driver URL "
            "(expected e.g. sqlite+aiosqlite or postgresql+asyncpg)"
        )
    return url


class Environment(Enum):
    """Deployment environment types."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """
        Parse environment string safely with fallback.

        >>> Environment.from_string("PRODUCTION") is Environment.PRODUCTION
        True
        >>> Environment.from_string("moon") is Environment.DEVELOPMENT
        True
        """
        try:
            return cls(value.lower())
        except ValueError:
            # Structured logging is not set up yet during bootstrap
            logging.warning(f"Unknown environment '{value}', defaulting to development")
            return cls.DEVELOPMENT


class _LoadReport:
    """Where each setting came from during the last ``Config.load()``."""

    def __init__(self) -> None:
        self.from_env: set[str] = set()
        self.defaulted: set[str] = set()
        self.errors: Dict[str, str] = {}
        self.loaded_at: Optional[str] = None

    def reset(self) -> None:
        self.from_env.clear()
        self.defaulted.clear()
        self.errors.clear()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_configs": len(self.from_env) + len(self.defaulted),
            "from_environment": len(self.from_env),
            "from_defaults": len(self.defaulted),
            "validation_errors": len(self.errors),
            "defaults_used": sorted(self.defaulted),
            "last_reload": self.loaded_at,
        }


class Config:
    """
    Centralized static configuration for Triviaboard.

    Usage
    -----
    >>> Config.DATABASE_URL
    'sqlite+aiosqlite:///triviaboard.db'
    >>> if Config.is_production():
    ...     logger.info("Running in production mode")
    >>> logger.info("Config loaded", extra=Config.get_config_summary())
    """

    _report = _LoadReport()
    _validated: bool = False

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_COLORS: bool = True
    LOG_TO_FILE: bool = True

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///triviaboard.db"
    DATABASE_ECHO: bool = False

    # Directories
    PROJECT_ROOT = Path(__file__).resolve().parents[4]
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    CONFIG_DIR: Path = PROJECT_ROOT / "config"

    APP_NAME: str = "Triviaboard"
    APP_VERSION: str = "1.0.0"

    @classmethod
    def _env(cls, key: str, default: T, parse: Callable[[str], Any] = str) -> T:
        """
        Read `key` from the environment through `parse`.

        Unset or blank values yield `default`. A value `parse` rejects with
        ValueError also yields `default` and is recorded as an error.
        """
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            cls._report.defaulted.add(key)
            return default

        try:
            value = parse(raw.strip())
        except ValueError:
            error = f"{key}={raw!r} is invalid, using default {default!r}"
            logging.warning(error)
            cls._report.errors[key] = error
            cls._report.defaulted.add(key)
            return default

        cls._report.from_env.add(key)
        return value

    @classmethod
    def load(cls) -> None:
        """Read every setting from the environment. Runs on import."""
        cls._report.reset()

        cls.ENVIRONMENT = Environment.from_string(cls._env("ENVIRONMENT", "development")).value
        cls.DEBUG = cls._env("DEBUG", False, _parse_bool)
        cls.LOG_LEVEL = cls._env("LOG_LEVEL", "INFO").upper()
        cls.LOG_JSON = cls._env("LOG_JSON", None, _parse_bool)
        cls.LOG_COLORS = cls._env("LOG_COLORS", True, _parse_bool)
        cls.LOG_TO_FILE = cls._env("LOG_TO_FILE", True, _parse_bool)

        cls.DATABASE_URL = cls._env("DATABASE_URL", "sqlite+aiosqlite:///triviaboard.db")
        cls.DATABASE_ECHO = cls._env("DATABASE_ECHO", False, _parse_bool)

        cls.LOGS_DIR = cls._env("LOGS_DIR", cls.PROJECT_ROOT / "logs", _parse_path)
        cls.CONFIG_DIR = cls._env("CONFIG_DIR", cls.PROJECT_ROOT / "config", _parse_path)

        cls._validated = False
        cls._report.loaded_at = datetime.now(timezone.utc).isoformat()

    @classmethod
    def validate(cls) -> None:
        """
        Validate critical configuration values on startup.

        Raises
        ------
        ConfigurationError:
            If DATABASE_URL is not an async SQLAlchemy URL.
        """
        if cls._validated:
            return

        from triviaboard.core.exceptions import ConfigurationError

        logger = logging.getLogger(__name__)

        if not isinstance(logging.getLevelName(cls.LOG_LEVEL), int):
            logger.warning(f"Invalid LOG_LEVEL '{cls.LOG_LEVEL}', using INFO")
            cls._report.errors["LOG_LEVEL"] = f"invalid level {cls.LOG_LEVEL}"
            cls.LOG_LEVEL = "INFO"

        try:
            check_async_database_url(cls.DATABASE_URL)
        except ValueError as exc:
            raise ConfigurationError("DATABASE_URL", str(exc)) from exc

        if cls.is_production() and cls.DEBUG:
            logger.warning("DEBUG mode enabled in production!")

        cls._validated = True
        logger.info("Configuration validated", extra=cls.get_config_summary())

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == Environment.PRODUCTION.value

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """Non-secret configuration summary for startup logs."""
        return {
            "environment": cls.ENVIRONMENT,
            "debug": cls.DEBUG,
            "log_level": cls.LOG_LEVEL,
            "database_driver": cls.DATABASE_URL.split("://", 1)[0],
            "config_dir": str(cls.CONFIG_DIR),
            "load_metrics": cls._report.as_dict(),
        }


Config.load()
