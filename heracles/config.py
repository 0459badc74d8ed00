"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults, and the structlog setup used by every
component.
"""

import logging
import os
from dataclasses import dataclass, field

import structlog


def _get_float_env(name: str, default: float) -> float:
    """Get a float value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set or unparsable.

    Returns:
        Float value from environment.
    """
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_int_env(name: str, default: int | None) -> int | None:
    """Get an integer value from environment variable."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list_env(name: str, default: list[str]) -> list[str]:
    """Get a comma separated list from environment variable."""
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        HERACLES_CONFIG: Path of the dashboard YAML loaded at startup.
        UPSTREAM_TIMEOUT_SECONDS: Deadline applied to each upstream call.
        UPSTREAM_RETRIES: Connection retries done by the HTTP transport.
        MAX_UPSTREAM_CONNECTIONS: Connection pool size for upstream calls.
        DEFAULT_LOG_LIMIT: Line limit for log panels that set none.
        CORS_ORIGINS: Origins allowed to call the JSON API.
        LOG_LEVEL: Logging level.
    """

    # Dashboards
    HERACLES_CONFIG: str = "dashboards.yaml"

    # Upstream transport
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0
    UPSTREAM_RETRIES: int = 0
    MAX_UPSTREAM_CONNECTIONS: int = 100
    DEFAULT_LOG_LIMIT: int | None = None

    # API
    CORS_ORIGINS: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            HERACLES_CONFIG=os.getenv("HERACLES_CONFIG", "dashboards.yaml"),
            UPSTREAM_TIMEOUT_SECONDS=_get_float_env("UPSTREAM_TIMEOUT_SECONDS", 30.0),
            UPSTREAM_RETRIES=_get_int_env("UPSTREAM_RETRIES", 0) or 0,
            MAX_UPSTREAM_CONNECTIONS=_get_int_env("MAX_UPSTREAM_CONNECTIONS", 100) or 100,
            DEFAULT_LOG_LIMIT=_get_int_env("DEFAULT_LOG_LIMIT", None),
            CORS_ORIGINS=_get_list_env("CORS_ORIGINS", ["*"]),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog to drop events below ``level``.

    Args:
        level: Standard logging level name (DEBUG, INFO, ...).
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )


# Global settings instance
settings = Settings.from_env()
