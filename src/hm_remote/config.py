"""Runtime configuration read from the environment.

Every setting has a built-in default and can be overridden with an
``HM_REMOTE_*`` environment variable. Command line options take
precedence over both.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .const import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_ATTEMPTS,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_SCAN_TIMEOUT,
    DEFAULT_WRITE_DELAY,
    LineEnding,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "HM_REMOTE_"


def get_env(name: str, default: str | None = None) -> str | None:
    """Get an environment variable, treating blank values as unset.

    Args:
        name: Environment variable name (e.g., "HM_REMOTE_LOG_LEVEL")
        default: Value returned when the variable is unset or blank

    Returns:
        Stripped environment variable value, or default if not found
    """
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def get_env_float(name: str, default: float) -> float:
    """Get float environment variable.

    Args:
        name: Environment variable name
        default: Default value if not found or invalid

    Returns:
        Float value from environment or default
    """
    raw = get_env(name)
    if raw is None:
        return default

    try:
        return float(raw)
    except ValueError:
        logger.warning(
            f"Invalid float value for {name}: '{raw}'. Using default: {default}"
        )
        return default


def get_env_int(name: str, default: int) -> int:
    """Get integer environment variable.

    Args:
        name: Environment variable name
        default: Default value if not found or invalid

    Returns:
        Integer value from environment or default
    """
    raw = get_env(name)
    if raw is None:
        return default

    try:
        return int(raw)
    except ValueError:
        logger.warning(
            f"Invalid integer value for {name}: '{raw}'. Using default: {default}"
        )
        return default


def get_env_line_ending(name: str, default: LineEnding) -> LineEnding:
    """Get a line ending name from the environment."""
    raw = get_env(name)
    if raw is None:
        return default

    try:
        return LineEnding(raw.lower())
    except ValueError:
        choices = ", ".join(member.value for member in LineEnding)
        logger.warning(
            f"Invalid line ending for {name}: '{raw}' (choose from {choices}). "
            f"Using default: {default.value}"
        )
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    """Effective runtime settings."""

    scan_timeout: float = DEFAULT_SCAN_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    write_delay: float = DEFAULT_WRITE_DELAY
    line_ending: LineEnding = LineEnding.NONE
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings() -> Settings:
    """Build settings from ``HM_REMOTE_*`` environment variables."""
    chunk_size = get_env_int(ENV_PREFIX + "CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
    if chunk_size < 1:
        logger.warning(
            f"Chunk size must be positive, got {chunk_size}. "
            f"Using default: {DEFAULT_CHUNK_SIZE}"
        )
        chunk_size = DEFAULT_CHUNK_SIZE

    attempts = get_env_int(
        ENV_PREFIX + "CONNECT_ATTEMPTS", DEFAULT_CONNECT_ATTEMPTS
    )
    if attempts < 1:
        logger.warning(
            f"Connect attempts must be positive, got {attempts}. "
            f"Using default: {DEFAULT_CONNECT_ATTEMPTS}"
        )
        attempts = DEFAULT_CONNECT_ATTEMPTS

    return Settings(
        scan_timeout=get_env_float(
            ENV_PREFIX + "SCAN_TIMEOUT", DEFAULT_SCAN_TIMEOUT
        ),
        connect_timeout=get_env_float(
            ENV_PREFIX + "CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT
        ),
        connect_attempts=attempts,
        chunk_size=chunk_size,
        write_delay=get_env_float(
            ENV_PREFIX + "WRITE_DELAY", DEFAULT_WRITE_DELAY
        ),
        line_ending=get_env_line_ending(
            ENV_PREFIX + "LINE_ENDING", LineEnding.NONE
        ),
        log_level=(
            get_env(ENV_PREFIX + "LOG_LEVEL", DEFAULT_LOG_LEVEL) or ""
        ).upper(),
    )


def configure_logging(level: str | int) -> None:
    """Configure root logging for the command line tool."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        )
    logging.getLogger("hm_remote").setLevel(level)
