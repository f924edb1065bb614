"""Loguru sink setup."""

import sys
from pathlib import Path

from loguru import logger

from .config import LoggingConfig


def setup_logging(log_config: LoggingConfig | None = None) -> None:
    """Configure logging based on configuration."""
    log_config = log_config or LoggingConfig()

    # Remove default handler
    logger.remove()

    logger.add(
        sink=sys.stderr,
        format=log_config.format,
        level=log_config.level,
        colorize=log_config.colorize,
    )

    if log_config.file_enabled:
        log_path = Path(log_config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            sink=log_path,
            format=log_config.format,
            level=log_config.level,
            rotation=log_config.file_rotation,
            retention=log_config.file_retention,
            serialize=log_config.json_logs,
        )

    logger.debug(f"Logging configured at level {log_config.level}")
