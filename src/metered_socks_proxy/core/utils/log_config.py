"""Logging configuration for the proxy server.

This module provides centralized logging configuration using Loguru.
It sets up logging to both console and file with proper formatting
and log rotation. Library modules simply ``from loguru import logger``;
only the command line entry points call :func:`configure_logging`.
"""

import sys
from pathlib import Path

from loguru import logger

# Logs live in the user's home directory
LOG_DIR = Path.home() / ".metered-socks-proxy" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(*, debug: bool = False, log_file: bool = True) -> None:
    """Install the console and (optionally) rotating file handlers.

    Args:
        debug: Lower the console level from INFO to DEBUG
        log_file: Also write DEBUG-level logs to ``LOG_DIR / "proxy.log"``
    """
    logger.remove()  # Remove default handler

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if debug else "INFO",
        backtrace=True,
        diagnose=debug,
    )

    if log_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        logger.add(
            LOG_DIR / "proxy.log",
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            format=FILE_FORMAT,
            level="DEBUG",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )


__all__ = ["configure_logging", "LOG_DIR", "logger"]
