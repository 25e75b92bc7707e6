"""Logging configuration for wni.

Structured logging via loguru. Logging is disabled by default, as befits a
library, and enabled by the embedding application through ``setup_logging``.

Example:
    from wni.logging import LogConfig, setup_logging, teardown_logging

    handlers = setup_logging(LogConfig(level="DEBUG", file="wni.log"))
    try:
        provisioner.destroy_windows_vms()
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

# Disable by default (library behavior)
logger.disable("wni")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level for the console.
        file: Path to log file. If provided, logs are written to this file.
        console: Whether to log to stderr. Defaults to True.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Configure logging and return handler IDs for cleanup."""
    logger.enable("wni")
    logger.configure(extra={"component": "wni"})
    handler_ids: list[int] = []

    if config.console:
        hid = logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="wni",
        )
        handler_ids.append(hid)

    if config.file:
        hid = logger.add(
            config.file,
            level="DEBUG",  # File always captures everything
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            diagnose=False,  # Don't expose credentials in tracebacks
            enqueue=True,
            filter="wni",
        )
        handler_ids.append(hid)

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("wni")
