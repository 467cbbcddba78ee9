"""
Logging configuration for StoreForge.

Colored console output for interactive sessions, plain file output for
servers, and small helpers for logging tool and delegation operations.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

ROOT_LOGGER_NAME = "storeforge"

_loggers: dict[str, logging.Logger] = {}


# ============================================================================
# Formatter
# ============================================================================


class StoreForgeFormatter(logging.Formatter):
    """Formatter producing ``[timestamp] LEVEL [name] message`` lines."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S")
        parts = [f"[{timestamp}]"]

        level = record.levelname
        if self.use_colors:
            color = self.COLORS.get(level, "")
            parts.append(f"{color}{level:8}{self.COLORS['RESET']}")
        else:
            parts.append(f"{level:8}")

        name = record.name
        prefix = f"{ROOT_LOGGER_NAME}."
        if name.startswith(prefix):
            name = name[len(prefix):]
        parts.append(f"[{name:22}]")

        parts.append(record.getMessage())

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


# ============================================================================
# Setup Functions
# ============================================================================


def setup_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    log_dir: str | Path | None = None,
    console_output: bool = True,
    file_output: bool = True,
) -> None:
    """Configure the ``storeforge`` logger hierarchy.

    Args:
        level: Minimum log level to capture
        log_dir: Directory for log files (file output is skipped without it)
        console_output: Whether to log to stdout
        file_output: Whether to log to a file under ``log_dir``
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, level))
    root_logger.handlers = []

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(StoreForgeFormatter(use_colors=True))
        root_logger.addHandler(console_handler)

    if file_output and log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path / "storeforge.log", encoding="utf-8")
        file_handler.setLevel(getattr(logging, level))
        file_handler.setFormatter(StoreForgeFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    root_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger under the ``storeforge`` namespace.

    Usage:
        logger = get_logger("agents.manager")
        logger.info("Turn started")
    """
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        full_name = name
    else:
        full_name = f"{ROOT_LOGGER_NAME}.{name}"

    if full_name not in _loggers:
        _loggers[full_name] = logging.getLogger(full_name)

    return _loggers[full_name]


# ============================================================================
# Convenience Functions
# ============================================================================


def log_operation(
    logger: logging.Logger,
    operation: str,
    details: dict | None = None,
) -> None:
    """Log an operation with optional key=value details."""
    if details:
        detail_str = ", ".join(f"{k}={v}" for k, v in details.items())
        logger.info(f"{operation}: {detail_str}")
    else:
        logger.info(operation)


def log_error(
    logger: logging.Logger,
    operation: str,
    error: BaseException,
    context: dict | None = None,
) -> None:
    """Log a failed operation with its exception and context."""
    msg = f"FAILED {operation}: {type(error).__name__}: {error}"
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        msg = f"{msg} | Context: {context_str}"
    logger.error(msg, exc_info=error)


# Console-only setup for early imports
setup_logging(level="INFO", console_output=True, file_output=False)
