"""
Structured logging utilities.

This module provides JSON logging capabilities for run events, plus a small
helper to configure console/file handlers for the CLI.
"""

import logging
import json
import os
from pathlib import Path
from typing import Optional
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredLogger:
    """
    Structured logger that outputs JSON-formatted logs.

    Used for run lifecycle events (stage changes, chaos transitions, verdict)
    so that log files can be post-processed line by line.
    """

    def __init__(self, name: str, level: int = logging.INFO):
        """
        Initialize structured logger.

        Args:
            name: Logger name.
            level: Logging level.
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

    def _log(self, level: int, message: str, **kwargs) -> None:
        """
        Log a structured message.

        Args:
            level: Logging level.
            message: Log message.
            **kwargs: Additional structured fields.
        """
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "message": message,
            **kwargs
        }
        self.logger.log(level, json.dumps(log_data, default=str))

    def info(self, message: str, **kwargs) -> None:
        """Log info message with structured data."""
        self._log(logging.INFO, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message with structured data."""
        self._log(logging.ERROR, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with structured data."""
        self._log(logging.WARNING, message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with structured data."""
        self._log(logging.DEBUG, message, **kwargs)


def get_logger(name: str) -> logging.Logger:
    """
    Get a standard Python logger.

    Args:
        name: Logger name.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure the ``load_chaos_sdk`` logger hierarchy.

    Args:
        level: Level name (falls back to LOAD_CHAOS_LOG_LEVEL, then INFO).
        log_file: Optional path of a log file to write alongside the console.
    """
    level_name = (level or os.getenv("LOAD_CHAOS_LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger("load_chaos_sdk")
    root.setLevel(numeric_level)
    root.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(
            logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        root.addHandler(file_handler)
