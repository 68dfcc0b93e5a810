"""
Logging setup for the Plex updater.

Every run writes a timestamped audit trail to the console and appends the same
lines to a persistent log file. The log file is the only durable record of what
an update or rollback did.

Features:
- Plain "[YYYY-MM-DD HH:MM:SS] message" lines, prefixed with "ERROR: " or
  "WARNING: " for those levels
- Optional JSON-formatted output for machine-readable logs
- Informational records on stdout, warnings and errors on stderr
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from plex_updater.config import LoggingConfig

ROOT_LOGGER_NAME = "plex_updater"

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class PlainFormatter(logging.Formatter):
    """
    Formats records as "[timestamp] message" audit lines.

    Warnings and errors carry a "WARNING: " or "ERROR: " prefix so that they
    stand out in the log file.
    """

    def __init__(self) -> None:
        super().__init__(fmt="[%(asctime)s] %(message)s", datefmt=DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if record.levelno >= logging.ERROR:
            prefix = "ERROR: "
        elif record.levelno >= logging.WARNING:
            prefix = "WARNING: "
        else:
            return line
        stamp_end = line.find("] ") + 2
        return line[:stamp_end] + prefix + line[stamp_end:]


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - Additional fields from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _STANDARD_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class _MaxLevelFilter(logging.Filter):
    """Pass only records strictly below a given level."""

    def __init__(self, max_level: int) -> None:
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_to_stdout: bool = True,
    log_file: Path | str | None = None,
) -> logging.Logger:
    """
    Configure the logging system for an update or rollback run.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides other parameters.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting (default: False).
        log_to_stdout: Whether to log to the console (default: True).
        log_file: Optional path of the persistent log file.

    Returns:
        The root logger configured for the plex_updater package.

    Example:
        >>> from plex_updater.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG", log_file="/tmp/plex-update.log")
        >>> logger.info("Update started", extra={"service": "plexmediaserver"})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
        log_file = config.log_file
    else:
        log_level = level.upper()

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JSONFormatter() if json_format else PlainFormatter()

    if log_to_stdout:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(numeric_level)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        stdout_handler.setFormatter(formatter)
        logger.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(max(numeric_level, logging.WARNING))
        stderr_handler.setFormatter(formatter)
        logger.addHandler(stderr_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger to avoid duplicate logs
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "plex_updater." prefix is added automatically if not present.

    Returns:
        A configured logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
