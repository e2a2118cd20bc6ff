"""
Logging configuration for Trace Extractor.

Configures the ``trace_extractor`` logger hierarchy with a console handler
(stderr, so command output on stdout stays clean) and an optional rotating
file handler under the XDG state directory.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from typing import Optional

from trace_extractor.config import settings

ROOT_LOGGER_NAME = "trace_extractor"

_STANDARD_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonLinesFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _build_formatter() -> logging.Formatter:
    if settings.log_format == "json":
        return JsonLinesFormatter()
    return logging.Formatter(fmt=_STANDARD_FORMAT, datefmt=_DATE_FORMAT)


def setup_logging(context: str = "cli", level: Optional[str] = None) -> logging.Logger:
    """
    Configure logging for the given execution context.

    Args:
        context: Name of the entry point; used as the log file name
        level: Optional level override (defaults to settings.log_level)

    Returns:
        The configured package logger

    Raises:
        PermissionError: If the log directory cannot be created
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel((level or settings.log_level).upper())

    # Re-running setup replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = _build_formatter()

    if settings.log_console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if settings.log_file_enabled:
        log_dir = settings.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
