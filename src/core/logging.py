"""
Logging configuration for the batch queue service.

This module provides:
- Structured JSON logging for production (ENV=prod)
- A human-readable formatter for development that still shows context fields
- The service logger shared by queue, cache, worker and API modules
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .settings import get_settings

settings = get_settings()

# Attributes every LogRecord carries; anything else arrived via `extra=`.
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "asctime",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
    }
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Each record becomes one JSON object with timestamp, level, logger and
    message, plus source location for warnings and above, exception details
    when present, and every field passed through ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string."""
        log_dict: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            log_dict["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_dict["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        log_dict.update(_extra_fields(record))
        return json.dumps(log_dict, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Readable single-line formatter for development.

    Context passed through ``extra=`` (request keys, backends, counts) is
    appended as ``key=value`` pairs.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a human-readable string."""
        base_format = super().format(record)
        extras = _extra_fields(record)
        if not extras:
            return base_format
        return base_format + " | " + " | ".join(f"{k}={v}" for k, v in extras.items())


def setup_logging(level: str, use_json: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON structured logging; otherwise use human-readable format
    """
    if use_json:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level.upper())

    # Redis and HTTP client chatter
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# JSON logs in production, readable logs everywhere else
use_json_logging = settings.ENV.lower() == "prod"

setup_logging(settings.LOG_LEVEL, use_json=use_json_logging)

logger_batch = logging.getLogger(settings.LOG_NAME)

if use_json_logging:
    logger_batch.info("JSON structured logging enabled")
else:
    logger_batch.info("Human-readable logging enabled (set ENV=prod for JSON logging)")
