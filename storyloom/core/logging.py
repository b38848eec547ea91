"""Structured logging configuration for storyloom."""

import logging
import sys
from typing import Any

# Context fields promoted from ``extra=`` onto the log line, in this order.
CONTEXT_FIELDS = ("book_id", "source_type", "source_id", "event")


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        log_data.update(
            {name: getattr(record, name) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None}
        )
        log_data.update(getattr(record, "extra_data", None) or {})

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def _level_for_env() -> int:
    """DEBUG in dev, INFO everywhere else (or when settings can't load)."""
    try:
        from storyloom.core.config import get_settings

        env = get_settings().STORYLOOM_ENV
    except Exception:
        return logging.INFO
    return logging.DEBUG if env == "dev" else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger writing structured lines to stdout.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log a structured event.

    Known context fields (book_id, source_type, source_id, event) become
    record attributes; anything else is appended as extra key=value pairs.
    """
    extra: dict[str, Any] = {name: kwargs.pop(name) for name in CONTEXT_FIELDS if name in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
