"""
Structured logging utilities for conversation observability.
Every log line emitted during a chat turn carries the turn id and the user id.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

# One correlation id per chat turn
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)
user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)


class StructuredFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON documents.
    Adds turn and user context from the active context variables.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record with structured context.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        correlation_id = correlation_id_ctx.get()
        if correlation_id:
            log_data["turn_id"] = correlation_id

        user_id = user_id_ctx.get()
        if user_id:
            log_data["user_id"] = user_id

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """
    Thin wrapper around a standard logger.
    Messages are event names; context goes in keyword fields.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(
        self, level: int, event: str, exc_info: bool = False, **extra_fields: Any
    ) -> None:
        self.logger.log(
            level, event, extra={"extra_fields": extra_fields}, exc_info=exc_info
        )

    def debug(self, event: str, **extra_fields: Any) -> None:
        """Log debug event with context."""
        self._log(logging.DEBUG, event, **extra_fields)

    def info(self, event: str, **extra_fields: Any) -> None:
        """Log info event with context."""
        self._log(logging.INFO, event, **extra_fields)

    def warning(
        self, event: str, exc_info: bool = False, **extra_fields: Any
    ) -> None:
        """Log warning event with context."""
        self._log(logging.WARNING, event, exc_info=exc_info, **extra_fields)

    def error(
        self, event: str, exc_info: bool = False, **extra_fields: Any
    ) -> None:
        """
        Log error event with context.

        Args:
            event: Event name
            exc_info: If True, include exception traceback
            **extra_fields: Additional context fields
        """
        self._log(logging.ERROR, event, exc_info=exc_info, **extra_fields)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the turn correlation id for the current context."""
    correlation_id_ctx.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current turn correlation id."""
    return correlation_id_ctx.get()


@contextmanager
def turn_context(user_id: str | None) -> Iterator[str]:
    """
    Binds a fresh turn id and the user id to every log line in the block.

    Args:
        user_id: Id of the user sending the message (None for anonymous)

    Yields:
        The generated turn id
    """
    turn_id = uuid.uuid4().hex[:12]
    turn_token = correlation_id_ctx.set(turn_id)
    user_token = user_id_ctx.set(user_id)
    try:
        yield turn_id
    finally:
        correlation_id_ctx.reset(turn_token)
        user_id_ctx.reset(user_token)


def configure_logging(level: str = "INFO", use_structured: bool = True) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_structured: If True, use structured JSON logging
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)

    if use_structured:
        formatter = StructuredFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party clients are chatty at INFO
    for noisy in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))
