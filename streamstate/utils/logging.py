"""
Structured logging for streamstate using structlog.

Log output is JSON by default so that snapshot and consumption events can be
shipped to a log pipeline; a colored console renderer is available for local
development. Loggers carry keyword context (stream, partition, snapshot name)
rather than formatted strings, and partition threads bind their stream and
partition through context variables.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "streamstate"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def _handler_kwargs(log_output: str) -> dict:
    if log_output == "stdout":
        return {"stream": sys.stdout}
    if log_output == "stderr":
        return {"stream": sys.stderr}
    return {"filename": log_output}


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_output: str = "stdout",
) -> None:
    """
    Configure structured logging for the process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_output: stdout, stderr, or a file path
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        **_handler_kwargs(log_output),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**bindings: Any) -> Iterator[None]:
    """
    Bind key/value pairs to every log entry of the current thread.

    Example:
        with log_context(stream="orders", partition="shard-0"):
            logger.info("Consuming")
    """
    with structlog.contextvars.bound_contextvars(**bindings):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        structlog logger
    """
    return structlog.get_logger(name)
