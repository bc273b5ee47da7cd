"""
Structured logging configuration using structlog.

Logs are written to stderr so that command output on stdout stays
machine-readable. JSON is the default renderer; ``LOG_FORMAT=console``
switches to a human-readable one for local use.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TextIO

import structlog

if TYPE_CHECKING:
    from structlog.types import Processor

from applist_builder.config import LoggingConfig, get_settings

# Chatty below WARNING: one line per HTTP request, decoded image or CM message
THIRD_PARTY_LOGGERS = ("httpx", "httpcore", "PIL", "steam", "urllib3")


def _renderer(config: LoggingConfig, stream: TextIO) -> "Processor":
    if config.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=stream.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def setup_logging(config: LoggingConfig | None = None, *, stream: TextIO = sys.stderr) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        config: Logging section; defaults to the ``LOG_`` settings
        stream: Destination for every log line
    """
    config = config or get_settings().logging
    level = logging.getLevelName(config.level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if config.include_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors.append(_renderer(config, stream))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(name)s: %(message)s", stream=stream, level=level, force=True)
    third_party_level = level if level == logging.DEBUG else max(level, logging.WARNING)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """
    Bind ``values`` to every log line emitted inside the block.

    Tasks started inside the block inherit the binding.

    Example:
        >>> with log_context(query="portal"):
        ...     await index.search("portal")
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Example:
        >>> logger = get_logger(__name__, component="icon_cache")
        >>> logger.info("Icon cached", app_id="570")
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
