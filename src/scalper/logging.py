"""Structured logging configuration using structlog over stdlib logging.

Every module logs through ``get_logger(__name__)`` with snake_case event
names and key/value context. Stream supervisors bind their stream key with
``bound_stream()``; structlog's contextvars merge then tags every line the
supervisor task (and anything it calls) emits.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

import structlog

LogFormat = Literal["json", "console"]

# Third-party loggers that are chatty at DEBUG (per-frame / per-request)
_NOISY_LOGGERS = ("websockets", "ccxt")


def setup_logging(log_level: str = "INFO", log_format: LogFormat = "console") -> None:
    """Configure structlog and the root logger.

    Args:
        log_level: Root level name, e.g. "DEBUG" or "INFO".
        log_format: "json" for machine-readable lines, "console" for
            human-readable development output.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.INFO, level))


@contextmanager
def bound_stream(stream_key: str) -> Iterator[None]:
    """Tag log lines emitted in this context with ``stream_key``.

    Context variables are copied per asyncio task, so a binding made inside
    one supervisor never leaks into another stream's lines.
    """
    with structlog.contextvars.bound_contextvars(stream_key=stream_key):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
