"""Structured logging for volbreak.

Call :func:`setup_logging` once at process start. Library modules obtain a
logger with ``structlog.get_logger(__name__)`` and log key-value events::

    logger.info("backfill_complete", symbols=5, timeframes=7)

``LOG_FORMAT=console`` (the default) renders coloured, human-friendly lines;
``LOG_FORMAT=json`` renders one JSON object per line.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

_NOISY_LOGGERS = ("aiohttp.access", "asyncio", "urllib3", "yfinance", "peewee")


def setup_logging(
    *,
    service: str = "volbreak",
    level: str | None = None,
    log_format: str | None = None,
) -> None:
    """Configure ``structlog`` and stdlib ``logging`` for the whole process.

    Parameters
    ----------
    service:
        Name bound to every log event.
    level:
        Root log level. Falls back to ``LOG_LEVEL``, then ``"INFO"``.
    log_format:
        ``"console"`` or ``"json"``. Falls back to ``LOG_FORMAT``, then
        ``"console"``.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if log_format is None:
        log_format = os.getenv("LOG_FORMAT", "console")

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format.lower() == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), pad_event_to=30)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service)


def get_logger(name: str | None = None, **initial_binds: Any) -> structlog.stdlib.BoundLogger:
    """Return a structured logger, optionally bound with extra context.

    >>> logger = get_logger("volbreak.feed", exchange="delta")
    >>> logger.info("subscribed", channels=3)
    """
    log = structlog.get_logger(name)
    if initial_binds:
        log = log.bind(**initial_binds)
    return log
