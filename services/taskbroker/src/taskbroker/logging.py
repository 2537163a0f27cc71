"""Structured JSON logging for the broker client."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

DEFAULT_LOG_LEVEL = "INFO"

_configured = False


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Initialise stdlib + structlog JSON logging.

    The stdout handler is installed once (and not at all when the root
    logger already has handlers). Every call sets the root level, so the
    level from the latest call applies, including to loggers created
    before it.
    """
    global _configured

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger().setLevel(numeric_level)
    if not _configured:
        _configure_structlog()
    _configured = True


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a bound structured logger."""

    if not _configured:
        configure_logging()
    logger = structlog.get_logger(name)
    if initial_values:
        return logger.bind(**initial_values)
    return logger


def redact_url(url: str) -> str:
    """Drop the credentials part of an AMQP URL before it is logged."""

    scheme, sep, rest = url.partition("://")
    if not sep:
        return url.split("@")[-1]
    return f"{scheme}://{rest.split('@')[-1]}"


__all__ = ["configure_logging", "get_logger", "redact_url"]
