"""
Logging Configuration

Structured logging for the runtime. JSON output for services, a console
renderer for local development.
"""

import logging
import sys
from enum import Enum
from typing import Any, Optional

import structlog

from ..config import get_settings


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    CONSOLE = "console"


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name, defaults to the configured one
        log_format: ``json`` or ``console``, defaults to the configured one
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    fmt = LogFormat(log_format or settings.log_format)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    renderer: Any
    if fmt == LogFormat.JSON:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **context: Any) -> Any:
    """Get a logger, optionally bound to extra context."""
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


__all__ = ["LogFormat", "setup_logging", "get_logger"]
