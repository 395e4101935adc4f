"""
Structured logging configuration for DE-MainFrame.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor


MAX_VALUE_LENGTH = 1000


def truncate_long_values(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """Truncate very long string values such as full SPL queries."""
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = value[:MAX_VALUE_LENGTH] + "...[TRUNCATED]"
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structured logging.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, ...)
        log_format: "console" for human readable output, "json" for one JSON
            object per line
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        truncate_long_values,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    level = logging.getLevelName(log_level.upper())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
