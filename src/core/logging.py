"""
Structured logging configuration using structlog.

Development runs get a colored console renderer, production runs emit
one JSON object per line.

Usage:
    from core.logging import configure_logging, get_logger, log_duration

    configure_logging(json_logs=False)

    logger = get_logger(__name__)
    logger.info("Loaded persisted state", strategy="graph", nodes=1200)

    with log_duration(logger, "Built utility matrix", users=800):
        ...
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import numpy as np
import structlog
from structlog.types import EventDict, Processor


def numpy_to_builtin(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Scores and counts computed with numpy render as plain numbers."""
    for key, value in event_dict.items():
        if isinstance(value, np.generic):
            event_dict[key] = value.item()
    return event_dict


def configure_logging(
    json_logs: bool = False,
    log_level: str = "INFO",
    include_timestamp: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_logs: If True, output JSON format (for production).
                   If False, output colored console format (for development).
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_timestamp: Whether to include timestamp in logs
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        numpy_to_builtin,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in the current context.

    Used by the request middleware for request_id/user_id and by training
    runs for the strategy name.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Unbind specific context variables."""
    structlog.contextvars.unbind_contextvars(*keys)


@contextmanager
def log_duration(
    logger: structlog.stdlib.BoundLogger,
    event: str,
    **fields: Any,
) -> Iterator[dict]:
    """
    Log ``event`` with ``duration_ms`` once the block finishes.

    The yielded dict can be filled inside the block; its keys are added to
    the final log line.

    Usage:
        with log_duration(logger, "Training finished", strategy="hybrid") as extra:
            extra["users"] = 120
    """
    extra: dict = {}
    start = time.perf_counter()
    try:
        yield extra
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(event, duration_ms=round(duration_ms, 2), **fields, **extra)

