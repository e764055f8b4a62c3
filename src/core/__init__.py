"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- The recommendation error taxonomy
- Request tracing middleware
- Memory reclamation hook
- Common utilities
"""

from core.logging import configure_logging, get_logger, log_duration
from core.errors import (
    CorruptPersistedEntryError,
    MissingPreconditionError,
    ModelUnavailableError,
    NoHistoryError,
    NotFoundError,
    RecommendationError,
)
from core.utils import convert_numpy, normalize_string_set, paginate

__all__ = [
    "configure_logging",
    "get_logger",
    "log_duration",
    "RecommendationError",
    "NotFoundError",
    "NoHistoryError",
    "MissingPreconditionError",
    "ModelUnavailableError",
    "CorruptPersistedEntryError",
    "convert_numpy",
    "normalize_string_set",
    "paginate",
]
