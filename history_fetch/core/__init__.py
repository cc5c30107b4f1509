"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions:
- Result/Either monads for zero-exception control flow
- TimeToken cursor at native service precision
- Categorized error hierarchy
- Configuration management with validation
"""

from history_fetch.core.types import (
    Result,
    Ok,
    Err,
    TimeToken,
)
from history_fetch.core.errors import (
    ErrorCode,
    ServiceErrorCategory,
    HistoryError,
    InvalidQueryError,
    TransportError,
    ServiceError,
    FetchCancelledError,
)
from history_fetch.core.config import HistoryConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "TimeToken",
    "ErrorCode",
    "ServiceErrorCategory",
    "HistoryError",
    "InvalidQueryError",
    "TransportError",
    "ServiceError",
    "FetchCancelledError",
    "HistoryConfig",
]
