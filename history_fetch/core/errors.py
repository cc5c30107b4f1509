"""
Error Hierarchy for Channel History Retrieval

Design Principles:
- Forbid exceptions for control flow (errors travel inside Err values)
- Carry full error context for debugging and audit trails
- Every error surfaced to a caller identifies the logical query that failed,
  never an individual page call, so the query can be resubmitted verbatim

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with traces

Usage:
    result = await orchestrator.fetch(query)
    match result:
        case Ok(history):
            render(history.events)
        case Err(error) if error.is_retryable:
            await orchestrator.fetch(error.query)
        case Err(error):
            report(error)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from history_fetch.core.types import TimeToken

if TYPE_CHECKING:
    from history_fetch.history.query import HistoryQuery


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by category:
    - 1xxx: Invalid query (detected before any network call)
    - 2xxx: Transport failures
    - 3xxx: Service rejections
    - 4xxx: Caller-initiated outcomes
    """

    # Invalid query (1xxx)
    QUERY_EMPTY_CHANNEL = 1001
    QUERY_INVALID_LIMIT = 1002
    QUERY_INVALID_PAGE_SIZE = 1003
    QUERY_INVALID_TOKEN = 1004
    QUERY_MALFORMED_WINDOW = 1005
    QUERY_MALFORMED_TIMEFRAME = 1006

    # Transport (2xxx)
    TRANSPORT_NETWORK = 2001
    TRANSPORT_TIMEOUT = 2002

    # Service (3xxx)
    SERVICE_AUTHORIZATION = 3001
    SERVICE_MALFORMED_CHANNEL = 3002
    SERVICE_RATE_LIMITED = 3003
    SERVICE_SERVER = 3004
    SERVICE_MALFORMED_RESPONSE = 3005

    # Caller (4xxx)
    FETCH_CANCELLED = 4001


class ServiceErrorCategory(Enum):
    """Reason a remote service rejected a page request."""

    AUTHORIZATION = "authorization"
    MALFORMED_CHANNEL = "malformed_channel"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def code(self) -> ErrorCode:
        return _CATEGORY_CODES[self]

    @property
    def is_transient(self) -> bool:
        """Whether resubmitting the same query may succeed."""
        return self in {ServiceErrorCategory.RATE_LIMITED, ServiceErrorCategory.SERVER}


_CATEGORY_CODES: dict[ServiceErrorCategory, ErrorCode] = {
    ServiceErrorCategory.AUTHORIZATION: ErrorCode.SERVICE_AUTHORIZATION,
    ServiceErrorCategory.MALFORMED_CHANNEL: ErrorCode.SERVICE_MALFORMED_CHANNEL,
    ServiceErrorCategory.RATE_LIMITED: ErrorCode.SERVICE_RATE_LIMITED,
    ServiceErrorCategory.SERVER: ErrorCode.SERVICE_SERVER,
    ServiceErrorCategory.MALFORMED_RESPONSE: ErrorCode.SERVICE_MALFORMED_RESPONSE,
}


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class HistoryError(Exception):
    """
    Base class for all history retrieval errors.

    Provides common infrastructure for error handling:
    - Unique error ID for tracing
    - Error code for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    - The logical query that failed, for verbatim resubmission
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: TimeToken = field(default_factory=TimeToken.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)
    query: Optional[HistoryQuery] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        """Whether resubmitting the identical query may succeed."""
        return False

    def for_query(self, query: HistoryQuery) -> HistoryError:
        """
        Rebind error to a logical query.

        Page-level context (windows, counts) is dropped: callers can only
        act on the logical query, not on the page that failed.
        """
        return dataclasses.replace(
            self,
            query=query,
            context={"channel": query.channel, "shape": query.shape.name},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for logging/CLI output."""
        return {
            "error_id": self.error_id,
            "type": self.__class__.__name__,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.ticks,
            "retryable": self.is_retryable,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# INVALID QUERY (FAIL FAST, ZERO SIDE EFFECTS)
# =============================================================================
@dataclass
class InvalidQueryError(HistoryError):
    """Query rejected before any page call was issued."""

    @classmethod
    def empty_channel(cls) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_EMPTY_CHANNEL,
            message="Channel name must be a non-empty string",
        )

    @classmethod
    def invalid_limit(cls, limit: Any) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_LIMIT,
            message=f"Limit must be a non-negative integer, got {limit!r}",
            context={"limit": str(limit)[:50]},
        )

    @classmethod
    def invalid_page_size(cls, page_size: Any, maximum: int) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_PAGE_SIZE,
            message=f"Page size must be within 1..{maximum}, got {page_size!r}",
            context={"page_size": str(page_size)[:50], "maximum": maximum},
        )

    @classmethod
    def invalid_token(cls, name: str, reason: str) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_TOKEN,
            message=f"Invalid '{name}' token: {reason}",
            context={"token": name, "reason": reason},
        )

    @classmethod
    def malformed_window(cls, start: TimeToken, end: TimeToken) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_MALFORMED_WINDOW,
            message=f"Window start {start} must be earlier than end {end}",
            context={"start": start.ticks, "end": end.ticks},
        )

    @classmethod
    def malformed_timeframe(cls, count: int) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_MALFORMED_TIMEFRAME,
            message=f"Time frame requires exactly two time tokens, got {count}",
            context={"count": count},
        )


# =============================================================================
# TRANSPORT FAILURES
# =============================================================================
@dataclass
class TransportError(HistoryError):
    """Network-level failure while talking to the storage service."""

    @property
    def is_retryable(self) -> bool:
        return True

    @classmethod
    def network(cls, reason: str, cause: Optional[BaseException] = None) -> TransportError:
        return cls(
            code=ErrorCode.TRANSPORT_NETWORK,
            message=f"Network failure: {reason}",
            cause=cause,
            context={"reason": reason},
        )

    @classmethod
    def timeout(
        cls,
        timeout_s: float,
        cause: Optional[BaseException] = None,
    ) -> TransportError:
        return cls(
            code=ErrorCode.TRANSPORT_TIMEOUT,
            message=f"Request timed out after {timeout_s}s",
            cause=cause,
            context={"timeout_s": timeout_s},
        )


# =============================================================================
# SERVICE REJECTIONS
# =============================================================================
@dataclass
class ServiceError(HistoryError):
    """Remote service rejected the request or answered with garbage."""

    category: ServiceErrorCategory = ServiceErrorCategory.SERVER
    status: Optional[int] = None

    @property
    def is_retryable(self) -> bool:
        return self.category.is_transient

    @classmethod
    def rejected(
        cls,
        category: ServiceErrorCategory,
        reason: str,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> ServiceError:
        return cls(
            code=category.code,
            message=f"Service rejected request ({category.value}): {reason}",
            cause=cause,
            context={"category": category.value, "status": status},
            category=category,
            status=status,
        )

    @classmethod
    def malformed_response(
        cls,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> ServiceError:
        return cls.rejected(
            ServiceErrorCategory.MALFORMED_RESPONSE,
            reason,
            cause=cause,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["category"] = self.category.value
        data["status"] = self.status
        return data


# =============================================================================
# CANCELLATION
# =============================================================================
@dataclass
class FetchCancelledError(HistoryError):
    """Caller cancelled the logical fetch before it completed."""

    @classmethod
    def cancelled(cls) -> FetchCancelledError:
        return cls(
            code=ErrorCode.FETCH_CANCELLED,
            message="History fetch cancelled by caller",
        )
