"""
Channel History Fetch Orchestrator

Serves "give me up to N events from channel C within window W" on top of a
storage service that returns at most 100 events per call:
- Query Model: latest, older-than, newer-than and between shapes
- Orchestrator: sequential page chaining with exclusive seams
- Aggregator: ordered stitching, truncation and presentation order
- Transports: aiohttp HTTP fetcher and an in-memory store
- Reliability: caller-side resubmission with backoff
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from history_fetch.core.types import Result, Ok, Err, TimeToken
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

from history_fetch.history import (
    HistoryEvent,
    HistoryPage,
    HistoryResult,
    HistoryQuery,
    QueryShape,
)
from history_fetch.history.orchestrator import HistoryOrchestrator, HistoryFetch

from history_fetch.transport import (
    PageFetcher,
    PageRequest,
    InMemoryPageFetcher,
    HttpPageFetcher,
)
from history_fetch.reliability import RetryPolicy, fetch_with_retry

__all__ = [
    "__version__",
    # Result monad
    "Result",
    "Ok",
    "Err",
    "TimeToken",
    # Errors
    "ErrorCode",
    "ServiceErrorCategory",
    "HistoryError",
    "InvalidQueryError",
    "TransportError",
    "ServiceError",
    "FetchCancelledError",
    # Config
    "HistoryConfig",
    # Model
    "HistoryEvent",
    "HistoryPage",
    "HistoryResult",
    "HistoryQuery",
    "QueryShape",
    # Orchestration
    "HistoryOrchestrator",
    "HistoryFetch",
    # Transports
    "PageFetcher",
    "PageRequest",
    "InMemoryPageFetcher",
    "HttpPageFetcher",
    # Reliability
    "RetryPolicy",
    "fetch_with_retry",
]
