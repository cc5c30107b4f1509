"""
Reliability module: Caller-side resubmission of failed logical fetches.
"""

from history_fetch.reliability.retry import (
    RetryPolicy,
    RetryStats,
    calculate_backoff,
    fetch_with_retry,
)

__all__ = [
    "RetryPolicy",
    "RetryStats",
    "calculate_backoff",
    "fetch_with_retry",
]
