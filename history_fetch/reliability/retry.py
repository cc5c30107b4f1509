"""
Resubmission Policy: Exponential Backoff with Jitter

The orchestrator never retries individual page calls; a failed logical
fetch is reported once. This module is the caller-side policy for
resubmitting the failed query as a whole:

- Only errors with is_retryable (transport, rate limit, server) are resubmitted
- Exponential backoff: 100ms × 2^n, capped
- Full jitter: random(0, backoff) to prevent thundering herd
- The query carried by the error is resubmitted verbatim
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from history_fetch.core import constants as C
from history_fetch.core.config import ReliabilityConfig
from history_fetch.core.errors import HistoryError
from history_fetch.core.types import Result
from history_fetch.history.models import HistoryResult
from history_fetch.history.query import HistoryQuery

if TYPE_CHECKING:
    from history_fetch.history.orchestrator import HistoryOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Resubmission configuration. `max_attempts` counts the first attempt."""

    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_MS
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    @classmethod
    def from_config(cls, config: ReliabilityConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            jitter=config.jitter,
        )


@dataclass
class RetryStats:
    """Resubmission statistics for one call to fetch_with_retry."""
    attempts: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[str] = None


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay in milliseconds.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay


async def fetch_with_retry(
    orchestrator: HistoryOrchestrator,
    query: HistoryQuery,
    policy: Optional[RetryPolicy] = None,
    stats: Optional[RetryStats] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Result[HistoryResult, HistoryError]:
    """
    Run `query`, resubmitting it while the failure is retryable.

    Returns the first success, the first non-retryable error, or the last
    error once attempts are exhausted.
    """
    if policy is None:
        policy = RetryPolicy.default()
    if stats is None:
        stats = RetryStats()

    attempt = 0
    while True:
        stats.attempts += 1
        result = await orchestrator.fetch(query)
        if result.is_ok():
            return result

        error = result.error
        stats.last_error = str(error)
        if not error.is_retryable:
            return result
        if attempt + 1 >= policy.max_attempts:
            logger.warning(
                "Giving up on channel %r after %d attempt(s): %s",
                query.channel, stats.attempts, error,
            )
            return result

        delay = calculate_backoff(
            attempt=attempt,
            base_delay_ms=policy.base_delay_ms,
            max_delay_ms=policy.max_delay_ms,
            exponential_base=policy.exponential_base,
            jitter=policy.jitter,
        )
        stats.total_delay_ms += delay
        logger.info("Resubmitting fetch in %.0fms (attempt %d): %s", delay, attempt + 2, error)
        await sleep(delay / 1000)

        query = error.query or query
        attempt += 1
