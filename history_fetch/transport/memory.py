"""
In-Memory Page Fetcher: Development and Testing Backend

Implements the PageFetcher protocol over a per-channel sorted event store.

Design Principles:
    - Same page contract as the HTTP fetcher (exclusive windows, cap 100)
    - Call log for asserting how a logical fetch was split into pages
    - Reports same-token events a page edge cut off (HistoryPage.seam_overflow)
    - Failure injection on the Nth call for all-or-nothing testing
    - Optional latency simulation so concurrent fetches interleave

Performance Characteristics:
    - publish: O(n) worst case (sorted insert)
    - fetch_page: O(log n + count)
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from history_fetch.core import constants as C
from history_fetch.core.errors import HistoryError, ServiceError, ServiceErrorCategory
from history_fetch.core.types import Err, Ok, Result, TimeToken
from history_fetch.history.models import HistoryEvent, HistoryPage
from history_fetch.transport.protocols import PageRequest

logger = logging.getLogger(__name__)

DEFAULT_SIMULATED_LATENCY_S: float = 0.001


@dataclass
class _ChannelLog:
    """Parallel sorted arrays of tokens and payloads."""
    ticks: list[int] = field(default_factory=list)
    payloads: list[Any] = field(default_factory=list)

    def insert(self, ticks: int, payload: Any) -> None:
        index = bisect.bisect_right(self.ticks, ticks)
        self.ticks.insert(index, ticks)
        self.payloads.insert(index, payload)


class InMemoryPageFetcher:
    """
    In-memory channel history store with page-call semantics.

    Example:
        fetcher = InMemoryPageFetcher()
        fetcher.seed("chat", (f"msg-{i}" for i in range(320)))

        orchestrator = HistoryOrchestrator(fetcher)
        result = await orchestrator.latest("chat", limit=250)
        assert len(fetcher.calls) == 3
    """

    __slots__ = (
        "_channels",
        "_lock",
        "_calls",
        "_failures",
        "_simulate_latency",
        "_clock",
    )

    def __init__(self, simulate_latency: bool = False) -> None:
        self._channels: dict[str, _ChannelLog] = {}
        self._lock = asyncio.Lock()
        self._calls: list[PageRequest] = []
        self._failures: dict[int, HistoryError] = {}
        self._simulate_latency = simulate_latency
        self._clock = 0

    # -------------------------------------------------------------------------
    # Store population
    # -------------------------------------------------------------------------
    def publish(
        self,
        channel: str,
        payload: Any,
        timetoken: Optional[TimeToken] = None,
    ) -> TimeToken:
        """
        Store one event.

        Without an explicit token the event is stamped strictly after every
        event published so far.
        """
        if timetoken is None:
            self._clock = max(self._clock + 1, TimeToken.now().ticks)
            timetoken = TimeToken(self._clock)
        else:
            self._clock = max(self._clock, timetoken.ticks)
        self._channels.setdefault(channel, _ChannelLog()).insert(timetoken.ticks, payload)
        return timetoken

    def seed(
        self,
        channel: str,
        payloads: Iterable[Any],
        first_token: Optional[TimeToken] = None,
        step: int = 1,
    ) -> list[TimeToken]:
        """
        Store a run of events with evenly spaced tokens.

        Returns the assigned tokens in publication order.
        """
        tokens: list[TimeToken] = []
        next_ticks = first_token.ticks if first_token else None
        for payload in payloads:
            token = TimeToken(next_ticks) if next_ticks is not None else None
            tokens.append(self.publish(channel, payload, token))
            if next_ticks is not None:
                next_ticks += step
        return tokens

    def tokens(self, channel: str) -> list[TimeToken]:
        """All stored tokens of a channel, oldest first."""
        log = self._channels.get(channel)
        return [TimeToken(t) for t in log.ticks] if log else []

    # -------------------------------------------------------------------------
    # Failure injection and call log
    # -------------------------------------------------------------------------
    def fail_on_call(self, call_number: int, error: HistoryError) -> None:
        """Make the Nth page call (1-based, counted across all fetches) fail."""
        self._failures[call_number] = error

    @property
    def calls(self) -> list[PageRequest]:
        return list(self._calls)

    @property
    def call_count(self) -> int:
        return len(self._calls)

    # -------------------------------------------------------------------------
    # PageFetcher Implementation
    # -------------------------------------------------------------------------
    async def fetch_page(self, request: PageRequest) -> Result[HistoryPage, HistoryError]:
        """
        Serve one page.

        Complexity: O(log n + count)
        """
        self._calls.append(request)
        call_number = len(self._calls)

        if self._simulate_latency:
            await asyncio.sleep(DEFAULT_SIMULATED_LATENCY_S)

        failure = self._failures.get(call_number)
        if failure is not None:
            logger.debug("Injected failure on page call %d: %s", call_number, failure)
            return Err(failure)

        if not request.channel.strip() or "," in request.channel:
            return Err(ServiceError.rejected(
                ServiceErrorCategory.MALFORMED_CHANNEL,
                f"invalid channel name {request.channel!r}",
                status=400,
            ))

        count = min(request.count, C.MAX_PAGE_SIZE)

        async with self._lock:
            log = self._channels.get(request.channel)
            if log is None:
                return Ok(HistoryPage())

            lower = 0
            upper = len(log.ticks)
            if request.start is not None:
                lower = bisect.bisect_right(log.ticks, request.start.ticks)
            if request.end is not None:
                upper = bisect.bisect_left(log.ticks, request.end.ticks)
            if lower >= upper:
                return Ok(HistoryPage())

            # Same-token events the count cut off at the page edge
            if request.direction.is_forward:
                limit = upper
                upper = min(upper, lower + count)
                edge = log.ticks[upper - 1]
                overflow = bisect.bisect_right(log.ticks, edge, upper, limit) - upper
            else:
                limit = lower
                lower = max(lower, upper - count)
                edge = log.ticks[lower]
                overflow = lower - bisect.bisect_left(log.ticks, edge, limit, lower)

            ticks = log.ticks[lower:upper]
            payloads = log.payloads[lower:upper]

        if overflow:
            logger.warning(
                "Page edge at token %d leaves %d same-token event(s) on %r outside the page",
                edge, overflow, request.channel,
            )

        events = tuple(
            HistoryEvent(
                payload=payload,
                timetoken=TimeToken(t) if request.include_timetoken else None,
            )
            for t, payload in zip(ticks, payloads)
        )
        return Ok(HistoryPage(
            events=events,
            start=TimeToken(ticks[0]),
            end=TimeToken(ticks[-1]),
            seam_overflow=overflow,
        ))
