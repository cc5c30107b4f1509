"""
History Orchestrator: Logical Fetch over Bounded Page Calls

Turns one HistoryQuery into a strictly sequential chain of page calls:

    1. Validate the query (invalid queries issue zero calls)
    2. Request min(page_size, remaining) events for the current window
    3. Merge the page, evaluate stop conditions
    4. Sweep the seam token when the store reports same-token events the
       page edge cut off
    5. Narrow the window onto the page seam and repeat

Stop conditions:
    - Limit reached
    - Page returned zero events
    - Page returned fewer events than requested
    - Window narrowed to nothing (start >= end)

Failure semantics are all-or-nothing: the first failed page call aborts the
fetch and discards every page accumulated so far. The surfaced error names
the logical query so callers can resubmit it verbatim.

Many logical fetches may run concurrently; each owns its own FetchState and
shares nothing but the page fetcher.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Generator, Optional, Sequence
from uuid import uuid4

from history_fetch.core import constants as C
from history_fetch.core.config import HistoryConfig
from history_fetch.core.errors import (
    FetchCancelledError,
    HistoryError,
    InvalidQueryError,
    ServiceError,
    TransportError,
)
from history_fetch.core.types import Err, Ok, Result, TimeToken, TokenLike
from history_fetch.history.models import HistoryPage, HistoryResult
from history_fetch.history.query import HistoryQuery
from history_fetch.history.state import FetchPhase, FetchState, StopReason
from history_fetch.observability.logging import log_context
from history_fetch.observability.metrics import MetricsCollector
from history_fetch.observability.tracing import Span, SpanStatus, Tracer
from history_fetch.transport.protocols import PageFetcher, PageRequest

logger = logging.getLogger(__name__)

FetchOutcome = Result[HistoryResult, HistoryError]


class HistoryFetch:
    """
    Handle for one in-flight logical fetch.

    Completes exactly once with a Result. Awaiting the handle yields that
    Result; done callbacks receive it on the event loop.

    Example:
        handle = orchestrator.submit(query)
        handle.add_done_callback(lambda result: print(result))
        ...
        handle.cancel()
    """

    __slots__ = (
        "_query", "_fetch_id", "_future", "_task", "_state",
        "_cancel_requested", "_on_complete",
    )

    def __init__(
        self,
        query: HistoryQuery,
        fetch_id: str,
        on_complete: Optional[Callable[[HistoryFetch, FetchOutcome], None]] = None,
    ) -> None:
        self._query = query
        self._fetch_id = fetch_id
        self._future: asyncio.Future[FetchOutcome] = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task[None]] = None
        self._state: Optional[FetchState] = None
        self._cancel_requested = False
        self._on_complete = on_complete

    @property
    def query(self) -> HistoryQuery:
        return self._query

    @property
    def fetch_id(self) -> str:
        return self._fetch_id

    @property
    def phase(self) -> FetchPhase:
        if self._state is None:
            return FetchPhase.IDLE
        return self._state.phase

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        """True when the fetch completed with the cancelled outcome."""
        if not self._future.done():
            return False
        result = self._future.result()
        return result.is_err() and isinstance(result.error, FetchCancelledError)

    def cancel(self) -> bool:
        """
        Stop the fetch before its next page call.

        Completes the handle immediately with FetchCancelledError. Returns
        False when the fetch had already completed.
        """
        if self._future.done():
            return False
        self._cancel_requested = True
        logger.info("Cancelling fetch %s on channel %r", self._fetch_id, self._query.channel)
        return self._complete(Err(FetchCancelledError.cancelled().for_query(self._query)))

    def add_done_callback(self, fn: Callable[[FetchOutcome], Any]) -> None:
        """Call `fn(result)` on the event loop once the fetch completes."""
        self._future.add_done_callback(lambda future: fn(future.result()))

    async def result(self) -> FetchOutcome:
        """
        Wait for completion.

        Cancelling the awaiting task cancels the fetch as well.
        """
        try:
            return await asyncio.shield(self._future)
        except asyncio.CancelledError:
            self.cancel()
            raise

    def __await__(self) -> Generator[Any, None, FetchOutcome]:
        return self.result().__await__()

    def _complete(self, result: FetchOutcome) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        if self._on_complete is not None:
            self._on_complete(self, result)
        return True

    def __repr__(self) -> str:
        return (
            f"HistoryFetch(id={self._fetch_id!r}, channel={self._query.channel!r}, "
            f"phase={self.phase.name}, done={self.done()})"
        )


class HistoryOrchestrator:
    """
    Executes logical history queries against a PageFetcher.

    Usage:
        async with HttpPageFetcher(config.service) as fetcher:
            orchestrator = HistoryOrchestrator(fetcher)
            result = await orchestrator.latest("chat", limit=250)
            match result:
                case Ok(history):
                    ...
                case Err(error):
                    ...
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        page_size: int = C.DEFAULT_PAGE_SIZE,
        tracer: Optional[Tracer] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._fetcher = fetcher
        self._page_size = page_size
        self._tracer = tracer or Tracer.get_instance()

        collector = metrics or MetricsCollector.get_instance()
        self._pages_total = collector.counter(
            "history_pages_total", ["direction"], "Page calls issued",
        )
        self._events_total = collector.counter(
            "history_events_total", (), "Events delivered by completed fetches",
        )
        self._fetches_total = collector.counter(
            "history_fetches_total", ["outcome"], "Logical fetches by outcome",
        )
        self._page_latency = collector.histogram(
            "history_page_latency_seconds", (), "Latency of a single page call",
        )
        self._in_flight = collector.gauge(
            "history_fetches_in_flight", (), "Logical fetches not yet completed",
        )
        self._seam_sweeps = collector.counter(
            "history_seam_sweeps_total", (), "Extra page calls for same-token events split at a seam",
        )

    @classmethod
    def from_config(
        cls,
        config: HistoryConfig,
        fetcher: PageFetcher,
        metrics: Optional[MetricsCollector] = None,
    ) -> HistoryOrchestrator:
        tracer = Tracer(
            "history-fetch",
            sample_rate=config.observability.tracing_sample_rate,
            enabled=config.observability.tracing_enabled,
        )
        return cls(fetcher, page_size=config.fetch.page_size, tracer=tracer, metrics=metrics)

    @property
    def page_size(self) -> int:
        return self._page_size

    # -------------------------------------------------------------------------
    # Public surface
    # -------------------------------------------------------------------------
    async def fetch(self, query: HistoryQuery) -> FetchOutcome:
        """Run one logical fetch to completion."""
        return await self.submit(query)

    def submit(self, query: HistoryQuery) -> HistoryFetch:
        """
        Start a logical fetch on the running loop and return its handle.

        Must be called from inside a running event loop.
        """
        fetch_id = uuid4().hex[:12]
        handle = HistoryFetch(query, fetch_id, on_complete=self._record_outcome)

        validation = query.validate()
        if validation.is_err():
            logger.warning("Rejected query for channel %r: %s", query.channel, validation.error)
            handle._complete(Err(dataclasses.replace(validation.error, query=query)))
            return handle

        self._in_flight.inc()
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle), name=f"history-fetch-{fetch_id}",
        )
        return handle

    async def history(
        self,
        channel: str,
        *,
        start: Optional[TokenLike] = None,
        end: Optional[TokenLike] = None,
        limit: int = C.MAX_PAGE_SIZE,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> FetchOutcome:
        """General form; the tokens present decide the query shape."""
        return await self._fetch_built(HistoryQuery.create(
            channel,
            start=start,
            end=end,
            limit=limit,
            **self._options(include_timetoken, reverse),
        ))

    async def latest(
        self,
        channel: str,
        limit: int = C.MAX_PAGE_SIZE,
        *,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> FetchOutcome:
        return await self._fetch_built(HistoryQuery.latest(
            channel, limit, **self._options(include_timetoken, reverse),
        ))

    async def older_than(
        self,
        channel: str,
        token: TokenLike,
        limit: int = C.MAX_PAGE_SIZE,
        *,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> FetchOutcome:
        return await self._fetch_built(HistoryQuery.older_than(
            channel, token, limit, **self._options(include_timetoken, reverse),
        ))

    async def newer_than(
        self,
        channel: str,
        token: TokenLike,
        limit: int = C.MAX_PAGE_SIZE,
        *,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> FetchOutcome:
        return await self._fetch_built(HistoryQuery.newer_than(
            channel, token, limit, **self._options(include_timetoken, reverse),
        ))

    async def between(
        self,
        channel: str,
        timeframe: Sequence[TokenLike],
        limit: int = C.UNBOUNDED_LIMIT,
        *,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> FetchOutcome:
        """Every event strictly inside the two-token timeframe."""
        return await self._fetch_built(HistoryQuery.between(
            channel, timeframe, limit, **self._options(include_timetoken, reverse),
        ))

    def _options(self, include_timetoken: bool, reverse: bool) -> dict[str, Any]:
        return {
            "page_size": self._page_size,
            "include_timetoken": include_timetoken,
            "reverse": reverse,
        }

    async def _fetch_built(
        self,
        built: Result[HistoryQuery, InvalidQueryError],
    ) -> FetchOutcome:
        if built.is_err():
            logger.warning("Rejected query: %s", built.error)
            self._fetches_total.inc(outcome="invalid")
            return built
        return await self.fetch(built.unwrap())

    # -------------------------------------------------------------------------
    # Page loop
    # -------------------------------------------------------------------------
    async def _run(self, handle: HistoryFetch) -> None:
        state = FetchState.start(handle.fetch_id, handle.query)
        handle._state = state
        try:
            result = await self._drive(state, handle)
        except asyncio.CancelledError:
            if not state.phase.is_terminal:
                self._advance(state, FetchPhase.CANCELLED)
            state.aggregator.discard()
            handle._complete(Err(FetchCancelledError.cancelled().for_query(handle.query)))
            raise
        except Exception as e:
            # The handle must still complete, or every waiter hangs.
            logger.exception("Fetch %s aborted by %s", handle.fetch_id, type(e).__name__)
            if not state.phase.is_terminal:
                state.transition(FetchPhase.FAILED)
            state.aggregator.discard()
            error = TransportError.network(f"fetch aborted by {type(e).__name__}: {e}", cause=e)
            handle._complete(Err(error.for_query(handle.query)))
            return
        handle._complete(result)

    async def _drive(self, state: FetchState, handle: HistoryFetch) -> FetchOutcome:
        query = state.query
        attributes = {
            "channel": query.channel,
            "shape": query.shape.name,
            "limit": query.limit,
            "direction": state.strategy.direction.value,
        }

        with log_context(fetch_id=state.fetch_id, channel=query.channel), \
                self._tracer.start_span("history.fetch", attributes) as span:
            logger.info(
                "Starting %s fetch (limit=%d, page_size=%d)",
                query.shape.name, query.limit, query.page_size,
            )

            while True:
                if handle.cancel_requested:
                    return self._cancel(state, span)

                request = state.next_request()
                self._advance(state, FetchPhase.FETCHING_PAGE)
                page_result = await self._fetch_page(request)

                if handle.cancel_requested:
                    return self._cancel(state, span)
                if page_result.is_err():
                    return self._fail(state, span, page_result.error)

                page = page_result.unwrap()
                self._advance(state, FetchPhase.PAGE_RECEIVED)
                kept = state.aggregator.add_page(page, request.window)
                logger.debug(
                    "Page %d: requested=%d returned=%d kept=%d total=%d",
                    state.pages_requested, request.count, page.count, kept,
                    state.aggregator.total,
                )

                reason = state.stop_reason(page, request.count)
                if reason is None:
                    seam = state.strategy.seam(page)
                    if seam is None:
                        return self._fail(state, span, ServiceError.malformed_response(
                            "full page carried no boundary token",
                        ))
                    if not state.strategy.narrows(state.window, seam):
                        return self._fail(state, span, ServiceError.malformed_response(
                            f"page boundary {seam} does not narrow {state.window!r}",
                        ))
                    if page.seam_overflow:
                        outcome = await self._sweep_seam(state, handle, span, seam, page.seam_overflow)
                        if outcome is not None:
                            return outcome
                        if state.aggregator.is_satisfied:
                            return self._finish(state, span, StopReason.LIMIT_REACHED)
                    state.window = state.strategy.advance(state.window, seam)
                    if state.window.is_empty:
                        reason = StopReason.WINDOW_EXHAUSTED

                if reason is not None:
                    return self._finish(state, span, reason)

    async def _sweep_seam(
        self,
        state: FetchState,
        handle: HistoryFetch,
        span: Span,
        seam: TimeToken,
        overflow: int,
    ) -> Optional[FetchOutcome]:
        """
        Collect same-token events the last page edge cut off.

        The next window excludes `seam`, so without this call those events
        would never be fetched. Returns a terminal outcome, or None to go on.
        """
        request = state.sweep_request(seam, overflow)
        logger.warning(
            "Seam token %s splits %d same-token event(s) across pages; sweeping %d",
            seam.ticks, overflow, request.count,
        )
        self._seam_sweeps.inc()

        self._advance(state, FetchPhase.FETCHING_PAGE)
        swept = await self._fetch_page(request)
        if handle.cancel_requested:
            return self._cancel(state, span)
        if swept.is_err():
            return self._fail(state, span, swept.error)

        self._advance(state, FetchPhase.PAGE_RECEIVED)
        state.aggregator.add_page(swept.unwrap(), request.window)
        if overflow > request.count and not state.aggregator.is_satisfied:
            logger.warning(
                "Seam token %s holds more same-token events than one sweep returns; %d left behind",
                seam.ticks, overflow - request.count,
            )
        return None

    async def _fetch_page(self, request: PageRequest) -> Result[Any, HistoryError]:
        self._pages_total.inc(direction=request.direction.value)

        with self._tracer.start_span("history.page", request.to_dict()) as span, \
                self._page_latency.time():
            try:
                result = await self._fetcher.fetch_page(request)
            except Exception as e:
                logger.warning("Page fetcher raised %s", type(e).__name__, exc_info=True)
                span.set_status(SpanStatus.ERROR, str(e))
                return Err(TransportError.network(f"page fetcher raised {type(e).__name__}: {e}", cause=e))

            if not isinstance(result, (Ok, Err)) or (
                isinstance(result, Ok) and not isinstance(result.value, HistoryPage)
            ):
                span.set_status(SpanStatus.ERROR, "page fetcher broke its contract")
                return Err(ServiceError.malformed_response(
                    f"page fetcher returned {result!r} instead of a page result",
                ))

            if result.is_err():
                span.set_status(SpanStatus.ERROR, str(result.error))
            else:
                span.set_attribute("events", result.unwrap().count)
            return result

    # -------------------------------------------------------------------------
    # Terminal states
    # -------------------------------------------------------------------------
    def _finish(self, state: FetchState, span: Span, reason: StopReason) -> FetchOutcome:
        self._advance(state, FetchPhase.COMPLETED)
        result = state.aggregator.build()

        span.set_attribute("pages", state.pages_requested)
        span.set_attribute("events", result.count)
        span.set_attribute("stop_reason", reason.name)
        self._events_total.inc(result.count)

        logger.info(
            "Fetch completed: %d event(s) in %d page call(s), stop=%s",
            result.count, state.pages_requested, reason.name,
        )
        return Ok(result)

    def _fail(self, state: FetchState, span: Span, error: HistoryError) -> FetchOutcome:
        self._advance(state, FetchPhase.FAILED)
        discarded = state.aggregator.total
        state.aggregator.discard()

        span.set_status(SpanStatus.ERROR, str(error))
        logger.warning(
            "Fetch failed on page call %d, discarding %d event(s): %s",
            state.pages_requested, discarded, error,
        )
        return Err(error.for_query(state.query))

    def _cancel(self, state: FetchState, span: Span) -> FetchOutcome:
        self._advance(state, FetchPhase.CANCELLED)
        state.aggregator.discard()

        span.set_attribute("cancelled", True)
        logger.info("Fetch cancelled after %d page call(s)", state.pages_requested)
        return Err(FetchCancelledError.cancelled().for_query(state.query))

    @staticmethod
    def _advance(state: FetchState, phase: FetchPhase) -> None:
        moved = state.transition(phase)
        if moved.is_err():
            raise RuntimeError(f"Fetch {state.fetch_id}: {moved.error}")

    def _record_outcome(self, handle: HistoryFetch, result: FetchOutcome) -> None:
        if result.is_ok():
            outcome = "ok"
        elif isinstance(result.error, FetchCancelledError):
            outcome = "cancelled"
        elif isinstance(result.error, InvalidQueryError):
            outcome = "invalid"
        else:
            outcome = "error"
        self._fetches_total.inc(outcome=outcome)
        if outcome != "invalid":
            self._in_flight.dec()
