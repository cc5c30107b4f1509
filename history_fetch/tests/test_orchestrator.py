"""
Integration Tests: History Orchestrator over the In-Memory Store

Tests:
    - Page splitting and stop conditions
    - Exclusive seams (no duplicates, strict between)
    - All-or-nothing failure with resubmittable query
    - Cancellation and exactly-once completion
    - Concurrent independent fetches
    - Metrics and tracing side effects
"""

import asyncio
import logging

import pytest

from history_fetch.core.errors import (
    ErrorCode,
    FetchCancelledError,
    InvalidQueryError,
    ServiceError,
    ServiceErrorCategory,
    TransportError,
)
from history_fetch.core.types import Ok, TimeToken
from history_fetch.history.models import HistoryEvent, HistoryPage
from history_fetch.history.orchestrator import HistoryOrchestrator
from history_fetch.history.query import HistoryQuery
from history_fetch.history.state import FetchPhase
from history_fetch.history.window import FetchWindow, PageDirection
from history_fetch.observability.metrics import MetricsCollector
from history_fetch.observability.tracing import Tracer
from history_fetch.transport.memory import InMemoryPageFetcher
from history_fetch.transport.protocols import PageRequest

FIRST = 15_000_000_000_000_000
STEP = 10


def make_store(count, channel="chat", simulate_latency=False):
    fetcher = InMemoryPageFetcher(simulate_latency=simulate_latency)
    tokens = fetcher.seed(
        channel,
        (f"m{i}" for i in range(count)),
        first_token=TimeToken(FIRST),
        step=STEP,
    )
    return fetcher, tokens


def make_orchestrator(fetcher, **kwargs):
    kwargs.setdefault("tracer", Tracer("test"))
    kwargs.setdefault("metrics", MetricsCollector())
    return HistoryOrchestrator(fetcher, **kwargs)


def counts(fetcher):
    return [request.count for request in fetcher.calls]


class GatedFetcher:
    """Wraps a fetcher and parks the Nth call until released."""

    def __init__(self, inner, park_on=2):
        self.inner = inner
        self.park_on = park_on
        self.calls = 0
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_page(self, request):
        self.calls += 1
        if self.calls == self.park_on:
            self.entered.set()
            await self.release.wait()
        return await self.inner.fetch_page(request)


class ExplodingFetcher:
    async def fetch_page(self, request):
        raise ConnectionResetError("peer reset")


class StuckFetcher:
    """Ignores the window and always answers the same full page."""

    def __init__(self):
        self.calls = 0

    async def fetch_page(self, request):
        self.calls += 1
        events = [HistoryEvent(payload=i, timetoken=TimeToken(FIRST + i)) for i in range(request.count)]
        return Ok(HistoryPage.from_events(events))


class GarbageFetcher:
    """Answers every call with a fixed value instead of a page result."""

    def __init__(self, answer):
        self.answer = answer

    async def fetch_page(self, request):
        return self.answer


class TestPageSplitting:
    """A logical fetch becomes the minimal chain of page calls."""

    def test_latest_250_of_320(self):
        fetcher, tokens = make_store(320)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=250))

        history = result.unwrap()
        assert counts(fetcher) == [100, 100, 50]
        assert history.messages == [f"m{i}" for i in range(70, 320)]
        assert history.start == tokens[70]
        assert history.end == tokens[319]
        assert history.page_count == 3

    def test_backward_windows_chain_on_seams(self):
        fetcher, tokens = make_store(320)
        asyncio.run(make_orchestrator(fetcher).latest("chat", limit=250))

        calls = fetcher.calls
        assert calls[0].end is None
        assert calls[1].end == tokens[220]
        assert calls[2].end == tokens[120]
        assert all(call.direction is PageDirection.BACKWARD for call in calls)

    def test_unbounded_short_page_stops(self):
        fetcher, _ = make_store(40)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=0))

        assert counts(fetcher) == [100]
        assert result.unwrap().count == 40

    def test_unbounded_walks_everything(self):
        fetcher, _ = make_store(250)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=0))

        assert counts(fetcher) == [100, 100, 100]
        assert result.unwrap().messages == [f"m{i}" for i in range(250)]

    def test_exact_multiple_needs_trailing_empty_call(self):
        fetcher, _ = make_store(200)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=0))

        assert fetcher.call_count == 3
        assert result.unwrap().count == 200

    def test_custom_page_size(self):
        fetcher, _ = make_store(100)
        orchestrator = make_orchestrator(fetcher, page_size=25)
        asyncio.run(orchestrator.latest("chat", limit=60))

        assert counts(fetcher) == [25, 25, 10]

    def test_default_history_is_one_page(self):
        fetcher, _ = make_store(320)
        result = asyncio.run(make_orchestrator(fetcher).history("chat"))

        assert fetcher.call_count == 1
        assert result.unwrap().messages == [f"m{i}" for i in range(220, 320)]

    def test_unknown_channel_is_empty(self):
        fetcher, _ = make_store(10)
        result = asyncio.run(make_orchestrator(fetcher).latest("other", limit=0))

        assert fetcher.call_count == 1
        assert result.unwrap().is_empty


class TestShapes:
    """Each query shape reads the right slice."""

    def test_older_than(self):
        fetcher, tokens = make_store(320)
        result = asyncio.run(make_orchestrator(fetcher).older_than("chat", tokens[100], 30))

        assert result.unwrap().messages == [f"m{i}" for i in range(70, 100)]

    def test_newer_than(self):
        fetcher, tokens = make_store(320)
        result = asyncio.run(make_orchestrator(fetcher).newer_than("chat", tokens[100], 30))

        assert result.unwrap().messages == [f"m{i}" for i in range(101, 131)]
        assert fetcher.calls[0].direction is PageDirection.FORWARD

    def test_newer_than_truncates_newest(self):
        fetcher, tokens = make_store(320)
        orchestrator = make_orchestrator(fetcher, page_size=40)
        result = asyncio.run(orchestrator.newer_than("chat", tokens[0], 100))

        assert counts(fetcher) == [40, 40, 20]
        assert result.unwrap().messages == [f"m{i}" for i in range(1, 101)]

    def test_between_is_strict(self):
        fetcher, tokens = make_store(320)
        orchestrator = make_orchestrator(fetcher, page_size=10)
        result = asyncio.run(orchestrator.between("chat", (tokens[10], tokens[50])))

        assert result.unwrap().messages == [f"m{i}" for i in range(11, 50)]
        assert fetcher.call_count == 4

    def test_between_full_last_page(self):
        fetcher, tokens = make_store(320)
        orchestrator = make_orchestrator(fetcher, page_size=10)
        result = asyncio.run(orchestrator.between("chat", (tokens[10], tokens[51])))

        assert result.unwrap().count == 40
        assert fetcher.call_count == 5

    def test_between_with_no_events(self):
        fetcher, tokens = make_store(10)
        timeframe = (tokens[3].ticks + 1, tokens[4].ticks)
        result = asyncio.run(make_orchestrator(fetcher).between("chat", timeframe))

        history = result.unwrap()
        assert fetcher.call_count == 1
        assert history.is_empty
        assert history.start is None
        assert history.end is None

    def test_between_tokens_in_any_order(self):
        fetcher, tokens = make_store(20)
        orchestrator = make_orchestrator(fetcher)
        forward = asyncio.run(orchestrator.between("chat", (tokens[2], tokens[8])))
        backward = asyncio.run(orchestrator.between("chat", (tokens[8], tokens[2])))

        assert forward.unwrap().messages == backward.unwrap().messages

    def test_no_duplicate_tokens_across_pages(self):
        fetcher, tokens = make_store(320)
        orchestrator = make_orchestrator(fetcher, page_size=30)
        result = asyncio.run(orchestrator.latest("chat", limit=0, include_timetoken=True))

        seen = [event.timetoken for event in result.unwrap()]
        assert seen == tokens
        assert len(set(seen)) == len(seen)


class TestPresentation:
    """Token attachment and ordering are presentation concerns."""

    def test_reverse_symmetry(self):
        fetcher, _ = make_store(320)
        orchestrator = make_orchestrator(fetcher)
        plain = asyncio.run(orchestrator.latest("chat", limit=150)).unwrap()
        flipped = asyncio.run(orchestrator.latest("chat", limit=150, reverse=True)).unwrap()

        assert flipped.messages == list(reversed(plain.messages))
        assert (flipped.start, flipped.end) == (plain.start, plain.end)

    def test_timetokens_stripped_by_default(self):
        fetcher, _ = make_store(10)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=5))

        assert all(event.timetoken is None for event in result.unwrap())
        assert all(call.include_timetoken for call in fetcher.calls)

    def test_timetokens_included_on_request(self):
        fetcher, tokens = make_store(10)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=5, include_timetoken=True))

        assert [event.timetoken for event in result.unwrap()] == tokens[-5:]


class TestFailures:
    """Failures abort the logical fetch and identify the query."""

    def test_invalid_query_issues_no_calls(self):
        fetcher, _ = make_store(10)
        query = HistoryQuery(channel="", limit=10)
        result = asyncio.run(make_orchestrator(fetcher).fetch(query))

        assert isinstance(result.error, InvalidQueryError)
        assert result.error.code is ErrorCode.QUERY_EMPTY_CHANNEL
        assert result.error.query == query
        assert fetcher.call_count == 0

    def test_invalid_convenience_call_issues_no_calls(self):
        fetcher, _ = make_store(10)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=-1))

        assert isinstance(result.error, InvalidQueryError)
        assert fetcher.call_count == 0

    def test_mid_fetch_failure_discards_pages(self):
        fetcher, _ = make_store(320)
        fetcher.fail_on_call(2, TransportError.network("connection dropped"))
        query = HistoryQuery.latest("chat", 250).unwrap()
        result = asyncio.run(make_orchestrator(fetcher).fetch(query))

        error = result.error
        assert isinstance(error, TransportError)
        assert error.is_retryable
        assert error.query == query
        assert error.context == {"channel": "chat", "shape": "LATEST"}
        assert fetcher.call_count == 2

    def test_service_rejection(self):
        fetcher, _ = make_store(10)
        fetcher.fail_on_call(1, ServiceError.rejected(
            ServiceErrorCategory.AUTHORIZATION, "denied", status=403,
        ))
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=5))

        assert isinstance(result.error, ServiceError)
        assert result.error.category is ServiceErrorCategory.AUTHORIZATION
        assert not result.error.is_retryable

    def test_malformed_channel(self):
        fetcher, _ = make_store(10)
        result = asyncio.run(make_orchestrator(fetcher).latest("a,b", limit=5))

        assert result.error.category is ServiceErrorCategory.MALFORMED_CHANNEL
        assert fetcher.call_count == 1

    def test_fetcher_exception_becomes_transport_error(self):
        result = asyncio.run(make_orchestrator(ExplodingFetcher()).latest("chat", limit=5))

        error = result.error
        assert isinstance(error, TransportError)
        assert error.code is ErrorCode.TRANSPORT_NETWORK
        assert isinstance(error.cause, ConnectionResetError)

    def test_stalled_boundary_fails(self):
        fetcher = StuckFetcher()
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=0))

        assert isinstance(result.error, ServiceError)
        assert result.error.category is ServiceErrorCategory.MALFORMED_RESPONSE
        assert fetcher.calls == 2

    @pytest.mark.parametrize("answer", [Ok(None), None, "page", Ok([1, 2, 3])])
    def test_non_page_answer_fails_the_fetch(self, answer):
        metrics = MetricsCollector()
        orchestrator = make_orchestrator(GarbageFetcher(answer), metrics=metrics)
        query = HistoryQuery.latest("chat", 5).unwrap()

        async def scenario():
            handle = orchestrator.submit(query)
            return handle, await asyncio.wait_for(handle.result(), 1.0)

        handle, result = asyncio.run(scenario())
        assert result.error.category is ServiceErrorCategory.MALFORMED_RESPONSE
        assert result.error.query == query
        assert handle.phase is FetchPhase.FAILED
        assert metrics.gauge("history_fetches_in_flight").get() == 0
        assert metrics.counter("history_fetches_total").get(outcome="error") == 1

    def test_unexpected_error_still_completes(self):
        broken = Ok(HistoryPage(events=("not an event",)))
        metrics = MetricsCollector()
        orchestrator = make_orchestrator(GarbageFetcher(broken), metrics=metrics)
        query = HistoryQuery.latest("chat", 5).unwrap()
        delivered = []

        async def scenario():
            handle = orchestrator.submit(query)
            handle.add_done_callback(delivered.append)
            result = await asyncio.wait_for(handle.result(), 1.0)
            await asyncio.sleep(0)
            return handle, result

        handle, result = asyncio.run(scenario())
        error = result.error
        assert isinstance(error, TransportError)
        assert isinstance(error.cause, AttributeError)
        assert error.query == query
        assert handle.phase is FetchPhase.FAILED
        assert delivered == [result]
        assert metrics.gauge("history_fetches_in_flight").get() == 0


class TestSeamCollisions:
    """Same-token events split by a page edge are still fetched once each."""

    def twin_store(self, index):
        fetcher, tokens = make_store(150)
        fetcher.publish("chat", "twin", tokens[index])
        return fetcher, tokens

    def test_store_reports_cut_off_twins(self):
        fetcher, _ = self.twin_store(50)
        page = asyncio.run(fetcher.fetch_page(PageRequest("chat", count=100))).unwrap()
        assert page.seam_overflow == 1

        plain, _ = make_store(150)
        page = asyncio.run(plain.fetch_page(PageRequest("chat", count=100))).unwrap()
        assert page.seam_overflow == 0

    def test_backward_walk_sweeps_seam(self, caplog):
        fetcher, tokens = self.twin_store(50)
        metrics = MetricsCollector()
        orchestrator = make_orchestrator(fetcher, metrics=metrics)

        with caplog.at_level(logging.WARNING, logger="history_fetch.history.orchestrator"):
            result = asyncio.run(orchestrator.latest("chat", limit=0))

        messages = result.unwrap().messages
        assert len(messages) == 151
        assert messages == [f"m{i}" for i in range(51)] + ["twin"] + [f"m{i}" for i in range(51, 150)]
        assert counts(fetcher) == [100, 1, 100]
        sweep = fetcher.calls[1]
        assert sweep.direction is PageDirection.FORWARD
        assert sweep.window == FetchWindow.around(tokens[50])
        assert fetcher.calls[2].end == tokens[50]
        assert str(tokens[50].ticks) in caplog.text
        assert metrics.counter("history_seam_sweeps_total").get() == 1

    def test_forward_walk_sweeps_seam(self):
        fetcher, tokens = self.twin_store(99)
        result = asyncio.run(
            make_orchestrator(fetcher).newer_than("chat", TimeToken(FIRST - 1), 0),
        )

        messages = result.unwrap().messages
        assert messages == [f"m{i}" for i in range(100)] + ["twin"] + [f"m{i}" for i in range(100, 150)]
        assert fetcher.calls[1].direction is PageDirection.BACKWARD
        assert counts(fetcher) == [100, 1, 100]

    def test_sweep_respects_limit(self):
        fetcher, _ = self.twin_store(50)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=101))

        assert counts(fetcher) == [100, 1]
        assert result.unwrap().messages == ["m50", "twin"] + [f"m{i}" for i in range(51, 150)]

    def test_no_sweep_once_limit_reached(self):
        fetcher, _ = self.twin_store(50)
        result = asyncio.run(make_orchestrator(fetcher).latest("chat", limit=100))

        assert counts(fetcher) == [100]
        assert result.unwrap().count == 100


class TestCancellation:
    """Cancellation stops further calls and completes exactly once."""

    def test_cancel_before_first_call(self):
        fetcher, _ = make_store(320)
        orchestrator = make_orchestrator(fetcher)

        async def scenario():
            handle = orchestrator.submit(HistoryQuery.latest("chat", 250).unwrap())
            assert handle.cancel()
            result = await handle
            await asyncio.sleep(0.01)
            return handle, result

        handle, result = asyncio.run(scenario())
        assert isinstance(result.error, FetchCancelledError)
        assert handle.cancelled()
        assert handle.phase is FetchPhase.CANCELLED
        assert fetcher.call_count == 0

    def test_cancel_while_page_in_flight(self):
        inner, _ = make_store(320)

        async def scenario():
            gated = GatedFetcher(inner, park_on=2)
            orchestrator = make_orchestrator(gated)
            delivered = []
            handle = orchestrator.submit(HistoryQuery.latest("chat", 250).unwrap())
            handle.add_done_callback(delivered.append)

            await gated.entered.wait()
            assert handle.cancel()
            assert not handle.cancel()
            result = await handle

            gated.release.set()
            await asyncio.sleep(0.01)
            return gated, handle, result, delivered

        gated, handle, result, delivered = asyncio.run(scenario())
        assert isinstance(result.error, FetchCancelledError)
        assert gated.calls == 2
        assert handle.phase is FetchPhase.CANCELLED
        assert len(delivered) == 1
        assert delivered[0] is result

    def test_cancelling_the_waiter_cancels_the_fetch(self):
        inner, _ = make_store(320)

        async def scenario():
            gated = GatedFetcher(inner, park_on=1)
            orchestrator = make_orchestrator(gated)
            handle = orchestrator.submit(HistoryQuery.latest("chat", 250).unwrap())
            waiter = asyncio.ensure_future(handle.result())

            await gated.entered.wait()
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            gated.release.set()
            await asyncio.sleep(0.01)
            return gated, handle

        gated, handle = asyncio.run(scenario())
        assert handle.cancelled()
        assert gated.calls == 1

    def test_cancel_after_completion_is_noop(self):
        fetcher, _ = make_store(10)
        orchestrator = make_orchestrator(fetcher)

        async def scenario():
            handle = orchestrator.submit(HistoryQuery.latest("chat", 5).unwrap())
            result = await handle
            return handle, result, handle.cancel()

        handle, result, cancelled = asyncio.run(scenario())
        assert result.is_ok()
        assert not cancelled
        assert not handle.cancelled()
        assert handle.phase is FetchPhase.COMPLETED


class TestConcurrency:
    """Logical fetches share nothing but the fetcher."""

    def test_concurrent_fetches_are_independent(self):
        fetcher = InMemoryPageFetcher(simulate_latency=True)
        fetcher.seed("a", (f"a{i}" for i in range(150)), first_token=TimeToken(FIRST), step=2)
        fetcher.seed("b", (f"b{i}" for i in range(150)), first_token=TimeToken(FIRST + 1), step=2)
        orchestrator = make_orchestrator(fetcher)

        async def scenario():
            return await asyncio.gather(
                orchestrator.latest("a", limit=0),
                orchestrator.latest("b", limit=0),
                orchestrator.latest("a", limit=120, reverse=True),
            )

        first, second, third = asyncio.run(scenario())
        assert first.unwrap().messages == [f"a{i}" for i in range(150)]
        assert second.unwrap().messages == [f"b{i}" for i in range(150)]
        assert third.unwrap().messages == [f"a{i}" for i in range(149, 29, -1)]
        assert fetcher.call_count == 6


class TestObservability:
    """Metrics and spans emitted by a fetch."""

    def test_metrics(self):
        fetcher, _ = make_store(320)
        metrics = MetricsCollector()
        orchestrator = make_orchestrator(fetcher, metrics=metrics)
        asyncio.run(orchestrator.latest("chat", limit=250))
        asyncio.run(orchestrator.latest("chat", limit=-1))

        assert metrics.counter("history_pages_total").get(direction="backward") == 3
        assert metrics.counter("history_events_total").get() == 250
        assert metrics.counter("history_fetches_total").get(outcome="ok") == 1
        assert metrics.counter("history_fetches_total").get(outcome="invalid") == 1
        assert metrics.histogram("history_page_latency_seconds").count() == 3
        assert metrics.gauge("history_fetches_in_flight").get() == 0

    def test_in_flight_gauge(self):
        inner, _ = make_store(320)
        metrics = MetricsCollector()
        in_flight = metrics.gauge("history_fetches_in_flight")

        async def scenario():
            gated = GatedFetcher(inner, park_on=1)
            orchestrator = make_orchestrator(gated, metrics=metrics)
            handle = orchestrator.submit(HistoryQuery.latest("chat", 50).unwrap())
            await gated.entered.wait()
            during = in_flight.get()
            gated.release.set()
            await handle
            return during

        assert asyncio.run(scenario()) == 1
        assert in_flight.get() == 0

    def test_spans(self):
        fetcher, _ = make_store(320)
        tracer = Tracer("test")
        asyncio.run(make_orchestrator(fetcher, tracer=tracer).latest("chat", limit=250))

        spans = tracer.get_recent_spans()
        fetch_span = next(span for span in spans if span.name == "history.fetch")
        page_spans = [span for span in spans if span.name == "history.page"]
        assert len(page_spans) == 3
        assert all(span.context.parent_span_id == fetch_span.context.span_id for span in page_spans)
        assert fetch_span.attributes["stop_reason"] == "LIMIT_REACHED"
        assert fetch_span.attributes["events"] == 250
