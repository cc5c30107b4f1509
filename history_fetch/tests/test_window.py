"""
Unit Tests: Windowing Strategy

Tests:
    - Direction per query shape
    - Exclusive window membership
    - Seam selection and window narrowing
"""

from history_fetch.core.types import TimeToken
from history_fetch.history.models import HistoryEvent, HistoryPage
from history_fetch.history.query import HistoryQuery
from history_fetch.history.window import FetchWindow, PageDirection, WindowStrategy


def tok(ticks):
    return TimeToken(ticks)


def page_of(*ticks, start=None, end=None):
    events = tuple(HistoryEvent(payload=t, timetoken=tok(t)) for t in ticks)
    return HistoryPage(events=events, start=start, end=end)


class TestStrategySelection:
    """Shape decides the walk direction."""

    def test_latest_walks_backward(self):
        strategy = WindowStrategy.for_query(HistoryQuery.create("c").unwrap())
        assert strategy.direction is PageDirection.BACKWARD
        assert strategy.initial == FetchWindow()

    def test_older_than_walks_backward(self):
        query = HistoryQuery.older_than("c", 10**16, 5).unwrap()
        strategy = WindowStrategy.for_query(query)
        assert strategy.direction is PageDirection.BACKWARD
        assert strategy.initial == FetchWindow(end=tok(10**16))

    def test_newer_than_walks_forward(self):
        query = HistoryQuery.newer_than("c", 10**16, 5).unwrap()
        assert WindowStrategy.for_query(query).direction is PageDirection.FORWARD

    def test_between_walks_forward(self):
        query = HistoryQuery.between("c", (10**16, 2 * 10**16)).unwrap()
        strategy = WindowStrategy.for_query(query)
        assert strategy.direction is PageDirection.FORWARD
        assert strategy.initial == FetchWindow(start=tok(10**16), end=tok(2 * 10**16))


class TestFetchWindow:
    """Edges are exclusive."""

    def test_contains_is_exclusive(self):
        window = FetchWindow(start=tok(10), end=tok(20))
        assert not window.contains(tok(10))
        assert window.contains(tok(11))
        assert window.contains(tok(19))
        assert not window.contains(tok(20))

    def test_unbounded_contains_everything(self):
        assert FetchWindow().contains(tok(0))

    def test_around_holds_one_token(self):
        window = FetchWindow.around(tok(10))
        assert window.contains(tok(10))
        assert not window.contains(tok(9))
        assert not window.contains(tok(11))
        assert FetchWindow.around(tok(0)).start is None

    def test_opposite_direction(self):
        assert PageDirection.FORWARD.opposite is PageDirection.BACKWARD
        assert PageDirection.BACKWARD.opposite is PageDirection.FORWARD

    def test_is_empty(self):
        assert FetchWindow(start=tok(5), end=tok(5)).is_empty
        assert FetchWindow(start=tok(6), end=tok(5)).is_empty
        assert not FetchWindow(start=tok(4), end=tok(5)).is_empty
        assert not FetchWindow(start=tok(4)).is_empty

    def test_repr(self):
        assert repr(FetchWindow(end=tok(7))) == "FetchWindow(-inf, 7)"


class TestSeams:
    """Seam is the page edge the next call must exclude."""

    backward = WindowStrategy(PageDirection.BACKWARD, FetchWindow())
    forward = WindowStrategy(PageDirection.FORWARD, FetchWindow())

    def test_backward_prefers_page_start(self):
        page = page_of(3, 4, 5, start=tok(2), end=tok(5))
        assert self.backward.seam(page) == tok(2)

    def test_backward_falls_back_to_oldest_event(self):
        assert self.backward.seam(page_of(3, 4, 5)) == tok(3)

    def test_forward_prefers_page_end(self):
        page = page_of(3, 4, 5, start=tok(3), end=tok(6))
        assert self.forward.seam(page) == tok(6)

    def test_forward_falls_back_to_newest_event(self):
        assert self.forward.seam(page_of(3, 4, 5)) == tok(5)

    def test_empty_page_has_no_seam(self):
        assert self.forward.seam(HistoryPage()) is None

    def test_advance_moves_active_edge(self):
        window = FetchWindow(start=tok(1), end=tok(100))
        assert self.backward.advance(window, tok(50)) == FetchWindow(start=tok(1), end=tok(50))
        assert self.forward.advance(window, tok(50)) == FetchWindow(start=tok(50), end=tok(100))

    def test_narrows(self):
        window = FetchWindow(start=tok(10), end=tok(20))
        assert self.backward.narrows(window, tok(15))
        assert not self.backward.narrows(window, tok(20))
        assert self.forward.narrows(window, tok(15))
        assert not self.forward.narrows(window, tok(10))
        assert self.backward.narrows(FetchWindow(), tok(1))
