"""
Unit Tests: History Query

Tests:
    - Shape selection from the tokens present
    - Constructor helpers (latest, older/newer than, between)
    - Validation failures and their error codes
"""

import pytest

from history_fetch.core.errors import ErrorCode, InvalidQueryError
from history_fetch.core.types import TimeToken
from history_fetch.history.query import HistoryQuery, QueryShape

T1 = 15_000_000_000_000_000
T2 = 15_000_000_000_100_000


def error_code(result):
    assert result.is_err()
    assert isinstance(result.error, InvalidQueryError)
    return result.error.code


class TestQueryShapes:
    """Shape follows from which bounds are present."""

    def test_latest(self):
        query = HistoryQuery.create("chat").unwrap()
        assert query.shape is QueryShape.LATEST
        assert query.limit == 100
        assert query.page_size == 100
        assert not query.include_timetoken
        assert not query.reverse

    def test_older_than(self):
        query = HistoryQuery.older_than("chat", T1, 30).unwrap()
        assert query.shape is QueryShape.OLDER_THAN
        assert query.end == TimeToken(T1)
        assert query.start is None

    def test_newer_than(self):
        query = HistoryQuery.newer_than("chat", T1, 30).unwrap()
        assert query.shape is QueryShape.NEWER_THAN
        assert query.start == TimeToken(T1)
        assert query.end is None

    def test_between_defaults_to_unbounded(self):
        query = HistoryQuery.between("chat", (T1, T2)).unwrap()
        assert query.shape is QueryShape.BETWEEN
        assert query.is_unbounded

    def test_between_sorts_tokens(self):
        query = HistoryQuery.between("chat", [T2, T1]).unwrap()
        assert query.start == TimeToken(T1)
        assert query.end == TimeToken(T2)

    def test_tokens_are_upscaled(self):
        query = HistoryQuery.older_than("chat", 1_500_000_000, 10).unwrap()
        assert query.end == TimeToken(T1)

    def test_options_are_carried(self):
        query = HistoryQuery.latest(
            "chat", 5, page_size=10, include_timetoken=True, reverse=True,
        ).unwrap()
        assert query.page_size == 10
        assert query.include_timetoken
        assert query.reverse


class TestQueryValidation:
    """Invalid queries are rejected with specific codes."""

    @pytest.mark.parametrize("channel", ["", "   "])
    def test_empty_channel(self, channel):
        assert error_code(HistoryQuery.create(channel)) is ErrorCode.QUERY_EMPTY_CHANNEL

    @pytest.mark.parametrize("limit", [-1, 2.5, True])
    def test_invalid_limit(self, limit):
        assert error_code(HistoryQuery.create("chat", limit=limit)) is ErrorCode.QUERY_INVALID_LIMIT

    @pytest.mark.parametrize("page_size", [0, 101])
    def test_invalid_page_size(self, page_size):
        result = HistoryQuery.create("chat", page_size=page_size)
        assert error_code(result) is ErrorCode.QUERY_INVALID_PAGE_SIZE

    def test_invalid_token(self):
        result = HistoryQuery.create("chat", start="yesterday")
        assert error_code(result) is ErrorCode.QUERY_INVALID_TOKEN
        assert result.error.context["token"] == "start"

    def test_missing_reference_token(self):
        assert error_code(HistoryQuery.older_than("chat", None, 10)) is ErrorCode.QUERY_INVALID_TOKEN
        assert error_code(HistoryQuery.newer_than("chat", None, 10)) is ErrorCode.QUERY_INVALID_TOKEN

    def test_inverted_window(self):
        result = HistoryQuery.create("chat", start=T2, end=T1)
        assert error_code(result) is ErrorCode.QUERY_MALFORMED_WINDOW

    def test_equal_tokens_between(self):
        result = HistoryQuery.between("chat", (T1, T1))
        assert error_code(result) is ErrorCode.QUERY_MALFORMED_WINDOW

    @pytest.mark.parametrize("timeframe", [(T1,), (T1, T2, T2), "15000000000000000"])
    def test_malformed_timeframe(self, timeframe):
        result = HistoryQuery.between("chat", timeframe)
        assert error_code(result) is ErrorCode.QUERY_MALFORMED_TIMEFRAME

    def test_direct_construction_is_validated_separately(self):
        query = HistoryQuery(channel="chat", limit=-5)
        assert error_code(query.validate()) is ErrorCode.QUERY_INVALID_LIMIT

    def test_errors_are_not_retryable(self):
        assert not HistoryQuery.create("").error.is_retryable


class TestQuerySerialization:
    """Tests for to_dict."""

    def test_to_dict(self):
        query = HistoryQuery.between("chat", (T1, T2), 50).unwrap()
        assert query.to_dict() == {
            "channel": "chat",
            "shape": "BETWEEN",
            "start": T1,
            "end": T2,
            "limit": 50,
            "page_size": 100,
            "include_timetoken": False,
            "reverse": False,
        }

    def test_queries_are_hashable_values(self):
        a = HistoryQuery.latest("chat", 10).unwrap()
        b = HistoryQuery.latest("chat", 10).unwrap()
        assert a == b
        assert hash(a) == hash(b)
