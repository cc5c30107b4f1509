"""
History Query: Validated Logical Request

A HistoryQuery describes what the caller wants, independent of how many
page calls are needed to satisfy it. Exactly one shape is active:

    LATEST      no tokens            newest events, limit-only
    OLDER_THAN  end token only       events before a reference token
    NEWER_THAN  start token only     events after a reference token
    BETWEEN     start and end        events strictly inside a window

Queries are immutable so a failed fetch can hand the identical query back to
the caller for resubmission.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional, Sequence

from history_fetch.core import constants as C
from history_fetch.core.errors import InvalidQueryError
from history_fetch.core.types import Err, Ok, Result, TimeToken, TokenLike


class QueryShape(Enum):
    """Query shape; each maps to one windowing strategy."""
    LATEST = auto()
    OLDER_THAN = auto()
    NEWER_THAN = auto()
    BETWEEN = auto()


def _coerce_token(name: str, value: Optional[TokenLike]) -> Result[Optional[TimeToken], InvalidQueryError]:
    if value is None:
        return Ok(None)
    parsed = TimeToken.from_value(value)
    if parsed.is_err():
        return Err(InvalidQueryError.invalid_token(name, parsed.error))
    return Ok(parsed.unwrap())


@dataclass(frozen=True, slots=True)
class HistoryQuery:
    """
    Caller's logical history request.

    Attributes:
        channel: Name of the channel to read
        start: Exclusive lower bound (None = unbounded)
        end: Exclusive upper bound (None = unbounded)
        limit: Maximum events overall, 0 fetches everything available
        page_size: Events requested per page call (service cap is 100)
        include_timetoken: Attach each event's token to the result
        reverse: Present newest-first instead of oldest-first
    """
    channel: str
    start: Optional[TimeToken] = None
    end: Optional[TimeToken] = None
    limit: int = C.MAX_PAGE_SIZE
    page_size: int = C.DEFAULT_PAGE_SIZE
    include_timetoken: bool = False
    reverse: bool = False

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        channel: str,
        *,
        start: Optional[TokenLike] = None,
        end: Optional[TokenLike] = None,
        limit: int = C.MAX_PAGE_SIZE,
        page_size: int = C.DEFAULT_PAGE_SIZE,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> Result[HistoryQuery, InvalidQueryError]:
        """
        Build a query from raw client values.

        Tokens may be given at any supported precision and are upscaled to
        native precision. The shape follows from which tokens are present.
        """
        start_result = _coerce_token("start", start)
        if start_result.is_err():
            return start_result
        end_result = _coerce_token("end", end)
        if end_result.is_err():
            return end_result

        query = cls(
            channel=channel,
            start=start_result.unwrap(),
            end=end_result.unwrap(),
            limit=limit,
            page_size=page_size,
            include_timetoken=include_timetoken,
            reverse=reverse,
        )
        return query.validate().map(lambda _: query)

    @classmethod
    def latest(cls, channel: str, limit: int, **options: Any) -> Result[HistoryQuery, InvalidQueryError]:
        """Newest `limit` events (0 = every stored event)."""
        return cls.create(channel, limit=limit, **options)

    @classmethod
    def older_than(
        cls,
        channel: str,
        token: TokenLike,
        limit: int,
        **options: Any,
    ) -> Result[HistoryQuery, InvalidQueryError]:
        """Up to `limit` events strictly older than `token`."""
        if token is None:
            return Err(InvalidQueryError.invalid_token("end", "reference token is required"))
        return cls.create(channel, end=token, limit=limit, **options)

    @classmethod
    def newer_than(
        cls,
        channel: str,
        token: TokenLike,
        limit: int,
        **options: Any,
    ) -> Result[HistoryQuery, InvalidQueryError]:
        """Up to `limit` events strictly newer than `token`."""
        if token is None:
            return Err(InvalidQueryError.invalid_token("start", "reference token is required"))
        return cls.create(channel, start=token, limit=limit, **options)

    @classmethod
    def between(
        cls,
        channel: str,
        timeframe: Sequence[TokenLike],
        limit: int = C.UNBOUNDED_LIMIT,
        **options: Any,
    ) -> Result[HistoryQuery, InvalidQueryError]:
        """
        Every event strictly between two tokens.

        The tokens may be given in either order; the earlier one becomes the
        exclusive lower bound.
        """
        if isinstance(timeframe, (str, bytes)) or len(timeframe) != 2:
            count = 1 if isinstance(timeframe, (str, bytes)) else len(timeframe)
            return Err(InvalidQueryError.malformed_timeframe(count))

        first = _coerce_token("start", timeframe[0])
        if first.is_err():
            return first
        second = _coerce_token("end", timeframe[1])
        if second.is_err():
            return second

        lower, upper = sorted((first.unwrap(), second.unwrap()))
        return cls.create(channel, start=lower, end=upper, limit=limit, **options)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    def validate(self) -> Result[None, InvalidQueryError]:
        """Check every invariant; runs before any page call is issued."""
        if not isinstance(self.channel, str) or not self.channel.strip():
            return Err(InvalidQueryError.empty_channel())
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 0:
            return Err(InvalidQueryError.invalid_limit(self.limit))
        if (
            isinstance(self.page_size, bool)
            or not isinstance(self.page_size, int)
            or not 1 <= self.page_size <= C.MAX_PAGE_SIZE
        ):
            return Err(InvalidQueryError.invalid_page_size(self.page_size, C.MAX_PAGE_SIZE))
        for name, token in (("start", self.start), ("end", self.end)):
            if token is not None and not isinstance(token, TimeToken):
                return Err(InvalidQueryError.invalid_token(name, f"expected TimeToken, got {token!r}"))
        if self.start is not None and self.end is not None and self.start >= self.end:
            return Err(InvalidQueryError.malformed_window(self.start, self.end))
        return Ok(None)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------
    @property
    def shape(self) -> QueryShape:
        if self.start is not None and self.end is not None:
            return QueryShape.BETWEEN
        if self.end is not None:
            return QueryShape.OLDER_THAN
        if self.start is not None:
            return QueryShape.NEWER_THAN
        return QueryShape.LATEST

    @property
    def is_unbounded(self) -> bool:
        """True when every available event should be fetched."""
        return self.limit == C.UNBOUNDED_LIMIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "shape": self.shape.name,
            "start": self.start.ticks if self.start else None,
            "end": self.end.ticks if self.end else None,
            "limit": self.limit,
            "page_size": self.page_size,
            "include_timetoken": self.include_timetoken,
            "reverse": self.reverse,
        }
