"""
Windowing: Query Shape to Page-Walk Strategy

Every page call targets a window whose edges are exclusive. After each page
the active edge moves onto the page's seam token, so an event sitting on a
boundary is fetched by exactly one of the two adjacent calls.

    Shape        Direction   Initial window     Edge that moves
    LATEST       backward    (-inf, +inf)       end   <- oldest token of page
    OLDER_THAN   backward    (-inf, T)          end   <- oldest token of page
    NEWER_THAN   forward     (T, +inf)          start <- newest token of page
    BETWEEN      forward     (S, E)             start <- newest token of page

When a store reports same-token events cut off at a page edge, the seam
token is swept once before the window moves past it (see FetchState).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from history_fetch.core.types import TimeToken
from history_fetch.history.models import HistoryPage
from history_fetch.history.query import HistoryQuery, QueryShape


class PageDirection(Enum):
    """Which end of a window a page call reads from."""
    BACKWARD = "backward"  # Newest events first
    FORWARD = "forward"    # Oldest events first

    @property
    def is_forward(self) -> bool:
        return self is PageDirection.FORWARD

    @property
    def opposite(self) -> PageDirection:
        return PageDirection.BACKWARD if self.is_forward else PageDirection.FORWARD


@dataclass(frozen=True, slots=True)
class FetchWindow:
    """Exclusive token range targeted by one page call."""
    start: Optional[TimeToken] = None
    end: Optional[TimeToken] = None

    @property
    def is_empty(self) -> bool:
        """True once narrowing has closed the window."""
        if self.start is None or self.end is None:
            return False
        return self.start >= self.end

    @classmethod
    def around(cls, token: TimeToken) -> FetchWindow:
        """Exclusive window holding exactly `token`."""
        lower = TimeToken(token.ticks - 1) if token.ticks > 0 else None
        return cls(start=lower, end=TimeToken(token.ticks + 1))

    def contains(self, token: TimeToken) -> bool:
        if self.start is not None and token <= self.start:
            return False
        if self.end is not None and token >= self.end:
            return False
        return True

    def __repr__(self) -> str:
        lower = self.start.ticks if self.start else "-inf"
        upper = self.end.ticks if self.end else "+inf"
        return f"FetchWindow({lower}, {upper})"


@dataclass(frozen=True, slots=True)
class WindowStrategy:
    """Page-walk plan for one query shape."""
    direction: PageDirection
    initial: FetchWindow

    @classmethod
    def for_query(cls, query: HistoryQuery) -> WindowStrategy:
        shape = query.shape
        window = FetchWindow(start=query.start, end=query.end)
        if shape in (QueryShape.LATEST, QueryShape.OLDER_THAN):
            return cls(direction=PageDirection.BACKWARD, initial=window)
        return cls(direction=PageDirection.FORWARD, initial=window)

    def seam(self, page: HistoryPage) -> Optional[TimeToken]:
        """
        Token the next window must exclude.

        Prefers the service-reported page boundary and falls back to the
        extreme event token when the service left it out.
        """
        if self.direction.is_forward:
            if page.end is not None:
                return page.end
            return page.events[-1].timetoken if page.events else None
        if page.start is not None:
            return page.start
        return page.events[0].timetoken if page.events else None

    def narrows(self, window: FetchWindow, seam: TimeToken) -> bool:
        """Whether moving onto `seam` shrinks `window` (guards stalled walks)."""
        if self.direction.is_forward:
            return window.start is None or seam > window.start
        return window.end is None or seam < window.end

    def advance(self, window: FetchWindow, seam: TimeToken) -> FetchWindow:
        """Narrow the active edge of `window` onto `seam`."""
        if self.direction.is_forward:
            return replace(window, start=seam)
        return replace(window, end=seam)
