"""
Result Aggregator: Page Stitching for One Logical Fetch

Merges pages into one chronologically ordered event sequence:
- Backward walks prepend (each page is older than the last)
- Forward walks append (each page is newer than the last)
- Nothing is re-sorted; pages are internally ordered by the fetcher

Truncation trims the chronologically extreme tail relative to the walk
direction, so the kept events stay contiguous with the overall boundaries.
Presentation order (`reverse`) is applied exactly once, in build().
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from history_fetch.core import constants as C
from history_fetch.core.types import TimeToken
from history_fetch.history.models import HistoryEvent, HistoryPage, HistoryResult
from history_fetch.history.window import FetchWindow, PageDirection

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Chunk:
    """Kept slice of one page with its fallback boundaries."""
    events: list[HistoryEvent]
    start: Optional[TimeToken]
    end: Optional[TimeToken]


class ResultAggregator:
    """
    Accumulates pages for a single logical fetch.

    Instances are never shared between fetches.
    """

    __slots__ = (
        "_direction", "_limit", "_include_timetoken", "_reverse",
        "_chunks", "_total", "_pages", "_dropped",
    )

    def __init__(
        self,
        direction: PageDirection,
        limit: int = C.UNBOUNDED_LIMIT,
        include_timetoken: bool = False,
        reverse: bool = False,
    ) -> None:
        self._direction = direction
        self._limit = limit
        self._include_timetoken = include_timetoken
        self._reverse = reverse
        self._chunks: deque[_Chunk] = deque()
        self._total = 0
        self._pages = 0
        self._dropped = 0

    # -------------------------------------------------------------------------
    # Accumulation
    # -------------------------------------------------------------------------
    def add_page(self, page: HistoryPage, window: Optional[FetchWindow] = None) -> int:
        """
        Accept one page fetched for `window`.

        Events outside the window (including any sitting on an already
        fetched seam) are dropped. Returns the number of events kept.
        """
        self._pages += 1
        events = list(page.events)

        if window is not None:
            inside = [
                event for event in events
                if event.timetoken is None or window.contains(event.timetoken)
            ]
            dropped = len(events) - len(inside)
            if dropped:
                self._dropped += dropped
                logger.warning(
                    "Dropped %d event(s) outside page window %r",
                    dropped, window,
                )
            events = inside

        start, end = page.start, page.end
        remaining = self.remaining
        if remaining is not None and len(events) > remaining:
            if self._direction.is_forward:
                events = events[:remaining]
                end = None
            else:
                events = events[len(events) - remaining:]
                start = None

        if not events:
            return 0

        chunk = _Chunk(events=events, start=start, end=end)
        if self._direction.is_forward:
            self._chunks.append(chunk)
        else:
            self._chunks.appendleft(chunk)
        self._total += len(events)
        return len(events)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    @property
    def total(self) -> int:
        return self._total

    @property
    def page_count(self) -> int:
        return self._pages

    @property
    def dropped(self) -> int:
        """Events rejected for lying outside their page window."""
        return self._dropped

    @property
    def remaining(self) -> Optional[int]:
        """Events still wanted, or None when unbounded."""
        if self._limit == C.UNBOUNDED_LIMIT:
            return None
        return max(self._limit - self._total, 0)

    @property
    def is_satisfied(self) -> bool:
        return self._limit != C.UNBOUNDED_LIMIT and self._total >= self._limit

    def discard(self) -> None:
        """Drop everything accumulated (failure or cancellation)."""
        self._chunks.clear()
        self._total = 0

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------
    def build(self) -> HistoryResult:
        """Assemble the final result in presentation order."""
        events: list[HistoryEvent] = []
        for chunk in self._chunks:
            events.extend(chunk.events)

        start: Optional[TimeToken] = None
        end: Optional[TimeToken] = None
        if events:
            start = events[0].timetoken or self._chunks[0].start
            end = events[-1].timetoken or self._chunks[-1].end

        if not self._include_timetoken:
            events = [event.without_timetoken() for event in events]
        if self._reverse:
            events.reverse()

        return HistoryResult(
            events=events,
            start=start,
            end=end,
            page_count=self._pages,
        )
