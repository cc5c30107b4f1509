"""
Fetch State Machine: Per-Fetch Lifecycle

States:
    IDLE           → Created, no page call issued yet
    FETCHING_PAGE  → Awaiting one page call
    PAGE_RECEIVED  → Page merged, deciding whether to continue
    COMPLETED      → Terminal, result assembled
    FAILED         → Terminal, page call or page contract failed
    CANCELLED      → Terminal, caller cancelled

Transitions:
    IDLE           → FETCHING_PAGE : First page call
    IDLE           → CANCELLED     : Cancelled before the first call
    FETCHING_PAGE  → PAGE_RECEIVED : Page call returned a page
    FETCHING_PAGE  → FAILED        : Page call returned an error
    FETCHING_PAGE  → CANCELLED     : Cancelled while the call was in flight
    PAGE_RECEIVED  → FETCHING_PAGE : Next page needed (or a seam-token sweep)
    PAGE_RECEIVED  → COMPLETED     : A stop condition fired
    PAGE_RECEIVED  → FAILED        : Page boundaries unusable for chaining
    PAGE_RECEIVED  → CANCELLED     : Cancelled between page calls

There is no retry state: failures are terminal for the logical fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from history_fetch.core.types import Err, Ok, Result, TimeToken
from history_fetch.history.aggregator import ResultAggregator
from history_fetch.history.models import HistoryPage
from history_fetch.history.query import HistoryQuery
from history_fetch.history.window import FetchWindow, WindowStrategy
from history_fetch.transport.protocols import PageRequest

logger = logging.getLogger(__name__)


class FetchPhase(Enum):
    """Lifecycle phase of one logical fetch."""
    IDLE = auto()
    FETCHING_PAGE = auto()
    PAGE_RECEIVED = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in {FetchPhase.COMPLETED, FetchPhase.FAILED, FetchPhase.CANCELLED}


VALID_TRANSITIONS: frozenset[tuple[FetchPhase, FetchPhase]] = frozenset({
    (FetchPhase.IDLE, FetchPhase.FETCHING_PAGE),
    (FetchPhase.IDLE, FetchPhase.CANCELLED),
    (FetchPhase.FETCHING_PAGE, FetchPhase.PAGE_RECEIVED),
    (FetchPhase.FETCHING_PAGE, FetchPhase.FAILED),
    (FetchPhase.FETCHING_PAGE, FetchPhase.CANCELLED),
    (FetchPhase.PAGE_RECEIVED, FetchPhase.FETCHING_PAGE),
    (FetchPhase.PAGE_RECEIVED, FetchPhase.COMPLETED),
    (FetchPhase.PAGE_RECEIVED, FetchPhase.FAILED),
    (FetchPhase.PAGE_RECEIVED, FetchPhase.CANCELLED),
})


class StopReason(Enum):
    """Why a logical fetch stopped issuing page calls."""
    LIMIT_REACHED = auto()
    EMPTY_PAGE = auto()
    SHORT_PAGE = auto()
    WINDOW_EXHAUSTED = auto()


@dataclass
class FetchState:
    """
    Transient state of one logical fetch.

    Owned by exactly one orchestrator run; never shared.
    """
    fetch_id: str
    query: HistoryQuery
    strategy: WindowStrategy
    window: FetchWindow
    aggregator: ResultAggregator
    phase: FetchPhase = FetchPhase.IDLE
    pages_requested: int = 0
    history: list[FetchPhase] = field(default_factory=lambda: [FetchPhase.IDLE])

    @classmethod
    def start(cls, fetch_id: str, query: HistoryQuery) -> FetchState:
        strategy = WindowStrategy.for_query(query)
        return cls(
            fetch_id=fetch_id,
            query=query,
            strategy=strategy,
            window=strategy.initial,
            aggregator=ResultAggregator(
                direction=strategy.direction,
                limit=query.limit,
                include_timetoken=query.include_timetoken,
                reverse=query.reverse,
            ),
        )

    def transition(self, to_phase: FetchPhase) -> Result[None, str]:
        """
        Move to `to_phase`.

        Returns:
            Ok(None) on a legal transition
            Err(message) otherwise (state unchanged)
        """
        if (self.phase, to_phase) not in VALID_TRANSITIONS:
            return Err(f"No valid transition from {self.phase.name} to {to_phase.name}")
        logger.debug("Fetch %s: %s -> %s", self.fetch_id, self.phase.name, to_phase.name)
        self.phase = to_phase
        self.history.append(to_phase)
        return Ok(None)

    def next_request(self) -> PageRequest:
        """Page call for the current window, sized to what is still wanted."""
        count = self.query.page_size
        remaining = self.aggregator.remaining
        if remaining is not None:
            count = min(count, remaining)
        self.pages_requested += 1
        return PageRequest(
            channel=self.query.channel,
            window=self.window,
            count=count,
            include_timetoken=True,
            direction=self.strategy.direction,
        )

    def sweep_request(self, seam: TimeToken, overflow: int) -> PageRequest:
        """
        Page call for the same-token events a page edge cut off.

        The window holds only `seam`. Reading from the opposite end picks up
        exactly the events of the token group the previous page did not
        reach, relying on the store keeping same-token events in a stable
        order.
        """
        count = min(overflow, self.query.page_size)
        remaining = self.aggregator.remaining
        if remaining is not None:
            count = min(count, remaining)
        self.pages_requested += 1
        return PageRequest(
            channel=self.query.channel,
            window=FetchWindow.around(seam),
            count=count,
            include_timetoken=True,
            direction=self.strategy.direction.opposite,
        )

    def stop_reason(self, page: HistoryPage, requested: int) -> Optional[StopReason]:
        """Evaluate stop conditions after a page was merged."""
        if self.aggregator.is_satisfied:
            return StopReason.LIMIT_REACHED
        if page.is_empty:
            return StopReason.EMPTY_PAGE
        if page.count < requested:
            return StopReason.SHORT_PAGE
        return None
