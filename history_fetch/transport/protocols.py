"""
Page Fetcher Protocol: Single Bounded History Call

Structural subtyping protocol (PEP 544) for pluggable transports. A page
fetcher performs exactly one network call per invocation and never chains,
retries or aggregates; that is the orchestrator's job.

Page contract:
    - Only events with window.start < token < window.end are returned
    - At most `count` events (count <= 100)
    - BACKWARD returns the newest matching events, FORWARD the oldest
    - Events inside the page are always ordered oldest first
    - Failures are returned as Err(TransportError | ServiceError)
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from history_fetch.core import constants as C
from history_fetch.core.errors import HistoryError
from history_fetch.core.types import Result, TimeToken
from history_fetch.history.models import HistoryPage
from history_fetch.history.window import FetchWindow, PageDirection


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Parameters of one bounded page call."""
    channel: str
    window: FetchWindow = field(default_factory=FetchWindow)
    count: int = C.MAX_PAGE_SIZE
    include_timetoken: bool = True
    direction: PageDirection = PageDirection.BACKWARD

    def __post_init__(self) -> None:
        if not 1 <= self.count <= C.MAX_PAGE_SIZE:
            raise ValueError(f"count must be within 1..{C.MAX_PAGE_SIZE}, got {self.count}")

    @property
    def start(self) -> Optional[TimeToken]:
        return self.window.start

    @property
    def end(self) -> Optional[TimeToken]:
        return self.window.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "start": self.start.ticks if self.start else None,
            "end": self.end.ticks if self.end else None,
            "count": self.count,
            "direction": self.direction.value,
        }


@runtime_checkable
class PageFetcher(Protocol):
    """
    Protocol for a single-page history transport.

    Implementations must be safe to call from many concurrent logical
    fetches; they hold no per-fetch state.

    Example:
        class MyFetcher:
            async def fetch_page(self, request: PageRequest) -> Result[HistoryPage, HistoryError]:
                ...
    """

    @abstractmethod
    async def fetch_page(self, request: PageRequest) -> Result[HistoryPage, HistoryError]:
        """
        Perform one bounded history call.

        Args:
            request: Channel, exclusive window, count and direction

        Returns:
            Ok(page): Events inside the window, oldest first
            Err(error): TransportError or ServiceError
        """
        ...
