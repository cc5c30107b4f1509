"""
History Data Model: Events, Pages and Aggregated Results

Pages are produced by a page fetcher (one network call each); results are
produced by the aggregator once a logical fetch completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

from history_fetch.core.types import TimeToken


@dataclass(frozen=True, slots=True)
class HistoryEvent:
    """
    One stored event.

    The payload is opaque to the orchestrator. `timetoken` is set whenever the
    service reported one; the aggregator strips it before presentation unless
    the caller asked for per-event tokens.
    """
    payload: Any
    timetoken: Optional[TimeToken] = None

    def without_timetoken(self) -> HistoryEvent:
        if self.timetoken is None:
            return self
        return HistoryEvent(payload=self.payload)

    def to_dict(self) -> dict[str, Any]:
        if self.timetoken is None:
            return {"message": self.payload}
        return {"message": self.payload, "timetoken": self.timetoken.ticks}


@dataclass(frozen=True, slots=True)
class HistoryPage:
    """
    Result of a single bounded page call.

    Events are ordered oldest first. `start`/`end` are the boundary tokens
    reported by the service for this page; both are None for an empty page.

    `seam_overflow` counts events that share the page's edge token, lie
    inside the requested window, but did not fit in the page. Only stores
    that can see past the page report it; 0 means "none known".
    """
    events: tuple[HistoryEvent, ...] = ()
    start: Optional[TimeToken] = None
    end: Optional[TimeToken] = None
    seam_overflow: int = 0

    @classmethod
    def from_events(cls, events: Sequence[HistoryEvent]) -> HistoryPage:
        """Build a page whose boundaries are its first and last event tokens."""
        events = tuple(events)
        if not events:
            return cls()
        return cls(events=events, start=events[0].timetoken, end=events[-1].timetoken)

    @property
    def count(self) -> int:
        return len(self.events)

    @property
    def is_empty(self) -> bool:
        return not self.events

    def __len__(self) -> int:
        return len(self.events)


@dataclass(slots=True)
class HistoryResult:
    """
    Aggregated outcome of one logical fetch.

    `events` is in the caller-requested order. `start` is the token of the
    chronologically earliest returned event and `end` of the latest, whatever
    the presentation order; both are None when nothing was returned.
    """
    events: list[HistoryEvent] = field(default_factory=list)
    start: Optional[TimeToken] = None
    end: Optional[TimeToken] = None
    page_count: int = 0

    @property
    def count(self) -> int:
        return len(self.events)

    @property
    def is_empty(self) -> bool:
        return not self.events

    @property
    def messages(self) -> list[Any]:
        """Bare payloads in presentation order."""
        return [event.payload for event in self.events]

    def __iter__(self) -> Iterator[HistoryEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [event.to_dict() for event in self.events],
            "start": self.start.ticks if self.start else 0,
            "end": self.end.ticks if self.end else 0,
            "count": self.count,
            "pages": self.page_count,
        }
