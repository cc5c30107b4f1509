"""
History Module: Logical Queries over Paged Channel History

Provides:
- HistoryQuery: Validated logical request (latest, older/newer than, between)
- HistoryEvent / HistoryPage / HistoryResult: Data model
- WindowStrategy: Shape-to-page-walk mapping with exclusive seams
- ResultAggregator: Page stitching, truncation and presentation order

The orchestrator lives in history_fetch.history.orchestrator and is
re-exported from the top-level package.
"""

from history_fetch.history.models import HistoryEvent, HistoryPage, HistoryResult
from history_fetch.history.query import HistoryQuery, QueryShape
from history_fetch.history.window import FetchWindow, PageDirection, WindowStrategy
from history_fetch.history.aggregator import ResultAggregator

__all__ = [
    "HistoryEvent",
    "HistoryPage",
    "HistoryResult",
    "HistoryQuery",
    "QueryShape",
    "FetchWindow",
    "PageDirection",
    "WindowStrategy",
    "ResultAggregator",
]
