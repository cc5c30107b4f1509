"""
Transport module: Single-page history fetchers.

Provides:
- PageFetcher: Protocol every transport implements
- InMemoryPageFetcher: Sorted in-process store for development and tests
- HttpPageFetcher: aiohttp client for the remote history endpoint
"""

from history_fetch.transport.protocols import PageFetcher, PageRequest
from history_fetch.transport.memory import InMemoryPageFetcher
from history_fetch.transport.http import HttpPageFetcher, decode_page

__all__ = [
    "PageFetcher",
    "PageRequest",
    "InMemoryPageFetcher",
    "HttpPageFetcher",
    "decode_page",
]
