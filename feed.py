"""
Feed connectors: persistent duplex connections that yield decoded events.

A connector is an async context manager. Entering it connects, leaving it
always releases the connection. While open, ``subscribe`` sends a JSON-RPC
subscribe request and ``events`` yields decoded frames until the connection
ends. ``DeribitFeed`` talks to the Deribit API v2 over ``websockets``;
``stream_stub.StubFeed`` implements the same protocol with simulated ticks.
"""

import asyncio
import itertools
import logging
from typing import AsyncIterator, Iterable, Protocol, Union

import websockets
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from models import (
    FeedEvent,
    FeedMessage,
    MalformedMessage,
    NotificationParams,
    RpcErrorEvent,
    RpcRequest,
    RpcResult,
    SubscribeParams,
    TickerNotification,
    UnrecognizedMessage,
)

logger = logging.getLogger(__name__)

SUBSCRIBE_METHOD = "public/subscribe"


class FeedError(Exception):
    """Base class for connector failures."""


class FeedConnectionError(FeedError):
    """Connect/handshake failed or the connection dropped abnormally."""


class FeedSetupError(FeedError):
    """The subscription request could not be sent."""


class FeedConnector(Protocol):
    async def __aenter__(self) -> "FeedConnector": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def subscribe(self, channels: Iterable[str]) -> int: ...

    def events(self) -> AsyncIterator[FeedEvent]: ...


def build_subscribe_request(request_id: int, channels: Iterable[str]) -> RpcRequest:
    return RpcRequest(id=request_id, method=SUBSCRIBE_METHOD, params=SubscribeParams(channels=list(channels)))


def decode_message(raw: Union[str, bytes]) -> FeedEvent:
    """Decode one inbound frame.

    Classification is strict: a frame is ticker data only when
    ``method == "subscription"``; otherwise an identifier-tagged ``error`` or
    ``result`` is a control event. Never raises: frames that fail validation
    come back as ``MalformedMessage``.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        msg = FeedMessage.model_validate_json(raw)
    except ValidationError as exc:
        return MalformedMessage(raw=raw, error=str(exc))

    if msg.method == "subscription":
        try:
            params = NotificationParams.model_validate(msg.params)
        except ValidationError as exc:
            return MalformedMessage(raw=raw, error=str(exc))
        return TickerNotification(
            channel=params.channel,
            mark_price=params.data.mark_price,
            timestamp=params.data.timestamp,
        )
    if msg.id is not None and msg.error is not None:
        data = msg.error.data
        return RpcErrorEvent(
            id=msg.id,
            code=msg.error.code,
            message=msg.error.message,
            reason=data.reason if data else None,
            param=data.param if data else None,
        )
    if msg.id is not None and msg.result is not None:
        return RpcResult(id=msg.id, result=msg.result)
    return UnrecognizedMessage(raw=raw)


class DeribitFeed:
    """Deribit JSON-RPC websocket connector."""

    def __init__(self, url: str, ping_interval: float = 20.0, open_timeout: float = 10.0):
        self.url = url
        self.ping_interval = ping_interval
        self.open_timeout = open_timeout
        self._ws = None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "DeribitFeed":
        try:
            self._ws = await websockets.connect(
                self.url, ping_interval=self.ping_interval, open_timeout=self.open_timeout
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise FeedConnectionError(f"could not connect to {self.url}: {exc}") from exc
        logger.info("Connected to %s", self.url)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Websocket connection to %s closed", self.url)

    async def subscribe(self, channels: Iterable[str]) -> int:
        if self._ws is None:
            raise FeedSetupError("feed is not connected")
        request = build_subscribe_request(next(self._ids), channels)
        payload = request.model_dump_json()
        try:
            await self._ws.send(payload)
        except (OSError, WebSocketException) as exc:
            raise FeedSetupError(f"could not send subscription request: {exc}") from exc
        logger.info("Sent subscription request: %s", payload)
        return request.id

    async def events(self) -> AsyncIterator[FeedEvent]:
        ws = self._ws
        if ws is None:
            raise FeedConnectionError("feed is not connected")
        try:
            async for message in ws:
                yield decode_message(message)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise FeedConnectionError(f"connection to {self.url} lost: {exc}") from exc
