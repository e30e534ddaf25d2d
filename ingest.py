"""Ingest adapter: feed events in, window updates out."""

import logging

from feed import FeedConnectionError, FeedConnector, FeedSetupError
from models import (
    FeedEvent,
    MalformedMessage,
    PricePoint,
    RpcErrorEvent,
    RpcResult,
    TickerNotification,
)
from window import PriceWindow

logger = logging.getLogger(__name__)


def handle_event(event: FeedEvent, window: PriceWindow, channel: str) -> bool:
    """Apply one decoded event. Returns True when a point was appended.

    Only ticker notifications on ``channel`` reach the window; results and
    errors are logged, anything else is logged and skipped.
    """
    if isinstance(event, TickerNotification):
        if event.channel != channel:
            logger.debug("Ignoring notification for channel %s", event.channel)
            return False
        window.append(PricePoint(timestamp=event.timestamp, price=event.mark_price))
        return True
    if isinstance(event, RpcResult):
        logger.info("Subscription confirmed for channels: %s", event.result)
    elif isinstance(event, RpcErrorEvent):
        logger.error("Error from feed: %s (code: %s, reason: %s, param: %s)",
                     event.message, event.code, event.reason, event.param)
    elif isinstance(event, MalformedMessage):
        logger.warning("Error parsing feed message: %s (%s)", event.raw, event.error)
    else:
        logger.debug("Unrecognized feed message: %r", event)
    return False


async def run_ingest(feed: FeedConnector, window: PriceWindow, channel: str) -> int:
    """Subscribe to ``channel`` and feed the window until the connection ends.

    The connector is closed on every exit path. Connection failures are
    logged and end ingestion; a failed subscription raises ``FeedSetupError``.
    Returns the number of points appended.
    """
    appended = 0
    try:
        async with feed:
            await feed.subscribe([channel])
            async for event in feed.events():
                try:
                    if handle_event(event, window, channel):
                        appended += 1
                except Exception:
                    logger.exception("Failed to handle feed event %r", event)
    except FeedSetupError:
        logger.critical("Could not subscribe to %s", channel)
        raise
    except FeedConnectionError as exc:
        logger.error("Feed connection error: %s", exc)
    logger.info("Ingest stopped after %d points", appended)
    return appended
