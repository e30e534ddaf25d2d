# stream_stub.py
# Simulated feed connector for offline runs and tests.
# Usage example:
#   import asyncio
#   from stream_stub import StubFeed
#   async def main():
#       async with StubFeed(interval_ms=50) as feed:
#           await feed.subscribe(["ticker.BTC-PERPETUAL.100ms"])
#           async for event in feed.events():
#               print(event)
#   asyncio.run(main())

import asyncio
import itertools
import logging
import random
import time
from typing import AsyncIterator, Dict, Iterable, List, Optional

from models import FeedEvent, RpcResult, TickerNotification

logger = logging.getLogger(__name__)


class StubFeed:
    """Emit simulated mark-price ticks for every subscribed channel.

    Prices follow a noisy random walk to emulate micro-movements. Each
    subscription is confirmed with an ``RpcResult`` before ticks start.
    """

    def __init__(self,
                 base_price: float = 100.0,
                 jitter: float = 0.08,
                 interval_ms: int = 100,
                 seed: Optional[int] = None):
        self.base_price = base_price
        self.jitter = jitter
        self.interval_ms = interval_ms
        self.closed = False
        self._rng = random.Random(seed)
        self._ids = itertools.count(1)
        self._prices: Dict[str, float] = {}
        self._pending: List[FeedEvent] = []

    async def __aenter__(self) -> "StubFeed":
        self.closed = False
        logger.info("Stub feed started (interval=%dms)", self.interval_ms)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.closed = True
        logger.info("Stub feed closed")

    async def subscribe(self, channels: Iterable[str]) -> int:
        request_id = next(self._ids)
        channels = list(channels)
        for channel in channels:
            self._prices.setdefault(channel, float(self.base_price))
        self._pending.append(RpcResult(id=request_id, result=channels))
        return request_id

    async def events(self) -> AsyncIterator[FeedEvent]:
        while not self.closed:
            while self._pending:
                yield self._pending.pop(0)
            now = int(time.time() * 1000)
            for channel, price in list(self._prices.items()):
                drift = self._rng.uniform(-0.02, 0.02)
                shock = self._rng.gauss(0.0, self.jitter)
                price = max(0.01, price * (1.0 + drift * 1e-3) + shock)
                self._prices[channel] = price
                yield TickerNotification(channel=channel, mark_price=round(price, 6), timestamp=now)
            await asyncio.sleep(max(0.0, self.interval_ms / 1000.0))


if __name__ == "__main__":
    async def _demo():
        async with StubFeed(interval_ms=50) as feed:
            await feed.subscribe(["ticker.BTC-PERPETUAL.100ms"])
            async for event in feed.events():
                print(event)
    asyncio.run(_demo())
