"""Shared fixtures: an in-memory feed connector driven by a fixed script."""

import pytest

from feed import FeedConnectionError, FeedSetupError
from models import TickerNotification
from settings import TrackerSettings

CHANNEL = "ticker.BTC-PERPETUAL.100ms"


class ScriptedFeed:
	"""Feed connector that replays ``script`` then ends (or fails)."""

	def __init__(self, script, fail_with=None, fail_subscribe=False):
		self.script = list(script)
		self.fail_with = fail_with
		self.fail_subscribe = fail_subscribe
		self.entered = False
		self.closed = False
		self.subscriptions = []
		self._next_id = 1

	async def __aenter__(self):
		self.entered = True
		return self

	async def __aexit__(self, exc_type, exc, tb):
		self.closed = True

	async def subscribe(self, channels):
		if self.fail_subscribe:
			raise FeedSetupError("send failed")
		request_id = self._next_id
		self._next_id += 1
		self.subscriptions.append((request_id, list(channels)))
		return request_id

	async def events(self):
		for event in self.script:
			yield event
		if self.fail_with is not None:
			raise self.fail_with


def tick(ts, price, channel=CHANNEL):
	return TickerNotification(channel=channel, mark_price=price, timestamp=ts)


@pytest.fixture
def settings():
	return TrackerSettings()


@pytest.fixture
def scripted_feed():
	return ScriptedFeed


@pytest.fixture
def connection_lost():
	return FeedConnectionError("connection reset")
