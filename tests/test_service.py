"""Async endpoint and tracker tests.

Covers:
- GET /trend returns a report with the required fields.
- GET /health reports the window size.
- WS /ws/trend sends a report on connect.
- run_tracker keeps reporting after the feed drops and releases the feed on cancel.

The service runs against the simulated feed. We use httpx.AsyncClient for the
HTTP tests and FastAPI TestClient for WebSocket.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from conftest import CHANNEL, ScriptedFeed, tick
from feed import FeedSetupError
from main import create_app, main, parse_args, run_tracker, settings_from_args
from settings import TrackerSettings
from stream_stub import StubFeed
from window import PriceWindow


def make_app():
	settings = TrackerSettings(feed="stub", min_points=3, report_interval_ms=100, poll_interval_ms=10)
	return create_app(settings, feed_factory=lambda s: StubFeed(interval_ms=20, seed=1))


@pytest.mark.asyncio
async def test_get_trend_endpoint_returns_structure():
	app = make_app()
	# Manually run lifespan to start background tasks for AsyncClient usage
	async with app.router.lifespan_context(app):
		transport = ASGITransport(app=app)
		async with AsyncClient(transport=transport, base_url="http://test") as client:
			await asyncio.sleep(0.3)
			resp = await client.get("/trend")
			assert resp.status_code == 200, resp.text
			data = resp.json()
			assert {"instrument", "window_seconds", "size", "status", "direction", "slope"}.issubset(data.keys())
			assert data["instrument"] == "BTC-PERPETUAL"
			assert data["status"] == "trending"
			assert data["size"] >= 3
			assert data["direction"] in {"UP", "DOWN", "FLAT"}

			health = await client.get("/health")
			assert health.status_code == 200
			assert health.json()["status"] == "ok"
			assert health.json()["feed"] == "stub"
			assert health.json()["tracker"] == "running"


def test_websocket_trend_sends_report_message():
	app = make_app()
	with TestClient(app) as client:
		time.sleep(0.2)
		with client.websocket_connect("/ws/trend") as ws:
			message = ws.receive_json()
			assert message["instrument"] == "BTC-PERPETUAL"
			assert message["status"] in {"collecting", "trending"}
			second = ws.receive_json()
			assert second["size"] >= message["size"]


@pytest.mark.asyncio
async def test_run_tracker_reports_after_feed_ends_and_cleans_up():
	settings = TrackerSettings(min_points=2, report_interval_ms=10, poll_interval_ms=5)
	feed = ScriptedFeed([tick(0, 10.0), tick(1000, 11.0)])
	window = PriceWindow(settings.window_seconds)
	lines = []

	task = asyncio.create_task(run_tracker(feed, window, settings, sink=lines.append))
	await asyncio.sleep(0.1)
	assert not task.done()
	task.cancel()
	with pytest.raises(asyncio.CancelledError):
		await task

	assert feed.closed
	assert feed.subscriptions == [(1, [CHANNEL])]
	assert window.size() == 2
	assert any("Trend: UP" in line for line in lines)


@pytest.mark.asyncio
async def test_run_tracker_cancel_releases_live_feed():
	settings = TrackerSettings(poll_interval_ms=5)
	feed = StubFeed(interval_ms=5)
	window = PriceWindow(settings.window_seconds)

	task = asyncio.create_task(run_tracker(feed, window, settings, sink=lambda line: None))
	await asyncio.sleep(0.05)
	task.cancel()
	with pytest.raises(asyncio.CancelledError):
		await task

	assert feed.closed
	assert window.size() > 0


@pytest.mark.asyncio
async def test_run_tracker_subscription_failure_propagates():
	settings = TrackerSettings(poll_interval_ms=5)
	feed = ScriptedFeed([], fail_subscribe=True)
	with pytest.raises(FeedSetupError):
		await asyncio.wait_for(run_tracker(feed, PriceWindow(10), settings, sink=lambda line: None), timeout=2)
	assert feed.closed


def test_cli_args_map_to_settings(monkeypatch):
	monkeypatch.delenv("TRACKER_INSTRUMENT", raising=False)
	args = parse_args(["--instrument", "eth-perpetual", "--window", "20", "--stub"])
	settings = settings_from_args(args)
	assert settings.instrument == "ETH-PERPETUAL"
	assert settings.window_seconds == 20
	assert settings.feed == "stub"
	assert settings.min_points == 5


@pytest.mark.asyncio
async def test_run_tracker_stops_ingest_when_sink_fails():
	settings = TrackerSettings(poll_interval_ms=5, report_interval_ms=20)
	feed = StubFeed(interval_ms=5)
	calls = []

	def broken_sink(line):
		calls.append(line)
		if len(calls) >= 2:
			raise BrokenPipeError("stdout closed")

	with pytest.raises(BrokenPipeError):
		await asyncio.wait_for(run_tracker(feed, PriceWindow(10), settings, sink=broken_sink), timeout=2)

	assert len(calls) == 2
	assert feed.closed


@pytest.mark.asyncio
async def test_health_reports_failed_tracker():
	settings = TrackerSettings(feed="stub", poll_interval_ms=5)
	app = create_app(settings, feed_factory=lambda s: ScriptedFeed([], fail_subscribe=True))
	async with app.router.lifespan_context(app):
		transport = ASGITransport(app=app)
		async with AsyncClient(transport=transport, base_url="http://test") as client:
			await asyncio.sleep(0.1)
			resp = await client.get("/health")
			assert resp.status_code == 200
			data = resp.json()
			assert data["tracker"] == "failed"
			assert data["status"] == "degraded"


def test_cli_invalid_window_is_a_usage_error(capsys):
	with pytest.raises(SystemExit) as exc_info:
		main(["--window", "0"])
	assert exc_info.value.code == 2
	assert "window_seconds" in capsys.readouterr().err


def test_cli_invalid_env_is_a_usage_error(monkeypatch, capsys):
	monkeypatch.setenv("TRACKER_WINDOW_SECONDS", "abc")
	with pytest.raises(SystemExit) as exc_info:
		main(["--stub"])
	assert exc_info.value.code == 2
	assert "invalid configuration" in capsys.readouterr().err
