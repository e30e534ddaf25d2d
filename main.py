# main.py
# Console: python main.py [--stub]
# Service: python main.py --serve, or uvicorn main:create_app --factory
import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from feed import DeribitFeed, FeedConnector, FeedSetupError
from ingest import run_ingest
from logging_config import setup_logging
from models import HealthResponse, TrendReportResponse
from reporter import IntervalTimer, Sink, current_report, log_sink, print_sink, run_reporter
from settings import TrackerSettings
from stream_stub import StubFeed
from window import PriceWindow

logger = logging.getLogger(__name__)

FeedFactory = Callable[[TrackerSettings], FeedConnector]


def default_feed_factory(settings: TrackerSettings) -> FeedConnector:
    if settings.feed == "stub":
        return StubFeed()
    return DeribitFeed(settings.feed_url)


# --- 1) TRACKER: ingest + reporter running side by side ---

async def run_tracker(feed: FeedConnector,
                      window: PriceWindow,
                      settings: TrackerSettings,
                      sink: Sink = print_sink) -> None:
    """Run the ingest and reporter tasks until cancelled.

    The reporter keeps going on the retained window if the feed drops.
    If either task fails (a failed subscription, a broken sink) the other
    is cancelled and the error propagates.
    """
    reporter = asyncio.create_task(run_reporter(window, settings, sink), name="reporter")
    ingest = asyncio.create_task(run_ingest(feed, window, settings.channel), name="ingest")
    pending = {reporter, ingest}
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None:
                    logger.error("Tracker %s task failed: %r", task.get_name(), exc)
                    raise exc
    finally:
        reporter.cancel()
        ingest.cancel()
        await asyncio.gather(reporter, ingest, return_exceptions=True)


# --- 2) HTTP / WS service ---

def create_app(settings: Optional[TrackerSettings] = None,
               feed_factory: FeedFactory = default_feed_factory) -> FastAPI:
    settings = settings or TrackerSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Start the tracker in the background for the lifetime of the server
        feed = feed_factory(settings)
        app.state.tracker_task = asyncio.create_task(
            run_tracker(feed, app.state.window, settings, sink=log_sink), name="tracker"
        )
        try:
            yield
        finally:
            app.state.tracker_task.cancel()
            try:
                await app.state.tracker_task
            except asyncio.CancelledError:
                logger.info("Tracker task cancelled.")
            except Exception:
                logger.exception("Tracker stopped with an error")

    app = FastAPI(title="Tick Trend Tracker", lifespan=lifespan)
    app.state.settings = settings
    app.state.window = PriceWindow(settings.window_seconds)

    @app.get("/trend", response_model=TrendReportResponse, tags=["Trend"])
    def get_trend():
        """Current trend report computed from a fresh window snapshot."""
        return current_report(app.state.window, settings).to_response()

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def get_health():
        tracker = tracker_state(getattr(app.state, "tracker_task", None))
        return HealthResponse(
            status="degraded" if tracker in ("failed", "stopped") else "ok",
            window_size=app.state.window.size(),
            feed=settings.feed,
            tracker=tracker,
        )

    @app.websocket("/ws/trend")
    async def websocket_trend(websocket: WebSocket):
        """Stream one report on connect and then one per report interval."""
        await websocket.accept()
        streamer = asyncio.create_task(stream_reports(websocket))
        try:
            # Inbound messages are ignored; receiving is how a disconnect is noticed
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Client disconnected from trend WebSocket.")
        finally:
            streamer.cancel()
            await asyncio.gather(streamer, return_exceptions=True)

    async def stream_reports(websocket: WebSocket):
        timer = IntervalTimer(settings.report_interval_ms / 1000.0)
        while True:
            if timer.due():
                report = current_report(app.state.window, settings)
                await websocket.send_json(report.to_response().model_dump())
            await asyncio.sleep(settings.poll_interval_ms / 1000.0)

    return app


def tracker_state(task: Optional[asyncio.Task]) -> str:
    if task is None:
        return "not started"
    if not task.done():
        return "running"
    if not task.cancelled() and task.exception() is not None:
        return "failed"
    return "stopped"


# --- 3) CLI ---

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track a short-term price trend from a live ticker feed.")
    parser.add_argument("--instrument", help="Instrument name, e.g. BTC-PERPETUAL or ETH-PERPETUAL")
    parser.add_argument("--interval", choices=["raw", "100ms", "agg2"], help="Ticker subscription interval")
    parser.add_argument("--window", dest="window_seconds", type=int, help="Sliding window length in seconds")
    parser.add_argument("--min-points", dest="min_points", type=int, help="Points required before a trend is reported")
    parser.add_argument("--report-interval-ms", dest="report_interval_ms", type=int, help="Milliseconds between reports")
    parser.add_argument("--stub", action="store_true", help="Use the simulated feed instead of Deribit")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP/WS service instead of printing reports")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8001)
    parser.add_argument("--log-level", default=None)
    return parser


def parse_args(argv=None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> TrackerSettings:
    return TrackerSettings.from_env(
        instrument=args.instrument,
        interval=args.interval,
        window_seconds=args.window_seconds,
        min_points=args.min_points,
        report_interval_ms=args.report_interval_ms,
        feed="stub" if args.stub else None,
    )


async def run_console(settings: TrackerSettings) -> None:
    print(f"Using instrument: {settings.instrument}")
    window = PriceWindow(settings.window_seconds)
    await run_tracker(default_feed_factory(settings), window, settings, sink=print_sink)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        parser.error(f"invalid configuration:\n{exc}")
    setup_logging(args.log_level)

    if args.serve:
        import uvicorn

        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
        return 0

    try:
        asyncio.run(run_console(settings))
    except KeyboardInterrupt:
        print("\nGracefully shutting down...")
    except FeedSetupError as exc:
        logger.critical("Fatal: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
