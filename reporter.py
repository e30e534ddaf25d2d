"""Periodic trend reporter.

The reporter wakes every ``poll_interval_ms`` but only emits once at least
``report_interval_ms`` has passed on the monotonic clock since the previous
emission. Each emission snapshots the window, fits the trend and hands one
formatted line to the sink.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from indicators import classify_direction, compute_trend, extrapolate_price
from models import PricePoint, TrendReportResponse
from settings import TrackerSettings
from window import PriceWindow

logger = logging.getLogger(__name__)

Sink = Callable[[str], None]


class IntervalTimer:
    """Coarse emission threshold on top of a fine-grained poll loop."""

    def __init__(self, interval_s: float, clock: Callable[[], float] = time.monotonic):
        self.interval_s = interval_s
        self._clock = clock
        self._last: Optional[float] = None

    def due(self) -> bool:
        """True (and re-armed) when the interval has elapsed; always True the first time."""
        now = self._clock()
        if self._last is None or now - self._last >= self.interval_s:
            self._last = now
            return True
        return False


@dataclass(frozen=True)
class TrendReport:
    instrument: str
    window_seconds: int
    size: int
    current_price: Optional[float] = None
    direction: Optional[str] = None
    slope: Optional[float] = None
    extrapolated_price: Optional[float] = None

    @property
    def trending(self) -> bool:
        return self.direction is not None

    def to_response(self) -> TrendReportResponse:
        return TrendReportResponse(
            instrument=self.instrument,
            window_seconds=self.window_seconds,
            size=self.size,
            status="trending" if self.trending else "collecting",
            current_price=self.current_price,
            direction=self.direction,
            slope=self.slope,
            extrapolated_price=self.extrapolated_price,
        )


def build_report(points: Sequence[PricePoint], settings: TrackerSettings, now_ms: int) -> TrendReport:
    """Turn a window snapshot into a report.

    Below ``settings.min_points`` the report only carries the size. Otherwise
    the extrapolated price is the trend evaluated one second past the wall-clock
    time elapsed since the snapshot's first point.
    """
    size = len(points)
    if size < settings.min_points:
        return TrendReport(settings.instrument, settings.window_seconds, size)

    trend = compute_trend(points)
    elapsed_s = (now_ms - points[0].timestamp) / 1000.0
    return TrendReport(
        instrument=settings.instrument,
        window_seconds=settings.window_seconds,
        size=size,
        current_price=points[-1].price,
        direction=classify_direction(trend.slope, settings.direction_epsilon),
        slope=trend.slope,
        extrapolated_price=extrapolate_price(trend, elapsed_s),
    )


def format_report(report: TrendReport) -> str:
    head = f"Inst: {report.instrument} | Window: {report.window_seconds}s ({report.size} pts)"
    if not report.trending:
        return f"{head} | (collecting data...)"
    return (
        f"{head} | Price: {report.current_price:.2f} | "
        f"Trend: {report.direction} ({report.slope:.4f} price/sec) | "
        f"Extrapolated next (1s): {report.extrapolated_price:.2f}"
    )


def print_sink(line: str) -> None:
    print(line, flush=True)


def log_sink(line: str) -> None:
    logger.info(line)


def current_report(window: PriceWindow, settings: TrackerSettings,
                   wall_clock: Callable[[], float] = time.time) -> TrendReport:
    return build_report(window.snapshot(), settings, now_ms=int(wall_clock() * 1000))


async def run_reporter(window: PriceWindow,
                       settings: TrackerSettings,
                       sink: Sink = print_sink,
                       timer: Optional[IntervalTimer] = None,
                       wall_clock: Callable[[], float] = time.time) -> None:
    """Emit one report per report interval until cancelled."""
    if timer is None:
        timer = IntervalTimer(settings.report_interval_ms / 1000.0)
    poll_s = settings.poll_interval_ms / 1000.0
    while True:
        if timer.due():
            sink(format_report(current_report(window, settings, wall_clock)))
        await asyncio.sleep(poll_s)
