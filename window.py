"""Time-bounded sliding window of price points.

``PriceWindow`` is the only state shared between the ingest task and the
reporter. Every access goes through one ``threading.Lock`` so the window can
also be read from worker threads (sync FastAPI handlers run in a threadpool).
Operations are in-memory and never await, so holding a thread lock inside a
coroutine is safe.
"""

import threading
from collections import deque
from typing import Deque, List

from models import PricePoint


class PriceWindow:
    def __init__(self, window_seconds: int = 10):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.window_seconds = window_seconds
        self._points: Deque[PricePoint] = deque()
        self._lock = threading.Lock()

    def append(self, point: PricePoint) -> None:
        """Insert ``point`` at the tail, then evict points older than the window.

        The caller's timestamp is accepted as-is. A point is evicted when its
        timestamp is strictly less than ``point.timestamp - window``.
        """
        cutoff = point.timestamp - self.window_seconds * 1000
        with self._lock:
            self._points.append(point)
            while self._points and self._points[0].timestamp < cutoff:
                self._points.popleft()

    def snapshot(self) -> List[PricePoint]:
        """Return an independent copy of the window in arrival order."""
        with self._lock:
            return list(self._points)

    def size(self) -> int:
        with self._lock:
            return len(self._points)

    def __len__(self) -> int:
        return self.size()
