"""Fixed-window rate limiter for outbound provider calls."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from geoenrich.common.constants import DEFAULT_REQUESTS_PER_WINDOW, DEFAULT_WINDOW_DURATION_MS
from geoenrich.common.errors import EnrichmentCancelled

logger = logging.getLogger(__name__)


class RateLimiter:
    """Caps calls at ``requests_per_window`` per ``window_duration_ms``.

    The window resets when it has elapsed or when its budget is spent; in the
    latter case the caller is suspended for whatever remains of the window.
    The check, wait, and reset happen under one lock, so concurrent callers
    queue behind a waiting caller instead of overrunning the budget.
    """

    def __init__(
        self,
        requests_per_window: int = DEFAULT_REQUESTS_PER_WINDOW,
        window_duration_ms: int = DEFAULT_WINDOW_DURATION_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if window_duration_ms < 0:
            raise ValueError("window_duration_ms must be non-negative")
        self.requests_per_window = requests_per_window
        self.window_seconds = window_duration_ms / 1000.0
        self.clock = clock
        self.sleep = sleep
        self.count = 0
        self.window_started_at = clock()
        self.waits = 0
        self.lock = threading.Lock()

    def _needs_reset(self, now: float) -> bool:
        return now - self.window_started_at >= self.window_seconds or self.count >= self.requests_per_window

    def _wait_seconds(self, now: float) -> float:
        return max(0.0, self.window_seconds - (now - self.window_started_at))

    def _wait(self, seconds: float, cancel_event: threading.Event | None) -> None:
        if cancel_event is None:
            self.sleep(seconds)
            return
        if cancel_event.wait(seconds):
            raise EnrichmentCancelled("Cancelled while waiting for rate limit window")

    def acquire(self, cancel_event: threading.Event | None = None) -> None:
        with self.lock:
            if cancel_event is not None and cancel_event.is_set():
                raise EnrichmentCancelled("Cancelled before acquiring rate limit slot")
            now = self.clock()
            if self._needs_reset(now):
                wait_for = self._wait_seconds(now)
                if wait_for > 0:
                    self.waits += 1
                    logger.warning(
                        "rate limit reached, waiting %.0fms",
                        wait_for * 1000,
                        extra={
                            "event": "RATE_LIMIT_WAIT",
                            "status": "waiting",
                            "duration_ms": int(wait_for * 1000),
                        },
                    )
                    self._wait(wait_for, cancel_event)
                self.count = 0
                self.window_started_at = self.clock()
            self.count += 1
