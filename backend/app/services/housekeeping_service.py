from __future__ import annotations

import logging
import threading
import time
from typing import Protocol
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("athan_notes.housekeeping")


class SweepableLimiter(Protocol):
    def sweep_expired(self) -> int:
        ...


class RateLimitSweeper:
    """Background loop that drops expired login rate-limit entries.

    Expired entries are already treated as absent by the limiter; the sweep only
    bounds memory held for clients that never come back.
    """

    def __init__(
        self,
        limiter: SweepableLimiter,
        interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._limiter = limiter
        self._interval_seconds = max(1, interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="athan-notes-rate-limit-sweep")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def run_once(self) -> int:
        tick_tokens = bind_contextvars(housekeeping_tick_id=uuid4().hex)
        started_at = time.perf_counter()
        try:
            removed = self._limiter.sweep_expired()
        except Exception:
            LOGGER.warning("rate limit sweep failed", exc_info=True)
            return 0
        finally:
            reset_contextvars(**tick_tokens)

        if removed:
            LOGGER.debug("rate limit sweep removed=%s", removed)
        self._telemetry.emit(
            "rate_limit.sweep",
            removed=removed,
            duration_ms=int((time.perf_counter() - started_at) * 1000),
        )
        return removed

    def _run_loop(self) -> None:
        # First sweep runs one interval after start.
        while not self._stop_event.wait(self._interval_seconds):
            self.run_once()
