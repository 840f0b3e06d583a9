from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

import pytest

from backend.app.services.housekeeping_service import RateLimitSweeper
from backend.app.services.rate_limiter import LoginRateLimiter
from backend.app.telemetry import TelemetryClient


class _FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_remaining_attempts_count_down_then_block() -> None:
    limiter = LoginRateLimiter(clock=_FakeClock())

    decisions = [limiter.check("10.0.0.1") for _ in range(5)]

    assert [decision.allowed for decision in decisions] == [True] * 5
    assert [decision.remaining_attempts for decision in decisions] == [4, 3, 2, 1, 0]

    blocked = limiter.check("10.0.0.1")
    assert blocked.allowed is False
    assert blocked.remaining_attempts == 0
    assert blocked.limit == 5


def test_blocked_checks_are_not_counted_and_report_retry_after() -> None:
    clock = _FakeClock()
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=900, clock=clock)
    limiter.check("ip")
    limiter.check("ip")

    clock.advance(600)
    blocked = limiter.check("ip")

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 300
    assert blocked.reset_at == 1_000.0 + 900


def test_window_expiry_starts_a_fresh_window() -> None:
    clock = _FakeClock()
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=900, clock=clock)
    limiter.check("ip")
    limiter.check("ip")
    assert limiter.check("ip").allowed is False

    # The window is inclusive of its reset instant.
    clock.advance(900)
    assert limiter.check("ip").allowed is False

    clock.advance(1)
    fresh = limiter.check("ip")
    assert fresh.allowed is True
    assert fresh.remaining_attempts == 1
    assert fresh.reset_at == clock.now + 900


def test_identifiers_are_tracked_independently() -> None:
    limiter = LoginRateLimiter(max_attempts=1, clock=_FakeClock())

    assert limiter.check("a").allowed is True
    assert limiter.check("a").allowed is False
    assert limiter.check("b").allowed is True


def test_reset_clears_identifier() -> None:
    limiter = LoginRateLimiter(clock=_FakeClock())
    for _ in range(5):
        limiter.check("ip")

    limiter.reset("ip")
    limiter.reset("never-seen")

    decision = limiter.check("ip")
    assert decision.allowed is True
    assert decision.remaining_attempts == 4


def test_sweep_expired_only_drops_expired_entries() -> None:
    clock = _FakeClock()
    limiter = LoginRateLimiter(window_seconds=100, clock=clock)
    limiter.check("old")
    clock.advance(50)
    limiter.check("new")

    clock.advance(51)
    assert limiter.sweep_expired() == 1
    assert limiter.tracked_identifiers() == 1


def test_concurrent_checks_never_exceed_limit() -> None:
    limiter = LoginRateLimiter(max_attempts=5, clock=_FakeClock())
    barrier = threading.Barrier(20)
    allowed: list[bool] = []
    allowed_lock = threading.Lock()

    def _attempt() -> None:
        barrier.wait()
        decision = limiter.check("shared")
        with allowed_lock:
            allowed.append(decision.allowed)

    threads = [threading.Thread(target=_attempt) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert allowed.count(True) == 5
    assert allowed.count(False) == 15


@pytest.mark.parametrize(("max_attempts", "window_seconds"), [(0, 900), (5, 0)])
def test_invalid_limiter_configuration(max_attempts: int, window_seconds: int) -> None:
    with pytest.raises(ValueError):
        LoginRateLimiter(max_attempts=max_attempts, window_seconds=window_seconds)


def test_sweeper_run_once_emits_telemetry() -> None:
    clock = _FakeClock()
    limiter = LoginRateLimiter(window_seconds=10, clock=clock)
    limiter.check("a")
    limiter.check("b")
    clock.advance(11)
    sink = _CaptureSink()
    sweeper = RateLimitSweeper(
        limiter,
        interval_seconds=60,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    assert sweeper.run_once() == 2
    assert limiter.tracked_identifiers() == 0
    assert sink.events[0][0] == "rate_limit.sweep"
    assert sink.events[0][1]["removed"] == 2


class _FailingLimiter:
    def sweep_expired(self) -> int:
        raise RuntimeError("boom")


def test_sweeper_run_once_survives_failures() -> None:
    sweeper = RateLimitSweeper(_FailingLimiter(), interval_seconds=60)
    assert sweeper.run_once() == 0


class _CountingLimiter:
    def __init__(self) -> None:
        self.calls = 0
        self.called = threading.Event()

    def sweep_expired(self) -> int:
        self.calls += 1
        self.called.set()
        return 0


def test_sweeper_loop_runs_and_stops() -> None:
    limiter = _CountingLimiter()
    sweeper = RateLimitSweeper(limiter, interval_seconds=1)

    sweeper.start()
    try:
        assert limiter.called.wait(timeout=3)
    finally:
        sweeper.stop()

    calls_after_stop = limiter.calls
    assert calls_after_stop >= 1
    assert sweeper.run_once() == 0
    assert limiter.calls == calls_after_stop + 1
