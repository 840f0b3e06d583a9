from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from time import time

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 15 * 60
_KEY_PREFIX = "login:"


@dataclass(frozen=True)
class LoginRateLimitDecision:
    allowed: bool
    limit: int
    remaining_attempts: int
    reset_at: float
    retry_after_seconds: int


@dataclass
class _RateLimitEntry:
    attempts: int
    reset_at: float


class LoginRateLimiter:
    """Fixed-window attempt counter keyed by client identifier.

    A window opens on the first attempt and lasts `window_seconds`; after
    `max_attempts` attempts further checks are refused (and not counted) until
    the window expires. All state lives in this object, guarded by one lock so
    the check-then-increment step is atomic across request threads.
    """

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, _RateLimitEntry] = {}

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def check(self, identifier: str) -> LoginRateLimitDecision:
        key = _KEY_PREFIX + identifier
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = _RateLimitEntry(attempts=1, reset_at=now + self._window_seconds)
                self._entries[key] = entry
                return self._decision(allowed=True, entry=entry, now=now)

            if entry.attempts >= self._max_attempts:
                return self._decision(allowed=False, entry=entry, now=now)

            entry.attempts += 1
            return self._decision(allowed=True, entry=entry, now=now)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(_KEY_PREFIX + identifier, None)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired_keys = [key for key, entry in self._entries.items() if now > entry.reset_at]
            for key in expired_keys:
                del self._entries[key]
        return len(expired_keys)

    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._entries)

    def _decision(
        self,
        *,
        allowed: bool,
        entry: _RateLimitEntry,
        now: float,
    ) -> LoginRateLimitDecision:
        remaining = max(self._max_attempts - entry.attempts, 0) if allowed else 0
        return LoginRateLimitDecision(
            allowed=allowed,
            limit=self._max_attempts,
            remaining_attempts=remaining,
            reset_at=entry.reset_at,
            retry_after_seconds=max(1, math.ceil(entry.reset_at - now)),
        )
