"""
Per-client sliding-window rate limiter for the question endpoint.

Each client (keyed by IP) may make `max_requests` calls within any
`window_seconds` span. Rejected calls are not recorded, so a client that keeps
retrying is admitted again as soon as its oldest call leaves the window.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        """Whole seconds until the next call would be admitted (at least 1)."""
        return max(1, int(self.reset_at - now + 0.999))


class RateLimiter:
    """Thread-safe; one request log per client identifier."""

    def __init__(
        self,
        *,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        max_tracked_clients: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_tracked_clients = max_tracked_clients
        self.clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def check(self, identifier: str) -> RateLimitDecision:
        """Admit or reject one call from `identifier`, recording it when admitted."""
        now = self.clock()
        if not self.enabled:
            return RateLimitDecision(allowed=True, remaining=0, reset_at=now)

        with self._lock:
            log = self._requests.setdefault(identifier, deque())
            self._prune(log, now)

            if len(log) >= self.max_requests:
                return RateLimitDecision(allowed=False, remaining=0, reset_at=log[0] + self.window_seconds)

            log.append(now)
            if len(self._requests) > self.max_tracked_clients:
                self._cleanup(now)
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests - len(log),
                reset_at=now + self.window_seconds,
            )

    def _prune(self, log: deque[float], now: float) -> None:
        window_start = now - self.window_seconds
        while log and log[0] <= window_start:
            log.popleft()

    def _cleanup(self, now: float) -> None:
        """Forget clients with no call inside the window. Caller holds the lock."""
        for identifier in list(self._requests):
            log = self._requests[identifier]
            self._prune(log, now)
            if not log:
                del self._requests[identifier]
