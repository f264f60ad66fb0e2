"""Per-client request throttling for the invocation boundary.

Fixed window per key: the first request opens a window, at most
max_requests are admitted inside it, and the count resets once the
window has elapsed. Expired windows are dropped on every admit, so
idle keys do not accumulate. Instances are injected; nothing here is
global.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

from relay.config import RateLimitConfig


@runtime_checkable
class RateLimiter(Protocol):
    def admit(self, client_key: str) -> bool:
        """True if this request may proceed."""
        ...


@dataclass
class _Window:
    count: int
    opened_at: float


class FixedWindowRateLimiter:
    """In-memory RateLimiter keyed by client (e.g. remote address)."""

    def __init__(
        self,
        config: RateLimitConfig = RateLimitConfig(),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def admit(self, client_key: str) -> bool:
        now = self._clock()
        self._evict_expired(now)
        window = self._windows.get(client_key)

        if window is None:
            self._windows[client_key] = _Window(count=1, opened_at=now)
            return True

        if window.count >= self.config.max_requests:
            return False

        window.count += 1
        return True

    def _evict_expired(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.opened_at > self.config.window_seconds
        ]
        for key in expired:
            del self._windows[key]


class AllowAll:
    """RateLimiter that never refuses. Default for local and CLI use."""

    def admit(self, client_key: str) -> bool:
        return True
