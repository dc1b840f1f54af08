"""Client-side pacing for PMS requests."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Mapping, Optional

logger = logging.getLogger(__name__)

LOW_BUDGET_THRESHOLD = 10


class RateLimiter:
    """Enforce a minimum spacing between calls plus a rolling per-minute ceiling.

    Callers ``await limiter.acquire()`` right before each HTTP request. The
    limiter also records the PMS's own rate-limit headers so operators see a
    warning before the remote budget runs dry.
    """

    def __init__(
        self,
        *,
        min_interval: float = 1.0,
        max_per_minute: int = 30,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._min_interval = max(0.0, min_interval)
        self._max_per_minute = max(1, max_per_minute)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None
        self._window: Deque[float] = deque()
        self.remote_remaining: Optional[int] = None

    async def acquire(self) -> None:
        async with self._lock:
            now = self._trim_window()
            wait = 0.0
            if self._last_request is not None:
                wait = max(wait, self._min_interval - (now - self._last_request))
            if len(self._window) >= self._max_per_minute:
                wait = max(wait, 60.0 - (now - self._window[0]))
            if wait > 0:
                logger.debug("Rate limiter pausing %.2fs before next PMS call", wait)
                await self._sleep(wait)
                now = self._trim_window()

            self._last_request = now
            self._window.append(now)

    def _trim_window(self) -> float:
        now = self._clock()
        while self._window and now - self._window[0] >= 60.0:
            self._window.popleft()
        return now

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        raw = headers.get("X-RateLimit-5min-Remaining") or headers.get("X-RateLimit-Remaining")
        if raw is None:
            return
        try:
            remaining = int(raw)
        except ValueError:
            return
        self.remote_remaining = remaining
        if remaining < LOW_BUDGET_THRESHOLD:
            logger.warning("PMS rate-limit budget running low: %s requests remaining", remaining)
