"""
Local request-rate tracking and quota cooldown.

The governor is advisory: it never blocks a call. Runners record each
dispatch, the UI reads remaining quota and the cooldown countdown, and the
orchestrator refuses new runs while a cooldown is active. A periodic ticker
prunes the window and counts the cooldown down once per interval.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict

from .constants import (
    RATE_WINDOW_SECONDS,
    RATE_LIMIT_PER_WINDOW,
    COOLDOWN_SECONDS,
    TICK_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)


class RateGovernor:
    """Sliding one-minute request window plus a cooldown countdown."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        window_seconds: float = RATE_WINDOW_SECONDS,
        limit: int = RATE_LIMIT_PER_WINDOW,
        cooldown_seconds: int = COOLDOWN_SECONDS,
    ):
        self._clock = clock
        self.window_seconds = window_seconds
        self.limit = limit
        self.cooldown_seconds = cooldown_seconds
        self._timestamps: Deque[float] = deque()
        self._cooldown_remaining = 0

    def _prune(self) -> None:
        now = self._clock()
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def record_request(self) -> None:
        """Record a dispatch at the current time."""
        self._timestamps.append(self._clock())

    def used(self) -> int:
        """Number of requests recorded inside the trailing window."""
        self._prune()
        return len(self._timestamps)

    def remaining(self) -> int:
        return max(0, self.limit - self.used())

    @property
    def cooldown_remaining(self) -> int:
        return self._cooldown_remaining

    @property
    def in_cooldown(self) -> bool:
        return self._cooldown_remaining > 0

    def trigger_cooldown(self) -> None:
        if not self.in_cooldown:
            logger.warning(f"⏳ Quota exhausted, cooling down for {self.cooldown_seconds}s")
        self._cooldown_remaining = self.cooldown_seconds

    def tick(self) -> None:
        """Prune the window and count the cooldown down by one."""
        self._prune()
        if self._cooldown_remaining > 0:
            self._cooldown_remaining -= 1

    def status(self) -> Dict[str, Any]:
        used = self.used()
        return {
            "used": used,
            "remaining": max(0, self.limit - used),
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "cooldown_remaining": self._cooldown_remaining,
        }

    async def run_ticker(self, interval: float = TICK_INTERVAL_SECONDS) -> None:
        """Call tick() every `interval` seconds until cancelled."""
        try:
            while True:
                await asyncio.sleep(interval)
                self.tick()
        except asyncio.CancelledError:
            logger.debug("Rate governor ticker stopped")
            raise
