"""Request pacing and 429 cooldown state for a single-request-at-a-time provider."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from constants import DEFAULT_BASE_COOLDOWN, DEFAULT_MAX_COOLDOWN, DEFAULT_MIN_REQUEST_INTERVAL

logger = logging.getLogger(__name__)


class QuoteThrottle:
    """Owns the request slot, minimum spacing and exponential cooldown.

    Hold ``slot`` for the whole request (including its retries); call
    ``wait_turn`` before every attempt inside it.
    """

    def __init__(
        self,
        *,
        min_interval: float = DEFAULT_MIN_REQUEST_INTERVAL,
        base_cooldown: float = DEFAULT_BASE_COOLDOWN,
        max_cooldown: float = DEFAULT_MAX_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self.base_cooldown = base_cooldown
        self.max_cooldown = max_cooldown
        self._clock = clock
        self._sleep = sleep
        self.slot = asyncio.Lock()
        self._last_request_ts: float | None = None
        self._cooldown_until = 0.0
        self.consecutive_errors = 0
        self.current_cooldown = 0.0

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    async def wait_turn(self) -> None:
        """Sleeps out any remaining cooldown, then honours the minimum spacing."""
        remaining = self._cooldown_until - self._clock()
        if remaining > 0:
            logger.info("Price API cooldown active, waiting %.2fs", remaining)
            await self._sleep(remaining)

        if self._last_request_ts is not None:
            elapsed = self._clock() - self._last_request_ts
            if elapsed < self.min_interval:
                await self._sleep(self.min_interval - elapsed)
        self._last_request_ts = self._clock()

    def register_rate_limit(self) -> float:
        self.consecutive_errors += 1
        cooldown = min(self.base_cooldown * (2 ** self.consecutive_errors), self.max_cooldown)
        self.current_cooldown = cooldown
        self._cooldown_until = self._clock() + cooldown
        logger.warning(
            "Price API rate limited (%d consecutive), cooling down for %.1fs",
            self.consecutive_errors,
            cooldown,
        )
        return cooldown

    def register_success(self) -> None:
        self.consecutive_errors = 0
        self.current_cooldown = 0.0
        self._cooldown_until = 0.0

    def get_stats(self) -> dict:
        return {
            'consecutive_errors': self.consecutive_errors,
            'current_cooldown': self.current_cooldown,
            'in_cooldown': self.in_cooldown,
            'min_interval': self.min_interval,
        }
