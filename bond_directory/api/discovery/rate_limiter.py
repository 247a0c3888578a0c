"""
Rate Limiter - Minimum-interval pacing with jitter for one upstream
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional
import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class RateLimitConfig(BaseModel):
    """Rate limit configuration"""
    request_delay_seconds: float = 1.2  # Minimum spacing between physical attempts
    jitter_max_seconds: float = 0.6     # Upper bound of the random extra spacing


class RateLimitState(BaseModel):
    """Current rate limit state"""
    requests_made: int = 0
    last_request_time: Optional[float] = None
    total_wait_seconds: float = 0.0


class RateLimiter:
    """
    Serializes physical attempts from one executor to one upstream.

    Before every attempt the caller awaits ``acquire()``, which sleeps until at
    least ``request_delay + uniform(0, jitter_max)`` has passed since the
    previous attempt. The jitter term keeps concurrent executors from retrying
    in lockstep.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.name = name
        self.config = config or RateLimitConfig()
        self.state = RateLimitState()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()

    def _spacing(self) -> float:
        jitter = self._rng.uniform(0, self.config.jitter_max_seconds) if self.config.jitter_max_seconds > 0 else 0.0
        return self.config.request_delay_seconds + jitter

    async def acquire(self) -> float:
        """
        Wait for this instance's next slot

        Returns:
            Seconds slept
        """
        async with self._lock:
            waited = 0.0
            spacing = self._spacing()

            if self.state.last_request_time is not None:
                elapsed = self._clock() - self.state.last_request_time
                if elapsed < spacing:
                    waited = spacing - elapsed
                    logger.debug("Rate limit wait",
                                limiter=self.name,
                                wait_seconds=round(waited, 3))
                    await self._sleep(waited)

            self.state.last_request_time = self._clock()
            self.state.requests_made += 1
            self.state.total_wait_seconds += waited
            return waited

    def get_status(self) -> Dict[str, Any]:
        """Get current limiter status"""
        return {
            "name": self.name,
            "config": self.config.model_dump(),
            "state": self.state.model_dump()
        }
