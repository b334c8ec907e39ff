"""
CloudWatch Rate Limiting

Token bucket shared by all metric tasks of a run so the per-resource fan-out
stays under the GetMetricStatistics request quota.
"""

import asyncio
import structlog

logger = structlog.get_logger()

DEFAULT_RATE_LIMIT = 5  # requests per second


class RateLimiter:
    """
    Token bucket rate limiter for AWS API calls.

    Bursts up to `rate_per_second` calls, then admits one call per 1/rate seconds.
    """

    def __init__(self, rate_per_second: float = DEFAULT_RATE_LIMIT):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.rate = rate_per_second
        self.tokens = rate_per_second
        try:
            loop = asyncio.get_running_loop()
            self.last_update = loop.time()
        except RuntimeError:
            self.last_update = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a token is available."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            elapsed = now - self.last_update

            # Refill tokens based on elapsed time
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug("rate_limit_waiting", wait_seconds=round(wait_time, 3))
                await asyncio.sleep(wait_time)
                self.tokens = 0
                self.last_update = asyncio.get_running_loop().time()
            else:
                self.tokens -= 1
