"""
Tests for the CloudWatch token bucket
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from costguard.shared.adapters.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_rate_limiter_acquire():
    limiter = RateLimiter(rate_per_second=10)
    await limiter.acquire()
    assert limiter.tokens < 10


@pytest.mark.asyncio
async def test_rate_limiter_waits_when_empty():
    limiter = RateLimiter(rate_per_second=1)
    limiter.tokens = 0.1
    limiter.last_update = asyncio.get_running_loop().time()

    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await limiter.acquire()
        mock_sleep.assert_called_once()
    assert limiter.tokens == 0


def test_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        RateLimiter(rate_per_second=0)
