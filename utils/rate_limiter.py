"""
GitHub Rate Limit Tracking for Repo Monitor.

Provides:
- RateLimitState: remaining-calls budget parsed from GitHub response headers
- AsyncRateLimiter: token-bucket pacing of outgoing requests (asyncio.Lock)

Usage:
    from utils.rate_limiter import AsyncRateLimiter, RateLimitState

    state = RateLimitState()
    state.update_from_headers(response.headers)
    if state.has_enough(required_calls=2):
        ...

GitHub limits:
    - Unauthenticated: 60/hour
    - Token: 5000/hour
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

GITHUB_HOURLY_LIMIT = 5000


@dataclass
class RateLimitStatus:
    """Point-in-time view of the remaining GitHub API budget."""
    remaining: Optional[int]
    reset: Optional[datetime]

    def minutes_until_reset(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.reset is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0, round((self.reset - now).total_seconds() / 60))

    def to_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "reset": self.reset.isoformat() if self.reset else None,
        }


class RateLimitState:
    """
    Remaining-calls counter fed by `x-ratelimit-*` response headers.

    Remaining is None until the first response is seen, which counts as
    "enough budget".
    """

    def __init__(self):
        self.remaining: Optional[int] = None
        self.reset: Optional[datetime] = None

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        remaining = headers.get("x-ratelimit-remaining")
        reset = headers.get("x-ratelimit-reset")

        if remaining is not None:
            try:
                self.remaining = int(remaining)
            except ValueError:
                logger.debug(f"Ignoring bad x-ratelimit-remaining header: {remaining!r}")

        if reset is not None:
            try:
                reset_epoch = int(reset)
                self.reset = (
                    datetime.fromtimestamp(reset_epoch, tz=timezone.utc)
                    if reset_epoch > 0 else None
                )
            except ValueError:
                logger.debug(f"Ignoring bad x-ratelimit-reset header: {reset!r}")

    def has_enough(self, required_calls: int = 1, now: Optional[datetime] = None) -> bool:
        """
        True when at least `required_calls` remain.

        Once the reset time has passed the budget is refilled upstream, so
        the stale count is dropped and the next response re-seeds it.
        """
        if self.remaining is None:
            return True

        now = now or datetime.now(timezone.utc)
        if self.reset is not None and now >= self.reset:
            logger.info(f"GitHub rate limit window reset at {self.reset.isoformat()}, budget refilled")
            self.remaining = None
            self.reset = None
            return True

        return self.remaining >= required_calls

    def status(self) -> RateLimitStatus:
        return RateLimitStatus(remaining=self.remaining, reset=self.reset)


class AsyncRateLimiter:
    """
    Async rate limiter using token bucket algorithm.

    Tokens are refilled over time based on the configured rate.
    Callers wait if no tokens are available.

    Args:
        rate: Maximum requests per period (None = unlimited)
        period: Time period in seconds
    """

    def __init__(self, rate: Optional[int] = None, period: int = 1):
        self.rate = rate
        self.period = period
        self._lock = asyncio.Lock()
        self._tokens: float = float(rate) if rate else float("inf")
        self._last_refill: Optional[float] = None

    async def acquire(self) -> None:
        """
        Acquire permission to make a request.

        Blocks until a token is available. For unlimited limiters
        (rate=None), returns immediately.
        """
        if self.rate is None:
            return

        async with self._lock:
            now = time.monotonic()

            if self._last_refill is None:
                self._last_refill = now
                self._tokens = float(self.rate)

            elapsed = now - self._last_refill
            refill_amount = elapsed * (self.rate / self.period)
            self._tokens = min(self.rate, self._tokens + refill_amount)
            self._last_refill = now

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * (self.period / self.rate)
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 1

            self._tokens -= 1


def github_rate_limiter() -> AsyncRateLimiter:
    """Limiter sized for an authenticated GitHub token."""
    return AsyncRateLimiter(rate=GITHUB_HOURLY_LIMIT, period=3600)
