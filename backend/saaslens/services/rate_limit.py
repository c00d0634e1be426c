"""
Per-caller fixed-window rate limiting.

Routes receive the limiter through a FastAPI dependency so it can be swapped
for a shared-store implementation (or a test double) without touching them.
"""

import logging
import math
import threading
import time
from typing import Callable, NamedTuple, Protocol

from fastapi import Depends, HTTPException, Response, status

from ..security import get_user_id

logger = logging.getLogger(__name__)


class RateLimit(NamedTuple):
    max_requests: int
    window_seconds: float


RATE_LIMITS: dict[str, RateLimit] = {
    "negotiate": RateLimit(10, 60),
    "gmail_scan": RateLimit(5, 60),
    "upload": RateLimit(10, 60),
    "standard": RateLimit(60, 60),
}


class RateLimitResult(NamedTuple):
    allowed: bool
    remaining: int
    reset_in: float      # seconds until the window resets
    limit: int


class RateLimiter(Protocol):
    def check(self, identifier: str, limit_type: str) -> RateLimitResult: ...


class InMemoryRateLimiter:
    """Single-process limiter; counts live in this object only."""

    def __init__(
        self,
        limits: dict[str, RateLimit] = RATE_LIMITS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = limits
        self.clock = clock
        self._windows: dict[tuple[str, str], tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._sweep_every = min(rl.window_seconds for rl in limits.values())
        self._last_sweep = clock()

    def check(self, identifier: str, limit_type: str) -> RateLimitResult:
        limit = self.limits.get(limit_type, self.limits["standard"])
        now = self.clock()
        key = (limit_type, identifier)

        with self._lock:
            if now - self._last_sweep >= self._sweep_every:
                self._prune(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= limit.window_seconds:
                started, count = now, 0

            reset_in = max(0.0, limit.window_seconds - (now - started))
            if count >= limit.max_requests:
                self._windows[key] = (started, count)
                return RateLimitResult(False, 0, reset_in, limit.max_requests)

            count += 1
            self._windows[key] = (started, count)
            return RateLimitResult(True, limit.max_requests - count, reset_in, limit.max_requests)

    def _prune(self, now: float) -> None:
        """Drop windows that have fully elapsed. Caller holds the lock."""
        expired = [
            key for key, (started, _) in self._windows.items()
            if now - started >= self.limits.get(key[0], self.limits["standard"]).window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug("Pruned %d expired rate-limit windows", len(expired))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_in)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(max(1, math.ceil(result.reset_in)))
    return headers


_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _limiter


def rate_limited(limit_type: str):
    """Dependency factory: ``Depends(rate_limited("upload"))`` on a route."""

    def _check(
        response: Response,
        user_id: str = Depends(get_user_id),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        result = limiter.check(user_id, limit_type)
        headers = rate_limit_headers(result)
        if not result.allowed:
            logger.warning("Rate limit %s exceeded for user %s", limit_type, user_id)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later.",
                headers=headers,
            )
        response.headers.update(headers)

    return _check
