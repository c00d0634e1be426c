"""
Retry utilities for calls to external LLM providers.

Only transient failures are retried: network/timeout errors, HTTP 429 and
5xx.  Auth failures, bad requests and missing configuration fail at once.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """An external provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderNotConfiguredError(ProviderError):
    """The provider has no credentials configured; retrying cannot help."""


_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_FATAL_STATUS = {400, 401, 403, 404, 422}


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0


LLM_RETRY = RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=15.0)


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, ProviderError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Transient network conditions, rate limits and server errors."""
    if isinstance(error, ProviderNotConfiguredError):
        return False
    if isinstance(error, httpx.TransportError):   # connect/read errors, timeouts
        return True

    status = _status_of(error)
    if status is not None:
        if status in _FATAL_STATUS:
            return False
        return status in _RETRYABLE_STATUS

    message = str(error).lower()
    if any(k in message for k in ("invalid", "api key", "unauthorized", "forbidden", "invalid_grant")):
        return False
    return any(k in message for k in ("rate limit", "timeout", "timed out", "econnreset", "network"))


def compute_delay(attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random) -> float:
    """Exponential delay for *attempt* (1-based), capped, plus up to 25% jitter."""
    base = config.initial_delay * (config.backoff_factor ** (attempt - 1))
    capped = min(base, config.max_delay)
    return capped + capped * rng() * 0.25


def with_retry(
    fn: Callable[[], T],
    config: RetryConfig = RetryConfig(),
    retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn*, retrying transient failures with exponential backoff.

    The last error is re-raised once attempts are exhausted or when the
    error is not retryable.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as exc:
            if attempt >= config.max_attempts or not retryable(exc):
                raise
            delay = compute_delay(attempt, config)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt, config.max_attempts, exc, delay,
            )
            sleep(delay)
            attempt += 1
