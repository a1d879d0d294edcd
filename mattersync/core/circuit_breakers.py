"""
Circuit Breakers and Retry Logic
Backs off when PracticePanther rate limits us instead of failing the step
"""
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import wraps
from typing import Optional

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)


class RateLimitedError(Exception):
    """HTTP 429 from an upstream API, with the server's Retry-After hint in seconds."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None when the header is missing or unreadable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


class wait_retry_after(wait_base):
    """Wait for the server's Retry-After when it sent one, else fall back."""

    def __init__(self, fallback: wait_base, max_wait: float):
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return min(exc.retry_after, self.max_wait)
        return self.fallback(retry_state)


# ============================================================================
# RATE LIMIT CIRCUIT BREAKER
# ============================================================================

def with_rate_limit_retry(max_attempts=4, min_wait=1, max_wait=60):
    """
    Retry decorator for async API calls that raise RateLimitedError on 429.

    Retries on:
    - Rate limit errors (429) only

    Strategy:
    - max_attempts total attempts
    - Honors Retry-After; exponential backoff when the header is absent
    - Logs before each retry
    - Re-raises the last RateLimitedError when attempts run out

    Usage:
        @with_rate_limit_retry(max_attempts=4)
        async def get_page():
            ...
    """
    def decorator(func):
        @retry(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(max_attempts),
            wait=wait_retry_after(
                wait_exponential(multiplier=2, min=min_wait, max=max_wait),
                max_wait=max_wait
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        return async_wrapper

    return decorator
