"""Per-user token bucket rate limiting."""

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate-limit check."""

    allowed: bool
    retry_after: float | None = None  # Seconds until the next request is allowed


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class RateLimiter:
    """Token bucket per user.

    Each user starts with ``max_requests`` tokens. Tokens refill continuously
    so that a full bucket is restored after ``window_seconds``. A passing
    check consumes one token; a failing check consumes nothing.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._refill_rate = max_requests / window_seconds  # tokens per second
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    def check(self, user_id: int | str) -> RateLimitDecision:
        """Check (and charge) one request for ``user_id``."""
        now = self._clock()
        key = str(user_id)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=float(self.max_requests), updated_at=now)
            self._buckets[key] = bucket

        elapsed = max(0.0, now - bucket.updated_at)
        bucket.tokens = min(float(self.max_requests), bucket.tokens + elapsed * self._refill_rate)
        bucket.updated_at = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return RateLimitDecision(allowed=True)

        retry_after = (1.0 - bucket.tokens) / self._refill_rate
        return RateLimitDecision(allowed=False, retry_after=retry_after)

    def reset(self, user_id: int | str) -> None:
        """Forget a user's history, restoring a full bucket."""
        self._buckets.pop(str(user_id), None)
