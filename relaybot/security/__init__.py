"""Access control: allow-list authorization and rate limiting."""

from relaybot.security.auth import is_authorized
from relaybot.security.rate_limiter import RateLimitDecision, RateLimiter

__all__ = ["is_authorized", "RateLimitDecision", "RateLimiter"]
