"""Browser-based fetching with rate limiting and retry policies."""

from .rate_limiter import RateLimiter
from .retry_handler import RetryHandler, RetryPolicy

__all__ = ["RateLimiter", "RetryHandler", "RetryPolicy"]
