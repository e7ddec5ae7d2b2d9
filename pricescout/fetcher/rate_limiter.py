"""Rate limiter implementation using a fixed-window counter in the shared cache."""

import logging
from typing import Optional

from pricescout.errors import RateLimitExceeded
from pricescout.storage.cache import KeyValueCache

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter per source.

    Every ``acquire`` increments ``ratelimit:<source>`` in the cache and, in
    the same atomic step, gives the key the window expiry if it has none.
    Because the counter lives in the cache, all workers (and processes
    sharing the cache) see the same count.

    The allowed count per window is ``max_requests`` when configured,
    otherwise ``window / interval`` for the source's configured interval.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        cache: KeyValueCache,
        window_seconds: int = 60,
        max_requests: Optional[int] = None,
    ):
        """Initialize rate limiter.

        Args:
            cache: Shared cache holding the counters
            window_seconds: Length of the counting window
            max_requests: Fixed allowance per window (overrides interval math)
        """
        self.cache = cache
        self.window_seconds = window_seconds
        self.max_requests = max_requests

    def allowed_requests(self, interval_ms: int) -> int:
        """Number of requests permitted per window for a source interval."""
        if self.max_requests is not None:
            return self.max_requests
        return max(1, (self.window_seconds * 1000) // max(1, interval_ms))

    def _key(self, source_id: str) -> str:
        return f"{self.KEY_PREFIX}{source_id}"

    async def acquire(self, source_id: str, interval_ms: int = 1000) -> int:
        """Record one request for a source or reject it.

        Args:
            source_id: Source identifier used as the counter key
            interval_ms: The source's minimum inter-request interval

        Returns:
            The request's position within the current window

        Raises:
            RateLimitExceeded: If the window's allowance is already used up
        """
        limit = self.allowed_requests(interval_ms)
        key = self._key(source_id)

        try:
            count = await self.cache.increment(key, ttl_seconds=self.window_seconds)
        except Exception as e:
            # An unreachable cache degrades to unthrottled operation
            logger.warning(f"Rate limiter cache unavailable for {source_id}: {e}")
            return 0

        if count > limit:
            raise RateLimitExceeded(source_id, limit, retry_after=float(self.window_seconds))
        return count

    async def requests_in_window(self, source_id: str) -> int:
        """Get the number of requests counted in the current window."""
        raw = await self.cache.get(self._key(source_id))
        return int(raw) if raw else 0
