"""Exception types raised inside the aggregation engine."""

from typing import Optional


class PriceScoutError(Exception):
    """Base class for engine errors."""


class ConfigurationError(PriceScoutError, ValueError):
    """A source profile cannot be used to build or parse a search page."""


class BlockedPageError(PriceScoutError):
    """The source served an anti-automation or access-denied page."""

    def __init__(self, url: str, title: str):
        super().__init__(f"Blocked page at {url}: {title!r}")
        self.url = url
        self.title = title


class NavigationError(PriceScoutError):
    """Navigation failed and will not be retried further."""


class BrowserUnavailableError(PriceScoutError, RuntimeError):
    """Browser automation could not be started."""


class RateLimitExceeded(PriceScoutError):
    """Too many requests were issued for one source within the window."""

    def __init__(self, source_id: str, limit: int, retry_after: Optional[float] = None):
        super().__init__(
            f"Rate limit exceeded for source {source_id}: more than {limit} requests in window"
        )
        self.source_id = source_id
        self.limit = limit
        self.retry_after = retry_after


class SourceStoreError(PriceScoutError):
    """The source configuration store could not be read."""
