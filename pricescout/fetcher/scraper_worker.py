"""Scraper worker: one search-result page per source per query."""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Optional, Tuple
from urllib.parse import quote_plus

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricescout.errors import (
    BlockedPageError,
    BrowserUnavailableError,
    ConfigurationError,
    NavigationError,
    RateLimitExceeded,
)
from pricescout.fetcher.browser import BrowserFingerprint, BrowserSession
from pricescout.fetcher.rate_limiter import RateLimiter
from pricescout.fetcher.retry_handler import RetryHandler, RetryPolicy
from pricescout.models.config import QUERY_PLACEHOLDER, EngineConfig, SourceProfile
from pricescout.models.data_models import FailureKind, ScrapeResult, SessionState, WorkerState
from pricescout.monitoring.logger import StructuredLogger
from pricescout.processor.extractor import ExtractionEngine
from pricescout.processor.synthetic import synthetic_listings


RETRYABLE_NAVIGATION_ERRORS = (
    BlockedPageError,
    PlaywrightTimeoutError,
    PlaywrightError,
    asyncio.TimeoutError,
)

BLOCKED_TITLE_MARKERS = ("blocked", "forbidden", "access denied")
BLOCKED_STATUS_CODES = frozenset({401, 403, 429})

SCROLL_TO_BOTTOM = "window.scrollTo(0, document.body.scrollHeight)"


def build_search_url(profile: SourceProfile, query: str) -> str:
    """
    Substitute the URL-encoded query into the profile's search template.

    Raises:
        ConfigurationError: If the profile has no usable search endpoint
    """
    if profile.configuration is None:
        raise ConfigurationError(
            profile.configuration_error or f"Source {profile.id} has no configuration"
        )
    template = profile.configuration.search_url_template
    if QUERY_PLACEHOLDER not in template:
        raise ConfigurationError(f"Source {profile.id} search URL lacks {QUERY_PLACEHOLDER}")
    return template.replace(QUERY_PLACEHOLDER, quote_plus(query))


def is_blocked_title(title: Optional[str]) -> bool:
    """True when a page title looks like an anti-automation or denial page."""
    if not title:
        return False
    lowered = title.lower()
    return any(marker in lowered for marker in BLOCKED_TITLE_MARKERS)


class ScraperWorker:
    """
    Scrapes a source's search page for a query.

    Each ``scrape`` call walks Idle -> Navigating -> WaitingForContent ->
    Extracting -> Success/Failed. Navigation is retried with exponential
    backoff; exhausted retries produce a failed result, never an exception.
    Outside production, and only when enabled, failed scrapes are answered
    with synthetic listings instead.

    The worker owns its browser session; ``close`` releases it.
    """

    def __init__(
        self,
        config: EngineConfig,
        session: Optional[BrowserSession] = None,
        extractor: Optional[ExtractionEngine] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[StructuredLogger] = None,
        rng: Optional[random.Random] = None,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the worker.

        Args:
            config: Engine configuration (timeouts, retry policy, fallback flag)
            session: Browser session; a new one is created when omitted
            extractor: Extraction engine for rendered markup
            rate_limiter: Optional shared per-source rate limiter
            logger: Structured logger for telemetry
            rng: Random source for fingerprints and backoff jitter
            sleeper: Async sleep used for backoff and settle delays
        """
        self.config = config
        self.rng = rng or random.Random()
        self.session = session or BrowserSession(headless=config.headless, rng=self.rng)
        self.extractor = extractor or ExtractionEngine(
            max_listings=config.max_listings_per_page,
            default_currency=config.default_currency,
        )
        self.rate_limiter = rate_limiter
        self.logger = logger or StructuredLogger(level=config.log_level)
        self._sleep = sleeper
        self._state = WorkerState.IDLE

    @property
    def state(self) -> WorkerState:
        return self._state

    async def scrape(self, profile: SourceProfile, query: str) -> ScrapeResult:
        """
        Scrape one source for a query.

        Args:
            profile: Source to scrape
            query: Raw search query

        Returns:
            ScrapeResult with listings on success, or the failure details
            (and synthetic listings when the fallback is enabled)
        """
        start = time.perf_counter()
        self._state = WorkerState.IDLE
        self.logger.scrape_start(source=profile.id, query=query)

        try:
            search_url = build_search_url(profile, query)
        except ConfigurationError as e:
            return self._failed(profile, query, FailureKind.CONFIGURATION, str(e), start, attempts=0)

        if self.rate_limiter is not None:
            try:
                await self.rate_limiter.acquire(profile.id, profile.configuration.rate_limit_ms)
            except RateLimitExceeded as e:
                self.logger.rate_limited(source=profile.id, limit=e.limit)
                return self._failed(profile, query, FailureKind.RATE_LIMITED, str(e), start, attempts=0)

        handler = RetryHandler(
            RetryPolicy(
                max_attempts=self.config.max_attempts,
                base_delay=self.config.retry_base_delay,
                jitter_ms=self.config.retry_jitter_ms,
                rng=self.rng,
            ),
            retry_on=RETRYABLE_NAVIGATION_ERRORS,
            sleeper=self._sleep,
            on_retry=lambda attempt, delay, error: self.logger.navigation_retry(
                source=profile.id, attempt=attempt, delay=round(delay, 3), error=str(error)
            ),
        )

        try:
            markup, page_url = await handler.execute(self._load_page, profile, search_url)
        except BrowserUnavailableError as e:
            return self._failed(
                profile, query, FailureKind.BROWSER_UNAVAILABLE, str(e), start, handler.attempts_made
            )
        except BlockedPageError as e:
            return self._failed(profile, query, FailureKind.BLOCKED, str(e), start, handler.attempts_made)
        except NavigationError as e:
            return self._failed(profile, query, FailureKind.NAVIGATION, str(e), start, handler.attempts_made)
        except RETRYABLE_NAVIGATION_ERRORS as e:
            return self._failed(
                profile, query, FailureKind.NAVIGATION, str(e) or type(e).__name__, start, handler.attempts_made
            )
        except Exception as e:
            return self._failed(
                profile, query, FailureKind.UNEXPECTED, f"{type(e).__name__}: {e}", start, handler.attempts_made
            )

        self._state = WorkerState.EXTRACTING
        loop = asyncio.get_running_loop()
        listings = await loop.run_in_executor(None, self.extractor.extract, markup, profile, page_url)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._state = WorkerState.SUCCESS
        self.logger.scrape_success(source=profile.id, listings=len(listings), elapsed_ms=round(elapsed_ms, 2))
        return ScrapeResult(
            source_id=profile.id,
            success=True,
            listings=tuple(listings),
            response_time_ms=elapsed_ms,
            attempts=handler.attempts_made,
        )

    async def _load_page(self, profile: SourceProfile, search_url: str) -> Tuple[str, str]:
        """One navigation attempt in a fresh context; returns (markup, final url)."""
        await self._ensure_session()
        configuration = profile.configuration

        self._state = WorkerState.NAVIGATING
        fingerprint = BrowserFingerprint.random(self.rng)
        async with self.session.page(fingerprint, cookie_url=configuration.base_url) as page:
            response = await page.goto(
                search_url,
                wait_until="domcontentloaded",
                timeout=self.config.navigation_timeout * 1000,
            )
            title = await page.title()
            if is_blocked_title(title):
                raise BlockedPageError(search_url, title)
            if response is not None and response.status in BLOCKED_STATUS_CODES:
                raise BlockedPageError(search_url, title or f"HTTP {response.status}")
            if response is not None and response.status >= 400:
                # Error pages hold no listings and are not retried
                raise NavigationError(f"HTTP {response.status} from {search_url}")

            self._state = WorkerState.WAITING_FOR_CONTENT
            await self._wait_for_listings(page, profile)
            return await page.content(), page.url or search_url

    async def _wait_for_listings(self, page: Page, profile: SourceProfile) -> None:
        """Wait for listings, scroll once for lazy content, then settle.

        A selector timeout is tolerated; whatever markup rendered is used.
        """
        selector = profile.configuration.selectors.wait_selector
        try:
            await page.wait_for_selector(selector, timeout=self.config.selector_timeout * 1000)
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            self.logger.selector_timeout(source=profile.id, selector=selector)

        await page.evaluate(SCROLL_TO_BOTTOM)
        if self.config.settle_delay > 0:
            await self._sleep(self.config.settle_delay)

    async def _ensure_session(self) -> None:
        if self.session.state == SessionState.UNINITIALIZED:
            await self.session.start()
            self.logger.browser_started(headless=self.session.headless)

    def _failed(
        self,
        profile: SourceProfile,
        query: str,
        kind: FailureKind,
        error: str,
        start: float,
        attempts: int
    ) -> ScrapeResult:
        """Build a failed result, substituting synthetic listings when allowed."""
        self._state = WorkerState.FAILED
        elapsed_ms = (time.perf_counter() - start) * 1000
        self.logger.scrape_error(source=profile.id, kind=kind.value, error=error, attempts=attempts)

        result = ScrapeResult(
            source_id=profile.id,
            success=False,
            error=error,
            failure_kind=kind,
            response_time_ms=elapsed_ms,
            attempts=attempts,
        )

        # A broken profile is an operator problem; never paper over it.
        if kind == FailureKind.CONFIGURATION or not self.config.synthetic_fallback_enabled:
            return result

        currency = (
            profile.configuration.currency if profile.configuration is not None else None
        ) or self.config.default_currency
        listings = synthetic_listings(profile.id, query, currency=currency)
        self.logger.synthetic_fallback(source=profile.id, listings=len(listings), reason=error)
        result.listings = tuple(listings)
        result.synthetic = True
        return result

    async def validate_source(self, profile: SourceProfile) -> bool:
        """
        Check that a source's base URL loads without being blocked.

        Returns:
            True when the page loads and is not a denial page; never raises
        """
        if profile.configuration is None:
            return False

        base_url = profile.configuration.base_url
        try:
            await self._ensure_session()
            async with self.session.page(cookie_url=base_url) as page:
                response = await page.goto(
                    base_url,
                    wait_until="domcontentloaded",
                    timeout=self.config.validation_timeout * 1000,
                )
                title = await page.title()
        except Exception as e:
            self.logger.scrape_error(source=profile.id, kind="validation", error=str(e), attempts=1)
            return False

        if response is not None and not response.ok:
            return False
        return not is_blocked_title(title)

    async def close(self) -> None:
        """Release the browser session."""
        was_running = self.session.state == SessionState.READY
        await self.session.close()
        if was_running:
            self.logger.browser_closed()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
