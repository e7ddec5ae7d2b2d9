"""Browser session wrapper with anti-detection countermeasures.

Uses Playwright's Chromium with randomized fingerprints, realistic headers,
a consent cookie, blocked non-essential resources and jittered requests.
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from pricescout.errors import BrowserUnavailableError
from pricescout.models.data_models import SessionState

logger = logging.getLogger(__name__)


USER_AGENT_POOL = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:109.0) Gecko/20100101 Firefox/121.0",
)

VIEWPORT_POOL = (
    {'width': 1920, 'height': 1080},
    {'width': 1536, 'height': 864},
    {'width': 1440, 'height': 900},
    {'width': 1366, 'height': 768},
    {'width': 1280, 'height': 800},
)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate, br',
    'Cache-Control': 'no-cache',
    'Pragma': 'no-cache',
    'DNT': '1',
    'Upgrade-Insecure-Requests': '1',
    'Sec-Fetch-Dest': 'document',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-User': '?1',
}

BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "stylesheet", "media"})

CONSENT_COOKIE = {'name': 'cookie_consent', 'value': 'accepted'}

STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""

LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-gpu',
]


@dataclass(frozen=True)
class BrowserFingerprint:
    """Per-page identity presented to the site."""
    user_agent: str
    viewport: Dict[str, int]
    headers: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))

    @classmethod
    def random(cls, rng: Optional[random.Random] = None) -> "BrowserFingerprint":
        """Pick a user agent and viewport from the fixed pools."""
        rng = rng or random.Random()
        return cls(
            user_agent=rng.choice(USER_AGENT_POOL),
            viewport=dict(rng.choice(VIEWPORT_POOL)),
        )


def consent_cookies(url: str) -> List[Dict[str, Any]]:
    """Consent cookie scoped to the URL's host."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return []
    return [{**CONSENT_COOKIE, 'url': f"{parsed.scheme}://{parsed.netloc}"}]


class BrowserSession:
    """
    One Chromium instance with an explicit lifecycle.

    States move Uninitialized -> Ready -> Closed. ``start`` is idempotent
    while Ready; ``close`` is idempotent and always releases every resource.
    A closed session cannot be restarted.
    """

    def __init__(
        self,
        headless: bool = True,
        rng: Optional[random.Random] = None,
        request_jitter_ms: tuple = (20, 150),
        launcher: Optional[Callable[[], Awaitable[Playwright]]] = None,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the session.

        Args:
            headless: Run browser in headless mode
            rng: Random source for fingerprints and jitter
            request_jitter_ms: (min, max) delay applied to each allowed request
            launcher: Starts Playwright (defaults to async_playwright().start)
            sleeper: Async sleep used for request jitter
        """
        self.headless = headless
        self.rng = rng or random.Random()
        self.request_jitter_ms = request_jitter_ms
        self._launcher = launcher or (lambda: async_playwright().start())
        self._sleep = sleeper
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._state = SessionState.UNINITIALIZED
        self._start_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    async def start(self) -> None:
        """Launch the browser if it is not running yet.

        Raises:
            BrowserUnavailableError: If Playwright or Chromium cannot start,
                or the session was already closed
        """
        async with self._start_lock:
            if self._state == SessionState.READY:
                return
            if self._state == SessionState.CLOSED:
                raise BrowserUnavailableError("Browser session already closed")

            try:
                self._playwright = await self._launcher()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=LAUNCH_ARGS,
                    handle_sigint=False,
                    handle_sigterm=False,
                    handle_sighup=False,
                )
            except Exception as e:
                logger.error(f"Failed to launch browser: {e}")
                await self._release()
                raise BrowserUnavailableError(f"Browser automation unavailable: {e}") from e

            self._state = SessionState.READY
            logger.info(f"Browser started (headless={self.headless})")

    @asynccontextmanager
    async def page(
        self,
        fingerprint: Optional[BrowserFingerprint] = None,
        cookie_url: Optional[str] = None
    ) -> AsyncIterator[Page]:
        """
        Open an isolated context and page with stealth settings applied.

        The context is closed when the block exits, whatever the outcome.

        Args:
            fingerprint: Identity to present; randomized when omitted
            cookie_url: URL whose host receives the consent cookie
        """
        await self.start()
        fingerprint = fingerprint or BrowserFingerprint.random(self.rng)

        context: BrowserContext = await self._browser.new_context(
            user_agent=fingerprint.user_agent,
            viewport=fingerprint.viewport,
            extra_http_headers=fingerprint.headers,
            locale='en-US',
            ignore_https_errors=True,
        )
        try:
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            if cookie_url:
                cookies = consent_cookies(cookie_url)
                if cookies:
                    await context.add_cookies(cookies)
            await context.route("**/*", self._handle_route)
            page = await context.new_page()
            yield page
        finally:
            try:
                await asyncio.wait_for(context.close(), timeout=5.0)
            except Exception as e:
                logger.warning(f"Error closing browser context: {e}")

    async def _handle_route(self, route: Route) -> None:
        """Abort non-essential resources and jitter the rest."""
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        low, high = self.request_jitter_ms
        if high > 0:
            await self._sleep(self.rng.uniform(low, high) / 1000.0)
        await route.continue_()

    async def _release(self) -> None:
        """Close browser and Playwright with timeouts so shutdown never hangs."""
        if self._browser is not None:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=5.0)
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=5.0)
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def close(self) -> None:
        """Release the browser; safe to call repeatedly."""
        if self._state == SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        await self._release()
        logger.info("Browser closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
