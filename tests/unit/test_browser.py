"""Unit tests for the browser session lifecycle and stealth settings."""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from pricescout.errors import BrowserUnavailableError
from pricescout.fetcher.browser import (
    DEFAULT_HEADERS,
    STEALTH_INIT_SCRIPT,
    USER_AGENT_POOL,
    VIEWPORT_POOL,
    BrowserFingerprint,
    BrowserSession,
    consent_cookies,
)
from pricescout.models.data_models import SessionState


def make_playwright():
    """Mock Playwright object graph: playwright -> browser -> context -> page."""
    page = MagicMock(name="page")
    context = MagicMock(name="context")
    context.add_init_script = AsyncMock()
    context.add_cookies = AsyncMock()
    context.route = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock(name="playwright")
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    return playwright, browser, context, page


def make_route(resource_type):
    route = MagicMock()
    route.request.resource_type = resource_type
    route.abort = AsyncMock()
    route.continue_ = AsyncMock()
    return route


class TestFingerprint:

    def test_random_picks_from_pools(self):
        fingerprint = BrowserFingerprint.random(random.Random(5))

        assert fingerprint.user_agent in USER_AGENT_POOL
        assert fingerprint.viewport in VIEWPORT_POOL
        assert fingerprint.headers == DEFAULT_HEADERS

    def test_seeded_fingerprints_repeat(self):
        assert BrowserFingerprint.random(random.Random(9)) == BrowserFingerprint.random(random.Random(9))


def test_consent_cookie_scoped_to_host():
    cookies = consent_cookies("https://shop-a.example/search?q=x")

    assert cookies == [{'name': 'cookie_consent', 'value': 'accepted', 'url': 'https://shop-a.example'}]


def test_consent_cookie_requires_absolute_url():
    assert consent_cookies("/relative/path") == []


class TestBrowserSession:

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        playwright, _, _, _ = make_playwright()
        launcher = AsyncMock(return_value=playwright)
        session = BrowserSession(launcher=launcher)

        await session.start()
        await session.start()

        assert session.state == SessionState.READY
        launcher.assert_awaited_once()
        playwright.chromium.launch.assert_awaited_once()
        assert playwright.chromium.launch.call_args.kwargs['headless'] is True

    @pytest.mark.asyncio
    async def test_launch_failure_is_reported_and_released(self):
        playwright, _, _, _ = make_playwright()
        playwright.chromium.launch.side_effect = RuntimeError("Executable doesn't exist")
        session = BrowserSession(launcher=AsyncMock(return_value=playwright))

        with pytest.raises(BrowserUnavailableError, match="Executable"):
            await session.start()

        playwright.stop.assert_awaited_once()
        assert session.state == SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_final(self):
        playwright, browser, _, _ = make_playwright()
        session = BrowserSession(launcher=AsyncMock(return_value=playwright))
        await session.start()

        await session.close()
        await session.close()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert session.state == SessionState.CLOSED
        with pytest.raises(BrowserUnavailableError):
            await session.start()

    @pytest.mark.asyncio
    async def test_close_before_start(self):
        session = BrowserSession(launcher=AsyncMock())

        await session.close()

        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_page_applies_stealth_and_closes_context(self):
        playwright, browser, context, page = make_playwright()
        session = BrowserSession(launcher=AsyncMock(return_value=playwright), rng=random.Random(1))
        fingerprint = BrowserFingerprint(user_agent="UA/1.0", viewport={'width': 1280, 'height': 800})

        async with session.page(fingerprint, cookie_url="https://shop-a.example") as opened:
            assert opened is page

        kwargs = browser.new_context.call_args.kwargs
        assert kwargs['user_agent'] == "UA/1.0"
        assert kwargs['viewport'] == {'width': 1280, 'height': 800}
        assert kwargs['extra_http_headers'] == DEFAULT_HEADERS
        context.add_init_script.assert_awaited_once_with(STEALTH_INIT_SCRIPT)
        context.add_cookies.assert_awaited_once_with(consent_cookies("https://shop-a.example"))
        context.route.assert_awaited_once()
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_closed_when_block_raises(self):
        playwright, _, context, _ = make_playwright()
        session = BrowserSession(launcher=AsyncMock(return_value=playwright))

        with pytest.raises(ValueError):
            async with session.page():
                raise ValueError("extraction blew up")

        context.close.assert_awaited_once()
        context.add_cookies.assert_not_awaited()


class TestRouteHandling:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resource_type", ["image", "font", "stylesheet", "media"])
    async def test_non_essential_resources_aborted(self, resource_type, sleeper):
        session = BrowserSession(launcher=AsyncMock(), sleeper=sleeper)
        route = make_route(resource_type)

        await session._handle_route(route)

        route.abort.assert_awaited_once()
        route.continue_.assert_not_awaited()
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_documents_continue_after_jitter(self, sleeper):
        session = BrowserSession(launcher=AsyncMock(), sleeper=sleeper, request_jitter_ms=(20, 150))
        route = make_route("document")

        await session._handle_route(route)

        route.continue_.assert_awaited_once()
        assert len(sleeper.delays) == 1
        assert 0.02 <= sleeper.delays[0] <= 0.15

    @pytest.mark.asyncio
    async def test_zero_jitter_skips_sleep(self, sleeper):
        session = BrowserSession(launcher=AsyncMock(), sleeper=sleeper, request_jitter_ms=(0, 0))
        route = make_route("xhr")

        await session._handle_route(route)

        route.continue_.assert_awaited_once()
        assert sleeper.delays == []
