"""Regression tests for Playwright page loading and browser reuse, with stub driver objects."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import dmv_monitor.browser as browser_module
from dmv_monitor.browser import BrowserFetcher, BrowserPage
from dmv_monitor.config import BrowserConfig
from dmv_monitor.errors import FetchError


URL = "https://hendersondmv.waitwell.us/book/994"
CONFIG = BrowserConfig(navigation_timeout=30, settle_delay=0)


class _ResponseStub:
    def __init__(self, status: int):
        self.status = status


class _PageStub:
    """Playwright page stub: ``goto`` returns a response or raises the configured error."""

    def __init__(self, *, status: int = 200, goto_error: Optional[Exception] = None, content_error: Optional[Exception] = None):
        self.status = status
        self.goto_error = goto_error
        self.content_error = content_error
        self.goto_calls: list[tuple[str, dict]] = []
        self.closed = False

    async def goto(self, url: str, **kwargs):
        self.goto_calls.append((url, kwargs))
        if self.goto_error:
            raise self.goto_error
        return _ResponseStub(self.status)

    async def content(self) -> str:
        if self.content_error:
            raise self.content_error
        return "<html><body>calendar</body></html>"

    async def close(self) -> None:
        self.closed = True


def test_load_returns_rendered_html() -> None:
    page = _PageStub()

    html = asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]

    assert html == "<html><body>calendar</body></html>"
    url, kwargs = page.goto_calls[0]
    assert url == URL
    assert kwargs == {"wait_until": "networkidle", "timeout": 30000}


def test_load_maps_navigation_timeout() -> None:
    page = _PageStub(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded."))

    with pytest.raises(FetchError, match="Timed out after 30s") as exc_info:
        asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]

    assert exc_info.value.url == URL


def test_load_maps_http_error_status() -> None:
    page = _PageStub(status=500)

    with pytest.raises(FetchError, match="HTTP 500"):
        asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]


def test_load_accepts_redirect_status() -> None:
    page = _PageStub(status=304)

    assert asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]


def test_load_maps_driver_errors() -> None:
    page = _PageStub(goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

    with pytest.raises(FetchError, match="ERR_NAME_NOT_RESOLVED"):
        asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]


def test_load_maps_content_errors() -> None:
    page = _PageStub(content_error=PlaywrightError("Target page, context or browser has been closed"))

    with pytest.raises(FetchError, match="page content"):
        asyncio.run(BrowserPage(page, CONFIG).load(URL))  # type: ignore[arg-type]


class _ContextStub:
    def __init__(self):
        self.pages: list[_PageStub] = []
        self.closed = False

    async def new_page(self) -> _PageStub:
        page = _PageStub()
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class _BrowserStub:
    def __init__(self):
        self.connected = True
        self.contexts: list[_ContextStub] = []
        self.closed = False

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **kwargs) -> _ContextStub:
        context = _ContextStub()
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class _ChromiumStub:
    def __init__(self):
        self.launched: list[_BrowserStub] = []

    async def launch(self, **kwargs) -> _BrowserStub:
        browser = _BrowserStub()
        self.launched.append(browser)
        return browser


class _PlaywrightStub:
    def __init__(self, chromium: _ChromiumStub):
        self.chromium = chromium
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def chromium(monkeypatch: pytest.MonkeyPatch) -> _ChromiumStub:
    chromium = _ChromiumStub()

    class _Starter:
        async def start(self) -> _PlaywrightStub:
            return _PlaywrightStub(chromium)

    monkeypatch.setattr(browser_module, "async_playwright", lambda: _Starter())
    return chromium


def test_browser_is_reused_between_cycles(chromium: _ChromiumStub) -> None:
    fetcher = BrowserFetcher(CONFIG)

    async def scenario() -> None:
        first = await fetcher.ensure_browser()
        second = await fetcher.ensure_browser()
        assert first is second
        await fetcher.close()

    asyncio.run(scenario())

    assert len(chromium.launched) == 1
    assert chromium.launched[0].closed


def test_disconnected_browser_is_relaunched(chromium: _ChromiumStub) -> None:
    fetcher = BrowserFetcher(CONFIG)

    async def scenario() -> None:
        first = await fetcher.ensure_browser()
        chromium.launched[0].connected = False

        second = await fetcher.ensure_browser()

        assert second is not first
        assert len(chromium.launched) == 2
        assert fetcher.is_started
        await fetcher.close()

    asyncio.run(scenario())


def test_open_page_closes_page_after_error(chromium: _ChromiumStub) -> None:
    fetcher = BrowserFetcher(CONFIG)

    async def scenario() -> None:
        with pytest.raises(RuntimeError):
            async with fetcher.open_page():
                raise RuntimeError("extraction blew up")
        await fetcher.close()

    asyncio.run(scenario())

    context = chromium.launched[0].contexts[0]
    assert [page.closed for page in context.pages] == [True]
