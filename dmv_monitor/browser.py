"""
Playwright-based page fetching for booking pages.

Browser-модуль на Playwright: один браузер на процесс, переиспользуется
между локациями и циклами; страница открывается на один цикл проверки.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import BrowserConfig
from .errors import FetchError

logger = logging.getLogger(__name__)


class PageHandle(Protocol):
    async def load(self, url: str) -> str:
        """Navigate to ``url`` and return the rendered HTML."""
        ...


class PageFetcher(Protocol):
    def open_page(self) -> AsyncContextManager[PageHandle]: ...

    async def close(self) -> None: ...


class BrowserPage:
    """Single Playwright page used for one check cycle."""

    def __init__(self, page: Page, config: BrowserConfig) -> None:
        self._page = page
        self._config = config

    async def load(self, url: str) -> str:
        timeout_ms = self._config.navigation_timeout * 1000
        try:
            response = await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise FetchError(
                f"Timed out after {self._config.navigation_timeout:.0f}s loading {url}", url=url
            ) from e
        except PlaywrightError as e:
            raise FetchError(f"Navigation to {url} failed: {e}", url=url) from e

        if response is not None and response.status >= 400:
            raise FetchError(f"{url} returned HTTP {response.status}", url=url)

        # Даём клиентскому JS дорисовать календарь
        if self._config.settle_delay:
            await asyncio.sleep(self._config.settle_delay)

        try:
            return await self._page.content()
        except PlaywrightError as e:
            raise FetchError(f"Failed to read page content of {url}: {e}", url=url) from e


class BrowserFetcher:
    """
    Lazily started Playwright browser shared by all check cycles.

    Закрывается только явно через close() при завершении процесса.
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._cdp_mode: bool = False  # True = подключены к уже запущенному Chrome
        self._lock = asyncio.Lock()

    @property
    def is_started(self) -> bool:
        return self._browser is not None

    async def ensure_browser(self) -> BrowserContext:
        """Start the browser on first use; failures propagate to the caller."""
        async with self._lock:
            if self._context is not None:
                if self._browser is not None and self._browser.is_connected():
                    return self._context
                logger.warning("Browser disconnected, starting a new one")
                await self._shutdown()

            self._playwright = await async_playwright().start()
            try:
                if self._config.cdp_url:
                    logger.info("Connecting to Chrome at %s", self._config.cdp_url)
                    self._browser = await self._playwright.chromium.connect_over_cdp(self._config.cdp_url)
                    self._cdp_mode = True
                    contexts = self._browser.contexts
                    self._context = contexts[0] if contexts else await self._browser.new_context()
                else:
                    logger.info(
                        "Starting Playwright browser (headless=%s, channel=%s)",
                        self._config.headless,
                        self._config.channel or "chromium",
                    )
                    self._browser = await self._playwright.chromium.launch(
                        channel=self._config.channel,
                        headless=self._config.headless,
                        args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
                    )
                    self._cdp_mode = False
                    self._context = await self._browser.new_context(
                        viewport={"width": 1280, "height": 720},
                        user_agent=self._config.user_agent,
                    )
            except Exception:
                await self._shutdown()
                raise
            return self._context

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[BrowserPage]:
        """
        Page for one check cycle, closed on exit even after errors.

        Пример:
            async with fetcher.open_page() as page:
                html = await page.load(url)
        """
        context = await self.ensure_browser()
        page = await context.new_page()
        try:
            yield BrowserPage(page, self._config)
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning("Failed to close page: %s", e)

    async def close(self) -> None:
        """Close browser and Playwright. В режиме CDP только отключаемся, окно Chrome не закрываем."""
        async with self._lock:
            if self._playwright is None:
                return
            logger.info("Closing Playwright browser" + (" (disconnect)" if self._cdp_mode else ""))
            await self._shutdown()

    async def _shutdown(self) -> None:
        try:
            if self._context is not None and not self._cdp_mode:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        except PlaywrightError as e:
            logger.warning("Error while closing browser: %s", e)
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._context = None
            self._cdp_mode = False


__all__ = ["BrowserFetcher", "BrowserPage", "PageFetcher", "PageHandle"]
