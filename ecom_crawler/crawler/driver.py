"""Page Driver capability and its Playwright implementation.

The site crawler only talks to the PageDriver protocol, so it can be run
against a real browser (PlaywrightPageDriver) or a scripted fake in tests.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol

from playwright.async_api import Browser, Page, Playwright, async_playwright

from ecom_crawler.models import SiteConfig

logger = logging.getLogger(__name__)

_VIEWPORT = {"width": 1280, "height": 800}


class PageDriver(Protocol):
    """Browser-style navigation, rendering wait and interaction primitives."""

    async def navigate(self, url: str) -> None: ...

    async def wait_visible(self, selector: str, timeout: float) -> None: ...

    async def outer_html(self, selector: str) -> str: ...

    async def find_nodes(self, selector: str) -> list[Any]: ...

    async def attribute(self, selector: str, name: str) -> Optional[str]: ...

    async def click(self, selector: str) -> None: ...

    async def scroll_into_view(self, selector: Optional[str] = None) -> None: ...

    async def sleep(self, seconds: float) -> None: ...


class PlaywrightPageDriver:
    """PageDriver backed by a Playwright page."""

    def __init__(self, page: Page, default_timeout_ms: float):
        self.page = page
        self.page.set_default_timeout(default_timeout_ms)

    async def navigate(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded")

    async def wait_visible(self, selector: str, timeout: float) -> None:
        await self.page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)

    async def outer_html(self, selector: str) -> str:
        return await self.page.eval_on_selector(selector, "el => el.outerHTML")

    async def find_nodes(self, selector: str) -> list[Any]:
        return await self.page.query_selector_all(selector)

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        handle = await self.page.query_selector(selector)
        if handle is None:
            return None
        return await handle.get_attribute(name)

    async def click(self, selector: str) -> None:
        await self.page.locator(selector).first.click()

    async def scroll_into_view(self, selector: Optional[str] = None) -> None:
        if selector is None:
            await self.page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        else:
            await self.page.locator(selector).first.scroll_into_view_if_needed()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class PlaywrightDriverFactory:
    """Owns the Playwright runtime and hands out one browser context per site.

    Browsers are shared between sites and launched lazily, one per headless
    mode. Use as an async context manager; ``open(site)`` yields a driver
    whose browser context is closed when the block exits.
    """

    def __init__(self) -> None:
        self._playwright: Optional[Playwright] = None
        self._browsers: dict[bool, Browser] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "PlaywrightDriverFactory":
        self._playwright = await async_playwright().start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        for browser in self._browsers.values():
            try:
                await browser.close()
            except Exception as e:
                logger.warning("Failed to close browser: %s", e)
        self._browsers.clear()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _browser(self, headless: bool) -> Browser:
        async with self._lock:
            if headless not in self._browsers:
                if self._playwright is None:
                    raise RuntimeError("PlaywrightDriverFactory used outside 'async with'")
                self._browsers[headless] = await self._playwright.chromium.launch(
                    headless=headless,
                    args=["--disable-gpu"],
                )
                logger.info("Browser launched (headless=%s)", headless)
            return self._browsers[headless]

    @asynccontextmanager
    async def open(self, site: SiteConfig) -> AsyncIterator[PageDriver]:
        browser = await self._browser(site.headless)
        context = await browser.new_context(user_agent=site.user_agent or None, viewport=_VIEWPORT)
        try:
            page = await context.new_page()
            yield PlaywrightPageDriver(page, default_timeout_ms=site.timeout_seconds * 1000)
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.debug("[%s] Failed to close browser context: %s", site.name, e)
