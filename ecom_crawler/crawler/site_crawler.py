"""Per-site crawl state machine.

Drives a PageDriver through the initial load, then an
extract / check-for-more / click / wait loop ("load more" listings) or an
extract / next-page loop (paginated listings). Each HTML snapshot goes
through the record extractor into a site-scoped accumulator; when the
machine reaches DONE every accumulated record is sent to the shared result
channel.

States:
    INIT -> LOADED -> EXTRACT -> CHECK_FOR_MORE -> CLICK -> WAIT -> EXTRACT ...
                              -> NEXT_PAGE -> EXTRACT ...
                              -> DONE

Failures during INIT are fatal for the site. Every later failure degrades
to DONE so that records collected so far are always delivered.
"""

import asyncio
import enum
import logging
import random
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin
from urllib.robotparser import RobotFileParser

from ecom_crawler.crawler.driver import PageDriver
from ecom_crawler.extraction.extractor import extract_products
from ecom_crawler.models import ProductRecord, SiteConfig, SiteCrawlResult, SiteCrawlState

logger = logging.getLogger(__name__)

# Pause between scrolling the control into view and clicking it
_SETTLE_BEFORE_CLICK_SECONDS = 1.0
_DEFAULT_POLL_INTERVAL_MS = 500

RobotsChecker = Callable[[str, str], Awaitable[bool]]


class CrawlState(enum.Enum):
    INIT = "init"
    LOADED = "loaded"
    EXTRACT = "extract"
    CHECK_FOR_MORE = "check_for_more"
    CLICK = "click"
    WAIT = "wait"
    NEXT_PAGE = "next_page"
    DONE = "done"


def _load_robots(site_url: str) -> RobotFileParser:
    """Load and parse robots.txt for the given site."""
    rp = RobotFileParser()
    robots_url = urljoin(site_url, "/robots.txt")
    rp.set_url(robots_url)
    try:
        rp.read()
        logger.debug("Loaded robots.txt from %s", robots_url)
    except Exception as e:
        logger.debug("Could not load robots.txt from %s: %s (allowing all)", robots_url, e)
        rp.parse([])
    return rp


async def robots_allows(url: str, user_agent: str) -> bool:
    """Check robots.txt for url without blocking the event loop."""
    rp = await asyncio.to_thread(_load_robots, url)
    return rp.can_fetch(user_agent or "*", url)


class SiteCrawler:
    """Crawl one site end to end and flush its records to a channel.

    The accumulator (``self.state``) is only touched by this instance.
    """

    def __init__(
        self,
        site: SiteConfig,
        driver: PageDriver,
        channel: "asyncio.Queue[ProductRecord]",
        robots_checker: RobotsChecker = robots_allows,
    ):
        self.site = site
        self.driver = driver
        self.channel = channel
        self.robots_checker = robots_checker

        self.state = SiteCrawlState()
        self.current = CrawlState.INIT
        self.page_url = site.base_url
        self.error: Optional[str] = None
        self._final_pass = False
        self._count_before_click = 0

        self._handlers = {
            CrawlState.INIT: self._init,
            CrawlState.LOADED: self._loaded,
            CrawlState.EXTRACT: self._extract,
            CrawlState.CHECK_FOR_MORE: self._check_for_more,
            CrawlState.CLICK: self._click,
            CrawlState.WAIT: self._wait,
            CrawlState.NEXT_PAGE: self._next_page,
        }

    async def run(self) -> SiteCrawlResult:
        """Run the state machine to completion, then flush the records.

        Returns:
            SiteCrawlResult describing how the crawl ended.
        """
        site = self.site
        logger.info("[%s] Starting crawl of %s", site.name, site.base_url)

        status = "completed"
        try:
            await asyncio.wait_for(self._drive(), timeout=site.timeout_seconds)
        except asyncio.TimeoutError:
            status = "timed_out"
            self.error = f"timed out after {site.timeout_seconds:.0f}s in state {self.current.value}"
            logger.warning("[%s] Crawl %s, keeping %d products", site.name, self.error, len(self.state.records))
        except Exception as e:
            status = "failed"
            self.error = f"unexpected error in state {self.current.value}: {e}"
            logger.error(
                "[%s] Crawl aborted (%s), keeping %d products",
                site.name, self.error, len(self.state.records), exc_info=True,
            )

        if self.error and status == "completed":
            status = "failed"

        await self._flush()

        logger.info(
            "[%s] Finished crawl: status=%s products=%d passes=%d clicks=%d",
            site.name, status, len(self.state.records), self.state.passes, self.state.clicks,
        )
        return SiteCrawlResult(
            site_name=site.name,
            status=status,
            records_found=len(self.state.records),
            passes=self.state.passes,
            clicks=self.state.clicks,
            pages=self.state.pages,
            error=self.error,
        )

    async def _drive(self) -> None:
        while self.current is not CrawlState.DONE:
            handler = self._handlers[self.current]
            next_state = await handler()
            logger.debug("[%s] %s -> %s", self.site.name, self.current.value, next_state.value)
            self.current = next_state

    async def _flush(self) -> None:
        # One send per record; a full channel blocks here until the collector catches up.
        for record in self.state.records:
            await self.channel.put(record)

    # ── States ─────────────────────────────────────────────────────

    async def _init(self) -> CrawlState:
        site = self.site
        if not site.robots_txt_disabled and not await self.robots_checker(site.base_url, site.user_agent):
            self.error = f"blocked by robots.txt: {site.base_url}"
            logger.error("[%s] %s", site.name, self.error)
            return CrawlState.DONE

        attempts = site.max_retries + 1
        for attempt in range(attempts):
            try:
                logger.info("[%s] Navigating to %s", site.name, site.base_url)
                await self._load(site.base_url)
                return CrawlState.LOADED
            except Exception as e:
                if attempt < attempts - 1:
                    backoff = (2 ** attempt) * 1.0
                    logger.warning(
                        "[%s] Retry %d/%d loading %s (error: %s), waiting %.1fs",
                        site.name, attempt + 1, site.max_retries, site.base_url, e, backoff,
                    )
                    await self.driver.sleep(backoff)
                    continue
                self.error = f"failed to load {site.base_url}: {e}"
                logger.error(
                    "[%s] Failed to navigate to base URL or find initial product container: %s",
                    site.name, e,
                )
        return CrawlState.DONE

    async def _load(self, url: str) -> None:
        await self.driver.navigate(url)
        await self.driver.wait_visible(self.site.product_container_selector, self.site.timeout_seconds)
        self.page_url = url
        self.state.pages += 1

    async def _loaded(self) -> CrawlState:
        logger.info("[%s] Initial page loaded", self.site.name)
        return CrawlState.EXTRACT

    async def _extract(self) -> CrawlState:
        site = self.site
        try:
            html = await self.driver.outer_html(site.product_container_selector)
        except Exception as e:
            logger.warning("[%s] Failed to get HTML content from product container: %s", site.name, e)
        else:
            extract_products(html, site, self.state, self.page_url)
        self.state.passes += 1

        if self._final_pass:
            return CrawlState.DONE
        if site.load_more_button_selector:
            return CrawlState.CHECK_FOR_MORE
        if site.next_page_selector:
            return CrawlState.NEXT_PAGE
        logger.info("[%s] No 'Load More' button selector configured. Stopping.", site.name)
        return CrawlState.DONE

    async def _check_for_more(self) -> CrawlState:
        site = self.site
        try:
            buttons = await self.driver.find_nodes(site.load_more_button_selector)
        except Exception as e:
            logger.info("[%s] Error looking up 'Load More' button (%s). Assuming no more products.", site.name, e)
            return CrawlState.DONE
        if not buttons:
            logger.info("[%s] 'Load More' button not found. Assuming no more products.", site.name)
            return CrawlState.DONE
        return CrawlState.CLICK

    async def _click(self) -> CrawlState:
        site = self.site
        await self.driver.sleep(self._action_delay())

        if site.scroll_to_bottom:
            logger.debug("[%s] Scrolling to bottom", site.name)
            target = None
        else:
            logger.debug("[%s] Scrolling button '%s' into view", site.name, site.load_more_button_selector)
            target = site.load_more_button_selector
        try:
            await self.driver.scroll_into_view(target)
        except Exception as e:
            logger.warning("[%s] Failed to scroll: %s", site.name, e)

        await self.driver.sleep(_SETTLE_BEFORE_CLICK_SECONDS)

        if site.poll_for_product_increase:
            self._count_before_click = await self._product_count()

        limit = site.max_load_more_clicks or "unbounded"
        logger.info(
            "[%s] Attempting to click 'Load More' button (attempt %d/%s)",
            site.name, self.state.clicks + 1, limit,
        )
        try:
            await self.driver.click(site.load_more_button_selector)
        except Exception as e:
            logger.warning(
                "[%s] Failed to click 'Load More' button (%s). Assuming no more products.",
                site.name, e,
            )
            return CrawlState.DONE
        self.state.clicks += 1
        return CrawlState.WAIT

    async def _wait(self) -> CrawlState:
        site = self.site
        if site.poll_for_product_increase:
            await self._poll_for_increase()
        else:
            wait = site.wait_after_load_more_seconds
            logger.info("[%s] Clicked 'Load More'. Waiting %.1fs for new content", site.name, wait)
            await self.driver.sleep(wait)

        if site.max_load_more_clicks and self.state.clicks >= site.max_load_more_clicks:
            logger.info("[%s] Reached max 'Load More' clicks (%d)", site.name, site.max_load_more_clicks)
            self._final_pass = True
        return CrawlState.EXTRACT

    async def _next_page(self) -> CrawlState:
        site = self.site
        if site.max_depth and self.state.pages >= site.max_depth:
            logger.info("[%s] Reached max pagination depth (%d)", site.name, site.max_depth)
            return CrawlState.DONE
        try:
            href = await self.driver.attribute(site.next_page_selector, "href")
        except Exception as e:
            logger.info("[%s] Error looking up next page link (%s). Stopping.", site.name, e)
            return CrawlState.DONE
        if not href:
            logger.info("[%s] No next page link found. Stopping.", site.name)
            return CrawlState.DONE

        next_url = urljoin(self.page_url, href)
        await self.driver.sleep(self._action_delay())
        try:
            logger.info("[%s] Following next page %s", site.name, next_url)
            await self._load(next_url)
        except Exception as e:
            logger.warning("[%s] Failed to load next page %s: %s", site.name, next_url, e)
            return CrawlState.DONE
        return CrawlState.EXTRACT

    # ── Helpers ────────────────────────────────────────────────────

    def _action_delay(self) -> float:
        delay = self.site.delay_seconds
        if self.site.random_delay_ms:
            delay += random.uniform(0, self.site.random_delay_ms / 1000)
        return delay

    async def _product_count(self) -> int:
        try:
            return len(await self.driver.find_nodes(self.site.product_selector))
        except Exception as e:
            logger.debug("[%s] Could not count products: %s", self.site.name, e)
            return 0

    async def _poll_for_increase(self) -> None:
        site = self.site
        interval = (site.poll_interval_ms or _DEFAULT_POLL_INTERVAL_MS) / 1000
        timeout = site.poll_timeout_ms / 1000 if site.poll_timeout_ms else site.wait_after_load_more_seconds
        elapsed = 0.0
        while elapsed < timeout:
            await self.driver.sleep(interval)
            elapsed += interval
            count = await self._product_count()
            if count > self._count_before_click:
                logger.info(
                    "[%s] Product count grew %d -> %d after %.1fs",
                    site.name, self._count_before_click, count, elapsed,
                )
                return
        logger.info("[%s] No product increase within %.1fs", site.name, timeout)
