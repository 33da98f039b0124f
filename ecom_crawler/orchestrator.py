"""Crawl orchestrator for the e-commerce crawler.

Runs one SiteCrawler per configured site concurrently:
1. Every site task flushes its records into one bounded result channel
2. A single collector task drains the channel into per-site buckets
3. Once all site tasks have finished the channel is closed, the collector
   finishes draining, and the buckets are frozen
4. Each non-empty bucket is handed to the result sink
"""

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlparse

from ecom_crawler.config import ConfigError, load_sites
from ecom_crawler.crawler.driver import PageDriver, PlaywrightDriverFactory
from ecom_crawler.crawler.site_crawler import SiteCrawler
from ecom_crawler.models import ProductRecord, RunSummary, SiteConfig, SiteCrawlResult
from ecom_crawler.storage.base import ResultSink
from ecom_crawler.storage.bigquery_client import BigQueryClient
from ecom_crawler.storage.json_exporter import JsonFileSink

logger = logging.getLogger(__name__)

DriverOpener = Callable[[SiteConfig], AbstractAsyncContextManager[PageDriver]]

# Marks the end of the result channel; enqueued exactly once.
_CLOSED = object()


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().strip()
    return bool(domain) and (host == domain or host.endswith("." + domain))


def route_record(record: ProductRecord, sites: Sequence[SiteConfig]) -> Optional[str]:
    """Return the name of the first site whose allowed domains cover the record URL.

    Records whose host matches no site are not routed anywhere.
    """
    try:
        host = (urlparse(record.source_url).hostname or "").lower()
    except ValueError:
        return None
    if not host:
        return None
    for site in sites:
        if any(_host_matches(host, domain) for domain in site.allowed_domains):
            return site.name
    return None


class CrawlOrchestrator:
    """Run all site crawls concurrently and fan results into per-site buckets."""

    def __init__(
        self,
        sites: Sequence[SiteConfig],
        open_driver: DriverOpener,
        sink: Optional[ResultSink] = None,
        buffer_per_site: int = 200,
        sink_concurrency: int = 1,
        run_id: Optional[str] = None,
    ):
        """Initialize the orchestrator.

        Args:
            sites: Site configurations, one crawl task each.
            open_driver: Returns an async context manager yielding a
                PageDriver for a site.
            sink: Receives each non-empty site bucket after all crawls end.
            buffer_per_site: Result channel capacity per configured site.
            sink_concurrency: Max number of buckets exported at once.
            run_id: Identifier for this run; generated when omitted.
        """
        self.sites = list(sites)
        self.open_driver = open_driver
        self.sink = sink
        self.buffer_per_site = max(1, buffer_per_site)
        self.sink_concurrency = max(1, sink_concurrency)
        self.run_id = run_id or str(uuid.uuid4())

    async def run(self) -> RunSummary:
        """Crawl every site, collect results and export them.

        Returns:
            RunSummary with per-site outcomes, frozen buckets and export failures.
        """
        if not self.sites:
            raise ValueError("No site configurations to crawl.")

        summary = RunSummary(run_id=self.run_id, started_at=datetime.now(timezone.utc))
        logger.info("=== Crawl starting: run_id=%s, sites=%d ===", self.run_id, len(self.sites))

        channel: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.buffer_per_site * len(self.sites))
        buckets: dict[str, list[ProductRecord]] = {site.name: [] for site in self.sites}
        collector = asyncio.create_task(self._collect(channel, buckets))

        tasks = []
        for site in self.sites:
            logger.info("Dispatching crawler for site: %s", site.name)
            tasks.append(asyncio.create_task(self._crawl_site(site, channel), name=f"crawl:{site.name}"))

        summary.site_results = list(await asyncio.gather(*tasks))
        logger.info("All crawlers have finished")

        await channel.put(_CLOSED)
        await collector
        logger.info("Product collector has finished")

        summary.buckets = {name: tuple(records) for name, records in buckets.items()}
        if self.sink is not None:
            summary.failed_exports = await self._export(summary.buckets)

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            "=== Crawl complete: products=%d, sites_failed=%d, exports_failed=%d, run_id=%s ===",
            summary.total_records, summary.sites_failed, len(summary.failed_exports), self.run_id,
        )
        return summary

    async def _crawl_site(self, site: SiteConfig, channel: asyncio.Queue) -> SiteCrawlResult:
        try:
            async with self.open_driver(site) as driver:
                crawler = SiteCrawler(site, driver, channel)
                return await crawler.run()
        except Exception as e:
            logger.error("[%s] Crawl task failed: %s", site.name, e, exc_info=True)
            return SiteCrawlResult(site_name=site.name, status="failed", error=str(e))

    async def _collect(self, channel: asyncio.Queue, buckets: dict[str, list[ProductRecord]]) -> None:
        """Single writer for the buckets: drain the channel until it is closed."""
        dropped = 0
        while True:
            item = await channel.get()
            if item is _CLOSED:
                break
            site_name = route_record(item, self.sites)
            if site_name is None:
                dropped += 1
                logger.debug("Dropping product outside allowed domains: %s", item.source_url)
                continue
            buckets[site_name].append(item)
        if dropped:
            logger.info("Dropped %d products whose URL matched no allowed domain", dropped)

    async def _export(self, buckets: dict[str, tuple[ProductRecord, ...]]) -> dict[str, str]:
        semaphore = asyncio.Semaphore(self.sink_concurrency)
        failures: dict[str, str] = {}

        async def export_one(site_name: str, records: tuple[ProductRecord, ...]) -> None:
            async with semaphore:
                logger.info("Exporting %d products for site: %s", len(records), site_name)
                try:
                    await asyncio.to_thread(self.sink.write, site_name, list(records))
                except Exception as e:
                    logger.error("Failed to export products for site %s: %s", site_name, e)
                    failures[site_name] = str(e)

        jobs = []
        for site_name, records in buckets.items():
            if not records:
                logger.info("No products to export for site: %s", site_name)
                continue
            jobs.append(export_one(site_name, records))
        await asyncio.gather(*jobs)
        return failures


async def run_crawl(config: dict[str, Any], sink: Optional[ResultSink] = None) -> RunSummary:
    """Load sites from config and crawl them with Playwright.

    Args:
        config: Application configuration dict (see ecom_crawler.config).
        sink: Result sink; built from config when omitted.

    Returns:
        RunSummary of the run.
    """
    sites = load_sites(config["site_list_path"])
    if not sites:
        raise ConfigError(f"No site configurations found in {config['site_list_path']}")

    crawl_config = config.get("crawl", {})
    run_id = str(uuid.uuid4())
    if sink is None:
        sink = build_sink(config, run_id)

    bq = sink if isinstance(sink, BigQueryClient) else None
    if bq is not None:
        bq.insert_run_metadata(run_id, datetime.now(timezone.utc), config.get("run_mode", "local"))

    async with PlaywrightDriverFactory() as drivers:
        orchestrator = CrawlOrchestrator(
            sites,
            open_driver=drivers.open,
            sink=sink,
            buffer_per_site=crawl_config.get("channel_buffer_per_site", 200),
            sink_concurrency=crawl_config.get("sink_concurrency", 1),
            run_id=run_id,
        )
        summary = await orchestrator.run()

    if bq is not None:
        bq.update_run_completed(run_id, len(sites) - summary.sites_failed, summary.sites_failed)
    return summary


def build_sink(config: dict[str, Any], run_id: str) -> ResultSink:
    """Create the result sink named by config["output"]["sink"]."""
    output = config.get("output", {})
    kind = output.get("sink", "json")
    if kind == "json":
        return JsonFileSink(output.get("directory", "output_data"))
    if kind == "bigquery":
        gcp = config["gcp"]
        client = BigQueryClient(
            project_id=gcp["project_id"],
            dataset_id=gcp["bigquery_dataset"],
            location=gcp.get("region", "us-east4"),
            run_id=run_id,
        )
        client.ensure_tables_exist()
        return client
    raise ValueError(f"Unknown result sink: {kind!r}")
