"""Shared data models for the e-commerce crawler."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

_DEFAULT_TIMEOUT_SECONDS = 60.0
_DEFAULT_WAIT_AFTER_LOAD_MORE_MS = 3000


@dataclass(frozen=True)
class SiteConfig:
    """Crawl configuration for one e-commerce site. Immutable after load."""

    name: str
    base_url: str
    allowed_domains: frozenset[str]
    product_selector: str
    name_selector: str
    price_selector: str
    product_container_selector: str = "body"
    category_selector: str = ""
    next_page_selector: str = ""
    load_more_button_selector: str = ""

    # Limits
    max_depth: int = 0
    max_retries: int = 0
    max_load_more_clicks: int = 0
    poll_timeout_ms: int = 0
    poll_interval_ms: int = 0
    browser_timeout_sec: float = 0

    # Timing
    delay_ms: int = 0
    random_delay_ms: int = 0
    wait_after_load_more_ms: int = 0

    robots_txt_disabled: bool = False
    scroll_to_bottom: bool = False
    headless: bool = True
    poll_for_product_increase: bool = False

    user_agent: str = ""

    # Read from site files for compatibility; the browser engine runs one
    # session per site and uses neither
    async_requests: bool = False
    parallelism: int = 0

    @property
    def timeout_seconds(self) -> float:
        """Overall execution budget for one site crawl."""
        return self.browser_timeout_sec or _DEFAULT_TIMEOUT_SECONDS

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000

    @property
    def wait_after_load_more_seconds(self) -> float:
        return (self.wait_after_load_more_ms or _DEFAULT_WAIT_AFTER_LOAD_MORE_MS) / 1000


@dataclass(frozen=True)
class ProductRecord:
    """A product scraped from a listing page."""

    name: str
    price: str  # normalized numeric-leaning string, not guaranteed parseable
    source_url: str
    scraped_at: datetime
    category: str = ""

    @property
    def identity(self) -> tuple[str, str, str]:
        """Deduplication key: (name, price, source_url)."""
        return (self.name, self.price, self.source_url)

    def to_dict(self) -> dict[str, str]:
        """Export shape; category is omitted when empty."""
        data = {
            "name": self.name,
            "price": self.price,
            "category": self.category,
            "source_url": self.source_url,
            "scraped_at": self.scraped_at.isoformat(),
        }
        if not self.category:
            del data["category"]
        return data


@dataclass
class SiteCrawlState:
    """Running, site-scoped accumulator owned by a single SiteCrawler."""

    records: list[ProductRecord] = field(default_factory=list)
    seen: set[tuple[str, str, str]] = field(default_factory=set)
    clicks: int = 0
    pages: int = 0
    passes: int = 0

    def add(self, record: ProductRecord) -> bool:
        """Append the record unless its identity is already present."""
        if record.identity in self.seen:
            return False
        self.seen.add(record.identity)
        self.records.append(record)
        return True


@dataclass
class SiteCrawlResult:
    """Outcome of one site crawl task."""

    site_name: str
    status: str  # completed | failed | timed_out
    records_found: int = 0
    passes: int = 0
    clicks: int = 0
    pages: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RunSummary:
    """Summary of a full orchestration run."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    site_results: list[SiteCrawlResult] = field(default_factory=list)
    buckets: dict[str, tuple[ProductRecord, ...]] = field(default_factory=dict)
    failed_exports: dict[str, str] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.buckets.values())

    @property
    def exports_failed(self) -> bool:
        return bool(self.failed_exports)

    @property
    def sites_failed(self) -> int:
        return sum(1 for r in self.site_results if r.status != "completed")
