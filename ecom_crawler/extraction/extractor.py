"""Selector-based product extraction from rendered HTML snapshots.

Uses BeautifulSoup (lxml parser) with the CSS selectors from a site's
configuration. Every call deduplicates against the caller's SiteCrawlState,
so repeated snapshots of a growing "load more" listing only yield the
products that appeared since the previous pass.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from ecom_crawler.extraction.normalize import clean_text, extract_category, extract_price
from ecom_crawler.models import ProductRecord, SiteConfig, SiteCrawlState

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Net-new records from one snapshot plus the number of duplicates skipped."""

    added: list[ProductRecord] = field(default_factory=list)
    duplicates: int = 0


def _first_text(node: Tag, selector: str) -> str:
    match = node.select_one(selector)
    return match.get_text() if match is not None else ""


def _find_product_link(product: Tag, name_node: Optional[Tag]) -> str:
    """Find the product link: name anchor, enclosing anchor, then any anchor."""
    if name_node is not None:
        if name_node.name == "a":
            href = name_node.get("href")
            if href:
                return href
        else:
            anchor = name_node.find_parent("a")
            if anchor is not None and anchor.get("href"):
                return anchor["href"]

    anchor = product.find("a", href=True)
    if anchor is not None:
        return anchor["href"]
    return ""


def resolve_url(link: str, page_url: str) -> str:
    """Resolve a possibly relative link against the page URL.

    Links that cannot be parsed (e.g. ``http://[broken/item``) fall back to
    the page URL.
    """
    if not link:
        return page_url
    try:
        if urlparse(link).scheme:
            return link
        return urljoin(page_url, link)
    except ValueError as e:
        logger.warning("Could not resolve product URL %r (%s), using %s", link, e, page_url)
        return page_url


def extract_products(
    html: str,
    site: SiteConfig,
    state: SiteCrawlState,
    page_url: str,
) -> ExtractionResult:
    """Extract product records from an HTML snapshot.

    Args:
        html: Outer HTML of the product container (or a whole page).
        site: Site configuration supplying the selectors.
        state: Site accumulator; net-new records are appended to it.
        page_url: URL of the page the snapshot came from, used to resolve
            relative links and as the fallback source URL.

    Returns:
        ExtractionResult with the records added by this call.
    """
    result = ExtractionResult()
    try:
        soup = BeautifulSoup(html, "lxml")
        products = soup.select(site.product_selector)
    except Exception as e:
        logger.warning("[%s] Failed to parse HTML snapshot: %s", site.name, e)
        return result

    for product in products:
        try:
            name_node = product.select_one(site.name_selector)
            price_text = _first_text(product, site.price_selector)
            category_text = _first_text(product, site.category_selector) if site.category_selector else ""
        except Exception as e:
            # A bad field selector fails identically for every product
            logger.warning("[%s] Failed to apply field selectors: %s", site.name, e)
            break

        name = clean_text(name_node.get_text()) if name_node is not None else ""
        price = extract_price(price_text)
        category = extract_category(category_text) if category_text else ""

        # Decorations (banners, ads) matching the product selector
        if not name and not price:
            continue

        source_url = resolve_url(_find_product_link(product, name_node), page_url)
        record = ProductRecord(
            name=name,
            price=price,
            category=category,
            source_url=source_url,
            scraped_at=datetime.now(timezone.utc),
        )
        if state.add(record):
            result.added.append(record)
        else:
            result.duplicates += 1

    if result.added:
        logger.info(
            "[%s] Parsed and added %d new unique products (%d duplicates skipped)",
            site.name, len(result.added), result.duplicates,
        )
    else:
        logger.debug("[%s] No new products in snapshot (%d duplicates)", site.name, result.duplicates)
    return result
