"""Minimal tests for data models."""

import dataclasses
import unittest
from datetime import datetime, timezone

from ecom_crawler.models import ProductRecord, SiteCrawlState

from fake_driver import make_site

SCRAPED_AT = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def record(name="Tee", price="500", url="https://shop.example/p/1", category=""):
    return ProductRecord(name=name, price=price, source_url=url, scraped_at=SCRAPED_AT, category=category)


class TestSiteConfig(unittest.TestCase):
    """Test SiteConfig derived values."""

    def test_timeout_defaults_to_sixty_seconds(self):
        self.assertEqual(make_site().timeout_seconds, 60.0)
        self.assertEqual(make_site(browser_timeout_sec=15).timeout_seconds, 15)

    def test_wait_after_load_more_default(self):
        self.assertEqual(make_site().wait_after_load_more_seconds, 3.0)
        self.assertEqual(make_site(wait_after_load_more_ms=750).wait_after_load_more_seconds, 0.75)

    def test_delay_seconds(self):
        self.assertEqual(make_site(delay_ms=1000).delay_seconds, 1.0)

    def test_immutable(self):
        site = make_site()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            site.name = "Other"


class TestProductRecord(unittest.TestCase):
    """Test ProductRecord identity and export shape."""

    def test_identity_ignores_category_and_time(self):
        a = record(category="Shoes")
        b = dataclasses.replace(a, category="", scraped_at=datetime.now(timezone.utc))
        self.assertEqual(a.identity, b.identity)

    def test_identity_differs_by_price(self):
        self.assertNotEqual(record(price="500").identity, record(price="450").identity)

    def test_to_dict_omits_empty_category(self):
        self.assertEqual(record().to_dict(), {
            "name": "Tee",
            "price": "500",
            "source_url": "https://shop.example/p/1",
            "scraped_at": "2026-03-01T12:30:00+00:00",
        })

    def test_to_dict_keeps_category(self):
        self.assertEqual(record(category="Tops").to_dict()["category"], "Tops")


class TestSiteCrawlState(unittest.TestCase):
    """Test the site-scoped accumulator."""

    def test_add_rejects_duplicate_identity(self):
        state = SiteCrawlState()
        self.assertTrue(state.add(record()))
        self.assertFalse(state.add(record(category="Tops")))
        self.assertEqual(len(state.records), 1)

    def test_insertion_order(self):
        state = SiteCrawlState()
        for i in range(3):
            state.add(record(name=f"Item {i}"))
        self.assertEqual([r.name for r in state.records], ["Item 0", "Item 1", "Item 2"])


if __name__ == "__main__":
    unittest.main()
