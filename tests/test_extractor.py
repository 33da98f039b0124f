"""Tests for selector-based product extraction."""

import unittest
from datetime import timezone

from ecom_crawler.extraction.extractor import extract_products, resolve_url
from ecom_crawler.models import SiteCrawlState

from fake_driver import catalog, make_site, product_html

PAGE_URL = "https://shop.example/cat?p=2"


class TestResolveUrl(unittest.TestCase):
    """Test product link resolution."""

    def test_relative_path(self):
        self.assertEqual(resolve_url("/item/42", PAGE_URL), "https://shop.example/item/42")

    def test_relative_to_directory(self):
        self.assertEqual(
            resolve_url("item/7", "https://shop.example/cat/shoes"),
            "https://shop.example/cat/item/7",
        )

    def test_absolute_passthrough(self):
        url = "https://cdn.other.example/p/1?ref=x"
        self.assertEqual(resolve_url(url, PAGE_URL), url)

    def test_protocol_relative(self):
        self.assertEqual(resolve_url("//shop.example/p/9", PAGE_URL), "https://shop.example/p/9")

    def test_missing_link_falls_back_to_page(self):
        self.assertEqual(resolve_url("", PAGE_URL), PAGE_URL)

    def test_unparseable_link_falls_back_to_page(self):
        self.assertEqual(resolve_url("http://[broken/item", PAGE_URL), PAGE_URL)


class TestExtractProducts(unittest.TestCase):
    """Test record extraction from HTML snapshots."""

    def setUp(self):
        self.site = make_site(
            base_url=PAGE_URL,
            allowed_domains=frozenset({"shop.example"}),
            category_selector=".category",
        )
        self.state = SiteCrawlState()

    def test_extracts_fields(self):
        html = """
        <div id="grid">
          <div class="product">
            <a class="name" href="/item/42">  Canvas
               Sneaker </a>
            <span class="price">$1,234.56</span>
            <span class="category"> Shoes </span>
          </div>
        </div>"""
        result = extract_products(html, self.site, self.state, PAGE_URL)

        self.assertEqual(len(result.added), 1)
        record = result.added[0]
        self.assertEqual(record.name, "Canvas Sneaker")
        self.assertEqual(record.price, "123456")
        self.assertEqual(record.category, "Shoes")
        self.assertEqual(record.source_url, "https://shop.example/item/42")
        self.assertEqual(record.scraped_at.tzinfo, timezone.utc)
        self.assertEqual(self.state.records, [record])

    def test_link_from_enclosing_anchor(self):
        html = '<div class="product"><a href="/p/1"><h3 class="name">Tee</h3></a><b class="price">5</b></div>'
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual(result.added[0].source_url, "https://shop.example/p/1")

    def test_link_fallback_to_any_anchor_in_product(self):
        html = """
        <div class="product">
          <h3 class="name">Tee</h3><b class="price">5</b>
          <a>no href</a><a href="https://shop.example/p/2">details</a>
        </div>"""
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual(result.added[0].source_url, "https://shop.example/p/2")

    def test_no_link_uses_page_url(self):
        html = '<div class="product"><h3 class="name">Tee</h3><b class="price">5</b></div>'
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual(result.added[0].source_url, PAGE_URL)

    def test_skips_nodes_without_name_and_price(self):
        html = """
        <div class="product"><img src="banner.png"></div>
        <div class="product"><span class="name">Only name</span></div>
        <div class="product"><span class="price">$3</span></div>"""
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual([(r.name, r.price) for r in result.added], [("Only name", ""), ("", "3")])

    def test_category_empty_when_not_configured(self):
        site = make_site(base_url=PAGE_URL)
        html = '<div class="product"><span class="name">A</span><span class="category">X</span></div>'
        result = extract_products(html, site, self.state, PAGE_URL)
        self.assertEqual(result.added[0].category, "")

    def test_document_order_preserved(self):
        html = product_html(catalog("shop.example", 4))
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual([r.name for r in result.added], ["Item 0", "Item 1", "Item 2", "Item 3"])

    def test_rerun_on_same_snapshot_adds_nothing(self):
        html = product_html(catalog("shop.example", 3))
        extract_products(html, self.site, self.state, PAGE_URL)
        again = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual(again.added, [])
        self.assertEqual(again.duplicates, 3)
        self.assertEqual(len(self.state.records), 3)

    def test_duplicates_within_snapshot(self):
        products = [("Tee", "$5", "/p/1"), ("Tee", "$5", "/p/1"), ("Tee", "$5", "/p/2")]
        result = extract_products(product_html(products), self.site, self.state, PAGE_URL)
        self.assertEqual(len(result.added), 2)
        self.assertEqual(result.duplicates, 1)

    def test_growing_snapshot_only_adds_new(self):
        extract_products(product_html(catalog("shop.example", 2)), self.site, self.state, PAGE_URL)
        result = extract_products(product_html(catalog("shop.example", 5)), self.site, self.state, PAGE_URL)
        self.assertEqual([r.name for r in result.added], ["Item 2", "Item 3", "Item 4"])

    def test_invalid_selector_fails_softly(self):
        site = make_site(product_selector="div[")
        result = extract_products(product_html(catalog("shop.example", 2)), site, self.state, PAGE_URL)
        self.assertEqual(result.added, [])
        self.assertEqual(self.state.records, [])

    def test_malformed_html_does_not_raise(self):
        html = '<div class="product"><span class="name">Broken<span class="price">9</div></div></span>'
        result = extract_products(html, self.site, self.state, PAGE_URL)
        self.assertEqual(len(result.added), 1)

    def test_unparseable_href_keeps_record(self):
        products = catalog("shop.example", 2) + [("Broken Link", "$7", "http://[broken/item")]
        result = extract_products(product_html(products), self.site, self.state, PAGE_URL)

        self.assertEqual([r.name for r in result.added], ["Item 0", "Item 1", "Broken Link"])
        self.assertEqual(result.added[-1].source_url, PAGE_URL)

    def test_invalid_field_selector_fails_softly(self):
        for field in ("name_selector", "price_selector", "category_selector"):
            with self.subTest(field=field):
                state = SiteCrawlState()
                site = make_site(**{field: "span["})
                html = product_html(catalog("shop.example", 2))
                result = extract_products(html, site, state, PAGE_URL)
                self.assertEqual(result.added, [])
                self.assertEqual(state.records, [])


if __name__ == "__main__":
    unittest.main()
