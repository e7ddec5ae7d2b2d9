"""Unit tests for the extraction engine and its parsing helpers."""

import pytest

from pricescout.errors import ConfigurationError
from pricescout.models.config import SourceProfile
from pricescout.models.data_models import Availability
from pricescout.processor.extractor import (
    ExtractionEngine,
    detect_currency,
    parse_availability,
    parse_price,
    parse_rating,
    parse_review_count,
    resolve_url,
    temporary_product_id,
)
from tests.fixtures.sample_data import (
    CARD_PAGE,
    FIXED_TIME,
    LIST_PAGE,
    card_profile,
    card_record,
    many_cards_page,
)


@pytest.fixture
def engine():
    return ExtractionEngine(now=lambda: FIXED_TIME)


@pytest.fixture
def list_profile():
    return SourceProfile.from_record(card_record(
        "shop-b",
        "https://shop-b.example",
        productContainer=None,
        productName="a.title",
        productPrice=".cost",
        productUrl="a.title",
        productImage=None,
        productRating=None,
        productReviews=None,
        productAvailability=None,
    ))


class TestParsePrice:

    @pytest.mark.parametrize("text,expected", [
        ("$349.99", 34999),
        ("$1,299.99", 129999),
        ("Now 24.5 EUR", 2450),
        ("₹ 2,499", 249900),
        ("19.999", 2000),
        ("$1,299.99 - $1,499.99", 129999),
    ])
    def test_parses_minor_units(self, text, expected):
        assert parse_price(text) == expected

    @pytest.mark.parametrize("text", [None, "", "Free", "Call for price", "$0.00", "0"])
    def test_rejects_unparseable_or_non_positive(self, text):
        assert parse_price(text) is None


class TestParseRating:

    def test_first_decimal(self):
        assert parse_rating("4.7 out of 5 stars") == 4.7

    def test_integer_rating(self):
        assert parse_rating("Rated 4 stars") == 4.0

    def test_no_number_leaves_rating_unset(self):
        assert parse_rating("No reviews yet") is None

    def test_out_of_range_is_unset(self):
        assert parse_rating("92% liked it") is None


class TestParseReviewCount:

    def test_strips_thousands_separators(self):
        assert parse_review_count("(1,247 reviews)") == 1247

    def test_plain_integer(self):
        assert parse_review_count("89 ratings") == 89

    def test_missing(self):
        assert parse_review_count("Be the first to review") is None
        assert parse_review_count(None) is None


class TestParseAvailability:

    @pytest.mark.parametrize("text,expected", [
        ("In Stock", Availability.IN_STOCK),
        ("Add to Cart", Availability.IN_STOCK),
        ("Out of Stock", Availability.OUT_OF_STOCK),
        ("Currently unavailable", Availability.OUT_OF_STOCK),
        ("Sold out", Availability.OUT_OF_STOCK),
        ("Only 3 left in stock", Availability.LIMITED),
        ("Pre-order", Availability.UNKNOWN),
    ])
    def test_maps_text(self, text, expected):
        assert parse_availability(text) == expected

    def test_missing_text_with_selector_is_unknown(self):
        assert parse_availability(None, selector_configured=True) == Availability.UNKNOWN

    def test_missing_selector_assumes_in_stock(self):
        assert parse_availability(None, selector_configured=False) == Availability.IN_STOCK


class TestHelpers:

    @pytest.mark.parametrize("text,expected", [
        ("$10", "USD"),
        ("€10", "EUR"),
        ("£10", "GBP"),
        ("¥1000", "JPY"),
        ("₹499", "INR"),
        ("10.00 CHF", "CHF"),
        ("10.00", "CAD"),
    ])
    def test_detect_currency(self, text, expected):
        assert detect_currency(text, default="CAD") == expected

    def test_resolve_url(self):
        base = "https://shop.example"
        assert resolve_url("/p/1", base) == "https://shop.example/p/1"
        assert resolve_url("p/1", base) == "https://shop.example/p/1"
        assert resolve_url("//cdn.shop.example/i.jpg", base) == "https://cdn.shop.example/i.jpg"
        assert resolve_url("https://other.example/x", base) == "https://other.example/x"
        assert resolve_url("javascript:void(0)", base) is None
        assert resolve_url(None, base) is None

    def test_temporary_product_id_is_stable(self):
        first = temporary_product_id("shop-a", "https://shop-a.example/p/1", "Item")
        second = temporary_product_id("shop-a", "https://shop-a.example/p/1", "Item")
        other = temporary_product_id("shop-b", "https://shop-a.example/p/1", "Item")

        assert first == second
        assert first != other
        assert first.startswith("tmp_")


class TestExtractionEngine:

    def test_extracts_card_layout(self, engine):
        listings = engine.extract(CARD_PAGE, card_profile("shop-a"))

        assert [listing.name for listing in listings] == ["Sony WH-1000XM5", "Bose QC45"]

        xm5, bose = listings
        assert xm5.source_id == "shop-a"
        assert xm5.price == 34999
        assert xm5.currency == "USD"
        assert xm5.url == "https://shop-a.example/p/sony-xm5"
        assert xm5.image_url == "https://shop-a.example/img/xm5.jpg"
        assert xm5.rating == 4.7
        assert xm5.review_count == 1247
        assert xm5.availability == Availability.IN_STOCK
        assert xm5.last_scraped == FIXED_TIME
        assert xm5.is_valid is True

        assert bose.price == 129950
        assert bose.currency == "GBP"
        assert bose.url == "https://cdn.shop-a.example/p/bose-qc45"
        assert bose.availability == Availability.LIMITED
        assert bose.rating is None
        assert bose.review_count is None
        assert bose.image_url is None

    def test_never_emits_listing_without_name_or_positive_price(self, engine):
        listings = engine.extract(CARD_PAGE, card_profile("shop-a"))

        for listing in listings:
            assert listing.name.strip()
            assert listing.price > 0

    def test_extracts_without_container_selector(self, engine, list_profile):
        listings = engine.extract(LIST_PAGE, list_profile)

        assert [(listing.name, listing.price) for listing in listings] == [
            ("Sony WH-1000XM4", 29999),
            ("AirPods Pro", 24900),
        ]
        assert listings[0].url == "https://shop-b.example/item/xm4"
        assert listings[1].url == "https://shop-b.example/item/airpods"
        assert all(listing.availability == Availability.IN_STOCK for listing in listings)
        assert all(listing.currency == "USD" for listing in listings)

    def test_caps_candidates_per_page(self, engine):
        listings = engine.extract(many_cards_page(25), card_profile("shop-a"))

        assert len(listings) == 10
        assert listings[0].name == "Item 0"

    def test_configurable_cap(self):
        engine = ExtractionEngine(max_listings=3, now=lambda: FIXED_TIME)

        assert len(engine.extract(many_cards_page(5), card_profile("shop-a"))) == 3

    def test_listing_without_link_uses_page_url(self, engine):
        listings = engine.extract(
            many_cards_page(1), card_profile("shop-a"), page_url="https://shop-a.example/search?q=x"
        )

        assert listings[0].url == "https://shop-a.example/search?q=x"

    def test_garbage_markup_yields_empty(self, engine):
        assert engine.extract("<<<not html", card_profile("shop-a")) == []
        assert engine.extract("", card_profile("shop-a")) == []

    def test_broken_selector_yields_empty(self, engine):
        profile = card_profile("shop-a", productContainer="div[[[")

        assert engine.extract(CARD_PAGE, profile) == []

    def test_element_failure_does_not_abort_page(self, engine, monkeypatch):
        import pricescout.processor.extractor as extractor_module

        original = extractor_module.parse_rating
        calls = {"count": 0}

        def flaky_rating(text):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("boom")
            return original(text)

        monkeypatch.setattr(extractor_module, "parse_rating", flaky_rating)

        listings = engine.extract(CARD_PAGE, card_profile("shop-a"))

        assert [listing.name for listing in listings] == ["Bose QC45"]

    def test_unconfigured_profile_raises(self, engine):
        record = card_record("shop-x")
        del record["configuration"]["selectors"]["productName"]
        profile = SourceProfile.from_record(record)

        with pytest.raises(ConfigurationError):
            engine.extract(CARD_PAGE, profile)
