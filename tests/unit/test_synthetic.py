"""Unit tests for the synthetic fallback catalog."""

from pricescout.models.data_models import Availability
from pricescout.processor.synthetic import catalog_for, synthetic_listings
from tests.fixtures.sample_data import FIXED_TIME


def test_headphone_queries_use_sony_catalog():
    listings = synthetic_listings("shop-a", "wireless headphones", scraped_at=FIXED_TIME)

    assert [listing.price for listing in listings] == [39999, 34999, 29999]
    assert [listing.rating for listing in listings] == [4.8, 4.7, 4.6]
    assert [listing.review_count for listing in listings] == [1247, 892, 567]


def test_apple_queries_use_airpods_catalog():
    listings = synthetic_listings("shop-a", "Apple AirPods", scraped_at=FIXED_TIME)

    assert [listing.price for listing in listings] == [54999, 24999]


def test_other_queries_use_generic_catalog():
    assert [entry.price for entry in catalog_for("garden hose")] == [29999, 19999, 39999]


def test_listings_are_attributed_and_encoded():
    listings = synthetic_listings("shop-b", "sony xm5", currency="EUR", scraped_at=FIXED_TIME)

    for listing in listings:
        assert listing.source_id == "shop-b"
        assert listing.currency == "EUR"
        assert listing.availability == Availability.IN_STOCK
        assert listing.url.endswith("?q=sony%20xm5")
        assert listing.last_scraped == FIXED_TIME
        assert listing.product_id.startswith("tmp_")
