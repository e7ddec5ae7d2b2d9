"""Synthetic listings served when a real scrape fails outside production."""

from datetime import datetime, timezone
from typing import List, NamedTuple, Optional, Tuple
from urllib.parse import quote

from pricescout.models.data_models import Availability, Listing
from pricescout.processor.extractor import temporary_product_id


class CatalogEntry(NamedTuple):
    slug: str
    name: str
    price: int
    rating: float
    review_count: int
    image_text: str


_HEADPHONE_KEYWORDS = ("sony", "xm", "headphone")
_APPLE_KEYWORDS = ("apple", "airpod")

_HEADPHONES: Tuple[CatalogEntry, ...] = (
    CatalogEntry("sony-wh-1000xm6", "Sony WH-1000XM6", 39999, 4.8, 1247, "Sony+WH-1000XM6"),
    CatalogEntry("sony-wh-1000xm5", "Sony WH-1000XM5", 34999, 4.7, 892, "Sony+WH-1000XM5"),
    CatalogEntry("sony-wh-1000xm4", "Sony WH-1000XM4", 29999, 4.6, 567, "Sony+WH-1000XM4"),
)

_APPLE: Tuple[CatalogEntry, ...] = (
    CatalogEntry("apple-airpods-max", "Apple AirPods Max", 54999, 4.5, 2156, "AirPods+Max"),
    CatalogEntry("apple-airpods-pro", "Apple AirPods Pro", 24999, 4.6, 3421, "AirPods+Pro"),
)

_GENERIC: Tuple[CatalogEntry, ...] = (
    CatalogEntry("product1", "Product 1", 29999, 4.5, 127, "Product"),
    CatalogEntry("product2", "Product 2", 19999, 4.2, 89, "Product"),
    CatalogEntry("product3", "Product 3", 39999, 4.7, 203, "Product"),
)


def catalog_for(query: str) -> Tuple[CatalogEntry, ...]:
    """Pick the canned catalog matching the query's keywords."""
    lowered = query.lower()
    if any(keyword in lowered for keyword in _HEADPHONE_KEYWORDS):
        return _HEADPHONES
    if any(keyword in lowered for keyword in _APPLE_KEYWORDS):
        return _APPLE
    return _GENERIC


def synthetic_listings(
    source_id: str,
    query: str,
    currency: str = "USD",
    scraped_at: Optional[datetime] = None
) -> List[Listing]:
    """
    Build placeholder listings for a source so downstream filtering, sorting
    and caching stay exercisable when the real site is unreachable.

    Args:
        source_id: Source the listings are attributed to
        query: Search query used for keyword matching and in listing URLs
        currency: Currency code for every listing
        scraped_at: Timestamp to stamp on the listings (now when omitted)

    Returns:
        Listings in catalog order
    """
    scraped_at = scraped_at or datetime.now(timezone.utc)
    encoded = quote(query, safe="")

    listings = []
    for entry in catalog_for(query):
        url = f"https://example.com/{entry.slug}?q={encoded}"
        listings.append(Listing(
            product_id=temporary_product_id(source_id, url, entry.name),
            source_id=source_id,
            name=entry.name,
            url=url,
            price=entry.price,
            currency=currency,
            availability=Availability.IN_STOCK,
            last_scraped=scraped_at,
            image_url=f"https://via.placeholder.com/150x150?text={entry.image_text}",
            rating=entry.rating,
            review_count=entry.review_count,
        ))
    return listings
