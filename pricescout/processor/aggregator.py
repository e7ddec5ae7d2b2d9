"""Merging, filtering, sorting and truncation of listings across sources."""

import threading
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from pricescout.models.data_models import Listing
from pricescout.models.search import SearchFilters, SortOrder


class ListingAggregator:
    """
    Collects listings from concurrently finishing sources.

    Listings are deduplicated by (source id, url, product id) so the same
    offer reported twice by one source is only counted once, while distinct
    products sharing a fallback url are kept. Insertion order is preserved.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listings: List[Listing] = []
        self._seen: set = set()
        self._contributors: set = set()

    def add_listings(self, source_id: str, listings: Iterable[Listing]) -> int:
        """
        Add one source's listings with deduplication.

        Args:
            source_id: Source that produced the listings
            listings: Listings to add

        Returns:
            Number of listings actually added
        """
        added = 0
        with self._lock:
            for listing in listings:
                key = (listing.source_id, listing.url, listing.product_id)
                if key in self._seen:
                    continue
                self._seen.add(key)
                self._listings.append(listing)
                added += 1
            if added:
                self._contributors.add(source_id)
        return added

    @property
    def successful_sources(self) -> int:
        """Sources that contributed at least one listing."""
        with self._lock:
            return len(self._contributors)

    def get_listings(self) -> List[Listing]:
        with self._lock:
            return self._listings.copy()


def matches_filters(listing: Listing, filters: SearchFilters) -> bool:
    """True when the listing satisfies every provided filter."""
    if filters.min_price is not None and listing.price < filters.min_price:
        return False
    if filters.max_price is not None and listing.price > filters.max_price:
        return False
    if filters.availability is not None and listing.availability != filters.availability:
        return False
    if filters.min_rating is not None and (listing.rating or 0.0) < filters.min_rating:
        return False
    if filters.sources is not None and listing.source_id not in filters.sources:
        return False
    return True


def apply_filters(listings: Iterable[Listing], filters: Optional[SearchFilters]) -> List[Listing]:
    """Keep listings matching all filters, in their original order."""
    if filters is None or filters.is_empty():
        return list(listings)
    return [listing for listing in listings if matches_filters(listing, filters)]


_SORT_KEYS: dict = {
    "price": lambda listing: listing.price,
    "rating": lambda listing: listing.rating,
    "reviewCount": lambda listing: listing.review_count,
    "lastScraped": lambda listing: _as_timestamp(listing.last_scraped),
}


def _as_timestamp(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return datetime.fromisoformat(str(value)).timestamp()


def sort_listings(listings: Iterable[Listing], sort: Optional[SortOrder]) -> List[Listing]:
    """
    Stable sort by the requested field and direction.

    Listings missing the sort value always come last, in either direction,
    so they never outrank listings that have one.
    """
    listings = list(listings)
    if sort is None:
        return listings

    value_of: Callable[[Listing], object] = _SORT_KEYS[sort.field]
    present: List[Tuple[object, Listing]] = []
    missing: List[Listing] = []
    for listing in listings:
        value = value_of(listing)
        if value is None:
            missing.append(listing)
        else:
            present.append((value, listing))

    # list.sort keeps ties in input order even with reverse=True
    present.sort(key=lambda pair: pair[0], reverse=sort.direction == "desc")
    return [listing for _, listing in present] + missing


def truncate(listings: List[Listing], max_results: int) -> List[Listing]:
    return listings[:max_results]
