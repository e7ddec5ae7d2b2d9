"""Listing extraction and aggregation module."""

from .aggregator import ListingAggregator, apply_filters, sort_listings, truncate
from .extractor import ExtractionEngine
from .synthetic import synthetic_listings

__all__ = [
    "ExtractionEngine",
    "ListingAggregator",
    "apply_filters",
    "sort_listings",
    "synthetic_listings",
    "truncate",
]
