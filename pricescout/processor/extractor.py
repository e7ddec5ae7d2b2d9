"""Extraction engine turning rendered search pages into listings.

Parsing is deliberately forgiving: a malformed element is skipped, and a page
that cannot be parsed at all yields no listings rather than an error.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from pricescout.errors import ConfigurationError
from pricescout.models.config import SelectorConfig, SourceProfile
from pricescout.models.data_models import Availability, Listing

logger = logging.getLogger(__name__)


_PRICE_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")
_RATING_PATTERN = re.compile(r"\d+(?:\.\d+)?")
_REVIEW_PATTERN = re.compile(r"\d[\d,]*")

_CURRENCY_SYMBOLS = (
    ("US$", "USD"),
    ("C$", "CAD"),
    ("A$", "AUD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₹", "INR"),
    ("$", "USD"),
)

_OUT_OF_STOCK_MARKERS = ("out of stock", "sold out", "unavailable", "no longer available")
_LIMITED_MARKERS = ("left in stock", "only", "limited", "few left", "low stock")
_IN_STOCK_MARKERS = ("in stock", "available", "add to cart", "ships", "buy now")

_MAX_ANCESTOR_DEPTH = 5


def parse_price(text: Optional[str]) -> Optional[int]:
    """
    Convert price text to integer minor units.

    Takes the first numeral, drops thousands separators, multiplies by 100
    and rounds. The heuristic is currency-agnostic and lossy for locales that
    use a comma as the decimal separator.

    Examples:
        >>> parse_price("$1,299.99")
        129999
        >>> parse_price("Now 24.5 EUR")
        2450
        >>> parse_price("Free") is None
        True

    Args:
        text: Raw price text

    Returns:
        Positive price in minor units, or None if unparseable/non-positive
    """
    if not text:
        return None
    match = _PRICE_PATTERN.search(text)
    if not match:
        return None
    try:
        value = float(match.group().replace(",", ""))
    except ValueError:
        return None
    minor = int(round(value * 100))
    return minor if minor > 0 else None


def parse_rating(text: Optional[str]) -> Optional[float]:
    """First decimal in the text, when it is a valid 0-5 rating."""
    if not text:
        return None
    match = _RATING_PATTERN.search(text)
    if not match:
        return None
    rating = float(match.group())
    if rating < 0 or rating > 5:
        return None
    return rating


def parse_review_count(text: Optional[str]) -> Optional[int]:
    """First integer in the text with thousands separators removed."""
    if not text:
        return None
    match = _REVIEW_PATTERN.search(text)
    if not match:
        return None
    digits = match.group().replace(",", "")
    return int(digits) if digits else None


def parse_availability(text: Optional[str], selector_configured: bool = True) -> Availability:
    """
    Map stock text onto the availability enum.

    Sources without an availability selector are assumed in stock, matching
    how search result pages usually omit stock for purchasable items.
    """
    if text is None:
        return Availability.UNKNOWN if selector_configured else Availability.IN_STOCK

    lowered = text.strip().lower()
    if any(marker in lowered for marker in _OUT_OF_STOCK_MARKERS):
        return Availability.OUT_OF_STOCK
    if any(marker in lowered for marker in _LIMITED_MARKERS):
        return Availability.LIMITED
    if any(marker in lowered for marker in _IN_STOCK_MARKERS):
        return Availability.IN_STOCK
    return Availability.UNKNOWN


def detect_currency(text: Optional[str], default: str = "USD") -> str:
    """Currency code from the symbol in the price text."""
    if text:
        for symbol, code in _CURRENCY_SYMBOLS:
            if symbol in text:
                return code
        code_match = re.search(r"\b([A-Z]{3})\b", text)
        if code_match:
            return code_match.group(1)
    return default


def resolve_url(href: Optional[str], base_url: str) -> Optional[str]:
    """Resolve a possibly relative link against the source's base URL."""
    if not href:
        return None
    href = href.strip()
    if href.startswith(("http://", "https://")):
        return href
    if href.startswith("//"):
        return "https:" + href
    if href.startswith(("javascript:", "#", "mailto:")):
        return None
    return urljoin(base_url + "/", href.lstrip("/")) if not href.startswith("/") else urljoin(base_url, href)


def temporary_product_id(source_id: str, url: str, name: str) -> str:
    """Stable placeholder id for listings with no catalog match."""
    digest = hashlib.sha1(f"{source_id}|{url}|{name}".encode("utf-8")).hexdigest()
    return f"tmp_{digest[:16]}"


def _text(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def _select_text(container: Tag, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    return _text(container.select_one(selector))


def _link_href(container: Tag, selector: Optional[str]) -> Optional[str]:
    element = container.select_one(selector) if selector else None
    if element is not None and element.name != "a":
        element = element if element.get("href") else element.find("a", href=True)
    if element is None:
        element = container if container.name == "a" and container.get("href") else container.find("a", href=True)
    return element.get("href") if element is not None else None


def _image_src(container: Tag, selector: Optional[str]) -> Optional[str]:
    element = container.select_one(selector) if selector else None
    if element is not None and element.name != "img":
        element = element.find("img") or element
    if element is None:
        return None
    for attribute in ("src", "data-src", "data-lazy-src"):
        value = element.get(attribute)
        if value:
            return value
    return None


class ExtractionEngine:
    """
    Extracts listings from rendered markup using a source's selectors.

    At most ``max_listings`` candidate elements are examined per page.
    Candidates missing a name or a positive price are discarded.
    """

    def __init__(
        self,
        max_listings: int = 10,
        default_currency: str = "USD",
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.max_listings = max_listings
        self.default_currency = default_currency
        self._now = now

    def extract(
        self,
        markup: str,
        profile: SourceProfile,
        page_url: Optional[str] = None
    ) -> List[Listing]:
        """
        Extract listings from a page.

        Args:
            markup: Rendered HTML
            profile: Source profile providing selectors and base URL
            page_url: URL the markup came from, used when a listing has no link

        Returns:
            Listings in page order (empty when the page cannot be parsed)

        Raises:
            ConfigurationError: If the profile has no usable configuration
        """
        if profile.configuration is None:
            raise ConfigurationError(profile.configuration_error or f"Source {profile.id} is not configured")

        configuration = profile.configuration
        scraped_at = self._now()

        try:
            soup = BeautifulSoup(markup or "", "html.parser")
            candidates = self._candidates(soup, configuration.selectors)
        except Exception as e:
            logger.warning(f"Page extraction failed for {profile.id}: {e}")
            return []

        listings = []
        for element in candidates:
            try:
                listing = self._extract_listing(element, profile, page_url, scraped_at)
            except Exception as e:
                logger.debug(f"Skipping malformed element from {profile.id}: {e}")
                continue
            if listing is not None:
                listings.append(listing)

        return listings

    def _candidates(self, soup: BeautifulSoup, selectors: SelectorConfig) -> List[Tag]:
        """Elements that each hold one listing, capped at ``max_listings``."""
        if selectors.product_container:
            return soup.select(selectors.product_container)[:self.max_listings]

        # Without a container selector, climb from each name to the nearest
        # ancestor that also holds a price.
        candidates: List[Tag] = []
        seen = set()
        for name_element in soup.select(selectors.product_name):
            container = self._enclosing_listing(name_element, selectors.product_price)
            if container is None or id(container) in seen:
                continue
            seen.add(id(container))
            candidates.append(container)
            if len(candidates) >= self.max_listings:
                break
        return candidates

    @staticmethod
    def _enclosing_listing(element: Tag, price_selector: str) -> Optional[Tag]:
        current = element.parent
        for _ in range(_MAX_ANCESTOR_DEPTH):
            if current is None or not isinstance(current, Tag):
                return None
            if current.select_one(price_selector) is not None:
                return current
            current = current.parent
        return None

    def _extract_listing(
        self,
        element: Tag,
        profile: SourceProfile,
        page_url: Optional[str],
        scraped_at: datetime
    ) -> Optional[Listing]:
        configuration = profile.configuration
        selectors = configuration.selectors

        name = _select_text(element, selectors.product_name)
        price_text = _select_text(element, selectors.product_price)
        if not name or not price_text:
            return None

        price = parse_price(price_text)
        if price is None:
            return None

        url = (
            resolve_url(_link_href(element, selectors.product_url), configuration.base_url)
            or page_url
            or configuration.base_url
        )
        availability_text = _select_text(element, selectors.product_availability)

        return Listing(
            product_id=temporary_product_id(profile.id, url, name),
            source_id=profile.id,
            name=name,
            url=url,
            price=price,
            currency=detect_currency(price_text, configuration.currency or self.default_currency),
            availability=parse_availability(
                availability_text,
                selector_configured=selectors.product_availability is not None,
            ),
            last_scraped=scraped_at,
            image_url=resolve_url(_image_src(element, selectors.product_image), configuration.base_url),
            rating=parse_rating(_select_text(element, selectors.product_rating)),
            review_count=parse_review_count(_select_text(element, selectors.product_reviews)),
        )
