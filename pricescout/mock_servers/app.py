"""FastAPI mock storefronts serving HTML search-result pages.

Each storefront renders a different markup layout so the extraction engine
can be exercised against the real browser worker during development:

- storefront-a: one ``div.product-card`` per listing with every field
- storefront-b: no wrapping container, relative links, thousands separators
- storefront-c: anti-automation page (``Access Denied``, HTTP 403)
"""

import asyncio
import html
import os
import random
from typing import List, NamedTuple, Optional

from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse


class MockItem(NamedTuple):
    slug: str
    name: str
    price_cents: int
    rating: float
    reviews: int
    stock: str


STOCK_LABELS = ("In Stock", "In Stock", "Only 3 left in stock", "Out of Stock")


def generate_items(query: str, count: int, rng: random.Random) -> List[MockItem]:
    """Deterministic catalogue for a query."""
    items = []
    words = query.strip().title() or "Item"
    for index in range(1, count + 1):
        items.append(MockItem(
            slug=f"{'-'.join(query.lower().split()) or 'item'}-{index}",
            name=f"{words} Model {index}",
            price_cents=rng.randint(1500, 150000),
            rating=round(rng.uniform(3.0, 5.0), 1),
            reviews=rng.randint(0, 5000),
            stock=rng.choice(STOCK_LABELS),
        ))
    return items


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head>"
        f"<title>{html.escape(title)}</title>"
        "</head><body>"
        f"{body}"
        "</body></html>"
    )


def render_card_layout(name: str, query: str, items: List[MockItem]) -> str:
    """Listings wrapped in ``div.product-card`` elements with absolute links."""
    cards = []
    for item in items:
        cards.append(
            '<div class="product-card">'
            f'<a class="product-link" href="https://{name}.example/p/{item.slug}">'
            f'<h2 class="product-name">{html.escape(item.name)}</h2></a>'
            f'<span class="product-price">${item.price_cents / 100:,.2f}</span>'
            f'<img class="product-image" src="/images/{item.slug}.jpg" alt="">'
            f'<span class="product-rating">{item.rating} out of 5 stars</span>'
            f'<span class="product-reviews">({item.reviews:,} reviews)</span>'
            f'<span class="product-stock">{item.stock}</span>'
            '</div>'
        )
    return _page(
        f"{name} - Search results for {query}",
        f'<main id="results">{"".join(cards)}</main>',
    )


def render_list_layout(name: str, query: str, items: List[MockItem]) -> str:
    """Listings as list items without a dedicated container class."""
    rows = []
    for item in items:
        rows.append(
            '<li>'
            f'<a href="/item/{item.slug}" class="title">{html.escape(item.name)}</a>'
            f'<div class="cost">Now only US$ {item.price_cents / 100:,.2f}</div>'
            f'<div class="stars" data-rating="{item.rating}">{item.rating}</div>'
            '</li>'
        )
    return _page(
        f"{name}: {query}",
        f'<ul class="results">{"".join(rows)}</ul>',
    )


def render_blocked_page() -> str:
    return _page("Access Denied", "<h1>Access Denied</h1><p>Automated traffic is not allowed.</p>")


LAYOUTS = {
    "cards": render_card_layout,
    "list": render_list_layout,
}


def create_storefront_app(
    name: str,
    layout: str = "cards",
    random_seed: Optional[int] = None,
    extra_latency_ms: int = 0,
    items_per_page: int = 8,
    blocked: bool = False
) -> FastAPI:
    """
    Create a FastAPI storefront with configurable behavior.

    Args:
        name: Storefront name (e.g., "storefront-a")
        layout: Markup layout, "cards" or "list"
        random_seed: Seed for deterministic catalogues
        extra_latency_ms: Additional latency in milliseconds
        items_per_page: Listings rendered per search
        blocked: Serve an access-denied page for every search

    Returns:
        FastAPI application
    """
    app = FastAPI(title=f"Mock Storefront - {name}")
    render = LAYOUTS[layout]

    @app.get("/", response_class=HTMLResponse)
    async def home():
        if blocked:
            return HTMLResponse(render_blocked_page(), status_code=403)
        return HTMLResponse(_page(name, f"<h1>{html.escape(name)}</h1>"))

    @app.get("/search", response_class=HTMLResponse)
    async def search(q: str = Query(default="")):
        """Render a search-result page for the query."""
        if extra_latency_ms > 0:
            await asyncio.sleep(extra_latency_ms / 1000.0)

        if blocked:
            return HTMLResponse(render_blocked_page(), status_code=403)

        # Seed per query so repeated searches render the same catalogue
        rng = random.Random(f"{random_seed}:{q.lower()}")
        items = generate_items(q, items_per_page, rng)
        return HTMLResponse(render(name, q, items))

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name}

    return app


def create_storefront_a() -> FastAPI:
    """Storefront A: card layout with every field present."""
    return create_storefront_app(
        name="storefront-a",
        layout="cards",
        random_seed=int(os.getenv("RANDOM_SEED", 42)),
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0)),
    )


def create_storefront_b() -> FastAPI:
    """Storefront B: list layout with relative links and no stock text."""
    return create_storefront_app(
        name="storefront-b",
        layout="list",
        random_seed=int(os.getenv("RANDOM_SEED", 43)),
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0)),
    )


def create_storefront_c() -> FastAPI:
    """Storefront C: blocks every search with an access-denied page."""
    return create_storefront_app(
        name="storefront-c",
        random_seed=int(os.getenv("RANDOM_SEED", 44)),
        blocked=True,
    )


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads SERVER_NAME from environment to determine which storefront to
    create. Defaults to storefront-a if not specified.
    """
    server_name = os.getenv("SERVER_NAME", "storefront-a")

    server_map = {
        "storefront-a": create_storefront_a,
        "storefront-b": create_storefront_b,
        "storefront-c": create_storefront_c,
    }

    factory = server_map.get(server_name, create_storefront_a)
    return factory()
