"""Structured logging for search and scraping telemetry."""

import json
import logging
from typing import Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "pricescout", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, source, query, attempt, elapsed_ms, status,
                      error, listings, cache_key
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def search_start(self, search_id: str, query: str, sources: int) -> None:
        self.log("search_start", search_id=search_id, query=query, sources=sources)

    def search_complete(self, search_id: str, results: int, successful: int, total: int, elapsed_ms: float) -> None:
        self.log(
            "search_complete",
            search_id=search_id,
            results=results,
            successful_sources=successful,
            total_sources=total,
            elapsed_ms=elapsed_ms,
        )

    def cache_event(self, hit: bool, cache_key: str) -> None:
        self.log("cache_hit" if hit else "cache_miss", cache_key=cache_key)

    def cache_error(self, operation: str, error: str) -> None:
        self.log("cache_error", level=logging.WARNING, operation=operation, error=error)

    def scrape_start(self, source: str, query: str) -> None:
        self.log("scrape_start", source=source, query=query)

    def scrape_success(self, source: str, listings: int, elapsed_ms: float) -> None:
        self.log("scrape_success", source=source, listings=listings, elapsed_ms=elapsed_ms)

    def scrape_error(self, source: str, kind: str, error: str, attempts: int) -> None:
        self.log("scrape_error", level=logging.WARNING, source=source, kind=kind, error=error, attempts=attempts)

    def navigation_retry(self, source: str, attempt: int, delay: float, error: str) -> None:
        self.log("navigation_retry", level=logging.WARNING, source=source, attempt=attempt, delay=delay, error=error)

    def selector_timeout(self, source: str, selector: str) -> None:
        self.log("selector_timeout", level=logging.WARNING, source=source, selector=selector)

    def synthetic_fallback(self, source: str, listings: int, reason: Optional[str]) -> None:
        self.log("synthetic_fallback", level=logging.WARNING, source=source, listings=listings, reason=reason)

    def rate_limited(self, source: str, limit: int) -> None:
        self.log("rate_limited", level=logging.WARNING, source=source, limit=limit)

    def health_updated(self, source: str, status: str, success_rate: float, total_requests: int) -> None:
        self.log(
            "health_updated",
            source=source,
            status=status,
            success_rate=round(success_rate, 2),
            total_requests=total_requests,
        )

    def alert_raised(self, alert_id: str, source: str, alert_type: str, message: str) -> None:
        self.log("alert_raised", level=logging.WARNING, alert_id=alert_id, source=source, type=alert_type, message=message)

    def alert_acknowledged(self, alert_id: str, acknowledged_by: str) -> None:
        self.log("alert_acknowledged", alert_id=alert_id, acknowledged_by=acknowledged_by)

    def monitor_error(self, source: str, error: str) -> None:
        self.log("monitor_error", level=logging.ERROR, source=source, error=error)

    def browser_started(self, headless: bool) -> None:
        self.log("browser_started", headless=headless)

    def browser_closed(self) -> None:
        self.log("browser_closed")
