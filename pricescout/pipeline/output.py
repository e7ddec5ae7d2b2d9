"""JSON wire formatting for search responses, health records and alerts.

The wire shape uses camelCase keys and ISO-8601 timestamps. The same
formatter is used for the CLI output, for cached search payloads and for
health data persisted to the cache, so everything written can be parsed
back with the matching ``parse_*`` method.

Example search response:
{
    "searchId": "3f0c...",
    "results": [
        {
            "productId": "tmp_1a2b3c4d5e6f7a8b",
            "sourceId": "shop-a",
            "name": "Sony WH-1000XM5",
            "url": "https://shop-a.example/p/1",
            "price": 34999,
            "currency": "USD",
            "availability": "in_stock",
            ...
        }
    ],
    "metadata": {
        "totalSources": 2,
        "successfulSources": 1,
        "searchDurationMs": 812.4,
        "cacheHit": false,
        "timestamp": "2024-05-01T12:00:00+00:00"
    }
}
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from pricescout.models.data_models import (
    Alert,
    AlertType,
    Availability,
    HealthStatus,
    Listing,
    SearchMetadata,
    SearchResponse,
    SourceHealthRecord,
    SystemHealth,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class JSONOutputFormatter:
    """Formats and parses engine results as JSON-serializable dictionaries."""

    def format(self, response: SearchResponse) -> Dict[str, Any]:
        """
        Format a search response.

        Args:
            response: Response returned by the orchestrator

        Returns:
            Dictionary with searchId, results and metadata
        """
        return {
            "searchId": response.search_id,
            "results": [self.format_listing(listing) for listing in response.results],
            "metadata": self._format_metadata(response.metadata),
        }

    def format_listing(self, listing: Listing) -> Dict[str, Any]:
        return {
            "productId": listing.product_id,
            "sourceId": listing.source_id,
            "name": listing.name,
            "url": listing.url,
            "price": listing.price,
            "currency": listing.currency,
            "availability": listing.availability.value,
            "imageUrl": listing.image_url,
            "rating": listing.rating,
            "reviewCount": listing.review_count,
            "lastScraped": _iso(listing.last_scraped),
            "isValid": listing.is_valid,
        }

    def _format_metadata(self, metadata: SearchMetadata) -> Dict[str, Any]:
        return {
            "totalSources": metadata.total_sources,
            "successfulSources": metadata.successful_sources,
            "searchDurationMs": round(metadata.search_duration_ms, 2),
            "cacheHit": metadata.cache_hit,
            "timestamp": _iso(metadata.timestamp),
        }

    def parse(self, data: Dict[str, Any]) -> SearchResponse:
        """Rebuild a search response from its formatted dictionary."""
        metadata = data["metadata"]
        return SearchResponse(
            search_id=data["searchId"],
            results=tuple(self.parse_listing(item) for item in data.get("results", [])),
            metadata=SearchMetadata(
                total_sources=metadata["totalSources"],
                successful_sources=metadata["successfulSources"],
                search_duration_ms=metadata["searchDurationMs"],
                cache_hit=metadata["cacheHit"],
                timestamp=_parse_time(metadata["timestamp"]),
            ),
        )

    def parse_listing(self, data: Dict[str, Any]) -> Listing:
        return Listing(
            product_id=data["productId"],
            source_id=data["sourceId"],
            name=data["name"],
            url=data["url"],
            price=data["price"],
            currency=data["currency"],
            availability=Availability(data["availability"]),
            last_scraped=_parse_time(data["lastScraped"]),
            image_url=data.get("imageUrl"),
            rating=data.get("rating"),
            review_count=data.get("reviewCount"),
            is_valid=data.get("isValid", True),
        )

    def format_health_record(self, record: SourceHealthRecord) -> Dict[str, Any]:
        return {
            "sourceId": record.source_id,
            "sourceName": record.source_name,
            "status": record.status.value,
            "successRate": round(record.success_rate, 2),
            "averageResponseTime": round(record.average_response_time_ms, 2),
            "totalRequests": record.total_requests,
            "errorCount": record.error_count,
            "lastSuccessfulScrape": _iso(record.last_successful_scrape),
            "lastError": record.last_error,
            "lastCheck": _iso(record.last_check),
        }

    def parse_health_record(self, data: Dict[str, Any]) -> SourceHealthRecord:
        return SourceHealthRecord(
            source_id=data["sourceId"],
            source_name=data.get("sourceName", "Unknown"),
            status=HealthStatus(data.get("status", HealthStatus.UNKNOWN.value)),
            success_rate=float(data.get("successRate", 100.0)),
            average_response_time_ms=float(data.get("averageResponseTime", 0.0)),
            total_requests=int(data.get("totalRequests", 0)),
            error_count=int(data.get("errorCount", 0)),
            last_successful_scrape=_parse_time(data.get("lastSuccessfulScrape")),
            last_error=data.get("lastError"),
            last_check=_parse_time(data["lastCheck"]),
        )

    def format_alert(self, alert: Alert) -> Dict[str, Any]:
        return {
            "id": alert.id,
            "sourceId": alert.source_id,
            "sourceName": alert.source_name,
            "type": alert.type.value,
            "message": alert.message,
            "timestamp": _iso(alert.timestamp),
            "acknowledged": alert.acknowledged,
            "acknowledgedBy": alert.acknowledged_by,
            "acknowledgedAt": _iso(alert.acknowledged_at),
        }

    def parse_alert(self, data: Dict[str, Any]) -> Alert:
        return Alert(
            id=data["id"],
            source_id=data["sourceId"],
            source_name=data.get("sourceName", ""),
            type=AlertType(data["type"]),
            message=data["message"],
            timestamp=_parse_time(data["timestamp"]),
            acknowledged=data.get("acknowledged", False),
            acknowledged_by=data.get("acknowledgedBy"),
            acknowledged_at=_parse_time(data.get("acknowledgedAt")),
        )

    def format_system_health(
        self,
        health: SystemHealth,
        records: Iterable[SourceHealthRecord] = (),
        alerts: Iterable[Alert] = ()
    ) -> Dict[str, Any]:
        """Format the aggregate health view with optional detail sections."""
        return {
            "overallStatus": health.overall_status.value,
            "totalSources": health.total_sources,
            "healthySources": health.healthy_sources,
            "warningSources": health.warning_sources,
            "criticalSources": health.critical_sources,
            "unknownSources": health.unknown_sources,
            "activeAlerts": health.active_alerts,
            "sources": [self.format_health_record(record) for record in records],
            "alerts": [self.format_alert(alert) for alert in alerts],
        }

    def dumps(self, data: Dict[str, Any]) -> bytes:
        return json.dumps(data, ensure_ascii=False).encode("utf-8")

    def loads(self, raw: bytes) -> Dict[str, Any]:
        return json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)

    def save(self, data: Dict[str, Any], path: str = "out/search.json") -> None:
        """
        Save formatted data to a JSON file.

        Creates parent directories if they don't exist. Uses 2-space
        indentation for readability.

        Args:
            data: Formatted dictionary to save
            path: Output file path (default: out/search.json)
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
