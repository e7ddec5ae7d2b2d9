"""Core data models for the price aggregation engine."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Availability(Enum):
    """Stock state of a listing."""
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED = "limited"
    UNKNOWN = "unknown"


class SourceCategory(Enum):
    """Source grouping shown to callers."""
    POPULAR = "popular"
    ALTERNATIVE = "alternative"


class HealthStatus(Enum):
    """Health classification of a source."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class AlertType(Enum):
    """Kinds of operator alerts."""
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"


class WorkerState(Enum):
    """Scraper worker states for a single invocation."""
    IDLE = "idle"
    NAVIGATING = "navigating"
    WAITING_FOR_CONTENT = "waiting_for_content"
    EXTRACTING = "extracting"
    SUCCESS = "success"
    FAILED = "failed"


class SessionState(Enum):
    """Browser session lifecycle."""
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class FailureKind(Enum):
    """Why a scrape did not produce real listings."""
    CONFIGURATION = "configuration"
    NAVIGATION = "navigation"
    BLOCKED = "blocked"
    RATE_LIMITED = "rate_limited"
    BROWSER_UNAVAILABLE = "browser_unavailable"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Listing:
    """One source's offer for a product, extracted from a single scrape."""
    product_id: str  # Temporary "tmp_<hash>" id when no catalog match exists
    source_id: str
    name: str
    url: str
    price: int  # Minor currency units, always positive
    currency: str
    availability: Availability
    last_scraped: datetime
    image_url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    is_valid: bool = True


@dataclass
class ScrapeResult:
    """Result of scraping a single source for a query."""
    source_id: str
    success: bool
    listings: Tuple[Listing, ...] = ()
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    response_time_ms: float = 0.0
    synthetic: bool = False
    attempts: int = 0

    @property
    def produced_listings(self) -> bool:
        return len(self.listings) > 0


@dataclass(frozen=True)
class ScrapeOutcome:
    """Per-source outcome event handed to the health monitor."""
    source_id: str
    success: bool
    response_time_ms: float
    timestamp: datetime
    source_name: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class SearchMetadata:
    """Provenance information attached to every search response."""
    total_sources: int
    successful_sources: int
    search_duration_ms: float
    cache_hit: bool
    timestamp: datetime


@dataclass(frozen=True)
class SearchResponse:
    """Immutable result of one orchestrator invocation."""
    search_id: str
    results: Tuple[Listing, ...]
    metadata: SearchMetadata

    def with_metadata(self, **changes) -> "SearchResponse":
        """Return a copy with selected metadata fields replaced."""
        return replace(self, metadata=replace(self.metadata, **changes))


@dataclass
class SourceHealthRecord:
    """Rolling health record for one source."""
    source_id: str
    last_check: datetime
    source_name: str = "Unknown"
    status: HealthStatus = HealthStatus.UNKNOWN
    success_rate: float = 100.0  # Percentage 0-100
    average_response_time_ms: float = 0.0
    total_requests: int = 0
    error_count: int = 0
    last_successful_scrape: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class Alert:
    """Operator-facing alert raised on a health status transition."""
    id: str
    source_id: str
    type: AlertType
    message: str
    timestamp: datetime
    source_name: str = ""
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None


@dataclass
class SystemHealth:
    """Aggregate health across all monitored sources."""
    total_sources: int
    healthy_sources: int
    warning_sources: int
    critical_sources: int
    unknown_sources: int
    active_alerts: int
    overall_status: HealthStatus
