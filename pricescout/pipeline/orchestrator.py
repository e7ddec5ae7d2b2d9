"""Search orchestrator fanning one query out across all active sources."""

import asyncio
import hashlib
import json
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

from pricescout.errors import SourceStoreError
from pricescout.fetcher.rate_limiter import RateLimiter
from pricescout.fetcher.scraper_worker import ScraperWorker
from pricescout.models.config import EngineConfig, SourceProfile
from pricescout.models.data_models import (
    FailureKind,
    ScrapeOutcome,
    ScrapeResult,
    SearchMetadata,
    SearchResponse,
)
from pricescout.models.search import SearchRequest
from pricescout.monitoring.health_monitor import HealthMonitor
from pricescout.monitoring.logger import StructuredLogger
from pricescout.pipeline.output import JSONOutputFormatter
from pricescout.processor.aggregator import (
    ListingAggregator,
    apply_filters,
    sort_listings,
    truncate,
)
from pricescout.storage.cache import KeyValueCache
from pricescout.storage.source_store import SourceStore


CACHE_PREFIX = "search:"


def build_cache_key(request: SearchRequest) -> str:
    """
    Derive the cache key for a request.

    The key covers the normalized query, filters, sort, source subset and
    result limit, so a truncated payload is never served to a larger request.
    """
    payload = {
        "query": " ".join(request.query.lower().split()),
        "filters": request.filters.model_dump(mode="json", by_alias=True) if request.filters else None,
        "sort": request.sort.model_dump(mode="json", by_alias=True) if request.sort else None,
        "sources": sorted(request.sources) if request.sources else None,
        "maxResults": request.max_results,
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}{digest}"


class SearchOrchestrator:
    """Coordinates cache lookup, concurrent scraping, aggregation and health events."""

    def __init__(
        self,
        config: EngineConfig,
        source_store: SourceStore,
        cache: KeyValueCache,
        health_monitor: Optional[HealthMonitor] = None,
        worker_factory: Optional[Callable[[], ScraperWorker]] = None,
        logger: Optional[StructuredLogger] = None,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize orchestrator.

        Args:
            config: Engine configuration
            source_store: Source profile store
            cache: Cache for search payloads and rate-limit counters
            health_monitor: Receives one outcome event per dispatched source
            worker_factory: Builds a fresh worker per dispatched source
            logger: Structured logger for telemetry
            sleeper: Async sleep used between sequential dispatches
        """
        self.config = config
        self.source_store = source_store
        self.cache = cache
        self.health_monitor = health_monitor
        self.logger = logger or StructuredLogger(level=config.log_level)
        self.rate_limiter = RateLimiter(
            cache,
            window_seconds=config.rate_limit_window,
            max_requests=config.rate_limit_max_requests,
        )
        self.worker_factory = worker_factory or self._default_worker
        self.formatter = JSONOutputFormatter()
        self._sleep = sleeper

    def _default_worker(self) -> ScraperWorker:
        return ScraperWorker(self.config, rate_limiter=self.rate_limiter, logger=self.logger)

    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Run one search across active sources.

        Args:
            request: Validated search request

        Returns:
            SearchResponse; partial source failures only lower successfulSources

        Raises:
            ValueError: If the query is empty or too long
            SourceStoreError: If the source configuration store is unreachable
        """
        start = time.perf_counter()
        search_id = str(uuid.uuid4())
        query = request.query.strip()
        if not self.config.min_query_length <= len(query) <= self.config.max_query_length:
            raise ValueError(
                f"Search query must be {self.config.min_query_length}-"
                f"{self.config.max_query_length} characters"
            )

        cache_key = build_cache_key(request)
        cached = await self._read_cache(cache_key)
        if cached is not None:
            response = replace(cached, search_id=search_id).with_metadata(
                cache_hit=True,
                search_duration_ms=self._elapsed_ms(start),
            )
            self.logger.search_complete(
                search_id=search_id,
                results=len(response.results),
                successful=response.metadata.successful_sources,
                total=response.metadata.total_sources,
                elapsed_ms=response.metadata.search_duration_ms,
            )
            return response

        profiles = await self._load_sources(request.sources)
        self.logger.search_start(search_id=search_id, query=query, sources=len(profiles))

        results = await self._dispatch(profiles, query)

        aggregator = ListingAggregator()
        for result in results:
            if result.produced_listings:
                aggregator.add_listings(result.source_id, result.listings)
        self._report_outcomes(profiles, results)

        listings = apply_filters(aggregator.get_listings(), request.filters)
        listings = sort_listings(listings, request.sort)
        listings = truncate(listings, request.max_results)

        response = SearchResponse(
            search_id=search_id,
            results=tuple(listings),
            metadata=SearchMetadata(
                total_sources=len(profiles),
                successful_sources=aggregator.successful_sources,
                search_duration_ms=self._elapsed_ms(start),
                cache_hit=False,
                timestamp=datetime.now(timezone.utc),
            ),
        )

        if profiles:
            await self._write_cache(cache_key, response)

        self.logger.search_complete(
            search_id=search_id,
            results=len(response.results),
            successful=response.metadata.successful_sources,
            total=response.metadata.total_sources,
            elapsed_ms=response.metadata.search_duration_ms,
        )
        return response

    async def _load_sources(self, subset: Optional[List[str]]) -> List[SourceProfile]:
        try:
            profiles = await self.source_store.list_active_sources()
        except SourceStoreError:
            raise
        except Exception as e:
            raise SourceStoreError(f"Source store unavailable: {e}") from e

        if subset:
            wanted = set(subset)
            profiles = [profile for profile in profiles if profile.id in wanted]
        return profiles

    async def _dispatch(self, profiles: List[SourceProfile], query: str) -> List[ScrapeResult]:
        """Scrape every source; one failure never affects another."""
        if not self.config.sequential_dispatch:
            settled = await asyncio.gather(
                *(self._scrape_source(profile, query) for profile in profiles),
                return_exceptions=True,
            )
            return [
                self._as_result(profile, outcome)
                for profile, outcome in zip(profiles, settled)
            ]

        results = []
        for index, profile in enumerate(profiles):
            if index > 0 and profile.configuration is not None:
                await self._sleep(profile.configuration.rate_limit_ms / 1000.0)
            try:
                results.append(await self._scrape_source(profile, query))
            except Exception as e:
                results.append(self._as_result(profile, e))
        return results

    async def _scrape_source(self, profile: SourceProfile, query: str) -> ScrapeResult:
        async with self.worker_factory() as worker:
            return await worker.scrape(profile, query)

    def _as_result(self, profile: SourceProfile, outcome) -> ScrapeResult:
        if isinstance(outcome, ScrapeResult):
            return outcome
        error = f"{type(outcome).__name__}: {outcome}"
        self.logger.scrape_error(source=profile.id, kind=FailureKind.UNEXPECTED.value, error=error, attempts=0)
        return ScrapeResult(
            source_id=profile.id,
            success=False,
            error=error,
            failure_kind=FailureKind.UNEXPECTED,
        )

    def _report_outcomes(self, profiles: List[SourceProfile], results: List[ScrapeResult]) -> None:
        """Hand one outcome per source to the health monitor without waiting."""
        if self.health_monitor is None:
            return
        names = {profile.id: profile.name for profile in profiles}
        timestamp = datetime.now(timezone.utc)
        for result in results:
            outcome = ScrapeOutcome(
                source_id=result.source_id,
                source_name=names.get(result.source_id, ""),
                success=result.success,
                response_time_ms=result.response_time_ms,
                timestamp=timestamp,
                error=result.error,
            )
            try:
                self.health_monitor.submit(outcome)
            except Exception as e:
                self.logger.monitor_error(source=result.source_id, error=str(e))

    async def _read_cache(self, key: str) -> Optional[SearchResponse]:
        try:
            raw = await self.cache.get(key)
        except Exception as e:
            self.logger.cache_error(operation="get", error=str(e))
            return None

        if raw is None:
            self.logger.cache_event(hit=False, cache_key=key)
            return None
        try:
            response = self.formatter.parse(self.formatter.loads(raw))
        except Exception as e:
            self.logger.cache_error(operation="decode", error=str(e))
            return None
        self.logger.cache_event(hit=True, cache_key=key)
        return response

    async def _write_cache(self, key: str, response: SearchResponse) -> None:
        try:
            await self.cache.set_with_expiry(
                key,
                self.formatter.dumps(self.formatter.format(response)),
                self.config.search_cache_ttl,
            )
        except Exception as e:
            self.logger.cache_error(operation="set", error=str(e))

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000
