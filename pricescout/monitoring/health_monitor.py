"""Per-source health tracking and alerting.

The monitor keeps one health record per source, updated from scrape
outcome events. Every status change may raise one alert, retained in a
bounded in-memory buffer and handed to an optional notification sink.
Records and alerts are mirrored to the cache with TTLs so a restarted
process can rehydrate them.
"""

import asyncio
import contextlib
import logging
import random
import string
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Protocol, Set

from pricescout.models.config import EngineConfig
from pricescout.models.data_models import (
    Alert,
    AlertType,
    HealthStatus,
    ScrapeOutcome,
    SourceHealthRecord,
    SystemHealth,
)
from pricescout.monitoring.logger import StructuredLogger
from pricescout.pipeline.output import JSONOutputFormatter
from pricescout.storage.cache import KeyValueCache

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        ...


class SystemClock:
    """Default clock implementation using the wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class AlertSink(Protocol):
    """Receives alerts for downstream paging or display."""

    async def deliver(self, alert: Alert) -> None:
        ...


class LoggingAlertSink:
    """Sink that writes alerts to the standard logger."""

    async def deliver(self, alert: Alert) -> None:
        level = logging.ERROR if alert.type == AlertType.CRITICAL else logging.WARNING
        if alert.type == AlertType.RECOVERY:
            level = logging.INFO
        logger.log(level, f"[{alert.type.value.upper()}] {alert.message}")


class HealthMonitor:
    """
    Health state machine per source.

    Status precedence on every evaluation:
    1. no event within ``stale_after`` seconds -> unknown
    2. success rate < 50% or average response time > 2x threshold -> critical
    3. success rate, response time or error count past thresholds -> warning
    4. otherwise -> healthy

    Updates are serialized per source, so concurrent outcome events for the
    same source never interleave their arithmetic.
    """

    METRICS_PREFIX = "scraping:metrics:"
    ALERT_PREFIX = "scraping:alert:"
    CRITICAL_SUCCESS_RATE = 50.0

    def __init__(
        self,
        cache: Optional[KeyValueCache] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        sink: Optional[AlertSink] = None,
        logger: Optional[StructuredLogger] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the monitor.

        Args:
            cache: Cache mirroring records and alerts (persistence skipped when None)
            config: Thresholds, TTLs and buffer size
            clock: Clock interface (defaults to SystemClock)
            sink: Optional alert notification sink
            logger: Structured logger for telemetry
            rng: Random source for alert ids
        """
        self.cache = cache
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.sink = sink
        self.logger = logger or StructuredLogger(level=self.config.log_level)
        self.rng = rng or random.Random()
        self.formatter = JSONOutputFormatter()

        self._records: Dict[str, SourceHealthRecord] = {}
        self._alerts: Deque[Alert] = deque(maxlen=self.config.max_alerts)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending: Set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None

    # Outcome events

    def submit(self, outcome: ScrapeOutcome) -> None:
        """Record an outcome in the background; errors are logged, never raised."""
        task = asyncio.create_task(self.record_outcome(outcome))
        self._pending.add(task)
        task.add_done_callback(self._on_submitted_done)

    def _on_submitted_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.monitor_error(source="-", error=f"{type(error).__name__}: {error}")

    async def drain(self) -> None:
        """Wait until every submitted outcome has been recorded."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def record_outcome(self, outcome: ScrapeOutcome) -> SourceHealthRecord:
        """
        Fold one scrape outcome into the source's record.

        Args:
            outcome: Success flag, response time and error of one scrape

        Returns:
            The updated record
        """
        async with self._locks[outcome.source_id]:
            now = self.clock.now()
            record = self._records.get(outcome.source_id)
            if record is None:
                record = SourceHealthRecord(source_id=outcome.source_id, last_check=now)
                self._records[outcome.source_id] = record

            # Staleness is judged against the previous check, not this event
            previous = self.evaluate_status(record, now)
            had_history = record.total_requests > 0

            record.total_requests += 1
            if outcome.success:
                record.last_successful_scrape = outcome.timestamp
            else:
                record.error_count += 1
                record.last_error = outcome.error
            if outcome.source_name:
                record.source_name = outcome.source_name

            record.success_rate = (
                (record.total_requests - record.error_count) / record.total_requests * 100
            )
            if outcome.success:
                # Running mean over successful scrapes only
                successes = record.total_requests - record.error_count
                record.average_response_time_ms += (
                    (outcome.response_time_ms - record.average_response_time_ms) / successes
                )
            record.last_check = now
            record.status = self.evaluate_status(record, now)

            self.logger.health_updated(
                source=record.source_id,
                status=record.status.value,
                success_rate=record.success_rate,
                total_requests=record.total_requests,
            )
            await self._persist_record(record)
            await self._on_transition(record, previous, had_history)
            return record

    def evaluate_status(self, record: SourceHealthRecord, now: Optional[datetime] = None) -> HealthStatus:
        """Classify a record without mutating it."""
        now = now or self.clock.now()
        if (now - record.last_check).total_seconds() > self.config.stale_after:
            return HealthStatus.UNKNOWN
        if record.total_requests == 0:
            return HealthStatus.UNKNOWN

        threshold = self.config.response_time_threshold
        if (
            record.success_rate < self.CRITICAL_SUCCESS_RATE
            or record.average_response_time_ms > 2 * threshold
        ):
            return HealthStatus.CRITICAL
        if (
            record.success_rate < self.config.success_rate_threshold
            or record.average_response_time_ms > threshold
            or record.error_count > self.config.error_count_threshold
        ):
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    async def _on_transition(
        self,
        record: SourceHealthRecord,
        previous: HealthStatus,
        had_history: bool
    ) -> Optional[Alert]:
        """Raise at most one alert for a status change."""
        current = record.status
        if current == previous or current == HealthStatus.UNKNOWN:
            return None

        name = record.source_name
        if current == HealthStatus.CRITICAL:
            alert_type = AlertType.CRITICAL
            message = (
                f"Source {name} is in critical state. Success rate: {record.success_rate:.1f}%, "
                f"Last error: {record.last_error or 'None'}"
            )
        elif current == HealthStatus.WARNING:
            alert_type = AlertType.WARNING
            message = (
                f"Source {name} is showing warning signs. Success rate: {record.success_rate:.1f}%, "
                f"Response time: {record.average_response_time_ms:.0f}ms"
            )
        else:
            recovered = previous in (HealthStatus.WARNING, HealthStatus.CRITICAL) or (
                previous == HealthStatus.UNKNOWN and had_history
            )
            if not recovered:
                return None
            alert_type = AlertType.RECOVERY
            message = (
                f"Source {name} has recovered and is now healthy. "
                f"Success rate: {record.success_rate:.1f}%"
            )

        return await self._raise_alert(record, alert_type, message)

    def _new_alert_id(self, timestamp: datetime) -> str:
        suffix = "".join(self.rng.choices(string.ascii_lowercase + string.digits, k=9))
        return f"alert_{int(timestamp.timestamp() * 1000)}_{suffix}"

    async def _raise_alert(self, record: SourceHealthRecord, alert_type: AlertType, message: str) -> Alert:
        timestamp = self.clock.now()
        alert = Alert(
            id=self._new_alert_id(timestamp),
            source_id=record.source_id,
            source_name=record.source_name,
            type=alert_type,
            message=message,
            timestamp=timestamp,
        )
        self._alerts.append(alert)
        self.logger.alert_raised(
            alert_id=alert.id, source=alert.source_id, alert_type=alert_type.value, message=message
        )
        await self._persist_alert(alert)

        if self.sink is not None:
            try:
                await self.sink.deliver(alert)
            except Exception as e:
                self.logger.monitor_error(source=record.source_id, error=f"alert delivery failed: {e}")
        return alert

    # Periodic sweep

    async def run_health_check(self) -> List[SourceHealthRecord]:
        """
        Re-evaluate every record against the clock.

        Records that went stale move to unknown; any status change is
        persisted and alerted like an outcome-driven one.
        """
        changed = []
        for source_id in list(self._records):
            async with self._locks[source_id]:
                record = self._records[source_id]
                previous = record.status
                current = self.evaluate_status(record)
                if current == previous:
                    continue
                record.status = current
                self.logger.health_updated(
                    source=source_id,
                    status=current.value,
                    success_rate=record.success_rate,
                    total_requests=record.total_requests,
                )
                await self._persist_record(record)
                await self._on_transition(record, previous, record.total_requests > 0)
                changed.append(record)
        return changed

    def start(self, interval: Optional[float] = None) -> None:
        """Run ``run_health_check`` every ``interval`` seconds in the background."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        interval = interval or self.config.health_check_interval
        self._sweep_task = asyncio.create_task(self._sweep_forever(interval))

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_health_check()
            except Exception as e:
                self.logger.monitor_error(source="-", error=f"health check failed: {e}")

    async def stop(self) -> None:
        """Stop the periodic sweep and flush pending outcome events."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        await self.drain()

    # Persistence

    async def _persist_record(self, record: SourceHealthRecord) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set_with_expiry(
                f"{self.METRICS_PREFIX}{record.source_id}",
                self.formatter.dumps(self.formatter.format_health_record(record)),
                self.config.metrics_ttl,
            )
        except Exception as e:
            self.logger.monitor_error(source=record.source_id, error=f"persist metrics failed: {e}")

    async def _persist_alert(self, alert: Alert) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set_with_expiry(
                f"{self.ALERT_PREFIX}{alert.id}",
                self.formatter.dumps(self.formatter.format_alert(alert)),
                self.config.alert_ttl,
            )
        except Exception as e:
            self.logger.monitor_error(source=alert.source_id, error=f"persist alert failed: {e}")

    async def load_persisted_data(self) -> int:
        """
        Rehydrate records and alerts from the cache.

        In-memory records win over persisted ones. Unreadable entries are
        skipped.

        Returns:
            Number of records and alerts loaded
        """
        if self.cache is None:
            return 0

        loaded = 0
        try:
            metric_keys = await self.cache.list_keys(self.METRICS_PREFIX)
            alert_keys = await self.cache.list_keys(self.ALERT_PREFIX)
        except Exception as e:
            self.logger.monitor_error(source="-", error=f"load persisted data failed: {e}")
            return 0

        for key in metric_keys:
            try:
                raw = await self.cache.get(key)
                if raw is None:
                    continue
                record = self.formatter.parse_health_record(self.formatter.loads(raw))
            except Exception as e:
                self.logger.monitor_error(source=key, error=f"unreadable metrics: {e}")
                continue
            if record.source_id not in self._records:
                self._records[record.source_id] = record
                loaded += 1

        known = {alert.id for alert in self._alerts}
        restored = []
        for key in alert_keys:
            try:
                raw = await self.cache.get(key)
                if raw is None:
                    continue
                alert = self.formatter.parse_alert(self.formatter.loads(raw))
            except Exception as e:
                self.logger.monitor_error(source=key, error=f"unreadable alert: {e}")
                continue
            if alert.id not in known:
                restored.append(alert)

        # Oldest first so the ring buffer keeps the most recent ones
        combined = sorted([*self._alerts, *restored], key=lambda alert: alert.timestamp)
        self._alerts.clear()
        self._alerts.extend(combined)
        loaded += len(restored)
        return loaded

    # Queries

    def get_record(self, source_id: str) -> Optional[SourceHealthRecord]:
        return self._records.get(source_id)

    def get_all_records(self) -> List[SourceHealthRecord]:
        return sorted(self._records.values(), key=lambda record: record.source_id)

    def get_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        """Retained alerts, newest first."""
        alerts = sorted(self._alerts, key=lambda alert: alert.timestamp, reverse=True)
        return alerts[:limit] if limit is not None else alerts

    def get_active_alerts(self) -> List[Alert]:
        """Unacknowledged alerts, newest first."""
        return [alert for alert in self.get_alerts() if not alert.acknowledged]

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> bool:
        """
        Mark an alert acknowledged.

        Returns:
            True if the alert exists in the buffer
        """
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                alert.acknowledged_by = acknowledged_by
                alert.acknowledged_at = self.clock.now()
                self.logger.alert_acknowledged(alert_id=alert_id, acknowledged_by=acknowledged_by)
                await self._persist_alert(alert)
                return True
        return False

    def system_health(self) -> SystemHealth:
        """Aggregate status counts and an overall status across sources."""
        statuses = [record.status for record in self._records.values()]
        counts = {status: statuses.count(status) for status in HealthStatus}
        total = len(statuses)

        if counts[HealthStatus.CRITICAL] > 0:
            overall = HealthStatus.CRITICAL
        elif counts[HealthStatus.WARNING] > 0:
            overall = HealthStatus.WARNING
        elif counts[HealthStatus.UNKNOWN] > total / 2:
            overall = HealthStatus.UNKNOWN
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(
            total_sources=total,
            healthy_sources=counts[HealthStatus.HEALTHY],
            warning_sources=counts[HealthStatus.WARNING],
            critical_sources=counts[HealthStatus.CRITICAL],
            unknown_sources=counts[HealthStatus.UNKNOWN],
            active_alerts=len(self.get_active_alerts()),
            overall_status=overall,
        )
