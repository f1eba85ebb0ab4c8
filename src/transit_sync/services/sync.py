"""Scheduled realtime sync: fetch, decode, sanitize, persist, merge, evict."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from transit_sync.clock import to_epoch
from transit_sync.errors import NetworkError, StoreError
from transit_sync.logging import bind_context, get_logger, unbind_context
from transit_sync.services.catalog import LiveSnapshot, index_predictions_by_stop
from transit_sync.services.realtime.events import SyncEvents
from transit_sync.services.realtime.feed_client import FeedKind
from transit_sync.services.realtime.sanitizer import ReferenceLookups
from transit_sync.store import TRIP_UPDATE_FEED, VEHICLE_FEED

if TYPE_CHECKING:
    from transit_sync.clock import Clock
    from transit_sync.config import Settings
    from transit_sync.entities import ArrivalPrediction, Incident, VehiclePosition
    from transit_sync.services.catalog import TransitCatalog
    from transit_sync.services.incidents import IncidentAggregator
    from transit_sync.services.realtime.decoder import RealtimeDecoder
    from transit_sync.services.realtime.feed_client import FeedClient
    from transit_sync.services.realtime.sanitizer import ForeignKeySanitizer
    from transit_sync.store import TransitStore

logger = get_logger(__name__)

DEFAULT_INTERVAL_SEC = 30
DEFAULT_STALE_AFTER_SEC = 600
DEFAULT_INCIDENT_RETENTION_HOURS = 24
DEFAULT_WARNING_AFTER_SEC = 120
DEFAULT_UNHEALTHY_AFTER_SEC = 300


class Health(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    UNHEALTHY = "UNHEALTHY"
    STOPPED = "STOPPED"
    STARTING = "STARTING"


class CycleStage(str, Enum):
    FETCH = "FETCH"
    DECODE = "DECODE"
    SANITIZE = "SANITIZE"
    PERSIST = "PERSIST"
    MERGE = "MERGE"
    EVICT_STALE = "EVICT_STALE"
    DONE = "DONE"


def derive_health(
    running: bool,
    last_success_at: datetime | None,
    now: datetime,
    warning_after_sec: int = DEFAULT_WARNING_AFTER_SEC,
    unhealthy_after_sec: int = DEFAULT_UNHEALTHY_AFTER_SEC,
) -> Health:
    if not running:
        return Health.STOPPED
    if last_success_at is None:
        return Health.STARTING
    age = (now - last_success_at).total_seconds()
    if age < warning_after_sec:
        return Health.HEALTHY
    if age < unhealthy_after_sec:
        return Health.WARNING
    return Health.UNHEALTHY


@dataclass(frozen=True, slots=True)
class SyncMetrics:
    """Point-in-time view of the orchestrator counters."""

    running: bool
    health: Health
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    last_success_at: datetime | None = None
    last_attempt_at: datetime | None = None
    vehicle_count: int = 0
    incident_count: int = 0
    using_cache: bool = False
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of cycles that succeeded."""
        if not self.total_cycles:
            return 0.0
        return self.successful_cycles / self.total_cycles * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "health": self.health.value,
            "total_cycles": self.total_cycles,
            "successful_cycles": self.successful_cycles,
            "failed_cycles": self.failed_cycles,
            "success_rate": round(self.success_rate, 1),
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "vehicle_count": self.vehicle_count,
            "incident_count": self.incident_count,
            "using_cache": self.using_cache,
            "last_error": self.last_error,
        }


@dataclass(slots=True)
class FeedOutcome:
    """What one feed contributed to a cycle."""

    feed_type: str
    status: str = "error"
    stage: CycleStage = CycleStage.FETCH
    records: int = 0
    using_cache: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "stage": self.stage.value,
            "records": self.records,
            "using_cache": self.using_cache,
            "error": self.error,
        }


@dataclass(slots=True)
class CycleReport:
    cycle_id: str
    started_at: datetime
    ended_at: datetime | None = None
    success: bool = False
    using_cache: bool = False
    vehicle_count: int = 0
    prediction_count: int = 0
    evicted_vehicles: int = 0
    incidents_created: int = 0
    incidents_updated: int = 0
    incidents_resolved: int = 0
    incident_count: int = 0
    error: str | None = None
    feeds: dict[str, FeedOutcome] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "success": self.success,
            "using_cache": self.using_cache,
            "vehicle_count": self.vehicle_count,
            "prediction_count": self.prediction_count,
            "evicted_vehicles": self.evicted_vehicles,
            "incidents": {
                "created": self.incidents_created,
                "updated": self.incidents_updated,
                "resolved": self.incidents_resolved,
                "active": self.incident_count,
            },
            "error": self.error,
            "feeds": {name: outcome.to_dict() for name, outcome in self.feeds.items()},
        }


class SyncOrchestrator:
    """Runs the realtime sync cycle on a fixed period.

    The vehicle feed decides whether a cycle succeeds; trip updates are
    best-effort. When a feed cannot be fetched or decodes to nothing, the
    last persisted snapshot stands in for it. A failed cycle leaves the
    published live state untouched.

    Usage:
        await orchestrator.start()   # immediate first cycle, then every interval
        await orchestrator.stop()    # waits for an in-flight cycle

        # Or run a single cycle:
        report = await orchestrator.run_once()
    """

    def __init__(
        self,
        feed_client: FeedClient,
        decoder: RealtimeDecoder,
        sanitizer: ForeignKeySanitizer,
        aggregator: IncidentAggregator,
        store: TransitStore,
        catalog: TransitCatalog,
        clock: Clock,
        events: SyncEvents | None = None,
        interval_sec: int = DEFAULT_INTERVAL_SEC,
        stale_after_sec: int = DEFAULT_STALE_AFTER_SEC,
        incident_retention_hours: int = DEFAULT_INCIDENT_RETENTION_HOURS,
        warning_after_sec: int = DEFAULT_WARNING_AFTER_SEC,
        unhealthy_after_sec: int = DEFAULT_UNHEALTHY_AFTER_SEC,
    ) -> None:
        self._feed_client = feed_client
        self._decoder = decoder
        self._sanitizer = sanitizer
        self._aggregator = aggregator
        self._store = store
        self._catalog = catalog
        self._clock = clock
        self.events = events or SyncEvents()

        self.interval_sec = interval_sec
        self.stale_after = timedelta(seconds=stale_after_sec)
        self.incident_retention = timedelta(hours=incident_retention_hours)
        self.warning_after_sec = warning_after_sec
        self.unhealthy_after_sec = unhealthy_after_sec

        self._cycle_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

        self._total_cycles = 0
        self._successful_cycles = 0
        self._failed_cycles = 0
        self._last_success_at: datetime | None = None
        self._last_attempt_at: datetime | None = None
        self._using_cache = False
        self._last_error: str | None = None
        self._pending_incident_writes: list[Incident] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        feed_client: FeedClient,
        decoder: RealtimeDecoder,
        sanitizer: ForeignKeySanitizer,
        aggregator: IncidentAggregator,
        store: TransitStore,
        catalog: TransitCatalog,
        clock: Clock,
        events: SyncEvents | None = None,
    ) -> SyncOrchestrator:
        return cls(
            feed_client=feed_client,
            decoder=decoder,
            sanitizer=sanitizer,
            aggregator=aggregator,
            store=store,
            catalog=catalog,
            clock=clock,
            events=events,
            interval_sec=settings.sync_interval_sec,
            stale_after_sec=settings.vehicle_stale_after_sec,
            incident_retention_hours=settings.incident_retention_hours,
            warning_after_sec=settings.health_warning_after_sec,
            unhealthy_after_sec=settings.health_unhealthy_after_sec,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, interval_sec: int | None = None) -> None:
        """Start the background loop; the first cycle runs immediately."""
        if self._running:
            logger.warning("Sync already running, ignoring start request")
            return

        if interval_sec is not None:
            self.interval_sec = interval_sec
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._sync_loop(self._stop_event))
        logger.info("Realtime sync started", interval_sec=self.interval_sec)

    async def stop(self) -> None:
        """Stop the loop after the in-flight cycle, if any, completes."""
        if not self._running:
            return

        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
        self._task = None
        self._stop_event = None
        logger.info("Realtime sync stopped")

    async def _sync_loop(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        while not stop_event.is_set():
            started = loop.time()
            await self.run_once()
            # Fixed period measured from cycle start; a long cycle delays the next
            remaining = max(0.0, self.interval_sec - (loop.time() - started))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> SyncMetrics:
        live = self._catalog.live
        return SyncMetrics(
            running=self._running,
            health=derive_health(
                self._running,
                self._last_success_at,
                self._clock.now(),
                self.warning_after_sec,
                self.unhealthy_after_sec,
            ),
            total_cycles=self._total_cycles,
            successful_cycles=self._successful_cycles,
            failed_cycles=self._failed_cycles,
            last_success_at=self._last_success_at,
            last_attempt_at=self._last_attempt_at,
            vehicle_count=len(live.vehicles),
            incident_count=len(live.incidents),
            using_cache=self._using_cache,
            last_error=self._last_error,
        )

    def is_healthy(self) -> bool:
        """Running, with a successful cycle inside the unhealthy threshold."""
        if not self._running or self._last_success_at is None:
            return False
        age = (self._clock.now() - self._last_success_at).total_seconds()
        return age < self.unhealthy_after_sec

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_once(self) -> CycleReport:
        """Run one full cycle; never raises. Cycles never overlap."""
        async with self._cycle_lock:
            cycle_id = str(uuid.uuid4())[:8]
            bind_context(cycle_id=cycle_id)
            try:
                return await self._run_cycle(cycle_id)
            finally:
                unbind_context("cycle_id")

    async def _run_cycle(self, cycle_id: str) -> CycleReport:
        now = self._clock.now()
        report = CycleReport(cycle_id=cycle_id, started_at=now)
        self._total_cycles += 1
        self._last_attempt_at = now
        logger.info("Starting sync cycle", cycle_number=self._total_cycles)

        try:
            lookups = ReferenceLookups.from_index_set(self._catalog.static)
            vehicles = await self._sync_vehicles(lookups, report, now)
            if vehicles is None:
                outcome = report.feeds[VEHICLE_FEED]
                await self._fail_cycle(report, outcome.error or "Vehicle feed unavailable")
                return report

            predictions = await self._sync_trip_updates(lookups, report, now)
            self._merge_and_publish(vehicles, predictions, report, now)
            await self._evict_stale_rows(now)
        except Exception as exc:
            logger.error("Sync cycle failed unexpectedly", exc_info=exc)
            await self._fail_cycle(report, f"Unexpected error: {exc}")
            return report

        self._successful_cycles += 1
        self._last_success_at = now
        self._last_error = None
        self._using_cache = report.using_cache
        report.success = True
        report.ended_at = self._clock.now()
        logger.info(
            "Sync cycle complete",
            vehicles=report.vehicle_count,
            predictions=report.prediction_count,
            evicted=report.evicted_vehicles,
            incidents=report.incident_count,
            using_cache=report.using_cache,
        )
        await self.events.emit_vehicles_updated(self._catalog.get_active_vehicle_positions())
        return report

    async def _fail_cycle(self, report: CycleReport, message: str) -> None:
        self._failed_cycles += 1
        self._last_error = message
        report.success = False
        report.error = message
        report.ended_at = self._clock.now()
        logger.error("Sync cycle failed", error=message, failed_cycles=self._failed_cycles)
        await self.events.emit_update_failed(message)

    async def _sync_vehicles(
        self, lookups: ReferenceLookups, report: CycleReport, now: datetime
    ) -> list[VehiclePosition] | None:
        """Fresh or cached vehicles for this cycle; None when neither is available."""
        outcome = FeedOutcome(feed_type=VEHICLE_FEED)
        report.feeds[VEHICLE_FEED] = outcome

        fetch_error: str | None = None
        vehicles: list[VehiclePosition] = []
        try:
            data = await self._feed_client.fetch(FeedKind.VEHICLE_POSITIONS)
            outcome.stage = CycleStage.DECODE
            vehicles = self._decoder.decode_vehicles(data)
        except NetworkError as exc:
            fetch_error = str(exc)

        if not vehicles:
            try:
                vehicles = await self._store.load_vehicles()
            except StoreError as exc:
                outcome.error = f"{fetch_error or 'No vehicle data'}; cache read failed: {exc}"
                await self._record_feed_meta(VEHICLE_FEED, "error", now, error=outcome.error)
                return None

            if vehicles:
                outcome.using_cache = True
                report.using_cache = True
                logger.warning(
                    "Using cached vehicle positions", cached=len(vehicles), reason=fetch_error
                )
            elif fetch_error:
                outcome.error = fetch_error
                await self._record_feed_meta(VEHICLE_FEED, "error", now, error=fetch_error)
                return None

        outcome.stage = CycleStage.SANITIZE
        vehicles = self._sanitizer.sanitize_vehicles(vehicles, lookups)

        if not outcome.using_cache:
            outcome.stage = CycleStage.PERSIST
            try:
                await self._store.upsert_vehicles(vehicles)
            except StoreError as exc:
                outcome.error = str(exc)
                logger.error("Failed to persist vehicle positions", error=str(exc))

        outcome.stage = CycleStage.MERGE
        outcome.records = len(vehicles)
        outcome.status = "cache" if outcome.using_cache else "ok"
        await self._record_feed_meta(
            VEHICLE_FEED, outcome.status, now, entity_count=len(vehicles), error=outcome.error
        )
        return vehicles

    async def _sync_trip_updates(
        self, lookups: ReferenceLookups, report: CycleReport, now: datetime
    ) -> list[ArrivalPrediction] | None:
        """Fresh or cached predictions; None keeps the previous live set."""
        outcome = FeedOutcome(feed_type=TRIP_UPDATE_FEED)
        report.feeds[TRIP_UPDATE_FEED] = outcome

        fetch_error: str | None = None
        predictions: list[ArrivalPrediction] = []
        try:
            data = await self._feed_client.fetch(FeedKind.TRIP_UPDATES)
            outcome.stage = CycleStage.DECODE
            predictions = self._decoder.decode_trip_updates(data)
        except NetworkError as exc:
            fetch_error = str(exc)

        if not predictions:
            try:
                predictions = await self._store.load_trip_updates()
            except StoreError as exc:
                outcome.error = f"{fetch_error or 'No trip updates'}; cache read failed: {exc}"
                logger.warning("Trip updates unavailable", error=outcome.error)
                await self._record_feed_meta(TRIP_UPDATE_FEED, "error", now, error=outcome.error)
                return None

            if predictions:
                outcome.using_cache = True
                report.using_cache = True
                logger.info("Using cached trip updates", cached=len(predictions))
            elif fetch_error:
                outcome.error = fetch_error
                logger.warning("Trip updates unavailable", error=fetch_error)
                await self._record_feed_meta(TRIP_UPDATE_FEED, "error", now, error=fetch_error)
                return None

        outcome.stage = CycleStage.SANITIZE
        predictions = self._sanitizer.sanitize_predictions(predictions, lookups)

        if not outcome.using_cache:
            outcome.stage = CycleStage.PERSIST
            try:
                await self._store.replace_trip_updates(predictions)
            except StoreError as exc:
                outcome.error = str(exc)
                logger.error("Failed to persist trip updates", error=str(exc))

        outcome.stage = CycleStage.MERGE
        outcome.records = len(predictions)
        outcome.status = "cache" if outcome.using_cache else "ok"
        await self._record_feed_meta(
            TRIP_UPDATE_FEED, outcome.status, now, entity_count=len(predictions), error=outcome.error
        )
        return predictions

    def _merge_and_publish(
        self,
        vehicles: list[VehiclePosition],
        predictions: list[ArrivalPrediction] | None,
        report: CycleReport,
        now: datetime,
    ) -> None:
        """Merge into a new live snapshot, drop stale vehicles, swap it in."""
        current = self._catalog.live
        merged = dict(current.vehicles)
        merged.update((v.vehicle_id, v) for v in vehicles)

        cutoff = now - self.stale_after
        fresh = {vid: v for vid, v in merged.items() if v.recorded_at >= cutoff}
        report.evicted_vehicles = len(merged) - len(fresh)

        if predictions is None:
            live_predictions = current.predictions
            by_stop = current.predictions_by_stop
        else:
            live_predictions = tuple(predictions)
            by_stop = index_predictions_by_stop(live_predictions)
            result = self._aggregator.aggregate(live_predictions)
            report.incidents_created = len(result.created)
            report.incidents_updated = len(result.updated)
            report.incidents_resolved = len(result.resolved)
            self._pending_incident_writes = result.changed

        incidents = self._aggregator.active
        self._catalog.publish_live(
            LiveSnapshot(
                vehicles=fresh,
                predictions=live_predictions,
                predictions_by_stop=by_stop,
                incidents=incidents,
                updated_at=now,
            )
        )
        report.vehicle_count = len(fresh)
        report.prediction_count = len(live_predictions)
        report.incident_count = len(incidents)

    async def _evict_stale_rows(self, now: datetime) -> None:
        """Mirror the in-memory eviction in the store and persist incident changes."""
        pending, self._pending_incident_writes = self._pending_incident_writes, []
        try:
            if pending:
                await self._store.save_incidents(pending)
            evicted = await self._store.delete_stale_vehicles(to_epoch(now - self.stale_after))
            purged = await self._store.delete_resolved_incidents(
                to_epoch(now - self.incident_retention)
            )
        except StoreError as exc:
            logger.error("Failed to evict stale rows", error=str(exc))
            return
        if evicted or purged:
            logger.info("Stale rows evicted", vehicles=evicted, resolved_incidents=purged)

    async def _record_feed_meta(
        self,
        feed_type: str,
        status: str,
        now: datetime,
        entity_count: int = 0,
        error: str | None = None,
    ) -> None:
        try:
            await self._store.update_feed_meta(
                feed_type,
                status=status,
                attempted_at=to_epoch(now),  # type: ignore[arg-type]
                entity_count=entity_count,
                error_message=error or "",
            )
        except StoreError as exc:
            logger.error("Failed to update feed meta", feed_type=feed_type, error=str(exc))
