"""Tests for the realtime sync orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest

from transit_sync.entities import VehiclePosition
from transit_sync.services.catalog import TransitCatalog
from transit_sync.services.incidents import IncidentAggregator
from transit_sync.services.realtime.decoder import RealtimeDecoder
from transit_sync.services.realtime.events import SyncEvents
from transit_sync.services.realtime.feed_client import FeedKind
from transit_sync.services.realtime.sanitizer import ForeignKeySanitizer, InvalidReferenceReporter
from transit_sync.services.sync import Health, SyncMetrics, SyncOrchestrator, derive_health
from transit_sync.store import VEHICLE_FEED, TransitStore

from .conftest import T0, FakeClock, StubFeedClient
from .fixtures.gtfs_rt_fixture import build_multi_vehicle_feed, build_route_delay_feed

VP = FeedKind.VEHICLE_POSITIONS
TU = FeedKind.TRIP_UPDATES


@pytest.fixture
async def orchestrator(
    feed_client: StubFeedClient,
    store: TransitStore,
    loaded_catalog: TransitCatalog,
    clock: FakeClock,
) -> AsyncGenerator[SyncOrchestrator, None]:
    orchestrator = SyncOrchestrator(
        feed_client=feed_client,
        decoder=RealtimeDecoder(clock),
        sanitizer=ForeignKeySanitizer(InvalidReferenceReporter(clock)),
        aggregator=IncidentAggregator(clock),
        store=store,
        catalog=loaded_catalog,
        clock=clock,
        events=SyncEvents(),
        interval_sec=3600,
    )
    yield orchestrator
    await orchestrator.stop()


async def _wait_for_cycles(orchestrator: SyncOrchestrator, count: int) -> None:
    for _ in range(500):
        metrics = orchestrator.get_metrics()
        if metrics.successful_cycles + metrics.failed_cycles >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"sync did not complete {count} cycle(s)")


def _cached_vehicle(index: int, clock: FakeClock) -> VehiclePosition:
    return VehiclePosition(
        vehicle_id=f"cached-{index:02d}",
        lat=41.9,
        lon=12.5,
        timestamp=clock.now(),
        recorded_at=clock.now(),
    )


class TestCycle:
    """Tests for a single sync cycle."""

    @pytest.mark.asyncio
    async def test_fresh_cycle_publishes_live_state(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
        store: TransitStore,
    ) -> None:
        feed_client.serve(
            VP,
            build_multi_vehicle_feed(
                [
                    {"vehicle_id": "4501", "trip_id": "T64-1", "route_id": "R64"},
                    {"vehicle_id": "4502", "trip_id": "T-GONE", "route_id": "R70"},
                ]
            ),
        )
        feed_client.serve(TU, build_route_delay_feed({"R64": [6, 7, 8, 9, 20]}))

        report = await orchestrator.run_once()

        assert report.success
        assert not report.using_cache
        assert report.vehicle_count == 2
        assert report.prediction_count == 5
        assert report.incidents_created == 1

        assert loaded_catalog.get_vehicle_by_id("4502").trip_id is None
        assert loaded_catalog.get_vehicle_by_id("4502").route_id == "R70"
        assert len(loaded_catalog.get_arrivals_for_stop("70002")) == 5
        [incident] = loaded_catalog.get_active_incidents()
        assert incident.incident_id == "RITARDO_LINEA_R64"

        assert len(await store.load_vehicles()) == 2
        assert [i.incident_id for i in await store.load_active_incidents()] == [
            "RITARDO_LINEA_R64"
        ]
        assert (await store.get_feed_meta(VEHICLE_FEED))["status"] == "ok"

    @pytest.mark.asyncio
    async def test_cached_vehicles_used_when_feed_unavailable(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        store: TransitStore,
        clock: FakeClock,
    ) -> None:
        await store.upsert_vehicles([_cached_vehicle(i, clock) for i in range(42)])
        feed_client.fail(VP)

        report = await orchestrator.run_once()

        assert report.success
        assert report.using_cache
        metrics = orchestrator.get_metrics()
        assert metrics.using_cache
        assert metrics.vehicle_count == 42
        assert (await store.get_feed_meta(VEHICLE_FEED))["status"] == "cache"

    @pytest.mark.asyncio
    async def test_no_data_and_no_cache_fails_cycle(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
    ) -> None:
        failures: list[str] = []
        orchestrator.events.on_update_failed(failures.append)
        feed_client.fail(VP, "vehicle feed down")

        report = await orchestrator.run_once()

        assert not report.success
        assert "vehicle feed down" in report.error
        assert failures == [report.error]
        assert loaded_catalog.live.updated_at is None
        metrics = orchestrator.get_metrics()
        assert metrics.failed_cycles == 1
        assert metrics.last_error == report.error

    @pytest.mark.asyncio
    async def test_empty_feed_outside_service_hours(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        feed_client.serve(VP, b"")

        report = await orchestrator.run_once()

        assert report.success
        assert report.vehicle_count == 0

    @pytest.mark.asyncio
    async def test_trip_update_failure_is_not_fatal(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
    ) -> None:
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))
        feed_client.serve(TU, build_route_delay_feed({"R64": [1, 2]}))
        await orchestrator.run_once()

        feed_client.fail(TU)
        report = await orchestrator.run_once()

        assert report.success
        assert report.feeds["trip_updates"].using_cache
        assert len(loaded_catalog.get_arrivals_for_stop("70002")) == 2

    @pytest.mark.asyncio
    async def test_cached_trip_updates_mark_cycle_as_cached(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
    ) -> None:
        """Fresh vehicles with cached predictions still count as a cached cycle."""
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))
        feed_client.serve(TU, build_route_delay_feed({"R64": [1, 2]}))
        first = await orchestrator.run_once()
        assert not first.using_cache

        feed_client.fail(TU)
        report = await orchestrator.run_once()

        assert report.success
        assert not report.feeds["vehicle_positions"].using_cache
        assert report.feeds["trip_updates"].using_cache
        assert report.using_cache
        assert orchestrator.get_metrics().using_cache is True

    @pytest.mark.asyncio
    async def test_stale_vehicles_evicted(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
        store: TransitStore,
        clock: FakeClock,
    ) -> None:
        feed_client.serve(
            VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}, {"vehicle_id": "4502"}])
        )
        await orchestrator.run_once()

        clock.advance(minutes=11)
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4502"}]))
        report = await orchestrator.run_once()

        assert report.evicted_vehicles == 1
        assert [v.vehicle_id for v in loaded_catalog.get_active_vehicle_positions()] == ["4502"]
        assert [v.vehicle_id for v in await store.load_vehicles()] == ["4502"]

    @pytest.mark.asyncio
    async def test_vehicles_merge_across_cycles(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
        clock: FakeClock,
    ) -> None:
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))
        await orchestrator.run_once()

        clock.advance(seconds=30)
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4502"}]))
        await orchestrator.run_once()

        assert [v.vehicle_id for v in loaded_catalog.get_active_vehicle_positions()] == [
            "4501",
            "4502",
        ]

    @pytest.mark.asyncio
    async def test_incident_resolved_when_delays_clear(
        self,
        orchestrator: SyncOrchestrator,
        feed_client: StubFeedClient,
        loaded_catalog: TransitCatalog,
        store: TransitStore,
        clock: FakeClock,
    ) -> None:
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))
        feed_client.serve(TU, build_route_delay_feed({"R64": [6, 7, 8, 9, 20]}))
        await orchestrator.run_once()

        clock.advance(seconds=30)
        feed_client.serve(TU, build_route_delay_feed({"R64": [6, 7]}))
        report = await orchestrator.run_once()

        assert report.incidents_resolved == 1
        assert loaded_catalog.get_active_incidents() == []
        assert await store.load_active_incidents() == []

    @pytest.mark.asyncio
    async def test_vehicles_updated_event(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        received: list[list[VehiclePosition]] = []

        async def on_update(vehicles: list[VehiclePosition]) -> None:
            received.append(vehicles)

        orchestrator.events.on_vehicles_updated(on_update)
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))

        await orchestrator.run_once()

        assert [[v.vehicle_id for v in batch] for batch in received] == [["4501"]]


class TestLifecycleAndHealth:
    """Tests for start/stop, metrics and derived health."""

    @pytest.mark.asyncio
    async def test_start_runs_first_cycle_immediately(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))

        await orchestrator.start()
        await _wait_for_cycles(orchestrator, 1)

        metrics = orchestrator.get_metrics()
        assert metrics.running
        assert metrics.health is Health.HEALTHY
        assert orchestrator.is_healthy()

        await orchestrator.stop()
        assert orchestrator.get_metrics().health is Health.STOPPED
        assert feed_client.calls.count(VP) == 1

    @pytest.mark.asyncio
    async def test_restart_after_stop(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        """A stopped loop can be started again and runs a fresh first cycle."""
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))

        await orchestrator.start()
        await _wait_for_cycles(orchestrator, 1)
        await orchestrator.stop()

        await orchestrator.start()
        await _wait_for_cycles(orchestrator, 2)

        assert orchestrator.get_metrics().running
        assert feed_client.calls.count(VP) == 2

        await orchestrator.stop()
        assert not orchestrator.get_metrics().running

    @pytest.mark.asyncio
    async def test_health_degrades_with_age(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient, clock: FakeClock
    ) -> None:
        feed_client.serve(VP, build_multi_vehicle_feed([{"vehicle_id": "4501"}]))
        await orchestrator.start()
        await _wait_for_cycles(orchestrator, 1)

        clock.advance(minutes=3)
        assert orchestrator.get_metrics().health is Health.WARNING
        assert orchestrator.is_healthy()

        clock.advance(minutes=3)
        assert orchestrator.get_metrics().health is Health.UNHEALTHY
        assert not orchestrator.is_healthy()

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        await orchestrator.start(interval_sec=1800)
        await orchestrator.start(interval_sec=5)
        await _wait_for_cycles(orchestrator, 1)

        assert orchestrator.interval_sec == 1800

    @pytest.mark.asyncio
    async def test_success_rate(
        self, orchestrator: SyncOrchestrator, feed_client: StubFeedClient
    ) -> None:
        feed_client.serve(VP, b"")
        await orchestrator.run_once()
        feed_client.fail(VP)
        await orchestrator.run_once()

        metrics = orchestrator.get_metrics()
        assert metrics.total_cycles == 2
        assert metrics.success_rate == pytest.approx(50.0)
        assert metrics.to_dict()["success_rate"] == 50.0

    def test_derive_health(self) -> None:
        assert derive_health(False, T0, T0) is Health.STOPPED
        assert derive_health(True, None, T0) is Health.STARTING
        assert derive_health(True, T0, T0 + timedelta(seconds=119)) is Health.HEALTHY
        assert derive_health(True, T0, T0 + timedelta(seconds=120)) is Health.WARNING
        assert derive_health(True, T0, T0 + timedelta(seconds=300)) is Health.UNHEALTHY

    def test_success_rate_without_cycles(self) -> None:
        assert SyncMetrics(running=False, health=Health.STOPPED).success_rate == 0.0
