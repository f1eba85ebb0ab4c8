"""Composition root wiring the store, pipelines, orchestrator and read API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from transit_sync.clock import SystemClock
from transit_sync.config import get_settings
from transit_sync.database import Database
from transit_sync.errors import StoreError
from transit_sync.logging import get_logger
from transit_sync.services.catalog import LiveSnapshot, TransitCatalog
from transit_sync.services.gtfs_static.loader import StaticLoader
from transit_sync.services.gtfs_static.refresher import StaticRefresher
from transit_sync.services.incidents import IncidentAggregator
from transit_sync.services.realtime.decoder import RealtimeDecoder
from transit_sync.services.realtime.events import SyncEvents
from transit_sync.services.realtime.feed_client import FeedClient
from transit_sync.services.realtime.http import HttpFetcher
from transit_sync.services.realtime.sanitizer import (
    ForeignKeySanitizer,
    InvalidReferenceReporter,
)
from transit_sync.services.sync import SyncOrchestrator
from transit_sync.store import TransitStore

if TYPE_CHECKING:
    from transit_sync.clock import Clock
    from transit_sync.config import Settings

logger = get_logger(__name__)


@dataclass(slots=True)
class TransitContext:
    """Every long-lived service, constructed once and passed by reference."""

    settings: Settings
    clock: Clock
    database: Database
    store: TransitStore
    catalog: TransitCatalog
    http: HttpFetcher
    feed_client: FeedClient
    loader: StaticLoader
    refresher: StaticRefresher
    decoder: RealtimeDecoder
    sanitizer: ForeignKeySanitizer
    aggregator: IncidentAggregator
    orchestrator: SyncOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        http: HttpFetcher | None = None,
    ) -> TransitContext:
        settings = settings or get_settings()
        clock = clock or SystemClock()
        database = Database.from_settings(settings)
        store = TransitStore(database, batch_size=settings.store_batch_size)
        catalog = TransitCatalog()
        http = http or HttpFetcher(
            connect_timeout_sec=settings.http_connect_timeout_sec,
            read_timeout_sec=settings.http_read_timeout_sec,
            max_retries=settings.http_max_retries,
            backoff_base=settings.http_backoff_base,
            probe_url=settings.connectivity_probe_url,
        )
        feed_client = FeedClient.from_settings(settings, http, store, clock)
        loader = StaticLoader(store, catalog, clock, strict=settings.static_import_strict)
        decoder = RealtimeDecoder(clock)
        sanitizer = ForeignKeySanitizer(
            InvalidReferenceReporter(clock, window_sec=settings.invalid_reference_log_window_sec)
        )

        def route_label(route_id: str) -> str:
            route = catalog.get_route(route_id)
            return route.display_name if route else route_id

        aggregator = IncidentAggregator.from_settings(settings, clock, route_label=route_label)
        orchestrator = SyncOrchestrator.from_settings(
            settings,
            feed_client=feed_client,
            decoder=decoder,
            sanitizer=sanitizer,
            aggregator=aggregator,
            store=store,
            catalog=catalog,
            clock=clock,
            events=SyncEvents(),
        )
        return cls(
            settings=settings,
            clock=clock,
            database=database,
            store=store,
            catalog=catalog,
            http=http,
            feed_client=feed_client,
            loader=loader,
            refresher=StaticRefresher(feed_client, loader, store, clock),
            decoder=decoder,
            sanitizer=sanitizer,
            aggregator=aggregator,
            orchestrator=orchestrator,
        )

    async def startup(self) -> None:
        """Create the schema, restore persisted state and optionally start syncing."""
        await self.database.create_schema()

        try:
            await self.loader.restore()
            incidents = await self.store.load_active_incidents()
        except StoreError as exc:
            logger.error("Failed to restore persisted state", error=str(exc))
        else:
            self.aggregator.restore(incidents)
            self.catalog.publish_live(
                LiveSnapshot(incidents={i.incident_id: i for i in incidents})
            )

        if self.settings.sync_auto_start:
            await self.orchestrator.start()

    async def shutdown(self) -> None:
        await self.orchestrator.stop()
        await self.database.close()
        logger.info("Transit context closed")
