"""Static archive refresh: check, download, load, remember validators."""

from __future__ import annotations

from typing import TYPE_CHECKING

from transit_sync.logging import get_logger
from transit_sync.services.gtfs_static.loader import LoadReport
from transit_sync.services.gtfs_static.reader import GtfsZipReader
from transit_sync.store import STATIC_FEED

if TYPE_CHECKING:
    from transit_sync.clock import Clock
    from transit_sync.services.gtfs_static.loader import StaticLoader
    from transit_sync.services.realtime.feed_client import FeedClient
    from transit_sync.store import TransitStore

logger = get_logger(__name__)


class StaticRefresher:
    """Keeps the static snapshot current with the published archive."""

    def __init__(
        self,
        feed_client: FeedClient,
        loader: StaticLoader,
        store: TransitStore,
        clock: Clock,
    ) -> None:
        self._feed_client = feed_client
        self._loader = loader
        self._store = store
        self._clock = clock

    async def refresh(self, force: bool = False) -> LoadReport | None:
        """Download and load the archive when it changed.

        Args:
            force: Skip the update check and the unchanged-hash shortcut.

        Returns:
            The LoadReport, or None when no update was available.

        Raises:
            NetworkError: If the download fails.
            FeedFormatError: If the archive is not a usable GTFS feed.
            StoreError: If the load transaction fails.
        """
        if not force and not await self._feed_client.is_update_available():
            logger.info("Static feed is up to date")
            return None

        attempted_at = int(self._clock.now().timestamp())
        download = await self._feed_client.download_static()

        meta = await self._store.get_feed_meta(STATIC_FEED) or {}
        if not force and download.feed_hash == meta.get("feed_hash"):
            logger.info("Static archive unchanged", feed_hash=download.feed_hash[:12])
            # Same bytes under new validators; remember them so the next check is cheap
            await self._store.update_feed_meta(
                STATIC_FEED,
                status="ok",
                attempted_at=attempted_at,
                entity_count=meta.get("entity_count") or 0,
                feed_hash=download.feed_hash,
                etag=download.etag,
                last_modified=download.last_modified,
            )
            report = LoadReport(source=download.url)
            report.skipped_unchanged = True
            report.finish()
            return report

        try:
            with GtfsZipReader(download.data) as reader:
                report = await self._loader.load(reader, source=download.url)
        except Exception as exc:
            await self._store.update_feed_meta(
                STATIC_FEED,
                status="error",
                attempted_at=attempted_at,
                error_message=str(exc),
            )
            raise

        await self._store.update_feed_meta(
            STATIC_FEED,
            status="ok",
            attempted_at=attempted_at,
            entity_count=sum(c["written"] for c in report.counts.values()),
            feed_hash=download.feed_hash,
            etag=download.etag,
            last_modified=download.last_modified,
        )
        logger.info("Static feed refreshed", load_id=report.load_id, generation=report.generation)
        return report
