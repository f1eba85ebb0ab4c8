"""Feed client: realtime payload fetches and static update detection."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from transit_sync.clock import from_epoch
from transit_sync.errors import NetworkError
from transit_sync.logging import get_logger
from transit_sync.services.realtime.http import HttpFetchError
from transit_sync.store import STATIC_FEED

if TYPE_CHECKING:
    from transit_sync.clock import Clock
    from transit_sync.config import Settings
    from transit_sync.services.realtime.http import HttpFetcher
    from transit_sync.store import TransitStore

logger = get_logger(__name__)

DEFAULT_STATIC_MAX_AGE_DAYS = 7


class FeedKind(str, Enum):
    VEHICLE_POSITIONS = "vehicle_positions"
    TRIP_UPDATES = "trip_updates"


@dataclass(frozen=True, slots=True)
class StaticDownload:
    """A downloaded static archive and the validators to remember for it."""

    data: bytes
    feed_hash: str
    etag: str
    last_modified: str
    url: str


class FeedClient:
    """Fetches realtime payloads and decides when the static archive is stale."""

    def __init__(
        self,
        http: HttpFetcher,
        store: TransitStore,
        clock: Clock,
        feed_urls: dict[FeedKind, str],
        static_url: str,
        static_max_age_days: int = DEFAULT_STATIC_MAX_AGE_DAYS,
        static_read_timeout_sec: float | None = None,
    ) -> None:
        self._http = http
        self._store = store
        self._clock = clock
        self._feed_urls = feed_urls
        self.static_url = static_url
        self.static_max_age_days = static_max_age_days
        self._static_read_timeout_sec = static_read_timeout_sec

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http: HttpFetcher,
        store: TransitStore,
        clock: Clock,
    ) -> FeedClient:
        return cls(
            http=http,
            store=store,
            clock=clock,
            feed_urls={
                FeedKind.VEHICLE_POSITIONS: settings.vehicle_positions_full_url,
                FeedKind.TRIP_UPDATES: settings.trip_updates_full_url,
            },
            static_url=settings.static_gtfs_full_url,
            static_max_age_days=settings.static_update_max_age_days,
            static_read_timeout_sec=settings.static_download_timeout_sec,
        )

    async def fetch(self, kind: FeedKind) -> bytes:
        """Download the current payload of a realtime feed.

        Returns:
            Raw protobuf bytes. An empty body is returned as ``b""``: feeds
            publish nothing outside service hours.

        Raises:
            NetworkError: If the request fails; ``online`` carries the
                connectivity probe result.
        """
        url = self._feed_urls[kind]
        try:
            data = await self._http.get(url)
        except HttpFetchError as exc:
            online = await self._http.is_online()
            msg = f"Failed to fetch {kind.value} feed: {exc}"
            logger.warning(msg, feed_type=kind.value, online=online)
            raise NetworkError(msg, online=online) from exc

        if not data:
            logger.info("Feed returned an empty payload", feed_type=kind.value)
            return b""

        logger.debug("Feed downloaded", feed_type=kind.value, size_bytes=len(data))
        return data

    async def is_update_available(self) -> bool:
        """Cheap check whether the static archive changed since the last load.

        Offline means no. Otherwise compare the ETag, then Last-Modified,
        against the values remembered from the last successful load. When
        neither validator can be compared, assume an update after
        ``static_max_age_days`` since that load, or when none ever happened.
        """
        if not await self._http.is_online():
            logger.info("Offline, skipping static update check")
            return False

        meta = await self._store.get_feed_meta(STATIC_FEED) or {}
        stored_etag = meta.get("etag") or ""
        stored_last_modified = meta.get("last_modified") or ""

        try:
            headers = await self._http.head(self.static_url)
            etag = headers.get("etag", "")
            if etag and stored_etag:
                changed = etag != stored_etag
                logger.info("Static update check by ETag", changed=changed)
                return changed
            last_modified = headers.get("last-modified", "")
            if last_modified and stored_last_modified:
                changed = last_modified != stored_last_modified
                logger.info("Static update check by Last-Modified", changed=changed)
                return changed
        except HttpFetchError as exc:
            logger.warning("Static HEAD request failed, using age heuristic", error=str(exc))

        last_success = from_epoch(meta.get("last_success_at"))
        if last_success is None:
            return True

        age = self._clock.now() - last_success
        stale = age >= timedelta(days=self.static_max_age_days)
        logger.info(
            "Static update check by age",
            age_days=round(age.total_seconds() / 86400, 2),
            max_age_days=self.static_max_age_days,
            stale=stale,
        )
        return stale

    async def download_static(self) -> StaticDownload:
        """Download the static archive.

        Raises:
            NetworkError: If the download fails.
        """
        try:
            result = await self._http.fetch(
                self.static_url, read_timeout_sec=self._static_read_timeout_sec
            )
        except HttpFetchError as exc:
            online = await self._http.is_online()
            msg = f"Failed to download static feed: {exc}"
            raise NetworkError(msg, online=online) from exc

        headers = {key.lower(): value for key, value in result.headers.items()}
        download = StaticDownload(
            data=result.content,
            feed_hash=hashlib.sha256(result.content).hexdigest(),
            etag=headers.get("etag", ""),
            last_modified=headers.get("last-modified", ""),
            url=self.static_url,
        )
        logger.info(
            "Static feed downloaded",
            size_bytes=len(download.data),
            feed_hash=download.feed_hash[:12],
        )
        return download
