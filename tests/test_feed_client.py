"""Tests for FeedClient fetches and static update detection."""

from __future__ import annotations

import hashlib
from typing import Any

import pytest

from transit_sync.config import Settings
from transit_sync.errors import NetworkError
from transit_sync.services.realtime.feed_client import FeedClient, FeedKind
from transit_sync.services.realtime.http import HttpResult
from transit_sync.store import STATIC_FEED, TransitStore

from .conftest import FakeClock

STATIC_URL = "https://example.com/static.zip"


@pytest.fixture
def client(mock_http: Any, store: TransitStore, clock: FakeClock) -> FeedClient:
    return FeedClient(
        http=mock_http,
        store=store,
        clock=clock,
        feed_urls={
            FeedKind.VEHICLE_POSITIONS: "https://example.com/vp.pb",
            FeedKind.TRIP_UPDATES: "https://example.com/tu.pb",
        },
        static_url=STATIC_URL,
        static_max_age_days=7,
    )


async def _remember(store: TransitStore, clock: FakeClock, **kwargs: Any) -> None:
    await store.update_feed_meta(
        STATIC_FEED, status="ok", attempted_at=int(clock.now().timestamp()), **kwargs
    )


class TestRealtimeFetch:
    """Tests for realtime payload fetches."""

    @pytest.mark.asyncio
    async def test_fetch_returns_bytes(self, client: FeedClient, mock_http: Any) -> None:
        mock_http.get.side_effect = None
        mock_http.get.return_value = b"\x0a\x03\x32\x2e\x30" * 4

        data = await client.fetch(FeedKind.VEHICLE_POSITIONS)

        assert len(data) == 20
        mock_http.get.assert_awaited_once_with("https://example.com/vp.pb")

    @pytest.mark.asyncio
    async def test_empty_body_is_not_an_error(self, client: FeedClient, mock_http: Any) -> None:
        mock_http.get.side_effect = None
        mock_http.get.return_value = b""

        assert await client.fetch(FeedKind.TRIP_UPDATES) == b""

    @pytest.mark.asyncio
    async def test_failure_carries_connectivity(self, client: FeedClient, mock_http: Any) -> None:
        mock_http.is_online.return_value = False

        with pytest.raises(NetworkError, match="trip_updates") as exc_info:
            await client.fetch(FeedKind.TRIP_UPDATES)

        assert exc_info.value.online is False


class TestStaticUpdateCheck:
    """Tests for is_update_available."""

    @pytest.mark.asyncio
    async def test_offline_means_no_update(self, client: FeedClient, mock_http: Any) -> None:
        mock_http.is_online.return_value = False
        assert await client.is_update_available() is False
        mock_http.head.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_loaded_means_update(self, client: FeedClient) -> None:
        assert await client.is_update_available() is True

    @pytest.mark.asyncio
    async def test_same_etag_means_no_update(
        self, client: FeedClient, mock_http: Any, store: TransitStore, clock: FakeClock
    ) -> None:
        await _remember(store, clock, etag='"v1"')
        mock_http.head.side_effect = None
        mock_http.head.return_value = {"etag": '"v1"'}

        assert await client.is_update_available() is False

    @pytest.mark.asyncio
    async def test_new_etag_means_update(
        self, client: FeedClient, mock_http: Any, store: TransitStore, clock: FakeClock
    ) -> None:
        await _remember(store, clock, etag='"v1"')
        mock_http.head.side_effect = None
        mock_http.head.return_value = {"etag": '"v2"'}

        assert await client.is_update_available() is True

    @pytest.mark.asyncio
    async def test_last_modified_compared_without_etag(
        self, client: FeedClient, mock_http: Any, store: TransitStore, clock: FakeClock
    ) -> None:
        stamp = "Mon, 02 Mar 2026 07:00:00 GMT"
        await _remember(store, clock, last_modified=stamp)
        mock_http.head.side_effect = None
        mock_http.head.return_value = {"last-modified": stamp}

        assert await client.is_update_available() is False

    @pytest.mark.asyncio
    async def test_age_heuristic_without_validators(
        self, client: FeedClient, store: TransitStore, clock: FakeClock
    ) -> None:
        await _remember(store, clock)

        clock.advance(days=1)
        assert await client.is_update_available() is False
        clock.advance(days=7)
        assert await client.is_update_available() is True


class TestStaticDownload:
    """Tests for download_static."""

    @pytest.mark.asyncio
    async def test_download_hashes_body(self, client: FeedClient, mock_http: Any) -> None:
        mock_http.fetch.side_effect = None
        mock_http.fetch.return_value = HttpResult(
            content=b"zip-bytes", headers={"ETag": '"v3"', "Last-Modified": "yesterday"}
        )

        download = await client.download_static()

        assert download.feed_hash == hashlib.sha256(b"zip-bytes").hexdigest()
        assert download.etag == '"v3"'
        assert download.last_modified == "yesterday"
        assert download.url == STATIC_URL

    @pytest.mark.asyncio
    async def test_download_failure_raises_network_error(self, client: FeedClient) -> None:
        with pytest.raises(NetworkError, match="static feed"):
            await client.download_static()


class TestFromSettings:
    """Tests for URL assembly from settings."""

    @pytest.mark.asyncio
    async def test_api_key_appended(
        self, mock_http: Any, store: TransitStore, clock: FakeClock
    ) -> None:
        settings = Settings(
            _env_file=None,
            feed_api_key="secret",
            VEHICLE_POSITIONS_URL="https://example.com/vp.pb?format=pb",
        )
        client = FeedClient.from_settings(settings, mock_http, store, clock)

        assert client._feed_urls[FeedKind.VEHICLE_POSITIONS] == (
            "https://example.com/vp.pb?format=pb&apikey=secret"
        )
        assert "apikey=secret" in client.static_url

