"""Tests for the HTTP fetcher."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from transit_sync.services.realtime.http import HttpFetcher, HttpFetchError

from .fixtures.gtfs_rt_fixture import build_vehicle_position_feed

CLIENT = "transit_sync.services.realtime.http.httpx.AsyncClient"


def _client(**methods: AsyncMock) -> AsyncMock:
    instance = AsyncMock()
    for name, method in methods.items():
        setattr(instance, name, method)
    instance.__aenter__ = AsyncMock(return_value=instance)
    instance.__aexit__ = AsyncMock(return_value=False)
    return instance


def _status_error(status: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        "HTTP error",
        request=httpx.Request("GET", "https://example.com/feed"),
        response=httpx.Response(status),
    )


class TestHttpFetcher:
    """Unit tests for HttpFetcher."""

    @pytest.mark.asyncio
    async def test_fetch_success(self) -> None:
        expected = build_vehicle_position_feed()
        fetcher = HttpFetcher(max_retries=1)

        mock_response = AsyncMock()
        mock_response.content = expected
        mock_response.headers = {"ETag": '"v1"'}
        mock_response.status_code = 200
        mock_response.raise_for_status = lambda: None

        with patch(CLIENT) as mock_client:
            mock_client.return_value = _client(get=AsyncMock(return_value=mock_response))
            result = await fetcher.fetch("https://example.com/feed")

        assert result.content == expected
        assert result.headers == {"ETag": '"v1"'}

    @pytest.mark.asyncio
    async def test_server_error_retries_then_fails(self) -> None:
        fetcher = HttpFetcher(max_retries=2, backoff_base=0.01)

        mock_response = AsyncMock()
        mock_response.raise_for_status = AsyncMock(side_effect=_status_error(500))

        with patch(CLIENT) as mock_client:
            get = AsyncMock(return_value=mock_response)
            mock_client.return_value = _client(get=get)
            with pytest.raises(HttpFetchError, match="after 2 attempts"):
                await fetcher.fetch("https://example.com/feed")

        assert get.await_count == 2

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self) -> None:
        fetcher = HttpFetcher(max_retries=3, backoff_base=0.01)

        mock_response = AsyncMock()
        mock_response.raise_for_status = AsyncMock(side_effect=_status_error(404))

        with patch(CLIENT) as mock_client:
            get = AsyncMock(return_value=mock_response)
            mock_client.return_value = _client(get=get)
            with pytest.raises(HttpFetchError) as exc_info:
                await fetcher.fetch("https://example.com/feed")

        assert exc_info.value.status_code == 404
        assert get.await_count == 1

    @pytest.mark.asyncio
    async def test_transport_error_recovers_on_retry(self) -> None:
        fetcher = HttpFetcher(max_retries=3, backoff_base=0.01)

        ok_response = AsyncMock()
        ok_response.content = b"payload"
        ok_response.headers = {}
        ok_response.status_code = 200
        ok_response.raise_for_status = lambda: None

        with patch(CLIENT) as mock_client:
            get = AsyncMock(side_effect=[httpx.ConnectError("refused"), ok_response])
            mock_client.return_value = _client(get=get)
            assert await fetcher.get("https://example.com/feed") == b"payload"

    @pytest.mark.asyncio
    async def test_head_lowercases_headers(self) -> None:
        fetcher = HttpFetcher()

        mock_response = AsyncMock()
        mock_response.headers = {"ETag": '"v2"', "Last-Modified": "Mon, 02 Mar 2026 07:00:00 GMT"}
        mock_response.raise_for_status = lambda: None

        with patch(CLIENT) as mock_client:
            mock_client.return_value = _client(head=AsyncMock(return_value=mock_response))
            headers = await fetcher.head("https://example.com/static.zip")

        assert headers["etag"] == '"v2"'
        assert headers["last-modified"].startswith("Mon")

    @pytest.mark.asyncio
    async def test_head_transport_error_raises(self) -> None:
        fetcher = HttpFetcher()
        with patch(CLIENT) as mock_client:
            mock_client.return_value = _client(head=AsyncMock(side_effect=httpx.ReadTimeout("slow")))
            with pytest.raises(HttpFetchError, match="HEAD"):
                await fetcher.head("https://example.com/static.zip")

    @pytest.mark.asyncio
    async def test_probe_online_on_any_answer(self) -> None:
        fetcher = HttpFetcher(probe_url="https://example.com")
        with patch(CLIENT) as mock_client:
            mock_client.return_value = _client(head=AsyncMock(return_value=httpx.Response(503)))
            assert await fetcher.is_online() is True

    @pytest.mark.asyncio
    async def test_probe_offline_on_transport_error(self) -> None:
        fetcher = HttpFetcher(probe_url="https://example.com")
        with patch(CLIENT) as mock_client:
            mock_client.return_value = _client(head=AsyncMock(side_effect=httpx.ConnectError("down")))
            assert await fetcher.is_online() is False

    @pytest.mark.asyncio
    async def test_no_probe_url_assumes_online(self) -> None:
        assert await HttpFetcher().is_online() is True
