"""Tests for the admin sync and static refresh endpoints."""

from typing import Any

import pytest
from httpx import AsyncClient

from transit_sync.context import TransitContext
from transit_sync.services.realtime.http import HttpFetchError, HttpResult

from .fixtures.gtfs_fixture import STOPS_TXT_MODIFIED, build_gtfs_zip, build_invalid_zip
from .fixtures.gtfs_rt_fixture import build_multi_vehicle_feed, build_route_delay_feed


def _serve_realtime(context: TransitContext, mock_http: Any, payloads: dict[str, bytes]) -> None:
    urls = {
        "vehicles": context.settings.vehicle_positions_full_url,
        "trip_updates": context.settings.trip_updates_full_url,
    }
    by_url = {urls[name]: data for name, data in payloads.items()}

    async def fake_get(url: str) -> bytes:
        if url not in by_url:
            raise HttpFetchError(f"no stub for {url}")
        return by_url[url]

    mock_http.get.side_effect = fake_get


def _serve_static(mock_http: Any, data: bytes, etag: str = '"v1"') -> None:
    mock_http.fetch.side_effect = None
    mock_http.fetch.return_value = HttpResult(content=data, headers={"ETag": etag})


class TestSyncAdminApi:
    """Tests for /admin/sync endpoints."""

    @pytest.mark.asyncio
    async def test_run_once(
        self, client: AsyncClient, context: TransitContext, mock_http: Any
    ) -> None:
        _serve_realtime(
            context,
            mock_http,
            {
                "vehicles": build_multi_vehicle_feed(
                    [{"vehicle_id": "4501"}, {"vehicle_id": "4502", "route_id": "R70"}]
                ),
                "trip_updates": build_route_delay_feed({"R64": [8, 9, 10]}),
            },
        )

        response = await client.post("/admin/sync/run-once")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["vehicle_count"] == 2
        assert data["incidents"]["created"] == 1
        assert data["feeds"]["vehicle_positions"]["status"] == "ok"

        vehicles = await client.get("/vehicles")
        assert len(vehicles.json()) == 2
        incidents = await client.get("/incidents")
        assert incidents.json()[0]["location"] == "Route 64"

    @pytest.mark.asyncio
    async def test_run_once_failure_reported(self, client: AsyncClient) -> None:
        response = await client.post("/admin/sync/run-once")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert "no network in tests" in data["error"]
        assert data["feeds"]["vehicle_positions"]["status"] == "error"

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        await client.post("/admin/sync/run-once")

        response = await client.get("/admin/sync/metrics")

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert data["health"] == "STOPPED"
        assert data["failed_cycles"] == 1
        assert data["healthy"] is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, client: AsyncClient, context: TransitContext) -> None:
        started = await client.post("/admin/sync/start", json={"interval_sec": 600})

        assert started.status_code == 200
        assert started.json()["running"] is True
        assert context.orchestrator.interval_sec == 600

        stopped = await client.post("/admin/sync/stop")
        assert stopped.json()["running"] is False

    @pytest.mark.asyncio
    async def test_start_rejects_bad_interval(self, client: AsyncClient) -> None:
        response = await client.post("/admin/sync/start", json={"interval_sec": 0})
        assert response.status_code == 422


class TestStaticAdminApi:
    """Tests for /admin/static endpoints."""

    @pytest.mark.asyncio
    async def test_refresh_loads_new_archive(
        self, client: AsyncClient, context: TransitContext, mock_http: Any
    ) -> None:
        _serve_static(mock_http, build_gtfs_zip(stops=STOPS_TXT_MODIFIED))

        response = await client.post("/admin/static/refresh")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "loaded"
        assert data["report"]["counts"]["stops"]["written"] == 6
        assert context.catalog.get_stop("70006").name == "Circo Massimo"

    @pytest.mark.asyncio
    async def test_refresh_up_to_date(self, client: AsyncClient, mock_http: Any) -> None:
        _serve_static(mock_http, build_gtfs_zip())
        await client.post("/admin/static/refresh")

        response = await client.post("/admin/static/refresh")

        assert response.json() == {"status": "up_to_date", "report": None}

    @pytest.mark.asyncio
    async def test_forced_refresh_of_same_archive(
        self, client: AsyncClient, context: TransitContext, mock_http: Any
    ) -> None:
        _serve_static(mock_http, build_gtfs_zip())
        await client.post("/admin/static/refresh")
        generation = context.catalog.static.generation

        response = await client.post("/admin/static/refresh", json={"force": True})

        assert response.json()["status"] == "loaded"
        assert context.catalog.static.generation == generation + 1

    @pytest.mark.asyncio
    async def test_invalid_archive_400(
        self, client: AsyncClient, context: TransitContext, mock_http: Any
    ) -> None:
        _serve_static(mock_http, build_invalid_zip())
        generation = context.catalog.static.generation

        response = await client.post("/admin/static/refresh")

        assert response.status_code == 400
        assert context.catalog.static.generation == generation

    @pytest.mark.asyncio
    async def test_download_failure_502(self, client: AsyncClient) -> None:
        response = await client.post("/admin/static/refresh")
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_update_available(self, client: AsyncClient, mock_http: Any) -> None:
        response = await client.get("/admin/static/update-available")
        assert response.json() == {"update_available": True}

        mock_http.is_online.return_value = False
        response = await client.get("/admin/static/update-available")
        assert response.json() == {"update_available": False}
