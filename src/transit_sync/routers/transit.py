"""Static network endpoints served from the in-memory index set.

Endpoints
---------
GET /routes                    – every route
GET /routes/search             – routes matching a query
GET /routes/{route_id}         – one route
GET /routes/{route_id}/trips   – trips of a route, by direction then headsign
GET /routes/{route_id}/stops   – unique stops served by a route
GET /stops/search              – stops matching a query
GET /stops/{stop_id}           – one stop
GET /stops/{stop_id}/stop-times – scheduled calls at a stop
GET /trips/{trip_id}           – one trip with its stop times
GET /trips/{trip_id}/stops     – ordered stops of a trip
GET /shapes/{shape_id}         – ordered polyline of a shape
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from transit_sync.entities import RouteType
from transit_sync.logging import get_logger
from transit_sync.routers.deps import CatalogDep
from transit_sync.services.catalog import SEARCH_LIMIT, TransitCatalog

logger = get_logger(__name__)

router = APIRouter(tags=["transit"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RouteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    route_id: str
    short_name: str
    long_name: str
    route_type: RouteType
    agency_id: str
    color: str
    text_color: str
    sort_order: int | None = None


class StopOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stop_id: str
    code: str
    name: str
    lat: float
    lon: float
    parent_station: str | None = None
    location_type: int


class TripOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trip_id: str
    route_id: str
    service_id: str
    headsign: str
    direction_id: int
    shape_id: str | None = None


class StopTimeOut(BaseModel):
    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_time: str | None = None
    departure_time: str | None = None


class TripDetail(TripOut):
    stop_times: list[StopTimeOut]


class ShapePointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lat: float
    lon: float
    sequence: int
    dist_traveled: float | None = None


class ShapeOut(BaseModel):
    shape_id: str
    points: list[ShapePointOut]


def format_gtfs_time(seconds: int | None) -> str | None:
    """Seconds after service-day midnight as HH:MM:SS (hours may pass 24)."""
    if seconds is None:
        return None
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _stop_time_out(stop_time: Any) -> dict[str, Any]:
    return {
        "trip_id": stop_time.trip_id,
        "stop_id": stop_time.stop_id,
        "stop_sequence": stop_time.stop_sequence,
        "arrival_time": format_gtfs_time(stop_time.arrival_sec),
        "departure_time": format_gtfs_time(stop_time.departure_sec),
    }


def _require_route(catalog: TransitCatalog, route_id: str) -> Any:
    route = catalog.get_route(route_id)
    if route is None:
        raise HTTPException(status_code=404, detail=f"Route '{route_id}' not found")
    return route


def _require_stop(catalog: TransitCatalog, stop_id: str) -> Any:
    stop = catalog.get_stop(stop_id)
    if stop is None:
        raise HTTPException(status_code=404, detail=f"Stop '{stop_id}' not found")
    return stop


def _require_trip(catalog: TransitCatalog, trip_id: str) -> Any:
    trip = catalog.get_trip(trip_id)
    if trip is None:
        raise HTTPException(status_code=404, detail=f"Trip '{trip_id}' not found")
    return trip


SearchQuery = Annotated[str, Query(min_length=1, max_length=100, description="Search text")]
SearchLimit = Annotated[int, Query(ge=1, le=SEARCH_LIMIT)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/routes", response_model=list[RouteOut], summary="List routes")
async def list_routes(catalog: CatalogDep) -> list[Any]:
    return catalog.get_routes()


@router.get("/routes/search", response_model=list[RouteOut], summary="Search routes")
async def search_routes(
    catalog: CatalogDep, q: SearchQuery, limit: SearchLimit = SEARCH_LIMIT
) -> list[Any]:
    """Match short name, long name or id; numeric queries match line numbers."""
    return catalog.search_routes(q, limit=limit)


@router.get("/routes/{route_id}", response_model=RouteOut, summary="Get a route")
async def get_route(catalog: CatalogDep, route_id: str) -> Any:
    return _require_route(catalog, route_id)


@router.get("/routes/{route_id}/trips", response_model=list[TripOut], summary="Trips of a route")
async def get_route_trips(catalog: CatalogDep, route_id: str) -> list[Any]:
    _require_route(catalog, route_id)
    return list(catalog.get_trips_for_route(route_id))


@router.get("/routes/{route_id}/stops", response_model=list[StopOut], summary="Stops of a route")
async def get_route_stops(catalog: CatalogDep, route_id: str) -> list[Any]:
    _require_route(catalog, route_id)
    return catalog.get_stops_for_route(route_id)


# ---------------------------------------------------------------------------
# Stops
# ---------------------------------------------------------------------------


@router.get("/stops/search", response_model=list[StopOut], summary="Search stops")
async def search_stops(
    catalog: CatalogDep, q: SearchQuery, limit: SearchLimit = SEARCH_LIMIT
) -> list[Any]:
    return catalog.search_stops(q, limit=limit)


@router.get("/stops/{stop_id}", response_model=StopOut, summary="Get a stop")
async def get_stop(catalog: CatalogDep, stop_id: str) -> Any:
    return _require_stop(catalog, stop_id)


@router.get(
    "/stops/{stop_id}/stop-times",
    response_model=list[StopTimeOut],
    summary="Scheduled calls at a stop",
)
async def get_stop_times(catalog: CatalogDep, stop_id: str) -> list[dict[str, Any]]:
    _require_stop(catalog, stop_id)
    return [_stop_time_out(st) for st in catalog.get_stop_times_for_stop(stop_id)]


# ---------------------------------------------------------------------------
# Trips and shapes
# ---------------------------------------------------------------------------


@router.get("/trips/{trip_id}", response_model=TripDetail, summary="Get a trip")
async def get_trip(catalog: CatalogDep, trip_id: str) -> dict[str, Any]:
    trip = _require_trip(catalog, trip_id)
    return {
        **TripOut.model_validate(trip).model_dump(),
        "stop_times": [_stop_time_out(st) for st in catalog.get_stop_times_for_trip(trip_id)],
    }


@router.get("/trips/{trip_id}/stops", response_model=list[StopOut], summary="Stops of a trip")
async def get_trip_stops(catalog: CatalogDep, trip_id: str) -> list[Any]:
    _require_trip(catalog, trip_id)
    return list(catalog.get_stops_for_trip(trip_id))


@router.get("/shapes/{shape_id}", response_model=ShapeOut, summary="Shape polyline")
async def get_shape(catalog: CatalogDep, shape_id: str) -> dict[str, Any]:
    points = catalog.get_shape_points(shape_id)
    if not points:
        raise HTTPException(status_code=404, detail=f"Shape '{shape_id}' not found")
    return {"shape_id": shape_id, "points": list(points)}
