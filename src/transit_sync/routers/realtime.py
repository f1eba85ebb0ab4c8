"""Live vehicle, arrival and incident endpoints.

Endpoints
---------
GET /vehicles                   – active vehicle positions
GET /vehicles/{vehicle_id}      – one vehicle
GET /routes/{route_id}/vehicles – vehicles currently on a route
GET /stops/{stop_id}/arrivals   – realtime predictions at a stop
GET /incidents                  – active incidents, most severe first
GET /incidents/counts           – active incident count per severity
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from transit_sync.entities import IncidentType, Severity, VehicleStatus
from transit_sync.routers.deps import CatalogDep

router = APIRouter(tags=["realtime"])


class VehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vehicle_id: str
    label: str
    route_id: str | None = None
    trip_id: str | None = None
    lat: float
    lon: float
    bearing: float | None = None
    speed: float | None = None
    status: VehicleStatus
    current_stop_id: str | None = None
    current_stop_sequence: int | None = None
    occupancy_percent: int | None = None
    timestamp: datetime
    recorded_at: datetime


class ArrivalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stop_id: str | None = None
    stop_sequence: int
    trip_id: str | None = None
    route_id: str | None = None
    vehicle_id: str | None = None
    predicted_arrival: datetime | None = None
    predicted_departure: datetime | None = None
    delay_seconds: int
    delay_minutes: int
    schedule_relationship: str


class IncidentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    incident_id: str
    incident_type: IncidentType
    severity: Severity
    location: str
    description: str
    affected_routes: list[str]
    start_time: datetime
    end_time: datetime | None = None
    active: bool


@router.get("/vehicles", response_model=list[VehicleOut], summary="Active vehicles")
async def list_vehicles(
    catalog: CatalogDep,
    route_id: Annotated[str | None, Query(description="Only vehicles on this route")] = None,
) -> list[Any]:
    if route_id:
        return catalog.get_vehicle_positions_for_route(route_id)
    return catalog.get_active_vehicle_positions()


@router.get("/vehicles/{vehicle_id}", response_model=VehicleOut, summary="Get a vehicle")
async def get_vehicle(catalog: CatalogDep, vehicle_id: str) -> Any:
    vehicle = catalog.get_vehicle_by_id(vehicle_id)
    if vehicle is None:
        raise HTTPException(status_code=404, detail=f"Vehicle '{vehicle_id}' not active")
    return vehicle


@router.get(
    "/routes/{route_id}/vehicles",
    response_model=list[VehicleOut],
    summary="Vehicles on a route",
)
async def get_route_vehicles(catalog: CatalogDep, route_id: str) -> list[Any]:
    if catalog.get_route(route_id) is None:
        raise HTTPException(status_code=404, detail=f"Route '{route_id}' not found")
    return catalog.get_vehicle_positions_for_route(route_id)


@router.get(
    "/stops/{stop_id}/arrivals",
    response_model=list[ArrivalOut],
    summary="Realtime arrivals at a stop",
)
async def get_stop_arrivals(
    catalog: CatalogDep,
    stop_id: str,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[ArrivalOut]:
    if catalog.get_stop(stop_id) is None:
        raise HTTPException(status_code=404, detail=f"Stop '{stop_id}' not found")
    # delay_minutes is a property, so build through attribute access
    return [ArrivalOut.model_validate(p) for p in catalog.get_arrivals_for_stop(stop_id)[:limit]]


@router.get("/incidents", response_model=list[IncidentOut], summary="Active incidents")
async def list_incidents(catalog: CatalogDep) -> list[IncidentOut]:
    return [IncidentOut.model_validate(i) for i in catalog.get_active_incidents()]


@router.get("/incidents/counts", summary="Active incidents per severity")
async def incident_counts(catalog: CatalogDep) -> dict[str, int]:
    return {severity.value: n for severity, n in catalog.get_incident_counts_by_severity().items()}
