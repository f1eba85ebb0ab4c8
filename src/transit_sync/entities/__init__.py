"""Domain entities shared by the loader, sync pipeline and read API."""

from transit_sync.entities.gtfs import (
    Agency,
    Route,
    RouteType,
    ServiceCalendar,
    ShapePoint,
    Stop,
    StopTime,
    Trip,
)
from transit_sync.entities.incidents import (
    Incident,
    IncidentType,
    Severity,
    incident_id_for_route,
)
from transit_sync.entities.realtime import ArrivalPrediction, VehiclePosition, VehicleStatus

__all__ = [
    "Agency",
    "ArrivalPrediction",
    "Incident",
    "IncidentType",
    "Route",
    "RouteType",
    "ServiceCalendar",
    "Severity",
    "ShapePoint",
    "Stop",
    "StopTime",
    "Trip",
    "VehiclePosition",
    "VehicleStatus",
    "incident_id_for_route",
]
