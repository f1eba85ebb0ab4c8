"""SQLAlchemy tables for the transit store."""

from transit_sync.models.base import Base
from transit_sync.models.gtfs import (
    AgencyRow,
    CalendarRow,
    RouteRow,
    ShapePointRow,
    StopRow,
    StopTimeRow,
    TripRow,
)
from transit_sync.models.incidents import IncidentRow
from transit_sync.models.realtime import FeedMetaRow, TripUpdateRow, VehiclePositionRow

__all__ = [
    "AgencyRow",
    "Base",
    "CalendarRow",
    "FeedMetaRow",
    "IncidentRow",
    "RouteRow",
    "ShapePointRow",
    "StopRow",
    "StopTimeRow",
    "TripRow",
    "TripUpdateRow",
    "VehiclePositionRow",
]
