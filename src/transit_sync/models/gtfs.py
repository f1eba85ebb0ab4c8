"""GTFS static tables.

References between tables are plain indexed columns, not foreign keys: a
snapshot may legitimately carry stop_times for stops it does not define, and
the indexer decides how to treat those rows.
"""

from __future__ import annotations

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from transit_sync.models.base import Base


class AgencyRow(Base):
    """Transit agency (agency.txt)."""

    __tablename__ = "agency"

    agency_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    lang: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(64), nullable=False, default="")


class CalendarRow(Base):
    """Weekly service pattern (calendar.txt)."""

    __tablename__ = "calendar"

    service_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    monday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tuesday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wednesday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thursday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    friday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    saturday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sunday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # YYYYMMDD
    start_date: Mapped[str] = mapped_column(String(8), nullable=False)
    end_date: Mapped[str] = mapped_column(String(8), nullable=False)


class RouteRow(Base):
    """Transit route (routes.txt)."""

    __tablename__ = "routes"

    route_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    short_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    long_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    route_type: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    color: Mapped[str] = mapped_column(String(8), nullable=False, default="")
    text_color: Mapped[str] = mapped_column(String(8), nullable=False, default="")
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)


class StopRow(Base):
    """Transit stop or station (stops.txt)."""

    __tablename__ = "stops"

    stop_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    parent_station: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_stops_lat_lon", "lat", "lon"),)


class TripRow(Base):
    """A single run of a route (trips.txt)."""

    __tablename__ = "trips"

    trip_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    route_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    headsign: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    direction_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shape_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (Index("ix_trips_route_id", "route_id"),)


class StopTimeRow(Base):
    """Scheduled stop time for a trip (stop_times.txt)."""

    __tablename__ = "stop_times"

    trip_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    stop_sequence: Mapped[int] = mapped_column(Integer, primary_key=True)
    stop_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Seconds from service-day midnight, may exceed 86400
    arrival_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    departure_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_stop_times_stop_id", "stop_id"),)


class ShapePointRow(Base):
    """Ordered polyline sample (shapes.txt)."""

    __tablename__ = "shapes"

    shape_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    dist_traveled: Mapped[float | None] = mapped_column(Float, nullable=True)
