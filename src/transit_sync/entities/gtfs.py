"""Immutable static GTFS entities held by the in-memory index set."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from enum import IntEnum
from typing import Any


class RouteType(IntEnum):
    """GTFS route_type base modes."""

    TRAM = 0
    SUBWAY = 1
    RAIL = 2
    BUS = 3
    FERRY = 4
    CABLE_TRAM = 5
    AERIAL_LIFT = 6
    FUNICULAR = 7
    TROLLEYBUS = 11
    MONORAIL = 12

    @classmethod
    def from_gtfs(cls, code: int) -> RouteType:
        """Map a base or extended (100-1700) route_type code onto a base mode.

        Unknown codes fall back to BUS.
        """
        try:
            return cls(code)
        except ValueError:
            pass
        for (low, high), mode in _EXTENDED_ROUTE_TYPES:
            if low <= code <= high:
                return mode
        return cls.BUS


# Extended route types (Google transit extension) folded onto base modes
_EXTENDED_ROUTE_TYPES: tuple[tuple[tuple[int, int], RouteType], ...] = (
    ((100, 199), RouteType.RAIL),
    ((200, 299), RouteType.BUS),
    ((400, 499), RouteType.SUBWAY),
    ((700, 799), RouteType.BUS),
    ((800, 899), RouteType.TROLLEYBUS),
    ((900, 999), RouteType.TRAM),
    ((1000, 1099), RouteType.FERRY),
    ((1200, 1299), RouteType.FERRY),
    ((1300, 1399), RouteType.AERIAL_LIFT),
    ((1400, 1499), RouteType.FUNICULAR),
)


@dataclass(frozen=True, slots=True)
class Agency:
    agency_id: str
    name: str
    url: str = ""
    timezone: str = ""
    lang: str = ""
    phone: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Agency:
        return cls(
            agency_id=row["agency_id"],
            name=row["name"],
            url=row["url"],
            timezone=row["timezone"],
            lang=row["lang"],
            phone=row["phone"],
        )


@dataclass(frozen=True, slots=True)
class ServiceCalendar:
    """Weekly service pattern; ``weekdays`` is indexed Monday=0."""

    service_id: str
    weekdays: tuple[bool, bool, bool, bool, bool, bool, bool]
    start_date: date
    end_date: date

    def runs_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date and self.weekdays[day.weekday()]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ServiceCalendar:
        weekdays = tuple(
            bool(row[name])
            for name in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
        )
        return cls(
            service_id=row["service_id"],
            weekdays=weekdays,  # type: ignore[arg-type]
            start_date=parse_gtfs_date(row["start_date"]),
            end_date=parse_gtfs_date(row["end_date"]),
        )


@dataclass(frozen=True, slots=True)
class Route:
    route_id: str
    short_name: str
    long_name: str
    route_type: RouteType = RouteType.BUS
    agency_id: str = ""
    color: str = ""  # hex without '#'
    text_color: str = ""
    sort_order: int | None = None

    @property
    def display_name(self) -> str:
        return self.short_name or self.long_name

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Route:
        return cls(
            route_id=row["route_id"],
            short_name=row["short_name"],
            long_name=row["long_name"],
            route_type=RouteType.from_gtfs(row["route_type"]),
            agency_id=row["agency_id"],
            color=row["color"],
            text_color=row["text_color"],
            sort_order=row["sort_order"],
        )


@dataclass(frozen=True, slots=True)
class Stop:
    stop_id: str
    name: str
    lat: float
    lon: float
    code: str = ""
    parent_station: str | None = None
    location_type: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Stop:
        return cls(
            stop_id=row["stop_id"],
            name=row["name"],
            lat=row["lat"],
            lon=row["lon"],
            code=row["code"],
            parent_station=row["parent_station"],
            location_type=row["location_type"],
        )


@dataclass(frozen=True, slots=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    headsign: str = ""
    direction_id: int = 0
    shape_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Trip:
        return cls(
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            service_id=row["service_id"],
            headsign=row["headsign"],
            direction_id=row["direction_id"],
            shape_id=row["shape_id"],
        )


@dataclass(frozen=True, slots=True)
class StopTime:
    """Scheduled call of a trip at a stop.

    Times are seconds since service day midnight (may exceed 24h).
    """

    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_sec: int | None = None
    departure_sec: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> StopTime:
        return cls(
            trip_id=row["trip_id"],
            stop_id=row["stop_id"],
            stop_sequence=row["stop_sequence"],
            arrival_sec=row["arrival_sec"],
            departure_sec=row["departure_sec"],
        )


@dataclass(frozen=True, slots=True)
class ShapePoint:
    shape_id: str
    lat: float
    lon: float
    sequence: int
    dist_traveled: float | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ShapePoint:
        return cls(
            shape_id=row["shape_id"],
            lat=row["lat"],
            lon=row["lon"],
            sequence=row["sequence"],
            dist_traveled=row["dist_traveled"],
        )


def parse_gtfs_date(value: str) -> date:
    """Parse a GTFS YYYYMMDD date."""
    value = value.strip()
    return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))
