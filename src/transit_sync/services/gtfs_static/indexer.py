"""Builds the derived lookup indices from a loaded static snapshot.

The index set is a pure function of the static tables. It is rebuilt from
scratch on every load and never mutated once published.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from transit_sync.entities import (
        Agency,
        Route,
        ServiceCalendar,
        ShapePoint,
        Stop,
        StopTime,
        Trip,
    )


@dataclass(frozen=True, slots=True)
class StaticIndexSet:
    """One complete generation of static data plus its five derived indices."""

    agencies: dict[str, Agency] = field(default_factory=dict)
    calendars: dict[str, ServiceCalendar] = field(default_factory=dict)
    routes: dict[str, Route] = field(default_factory=dict)
    stops: dict[str, Stop] = field(default_factory=dict)
    trips: dict[str, Trip] = field(default_factory=dict)

    trips_by_route: dict[str, tuple[Trip, ...]] = field(default_factory=dict)
    stop_times_by_trip: dict[str, tuple[StopTime, ...]] = field(default_factory=dict)
    stop_times_by_stop: dict[str, tuple[StopTime, ...]] = field(default_factory=dict)
    stops_by_trip: dict[str, tuple[Stop, ...]] = field(default_factory=dict)
    shape_points_by_shape: dict[str, tuple[ShapePoint, ...]] = field(default_factory=dict)

    generation: int = 0
    loaded_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.routes and not self.stops and not self.trips

    def counts(self) -> dict[str, int]:
        return {
            "agencies": len(self.agencies),
            "calendars": len(self.calendars),
            "routes": len(self.routes),
            "stops": len(self.stops),
            "trips": len(self.trips),
            "stop_times": sum(len(v) for v in self.stop_times_by_trip.values()),
            "shape_points": sum(len(v) for v in self.shape_points_by_shape.values()),
        }


def build_indices(
    *,
    agencies: Iterable[Agency] = (),
    calendars: Iterable[ServiceCalendar] = (),
    routes: Iterable[Route],
    stops: Iterable[Stop],
    trips: Iterable[Trip],
    stop_times: Iterable[StopTime] = (),
    shape_points: Iterable[ShapePoint] = (),
    generation: int = 0,
    loaded_at: datetime | None = None,
) -> StaticIndexSet:
    """Build a complete index set in one pass per index."""
    stops_by_id = {s.stop_id: s for s in stops}
    trips_by_id = {t.trip_id: t for t in trips}

    by_route: defaultdict[str, list[Trip]] = defaultdict(list)
    for trip in trips_by_id.values():
        by_route[trip.route_id].append(trip)

    by_trip: defaultdict[str, list[StopTime]] = defaultdict(list)
    by_stop: defaultdict[str, list[StopTime]] = defaultdict(list)
    for stop_time in stop_times:
        by_trip[stop_time.trip_id].append(stop_time)
        by_stop[stop_time.stop_id].append(stop_time)

    by_shape: defaultdict[str, list[ShapePoint]] = defaultdict(list)
    for point in shape_points:
        by_shape[point.shape_id].append(point)

    stop_times_by_trip = {
        trip_id: tuple(sorted(items, key=lambda st: st.stop_sequence))
        for trip_id, items in by_trip.items()
    }

    stops_by_trip: dict[str, tuple[Stop, ...]] = {}
    for trip_id, ordered in stop_times_by_trip.items():
        resolved = tuple(stops_by_id[st.stop_id] for st in ordered if st.stop_id in stops_by_id)
        if resolved:
            stops_by_trip[trip_id] = resolved

    return StaticIndexSet(
        agencies={a.agency_id: a for a in agencies},
        calendars={c.service_id: c for c in calendars},
        routes={r.route_id: r for r in routes},
        stops=stops_by_id,
        trips=trips_by_id,
        trips_by_route={
            route_id: tuple(sorted(items, key=lambda t: (t.direction_id, t.headsign)))
            for route_id, items in by_route.items()
        },
        stop_times_by_trip=stop_times_by_trip,
        stop_times_by_stop={
            stop_id: tuple(sorted(items, key=_departure_key))
            for stop_id, items in by_stop.items()
        },
        stops_by_trip=stops_by_trip,
        shape_points_by_shape={
            shape_id: tuple(sorted(items, key=lambda p: p.sequence))
            for shape_id, items in by_shape.items()
        },
        generation=generation,
        loaded_at=loaded_at,
    )


def _departure_key(stop_time: StopTime) -> tuple[bool, int, str, int]:
    seconds = stop_time.departure_sec if stop_time.departure_sec is not None else stop_time.arrival_sec
    return (seconds is None, seconds or 0, stop_time.trip_id, stop_time.stop_sequence)
