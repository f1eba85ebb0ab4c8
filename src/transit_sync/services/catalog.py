"""Read facade over the current static and live snapshots.

Writers build a complete snapshot and publish it with a single attribute
assignment. Readers grab the current reference once per call and never see
a half-built structure, and they never wait on a writer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

from transit_sync.entities import Severity
from transit_sync.logging import get_logger
from transit_sync.services.gtfs_static.indexer import StaticIndexSet

if TYPE_CHECKING:
    from collections.abc import Iterable

    from transit_sync.entities import (
        ArrivalPrediction,
        Incident,
        Route,
        ShapePoint,
        Stop,
        StopTime,
        Trip,
        VehiclePosition,
    )

logger = get_logger(__name__)

SEARCH_LIMIT = 50

_SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}
_NON_DIGITS = re.compile(r"[^0-9]")


@dataclass(frozen=True, slots=True)
class LiveSnapshot:
    """Realtime state published by the sync orchestrator."""

    vehicles: dict[str, VehiclePosition] = field(default_factory=dict)
    predictions: tuple[ArrivalPrediction, ...] = ()
    predictions_by_stop: dict[str, tuple[ArrivalPrediction, ...]] = field(default_factory=dict)
    incidents: dict[str, Incident] = field(default_factory=dict)
    updated_at: datetime | None = None


def index_predictions_by_stop(
    predictions: Iterable[ArrivalPrediction],
) -> dict[str, tuple[ArrivalPrediction, ...]]:
    """Group predictions per stop, soonest predicted arrival first."""
    grouped: dict[str, list[ArrivalPrediction]] = {}
    for prediction in predictions:
        if prediction.stop_id:
            grouped.setdefault(prediction.stop_id, []).append(prediction)
    return {
        stop_id: tuple(sorted(items, key=_arrival_key)) for stop_id, items in grouped.items()
    }


def _arrival_key(prediction: ArrivalPrediction) -> tuple[bool, float]:
    moment = prediction.predicted_arrival or prediction.predicted_departure
    return (moment is None, moment.timestamp() if moment else 0.0)


class TransitCatalog:
    """Query API consumed by the HTTP layer and other collaborators."""

    def __init__(self) -> None:
        self._static = StaticIndexSet()
        self._live = LiveSnapshot()

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    @property
    def static(self) -> StaticIndexSet:
        return self._static

    @property
    def live(self) -> LiveSnapshot:
        return self._live

    def publish_static(self, index_set: StaticIndexSet) -> None:
        self._static = index_set
        logger.info(
            "Static index set published",
            generation=index_set.generation,
            **index_set.counts(),
        )

    def publish_live(self, snapshot: LiveSnapshot) -> None:
        self._live = snapshot

    # ------------------------------------------------------------------
    # Static reads
    # ------------------------------------------------------------------

    def get_route(self, route_id: str) -> Route | None:
        return self._static.routes.get(route_id)

    def get_stop(self, stop_id: str) -> Stop | None:
        return self._static.stops.get(stop_id)

    def get_trip(self, trip_id: str) -> Trip | None:
        return self._static.trips.get(trip_id)

    def get_routes(self) -> list[Route]:
        """All routes ordered by route_sort_order, then display name."""
        return sorted(
            self._static.routes.values(),
            key=lambda r: (r.sort_order is None, r.sort_order or 0, r.display_name, r.route_id),
        )

    def get_trips_for_route(self, route_id: str) -> tuple[Trip, ...]:
        return self._static.trips_by_route.get(route_id, ())

    def get_stops_for_trip(self, trip_id: str) -> tuple[Stop, ...]:
        return self._static.stops_by_trip.get(trip_id, ())

    def get_stop_times_for_trip(self, trip_id: str) -> tuple[StopTime, ...]:
        return self._static.stop_times_by_trip.get(trip_id, ())

    def get_stop_times_for_stop(self, stop_id: str) -> tuple[StopTime, ...]:
        return self._static.stop_times_by_stop.get(stop_id, ())

    def get_stops_for_route(self, route_id: str) -> list[Stop]:
        """Unique stops served by any trip of the route, in first-seen order."""
        index = self._static
        seen: dict[str, Stop] = {}
        for trip in index.trips_by_route.get(route_id, ()):
            for stop in index.stops_by_trip.get(trip.trip_id, ()):
                seen.setdefault(stop.stop_id, stop)
        return list(seen.values())

    def get_shape_points(self, shape_id: str) -> tuple[ShapePoint, ...]:
        return self._static.shape_points_by_shape.get(shape_id, ())

    def get_active_service_ids(self, day: date) -> set[str]:
        return {
            service_id
            for service_id, calendar in self._static.calendars.items()
            if calendar.runs_on(day)
        }

    def search_routes(self, query: str, limit: int = SEARCH_LIMIT) -> list[Route]:
        """Find routes by short name, long name or id.

        A purely numeric query also matches routes whose short name carries
        the same digits ("70" finds "N70"). Ranking: exact numeric match,
        exact short name, short name prefix, numeric order, then name.
        """
        needle = query.strip().lower()
        if not needle:
            return []
        numeric = needle.isdigit()

        def matches(route: Route) -> bool:
            short = route.short_name.lower()
            if numeric and _NON_DIGITS.sub("", short) == needle:
                return True
            return (
                needle in short
                or needle in route.long_name.lower()
                or needle in route.route_id.lower()
            )

        def rank(route: Route) -> tuple[bool, bool, bool, int, str]:
            short = route.short_name.lower()
            digits = _NON_DIGITS.sub("", short)
            return (
                numeric and digits != needle,
                short != needle,
                not short.startswith(needle),
                int(digits) if numeric and digits else 0,
                short,
            )

        found = [route for route in self._static.routes.values() if matches(route)]
        return sorted(found, key=rank)[:limit]

    def search_stops(self, query: str, limit: int = SEARCH_LIMIT) -> list[Stop]:
        """Find stops whose name, code or id contains the query.

        Exact name matches rank first, then name prefixes, then by name.
        """
        needle = query.strip().lower()
        if not needle:
            return []

        found = [
            stop
            for stop in self._static.stops.values()
            if needle in stop.name.lower()
            or needle in stop.code.lower()
            or needle in stop.stop_id.lower()
        ]

        def rank(stop: Stop) -> tuple[bool, bool, str]:
            name = stop.name.lower()
            return (name != needle, not name.startswith(needle), name)

        return sorted(found, key=rank)[:limit]

    # ------------------------------------------------------------------
    # Live reads
    # ------------------------------------------------------------------

    def get_active_vehicle_positions(self) -> list[VehiclePosition]:
        return sorted(self._live.vehicles.values(), key=lambda v: v.vehicle_id)

    def get_vehicle_positions_for_route(self, route_id: str) -> list[VehiclePosition]:
        return [v for v in self.get_active_vehicle_positions() if v.route_id == route_id]

    def get_vehicle_by_id(self, vehicle_id: str) -> VehiclePosition | None:
        return self._live.vehicles.get(vehicle_id)

    def get_arrivals_for_stop(self, stop_id: str) -> tuple[ArrivalPrediction, ...]:
        return self._live.predictions_by_stop.get(stop_id, ())

    def get_active_incidents(self) -> list[Incident]:
        """Active incidents, most severe first."""
        return sorted(
            self._live.incidents.values(),
            key=lambda i: (_SEVERITY_RANK[i.severity], i.start_time, i.incident_id),
        )

    def get_incident_counts_by_severity(self) -> dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for incident in self._live.incidents.values():
            counts[incident.severity] += 1
        return counts
