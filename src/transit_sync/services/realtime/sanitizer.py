"""Foreign-key sanitization of live records against the static snapshot."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from transit_sync.clock import SystemClock
from transit_sync.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from transit_sync.clock import Clock
    from transit_sync.entities import ArrivalPrediction, VehiclePosition
    from transit_sync.services.gtfs_static.indexer import StaticIndexSet

logger = get_logger(__name__)

DEFAULT_LOG_WINDOW_SEC = 30

REFERENCE_KINDS = ("trip", "route", "stop")


@dataclass(frozen=True, slots=True)
class ReferenceLookups:
    """Existence predicates for the three kinds of static reference."""

    trip_exists: Callable[[str], bool]
    route_exists: Callable[[str], bool]
    stop_exists: Callable[[str], bool]

    @classmethod
    def from_index_set(cls, index_set: StaticIndexSet) -> ReferenceLookups:
        return cls(
            trip_exists=index_set.trips.__contains__,
            route_exists=index_set.routes.__contains__,
            stop_exists=index_set.stops.__contains__,
        )


class InvalidReferenceReporter:
    """Counts invalid references and logs one aggregate line per window.

    Safe to call from several threads. A window with no invalid references
    logs nothing.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        window_sec: int = DEFAULT_LOG_WINDOW_SEC,
    ) -> None:
        self._clock = clock or SystemClock()
        self._window = timedelta(seconds=window_sec)
        self._lock = threading.Lock()
        self._pending = dict.fromkeys(REFERENCE_KINDS, 0)
        self._totals = dict.fromkeys(REFERENCE_KINDS, 0)
        self._last_emit: datetime | None = None
        self.emitted = 0

    def record(self, kind: str, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._pending[kind] += count
            self._totals[kind] += count

    def flush(self) -> bool:
        """Emit the aggregate line if the window elapsed and anything is pending.

        Returns:
            True when a line was logged.
        """
        now = self._clock.now()
        with self._lock:
            if not any(self._pending.values()):
                return False
            if self._last_emit is not None and now - self._last_emit < self._window:
                return False
            pending = self._pending
            self._pending = dict.fromkeys(REFERENCE_KINDS, 0)
            self._last_emit = now
            self.emitted += 1

        logger.warning(
            "Invalid static references nulled in live records",
            invalid_trips=pending["trip"],
            invalid_routes=pending["route"],
            invalid_stops=pending["stop"],
            window_sec=int(self._window.total_seconds()),
        )
        return True

    def totals(self) -> dict[str, int]:
        with self._lock:
            return dict(self._totals)


class ForeignKeySanitizer:
    """Nulls references to unknown trips, routes and stops.

    Records are never dropped; the live data stays useful for display even
    when the static snapshot lags behind the feed. Inputs are not mutated.
    """

    def __init__(self, reporter: InvalidReferenceReporter | None = None) -> None:
        self.reporter = reporter or InvalidReferenceReporter()

    def sanitize_vehicles(
        self, vehicles: Sequence[VehiclePosition], lookups: ReferenceLookups
    ) -> list[VehiclePosition]:
        invalid = dict.fromkeys(REFERENCE_KINDS, 0)
        result: list[VehiclePosition] = []
        for vehicle in vehicles:
            changes: dict[str, None] = {}
            if vehicle.trip_id and not lookups.trip_exists(vehicle.trip_id):
                changes["trip_id"] = None
                invalid["trip"] += 1
            if vehicle.route_id and not lookups.route_exists(vehicle.route_id):
                changes["route_id"] = None
                invalid["route"] += 1
            if vehicle.current_stop_id and not lookups.stop_exists(vehicle.current_stop_id):
                changes["current_stop_id"] = None
                invalid["stop"] += 1
            result.append(replace(vehicle, **changes) if changes else vehicle)

        self._report(invalid)
        return result

    def sanitize_predictions(
        self, predictions: Sequence[ArrivalPrediction], lookups: ReferenceLookups
    ) -> list[ArrivalPrediction]:
        invalid = dict.fromkeys(REFERENCE_KINDS, 0)
        result: list[ArrivalPrediction] = []
        for prediction in predictions:
            changes: dict[str, None] = {}
            if prediction.trip_id and not lookups.trip_exists(prediction.trip_id):
                changes["trip_id"] = None
                invalid["trip"] += 1
            if prediction.route_id and not lookups.route_exists(prediction.route_id):
                changes["route_id"] = None
                invalid["route"] += 1
            if prediction.stop_id and not lookups.stop_exists(prediction.stop_id):
                changes["stop_id"] = None
                invalid["stop"] += 1
            result.append(replace(prediction, **changes) if changes else prediction)

        self._report(invalid)
        return result

    def _report(self, invalid: dict[str, int]) -> None:
        for kind, count in invalid.items():
            self.reporter.record(kind, count)
        self.reporter.flush()
