"""Route-level delay incidents derived from arrival predictions."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from transit_sync.clock import SystemClock
from transit_sync.entities import (
    Incident,
    IncidentType,
    Severity,
    incident_id_for_route,
)
from transit_sync.logging import get_logger

if TYPE_CHECKING:
    from transit_sync.clock import Clock
    from transit_sync.config import Settings
    from transit_sync.entities import ArrivalPrediction

logger = get_logger(__name__)

DEFAULT_LOW_THRESHOLD_MIN = 5
DEFAULT_MEDIUM_THRESHOLD_MIN = 10
DEFAULT_HIGH_THRESHOLD_MIN = 15
DEFAULT_MIN_AFFECTED_TRIPS = 3


@dataclass(slots=True)
class AggregationResult:
    created: list[Incident] = field(default_factory=list)
    updated: list[Incident] = field(default_factory=list)
    resolved: list[Incident] = field(default_factory=list)
    active: list[Incident] = field(default_factory=list)

    @property
    def changed(self) -> list[Incident]:
        """Incidents whose stored row must be written."""
        return [*self.created, *self.updated, *self.resolved]


class IncidentAggregator:
    """Turns per-trip delays into one delay incident per affected route.

    A route qualifies when at least ``min_affected_trips`` predictions are
    delayed by ``low_threshold_min`` or more. Its incident severity follows
    the mean delay. Routes that stop qualifying have their incident resolved.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        low_threshold_min: int = DEFAULT_LOW_THRESHOLD_MIN,
        medium_threshold_min: int = DEFAULT_MEDIUM_THRESHOLD_MIN,
        high_threshold_min: int = DEFAULT_HIGH_THRESHOLD_MIN,
        min_affected_trips: int = DEFAULT_MIN_AFFECTED_TRIPS,
        route_label: Callable[[str], str] | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self.low_threshold_min = low_threshold_min
        self.medium_threshold_min = medium_threshold_min
        self.high_threshold_min = high_threshold_min
        self.min_affected_trips = min_affected_trips
        self._route_label = route_label or (lambda route_id: route_id)
        self._active: dict[str, Incident] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Clock,
        route_label: Callable[[str], str] | None = None,
    ) -> IncidentAggregator:
        return cls(
            clock=clock,
            low_threshold_min=settings.delay_low_threshold_min,
            medium_threshold_min=settings.delay_medium_threshold_min,
            high_threshold_min=settings.delay_high_threshold_min,
            min_affected_trips=settings.min_affected_trips,
            route_label=route_label,
        )

    @property
    def active(self) -> dict[str, Incident]:
        return dict(self._active)

    def restore(self, incidents: Iterable[Incident]) -> None:
        """Seed the active set, typically from the store on startup."""
        self._active = {i.incident_id: i for i in incidents if i.active}
        logger.info("Active incidents restored", count=len(self._active))

    def severity_for(self, mean_delay_min: float) -> Severity:
        if mean_delay_min >= self.high_threshold_min:
            return Severity.HIGH
        if mean_delay_min >= self.medium_threshold_min:
            return Severity.MEDIUM
        return Severity.LOW

    def aggregate(self, predictions: Iterable[ArrivalPrediction]) -> AggregationResult:
        result = AggregationResult()
        delayed = [p for p in predictions if p.delay_minutes >= self.low_threshold_min]

        if not delayed:
            if self._active:
                logger.info("No delays detected, resolving active incidents", count=len(self._active))
            self._resolve(set(self._active), result)
            return result

        by_route: defaultdict[str, list[ArrivalPrediction]] = defaultdict(list)
        for prediction in delayed:
            if prediction.route_id:
                by_route[prediction.route_id].append(prediction)

        qualifying: set[str] = set()
        for route_id, route_delays in by_route.items():
            if len(route_delays) < self.min_affected_trips:
                continue
            incident_id = incident_id_for_route(route_id)
            qualifying.add(incident_id)
            mean_delay = sum(p.delay_minutes for p in route_delays) / len(route_delays)
            self._upsert(route_id, incident_id, mean_delay, len(route_delays), result)

        self._resolve(set(self._active) - qualifying, result)
        result.active = list(self._active.values())

        logger.info(
            "Delay aggregation complete",
            delayed_predictions=len(delayed),
            unrouted=len(delayed) - sum(len(v) for v in by_route.values()),
            created=len(result.created),
            updated=len(result.updated),
            resolved=len(result.resolved),
            active=len(self._active),
        )
        return result

    def _upsert(
        self,
        route_id: str,
        incident_id: str,
        mean_delay: float,
        trip_count: int,
        result: AggregationResult,
    ) -> None:
        label = self._route_label(route_id)
        severity = self.severity_for(mean_delay)
        description = (
            f"Average delay of {mean_delay:.0f} min on route {label} "
            f"({trip_count} trips affected)"
        )
        existing = self._active.get(incident_id)

        if existing is None:
            incident = Incident(
                incident_id=incident_id,
                incident_type=IncidentType.RITARDO,
                severity=severity,
                location=f"Route {label}",
                description=description,
                affected_routes=(route_id,),
                start_time=self._clock.now(),
            )
            self._active[incident_id] = incident
            result.created.append(incident)
            logger.info(
                "Route delay incident created",
                incident_id=incident_id,
                severity=severity.value,
                mean_delay_min=round(mean_delay, 1),
            )
            return

        if (
            existing.severity == severity
            and existing.description == description
            and existing.affected_routes == (route_id,)
        ):
            return

        incident = replace(
            existing, severity=severity, description=description, affected_routes=(route_id,)
        )
        self._active[incident_id] = incident
        result.updated.append(incident)
        logger.debug("Route delay incident updated", incident_id=incident_id, severity=severity.value)

    def _resolve(self, incident_ids: set[str], result: AggregationResult) -> None:
        now = self._clock.now()
        for incident_id in sorted(incident_ids):
            incident = self._active.pop(incident_id, None)
            if incident is None:
                continue
            resolved = replace(incident, active=False, end_time=now)
            result.resolved.append(resolved)
            logger.info("Route delay incident resolved", incident_id=incident_id)
