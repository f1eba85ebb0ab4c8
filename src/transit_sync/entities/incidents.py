"""Route-level delay incidents."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from transit_sync.clock import from_epoch, to_epoch

INCIDENT_ID_PREFIX = "RITARDO_LINEA_"


class IncidentType(str, Enum):
    RITARDO = "RITARDO"  # delay
    INCIDENTE = "INCIDENTE"  # generic disruption


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


def incident_id_for_route(route_id: str) -> str:
    return INCIDENT_ID_PREFIX + route_id


@dataclass(frozen=True, slots=True)
class Incident:
    incident_id: str
    incident_type: IncidentType
    severity: Severity
    location: str
    description: str
    affected_routes: tuple[str, ...]
    start_time: datetime
    end_time: datetime | None = None
    active: bool = True

    def to_row(self) -> dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "incident_type": self.incident_type.value,
            "severity": self.severity.value,
            "location": self.location,
            "description": self.description,
            "affected_routes": ",".join(self.affected_routes),
            "start_time": to_epoch(self.start_time),
            "end_time": to_epoch(self.end_time),
            "active": self.active,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Incident:
        routes = row["affected_routes"]
        return cls(
            incident_id=row["incident_id"],
            incident_type=IncidentType(row["incident_type"]),
            severity=Severity(row["severity"]),
            location=row["location"],
            description=row["description"],
            affected_routes=tuple(routes.split(",")) if routes else (),
            start_time=from_epoch(row["start_time"]),  # type: ignore[arg-type]
            end_time=from_epoch(row["end_time"]),
            active=bool(row["active"]),
        )
