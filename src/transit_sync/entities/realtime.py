"""Live entities decoded from GTFS-Realtime feeds."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from transit_sync.clock import from_epoch, to_epoch


class VehicleStatus(str, Enum):
    IN_TRANSIT_TO = "IN_TRANSIT_TO"
    STOPPED_AT = "STOPPED_AT"
    INCOMING_AT = "INCOMING_AT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> VehicleStatus:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class VehiclePosition:
    """Latest position report for one vehicle.

    ``timestamp`` is the feed-reported measurement time; ``recorded_at`` is
    when this process last refreshed the record and drives stale eviction.
    Reference fields may be None after foreign-key sanitization.
    """

    vehicle_id: str
    lat: float
    lon: float
    timestamp: datetime
    recorded_at: datetime
    route_id: str | None = None
    trip_id: str | None = None
    label: str = ""
    bearing: float | None = None
    speed: float | None = None
    status: VehicleStatus = VehicleStatus.UNKNOWN
    current_stop_id: str | None = None
    current_stop_sequence: int | None = None
    occupancy_percent: int | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "label": self.label,
            "trip_id": self.trip_id,
            "route_id": self.route_id,
            "lat": self.lat,
            "lon": self.lon,
            "bearing": self.bearing,
            "speed": self.speed,
            "status": self.status.value,
            "current_stop_id": self.current_stop_id,
            "current_stop_sequence": self.current_stop_sequence,
            "occupancy_percent": self.occupancy_percent,
            "timestamp": to_epoch(self.timestamp),
            "recorded_at": to_epoch(self.recorded_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> VehiclePosition:
        return cls(
            vehicle_id=row["vehicle_id"],
            label=row["label"],
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            lat=row["lat"],
            lon=row["lon"],
            bearing=row["bearing"],
            speed=row["speed"],
            status=VehicleStatus.parse(row["status"]),
            current_stop_id=row["current_stop_id"],
            current_stop_sequence=row["current_stop_sequence"],
            occupancy_percent=row["occupancy_percent"],
            timestamp=from_epoch(row["timestamp"]),  # type: ignore[arg-type]
            recorded_at=from_epoch(row["recorded_at"]),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class ArrivalPrediction:
    """Predicted call of a trip at a stop, from one StopTimeUpdate."""

    stop_id: str | None
    stop_sequence: int
    delay_seconds: int
    timestamp: datetime
    recorded_at: datetime
    trip_id: str | None = None
    route_id: str | None = None
    vehicle_id: str | None = None
    predicted_arrival: datetime | None = None
    predicted_departure: datetime | None = None
    schedule_relationship: str = "SCHEDULED"

    @property
    def delay_minutes(self) -> int:
        """Delay truncated toward zero to whole minutes."""
        return int(self.delay_seconds / 60)

    def to_row(self) -> dict[str, Any]:
        return {
            "trip_id": self.trip_id,
            "route_id": self.route_id,
            "vehicle_id": self.vehicle_id,
            "stop_id": self.stop_id,
            "stop_sequence": self.stop_sequence,
            "predicted_arrival": to_epoch(self.predicted_arrival),
            "predicted_departure": to_epoch(self.predicted_departure),
            "delay_seconds": self.delay_seconds,
            "schedule_relationship": self.schedule_relationship,
            "timestamp": to_epoch(self.timestamp),
            "recorded_at": to_epoch(self.recorded_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ArrivalPrediction:
        return cls(
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            vehicle_id=row["vehicle_id"],
            stop_id=row["stop_id"],
            stop_sequence=row["stop_sequence"],
            predicted_arrival=from_epoch(row["predicted_arrival"]),
            predicted_departure=from_epoch(row["predicted_departure"]),
            delay_seconds=row["delay_seconds"],
            schedule_relationship=row["schedule_relationship"],
            timestamp=from_epoch(row["timestamp"]),  # type: ignore[arg-type]
            recorded_at=from_epoch(row["recorded_at"]),  # type: ignore[arg-type]
        )
