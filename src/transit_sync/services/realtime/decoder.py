"""GTFS-RT protobuf decoding into live entities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from transit_sync.clock import SystemClock, from_epoch
from transit_sync.entities import ArrivalPrediction, VehiclePosition, VehicleStatus
from transit_sync.errors import FeedDecodeError
from transit_sync.logging import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from transit_sync.clock import Clock

logger = get_logger(__name__)

# Anything shorter cannot hold a header plus one entity
MIN_PAYLOAD_BYTES = 10

VEHICLE_STOP_STATUS = {
    0: VehicleStatus.INCOMING_AT,
    1: VehicleStatus.STOPPED_AT,
    2: VehicleStatus.IN_TRANSIT_TO,
}

TRIP_SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "ADDED",
    2: "UNSCHEDULED",
    3: "CANCELED",
    5: "REPLACEMENT",
    6: "DUPLICATED",
    7: "DELETED",
}

STOP_SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "SKIPPED",
    2: "NO_DATA",
    3: "UNSCHEDULED",
}

# OccupancyStatus -> approximate load percentage
OCCUPANCY_PERCENT = {
    0: 0,  # EMPTY
    1: 25,  # MANY_SEATS_AVAILABLE
    2: 50,  # FEW_SEATS_AVAILABLE
    3: 75,  # STANDING_ROOM_ONLY
    4: 90,  # CRUSHED_STANDING_ROOM_ONLY
    5: 100,  # FULL
    6: 100,  # NOT_ACCEPTING_PASSENGERS
}


def parse_feed(data: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Parse protobuf bytes into a FeedMessage with a header.

    Raises:
        FeedDecodeError: If the bytes are not a FeedMessage or the header
            is missing.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(data)
    except DecodeError as exc:
        msg = f"Failed to decode GTFS-RT protobuf: {exc}"
        raise FeedDecodeError(msg) from exc

    if not feed.HasField("header"):
        msg = "GTFS-RT feed has no header"
        raise FeedDecodeError(msg)
    return feed


class RealtimeDecoder:
    """Decodes GTFS-RT payloads into VehiclePosition and ArrivalPrediction lists.

    Never raises on bad input: short payloads, broken envelopes and broken
    entities all degrade to fewer (or zero) records plus a log line.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    def decode_vehicles(self, data: bytes) -> list[VehiclePosition]:
        feed = self._parse(data, "vehicle_positions")
        if feed is None:
            return []

        now = self._clock.now()
        vehicles: list[VehiclePosition] = []
        skipped = 0
        for entity in feed.entity:
            if not entity.HasField("vehicle"):
                continue
            try:
                vehicle = self._vehicle_from_entity(entity, now)
            except Exception as exc:
                skipped += 1
                logger.debug("Skipping malformed vehicle entity", entity_id=entity.id, error=str(exc))
                continue
            if vehicle is None:
                skipped += 1
                continue
            vehicles.append(vehicle)

        logger.info(
            "Vehicle positions decoded",
            entity_count=len(feed.entity),
            decoded=len(vehicles),
            skipped=skipped,
            feed_timestamp=feed.header.timestamp,
        )
        return vehicles

    def decode_trip_updates(self, data: bytes) -> list[ArrivalPrediction]:
        feed = self._parse(data, "trip_updates")
        if feed is None:
            return []

        now = self._clock.now()
        header_ts = feed.header.timestamp
        predictions: list[ArrivalPrediction] = []
        skipped = 0
        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue
            try:
                predictions.extend(self._predictions_from_entity(entity, header_ts, now))
            except Exception as exc:
                skipped += 1
                logger.debug("Skipping malformed trip update", entity_id=entity.id, error=str(exc))

        logger.info(
            "Trip updates decoded",
            entity_count=len(feed.entity),
            predictions=len(predictions),
            skipped=skipped,
            feed_timestamp=header_ts,
        )
        return predictions

    def _parse(self, data: bytes, feed_type: str) -> gtfs_realtime_pb2.FeedMessage | None:
        if len(data) < MIN_PAYLOAD_BYTES:
            logger.debug("Payload too short, no data this cycle", feed_type=feed_type, size=len(data))
            return None
        try:
            return parse_feed(data)
        except FeedDecodeError as exc:
            logger.warning("Discarding malformed feed", feed_type=feed_type, error=str(exc))
            return None

    @staticmethod
    def _vehicle_from_entity(entity: Any, now: datetime) -> VehiclePosition | None:
        vp = entity.vehicle
        vehicle_id = vp.vehicle.id or entity.id
        if not vehicle_id:
            return None

        lat = vp.position.latitude
        lon = vp.position.longitude
        if lat == 0 and lon == 0:
            # No GPS fix
            return None

        if vp.HasField("current_status"):
            status = VEHICLE_STOP_STATUS.get(vp.current_status, VehicleStatus.UNKNOWN)
        else:
            status = VehicleStatus.UNKNOWN

        occupancy: int | None = None
        if vp.HasField("occupancy_status"):
            occupancy = OCCUPANCY_PERCENT.get(vp.occupancy_status)
        if vp.HasField("occupancy_percentage"):
            occupancy = vp.occupancy_percentage

        return VehiclePosition(
            vehicle_id=vehicle_id,
            label=vp.vehicle.label,
            trip_id=vp.trip.trip_id or None,
            route_id=vp.trip.route_id or None,
            lat=lat,
            lon=lon,
            bearing=vp.position.bearing if vp.position.HasField("bearing") else None,
            speed=vp.position.speed if vp.position.HasField("speed") else None,
            status=status,
            current_stop_id=vp.stop_id or None,
            current_stop_sequence=(
                vp.current_stop_sequence if vp.HasField("current_stop_sequence") else None
            ),
            occupancy_percent=occupancy,
            timestamp=from_epoch(vp.timestamp) if vp.timestamp else now,
            recorded_at=now,
        )

    @staticmethod
    def _predictions_from_entity(
        entity: Any, header_ts: int, now: datetime
    ) -> list[ArrivalPrediction]:
        tu = entity.trip_update
        trip_id = tu.trip.trip_id or None
        route_id = tu.trip.route_id or None
        vehicle_id = tu.vehicle.id or None
        trip_relationship = TRIP_SCHEDULE_RELATIONSHIP.get(tu.trip.schedule_relationship, "SCHEDULED")
        raw_ts = tu.timestamp or header_ts
        timestamp = from_epoch(raw_ts) if raw_ts else now

        predictions: list[ArrivalPrediction] = []
        for stu in tu.stop_time_update:
            if not stu.stop_id:
                continue

            has_arrival = stu.HasField("arrival")
            has_departure = stu.HasField("departure")
            if has_arrival and stu.arrival.HasField("delay"):
                delay = stu.arrival.delay
            elif has_departure and stu.departure.HasField("delay"):
                delay = stu.departure.delay
            else:
                delay = 0

            relationship = trip_relationship
            if stu.HasField("schedule_relationship") and stu.schedule_relationship != 0:
                relationship = STOP_SCHEDULE_RELATIONSHIP.get(stu.schedule_relationship, relationship)

            predictions.append(
                ArrivalPrediction(
                    trip_id=trip_id,
                    route_id=route_id,
                    vehicle_id=vehicle_id,
                    stop_id=stu.stop_id,
                    stop_sequence=stu.stop_sequence if stu.HasField("stop_sequence") else 0,
                    predicted_arrival=(
                        from_epoch(stu.arrival.time) if has_arrival and stu.arrival.time else None
                    ),
                    predicted_departure=(
                        from_epoch(stu.departure.time)
                        if has_departure and stu.departure.time
                        else None
                    ),
                    delay_seconds=delay,
                    schedule_relationship=relationship,
                    timestamp=timestamp,
                    recorded_at=now,
                )
            )
        return predictions
