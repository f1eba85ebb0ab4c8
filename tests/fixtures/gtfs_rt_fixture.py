"""Test fixtures for GTFS-RT protobuf data."""

from __future__ import annotations

import time
from typing import Any

from google.transit import gtfs_realtime_pb2


def _new_feed(feed_timestamp: int | None) -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = feed_timestamp if feed_timestamp is not None else int(time.time())
    return feed


def _add_vehicle(feed: gtfs_realtime_pb2.FeedMessage, attrs: dict[str, Any]) -> None:
    vehicle_id = attrs.get("vehicle_id", "veh_001")
    entity = feed.entity.add()
    entity.id = attrs.get("entity_id", f"vp_{vehicle_id}")
    vp = entity.vehicle
    if vehicle_id:
        vp.vehicle.id = vehicle_id
    vp.vehicle.label = attrs.get("label", "")
    vp.trip.trip_id = attrs.get("trip_id", "T64-1")
    vp.trip.route_id = attrs.get("route_id", "R64")
    vp.position.latitude = attrs.get("lat", 41.9010)
    vp.position.longitude = attrs.get("lon", 12.5006)
    if "bearing" in attrs:
        vp.position.bearing = attrs["bearing"]
    if "speed" in attrs:
        vp.position.speed = attrs["speed"]
    if "stop_id" in attrs:
        vp.stop_id = attrs["stop_id"]
    if "current_stop_sequence" in attrs:
        vp.current_stop_sequence = attrs["current_stop_sequence"]
    if "current_status" in attrs:
        vp.current_status = attrs["current_status"]
    if "occupancy_status" in attrs:
        vp.occupancy_status = attrs["occupancy_status"]
    if "occupancy_percentage" in attrs:
        vp.occupancy_percentage = attrs["occupancy_percentage"]
    if attrs.get("timestamp"):
        vp.timestamp = attrs["timestamp"]


def build_vehicle_position_feed(
    vehicle_id: str = "veh_001",
    trip_id: str = "T64-1",
    route_id: str = "R64",
    lat: float = 41.9010,
    lon: float = 12.5006,
    feed_timestamp: int | None = None,
    **extra: Any,
) -> bytes:
    """Build a serialized FeedMessage with one VehiclePosition entity.

    Extra keyword arguments set optional fields: bearing, speed, stop_id,
    current_stop_sequence, current_status, occupancy_status,
    occupancy_percentage, timestamp, label, entity_id.
    """
    feed = _new_feed(feed_timestamp)
    _add_vehicle(
        feed,
        {
            "vehicle_id": vehicle_id,
            "trip_id": trip_id,
            "route_id": route_id,
            "lat": lat,
            "lon": lon,
            **extra,
        },
    )
    return feed.SerializeToString()


def build_multi_vehicle_feed(
    vehicles: list[dict[str, Any]], feed_timestamp: int | None = None
) -> bytes:
    """Build a FeedMessage with one VehiclePosition entity per attrs dict."""
    feed = _new_feed(feed_timestamp)
    for attrs in vehicles:
        _add_vehicle(feed, attrs)
    return feed.SerializeToString()


def build_trip_update_feed(
    trip_id: str = "T64-1",
    route_id: str = "R64",
    stop_updates: list[dict[str, Any]] | None = None,
    feed_timestamp: int | None = None,
    vehicle_id: str = "",
) -> bytes:
    """Build a serialized FeedMessage with a TripUpdate entity.

    Args:
        trip_id: The trip identifier.
        route_id: The route identifier.
        stop_updates: List of dicts with keys: stop_id, stop_sequence and
            optionally arrival_delay, departure_delay, arrival_time,
            departure_time, schedule_relationship. Absent keys stay unset.
        feed_timestamp: Unix timestamp for the feed header.
        vehicle_id: Vehicle serving the trip.

    Returns:
        Serialized protobuf bytes.
    """
    feed = _new_feed(feed_timestamp)

    entity = feed.entity.add()
    entity.id = f"tu_{trip_id}"
    tu = entity.trip_update
    tu.trip.trip_id = trip_id
    tu.trip.route_id = route_id
    if vehicle_id:
        tu.vehicle.id = vehicle_id

    if stop_updates is None:
        stop_updates = [
            {"stop_id": "70001", "stop_sequence": 1, "arrival_delay": 60, "departure_delay": 65},
            {"stop_id": "70002", "stop_sequence": 2, "arrival_delay": 120, "departure_delay": 125},
        ]

    for su in stop_updates:
        stu = tu.stop_time_update.add()
        if su.get("stop_id"):
            stu.stop_id = su["stop_id"]
        stu.stop_sequence = su["stop_sequence"]
        if "arrival_delay" in su:
            stu.arrival.delay = su["arrival_delay"]
        if "arrival_time" in su:
            stu.arrival.time = su["arrival_time"]
        if "departure_delay" in su:
            stu.departure.delay = su["departure_delay"]
        if "departure_time" in su:
            stu.departure.time = su["departure_time"]
        if "schedule_relationship" in su:
            stu.schedule_relationship = su["schedule_relationship"]

    return feed.SerializeToString()


def build_route_delay_feed(
    delays_by_route: dict[str, list[int]],
    stop_id: str = "70002",
    feed_timestamp: int | None = None,
) -> bytes:
    """Build a trip update feed with one delayed trip per listed delay.

    Args:
        delays_by_route: route_id -> delays in minutes, one trip each.
        stop_id: Stop carried by every stop-time update.
        feed_timestamp: Unix timestamp for the feed header.
    """
    feed = _new_feed(feed_timestamp)
    for route_id, delays in delays_by_route.items():
        for i, minutes in enumerate(delays):
            entity = feed.entity.add()
            entity.id = f"tu_{route_id}_{i}"
            tu = entity.trip_update
            tu.trip.trip_id = f"{route_id}-trip-{i}"
            tu.trip.route_id = route_id
            stu = tu.stop_time_update.add()
            stu.stop_id = stop_id
            stu.stop_sequence = 2
            stu.arrival.delay = minutes * 60
    return feed.SerializeToString()


def build_empty_feed(feed_timestamp: int | None = None) -> bytes:
    """Build an empty FeedMessage with no entities."""
    return _new_feed(feed_timestamp).SerializeToString()


def build_headerless_feed() -> bytes:
    """Build a FeedMessage whose required header is missing."""
    feed = gtfs_realtime_pb2.FeedMessage()
    entity = feed.entity.add()
    entity.id = "vp_orphan"
    entity.vehicle.vehicle.id = "veh_orphan"
    entity.vehicle.position.latitude = 41.9
    entity.vehicle.position.longitude = 12.5
    return feed.SerializePartialToString()
