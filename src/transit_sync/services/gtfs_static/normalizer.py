"""GTFS data normalizer - cleans and converts raw CSV rows."""

from __future__ import annotations

from typing import Any

from transit_sync.logging import get_logger

logger = get_logger(__name__)

# location_type values for which stop_name is optional
_NAMELESS_LOCATION_TYPES = (3, 4)


class TimeParseError(Exception):
    """Raised when a GTFS time string cannot be parsed."""


class NormalizationError(Exception):
    """Raised when a row cannot be normalized."""


class GtfsNormalizer:
    """Normalizes raw GTFS CSV rows into store-ready dicts."""

    @staticmethod
    def normalize_agency(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize an agency.txt row.

        agency_id may be empty for single-agency feeds; it is stored as "".
        """
        name = _clean_str(row.get("agency_name"))
        if not name:
            raise NormalizationError("Missing agency_name")

        return {
            "agency_id": _clean_str(row.get("agency_id")),
            "name": name,
            "url": _clean_str(row.get("agency_url")),
            "timezone": _clean_str(row.get("agency_timezone")),
            "lang": _clean_str(row.get("agency_lang")),
            "phone": _clean_str(row.get("agency_phone")),
        }

    @staticmethod
    def normalize_calendar(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a calendar.txt row.

        Raises:
            NormalizationError: On missing service_id, bad day flags or dates.
        """
        service_id = _clean_str(row.get("service_id"))
        if not service_id:
            raise NormalizationError("Missing service_id in calendar")

        result: dict[str, Any] = {"service_id": service_id}
        for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"):
            flag = _clean_str(row.get(day))
            if flag not in ("0", "1"):
                raise NormalizationError(
                    f"Invalid {day}={flag!r} for service_id={service_id}"
                )
            result[day] = int(flag)

        for field in ("start_date", "end_date"):
            value = _clean_str(row.get(field))
            if len(value) != 8 or not value.isdigit():
                raise NormalizationError(
                    f"Invalid {field}={value!r} for service_id={service_id}"
                )
            result[field] = value

        return result

    @staticmethod
    def normalize_route(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a routes.txt row.

        Returns:
            Dict with keys: route_id, agency_id, short_name, long_name,
            route_type, color, text_color, sort_order.

        Raises:
            NormalizationError: If required fields are missing.
        """
        route_id = _clean_str(row.get("route_id"))
        short_name = _clean_str(row.get("route_short_name"))
        long_name = _clean_str(row.get("route_long_name"))

        if not route_id:
            raise NormalizationError("Missing route_id")
        # GTFS allows empty short_name or long_name, but at least one should be present
        if not short_name and not long_name:
            raise NormalizationError(f"Both short_name and long_name empty for route_id={route_id}")

        route_type_str = _clean_str(row.get("route_type"))
        try:
            route_type = int(route_type_str) if route_type_str else 3
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid route_type={route_type_str!r} for route_id={route_id}"
            ) from exc

        return {
            "route_id": route_id,
            "agency_id": _clean_str(row.get("agency_id")),
            "short_name": short_name,
            "long_name": long_name,
            "route_type": route_type,
            "color": _clean_str(row.get("route_color")).upper(),
            "text_color": _clean_str(row.get("route_text_color")).upper(),
            "sort_order": _optional_int(row.get("route_sort_order")),
        }

    @staticmethod
    def normalize_stop(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a stops.txt row.

        Returns:
            Dict with keys: stop_id, code, name, lat, lon, parent_station,
            location_type.

        Raises:
            NormalizationError: If required fields are missing/invalid.
        """
        stop_id = _clean_str(row.get("stop_id"))
        name = _clean_str(row.get("stop_name"))
        lat_str = _clean_str(row.get("stop_lat"))
        lon_str = _clean_str(row.get("stop_lon"))

        if not stop_id:
            raise NormalizationError("Missing stop_id")

        location_type = _optional_int(row.get("location_type")) or 0
        if not name and location_type not in _NAMELESS_LOCATION_TYPES:
            raise NormalizationError(f"Missing stop_name for stop_id={stop_id}")

        try:
            lat = float(lat_str)
            lon = float(lon_str)
        except (ValueError, TypeError) as exc:
            raise NormalizationError(
                f"Invalid lat/lon for stop_id={stop_id}: lat={lat_str!r}, lon={lon_str!r}"
            ) from exc

        return {
            "stop_id": stop_id,
            "code": _clean_str(row.get("stop_code")),
            "name": name,
            "lat": lat,
            "lon": lon,
            "parent_station": _clean_str(row.get("parent_station")) or None,
            "location_type": location_type,
        }

    @staticmethod
    def normalize_trip(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a trips.txt row.

        Returns:
            Dict with keys: trip_id, route_id, service_id, headsign,
            direction_id, shape_id.

        Raises:
            NormalizationError: If required fields are missing.
        """
        trip_id = _clean_str(row.get("trip_id"))
        route_id = _clean_str(row.get("route_id"))
        service_id = _clean_str(row.get("service_id"))
        direction_id_str = _clean_str(row.get("direction_id"))

        if not trip_id:
            raise NormalizationError("Missing trip_id")
        if not route_id:
            raise NormalizationError(f"Missing route_id for trip_id={trip_id}")
        if not service_id:
            raise NormalizationError(f"Missing service_id for trip_id={trip_id}")

        # direction_id is optional in GTFS, default to 0
        direction_id = 0
        if direction_id_str:
            try:
                direction_id = int(direction_id_str)
                if direction_id not in (0, 1):
                    logger.warning(
                        "Invalid direction_id, defaulting to 0",
                        trip_id=trip_id,
                        direction_id=direction_id_str,
                    )
                    direction_id = 0
            except ValueError:
                logger.warning(
                    "Non-integer direction_id, defaulting to 0",
                    trip_id=trip_id,
                    direction_id=direction_id_str,
                )
                direction_id = 0

        return {
            "trip_id": trip_id,
            "route_id": route_id,
            "service_id": service_id,
            "headsign": _clean_str(row.get("trip_headsign")),
            "direction_id": direction_id,
            "shape_id": _clean_str(row.get("shape_id")) or None,
        }

    @staticmethod
    def normalize_stop_time(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a stop_times.txt row.

        Converts GTFS times (HH:MM:SS, may be >24:00:00) to seconds from
        midnight. A missing arrival or departure borrows the other one; both
        may be empty for untimed stops.

        Returns:
            Dict with keys: trip_id, stop_id, stop_sequence, arrival_sec,
            departure_sec.

        Raises:
            NormalizationError: If required fields are missing/invalid.
            TimeParseError: If a time string is malformed.
        """
        trip_id = _clean_str(row.get("trip_id"))
        stop_id = _clean_str(row.get("stop_id"))
        seq_str = _clean_str(row.get("stop_sequence"))
        arrival_str = _clean_str(row.get("arrival_time"))
        departure_str = _clean_str(row.get("departure_time"))

        if not trip_id:
            raise NormalizationError("Missing trip_id in stop_times")
        if not stop_id:
            raise NormalizationError(f"Missing stop_id in stop_times for trip_id={trip_id}")
        if not seq_str:
            raise NormalizationError(
                f"Missing stop_sequence for trip_id={trip_id}, stop_id={stop_id}"
            )

        try:
            stop_sequence = int(seq_str)
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid stop_sequence={seq_str!r} for trip_id={trip_id}"
            ) from exc

        arrival_sec = parse_gtfs_time(arrival_str) if arrival_str else None
        departure_sec = parse_gtfs_time(departure_str) if departure_str else None
        if arrival_sec is None:
            arrival_sec = departure_sec
        if departure_sec is None:
            departure_sec = arrival_sec

        return {
            "trip_id": trip_id,
            "stop_id": stop_id,
            "stop_sequence": stop_sequence,
            "arrival_sec": arrival_sec,
            "departure_sec": departure_sec,
        }

    @staticmethod
    def normalize_shape_point(row: dict[str, Any]) -> dict[str, Any]:
        """Normalize a shapes.txt row."""
        shape_id = _clean_str(row.get("shape_id"))
        if not shape_id:
            raise NormalizationError("Missing shape_id")

        try:
            lat = float(_clean_str(row.get("shape_pt_lat")))
            lon = float(_clean_str(row.get("shape_pt_lon")))
            sequence = int(_clean_str(row.get("shape_pt_sequence")))
        except ValueError as exc:
            raise NormalizationError(f"Invalid point for shape_id={shape_id}: {exc}") from exc

        dist = _clean_str(row.get("shape_dist_traveled"))
        try:
            dist_traveled = float(dist) if dist else None
        except ValueError:
            dist_traveled = None

        return {
            "shape_id": shape_id,
            "sequence": sequence,
            "lat": lat,
            "lon": lon,
            "dist_traveled": dist_traveled,
        }


def parse_gtfs_time(time_str: str) -> int:
    """Parse a GTFS time string (HH:MM:SS) to seconds from midnight.

    Supports times >= 24:00:00 for trips spanning past midnight.

    Examples:
        "08:30:00" -> 30600
        "25:01:30" -> 90090

    Raises:
        TimeParseError: If the format is invalid.
    """
    time_str = time_str.strip()
    parts = time_str.split(":")
    if len(parts) != 3:
        msg = f"Invalid GTFS time format: {time_str!r} (expected HH:MM:SS)"
        raise TimeParseError(msg)

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
        seconds = int(parts[2])
    except ValueError as exc:
        msg = f"Non-numeric components in GTFS time: {time_str!r}"
        raise TimeParseError(msg) from exc

    if minutes < 0 or minutes > 59 or seconds < 0 or seconds > 59:
        msg = f"Invalid minutes/seconds in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    if hours < 0:
        msg = f"Negative hours in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    return hours * 3600 + minutes * 60 + seconds


def _clean_str(value: Any) -> str:
    """Trim whitespace from a value, return empty string for None."""
    if value is None:
        return ""
    return str(value).strip()


def _optional_int(value: Any) -> int | None:
    text = _clean_str(value)
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None
