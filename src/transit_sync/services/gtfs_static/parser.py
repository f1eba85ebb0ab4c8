"""GTFS CSV parser with column validation and streaming."""

from __future__ import annotations

import csv
from typing import TYPE_CHECKING

from transit_sync.errors import FeedFormatError
from transit_sync.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import TextIO

logger = get_logger(__name__)

# Required columns per GTFS file (subset we need)
REQUIRED_COLUMNS: dict[str, set[str]] = {
    "agency.txt": {"agency_name"},
    "calendar.txt": {
        "service_id",
        "monday",
        "tuesday",
        "wednesday",
        "thursday",
        "friday",
        "saturday",
        "sunday",
        "start_date",
        "end_date",
    },
    "routes.txt": {"route_id"},
    "stops.txt": {"stop_id", "stop_lat", "stop_lon"},
    "trips.txt": {"route_id", "service_id", "trip_id"},
    "stop_times.txt": {"trip_id", "stop_id", "stop_sequence"},
    "shapes.txt": {"shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"},
}


class MissingColumnError(FeedFormatError):
    """Raised when a required CSV column is missing."""


def parse_csv(text_io: TextIO, filename: str) -> Iterator[dict[str, str]]:
    """Parse a GTFS CSV file, yielding one dict per row.

    Validates required columns on first read. Streams rows
    to avoid loading entire file into memory.

    Raises:
        MissingColumnError: If required columns are missing.
    """
    csv_reader = csv.DictReader(text_io)

    if csv_reader.fieldnames is None:
        msg = f"Empty CSV file: {filename}"
        raise MissingColumnError(msg)

    # Headers sometimes carry stray whitespace
    csv_reader.fieldnames = [name.strip() for name in csv_reader.fieldnames]
    actual_columns = set(csv_reader.fieldnames)
    required = REQUIRED_COLUMNS.get(filename, set())
    missing = required - actual_columns
    if missing:
        msg = f"Missing required columns in {filename}: {sorted(missing)}"
        raise MissingColumnError(msg)

    extra_columns = actual_columns - required
    logger.debug(
        "Parsing GTFS file",
        filename=filename,
        required_columns=sorted(required),
        extra_columns=sorted(extra_columns) if extra_columns else None,
    )

    yield from csv_reader
