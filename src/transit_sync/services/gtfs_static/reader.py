"""GTFS archive readers - yield parsed rows per static table."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from transit_sync.errors import FeedFormatError
from transit_sync.logging import get_logger
from transit_sync.services.gtfs_static.parser import parse_csv

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = get_logger(__name__)

# Table name -> file name for every table the loader understands
TABLE_FILES: dict[str, str] = {
    "agency": "agency.txt",
    "calendar": "calendar.txt",
    "routes": "routes.txt",
    "stops": "stops.txt",
    "trips": "trips.txt",
    "stop_times": "stop_times.txt",
    "shapes": "shapes.txt",
}

# Tables without which a snapshot is unusable
REQUIRED_TABLES = frozenset({"stops", "routes", "trips"})


class MissingRequiredFileError(FeedFormatError):
    """Raised when a required GTFS file is missing from the archive."""


class StaticArchiveReader(Protocol):
    """Source of parsed static rows; the archive format stays behind it."""

    def tables(self) -> set[str]:
        """Names of the known tables present in the archive."""
        ...

    def rows(self, table: str) -> Iterator[dict[str, str]]:
        """Stream one dict per row of ``table``."""
        ...


class GtfsZipReader:
    """Opens and validates a GTFS ZIP archive."""

    def __init__(self, data: bytes) -> None:
        """Initialize reader with ZIP bytes.

        Raises:
            FeedFormatError: If data is not a valid ZIP.
            MissingRequiredFileError: If required files are missing.
        """
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            msg = "Static feed is not a valid ZIP archive"
            raise FeedFormatError(msg) from exc
        self._names = self._index_names()
        self._validate_required_files()

    @classmethod
    def from_path(cls, path: str | Path) -> GtfsZipReader:
        """Open a GTFS ZIP from the local filesystem."""
        path = Path(path)
        if not path.exists():
            msg = f"Local GTFS file not found: {path}"
            raise FileNotFoundError(msg)
        return cls(path.read_bytes())

    def _index_names(self) -> dict[str, str]:
        # Some publishers nest the feed in a single top-level folder
        names: dict[str, str] = {}
        for name in self._zip.namelist():
            base = name.rsplit("/", 1)[-1]
            if base and base not in names:
                names[base] = name
        return names

    def _validate_required_files(self) -> None:
        """Ensure all required GTFS files exist in the archive."""
        missing = sorted(
            TABLE_FILES[table] for table in REQUIRED_TABLES if TABLE_FILES[table] not in self._names
        )
        if missing:
            msg = f"Missing required GTFS files: {missing}"
            raise MissingRequiredFileError(msg)

        logger.info(
            "GTFS ZIP validated",
            tables=sorted(self.tables()),
            total_files=len(self._names),
        )

    def tables(self) -> set[str]:
        return {table for table, filename in TABLE_FILES.items() if filename in self._names}

    def rows(self, table: str) -> Iterator[dict[str, str]]:
        filename = TABLE_FILES[table]
        with self.open_file(filename) as text_io:
            yield from parse_csv(text_io, filename)

    def open_file(self, filename: str) -> io.TextIOWrapper:
        """Open a file from the ZIP archive for text reading.

        Returns:
            TextIOWrapper suitable for csv.DictReader.
        """
        binary_stream = self._zip.open(self._names.get(filename, filename))
        return io.TextIOWrapper(binary_stream, encoding="utf-8-sig", newline="")

    def list_files(self) -> list[str]:
        """List all filenames in the archive."""
        return self._zip.namelist()

    def close(self) -> None:
        """Close the ZIP archive."""
        self._zip.close()

    def __enter__(self) -> GtfsZipReader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
