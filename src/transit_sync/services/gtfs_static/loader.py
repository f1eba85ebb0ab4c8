"""Static snapshot loader - persist, read back, index, publish."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from transit_sync.entities import (
    Agency,
    Route,
    ServiceCalendar,
    ShapePoint,
    Stop,
    StopTime,
    Trip,
)
from transit_sync.errors import FeedFormatError
from transit_sync.logging import get_logger
from transit_sync.services.gtfs_static.indexer import StaticIndexSet, build_indices
from transit_sync.services.gtfs_static.normalizer import (
    GtfsNormalizer,
    NormalizationError,
    TimeParseError,
)
from transit_sync.services.gtfs_static.reader import REQUIRED_TABLES
from transit_sync.store import STATIC_TABLES

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_sync.clock import Clock
    from transit_sync.services.catalog import TransitCatalog
    from transit_sync.services.gtfs_static.reader import StaticArchiveReader
    from transit_sync.store import TransitStore

logger = get_logger(__name__)

MAX_REPORTED_WARNINGS = 100

_NORMALIZERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "agency": GtfsNormalizer.normalize_agency,
    "calendar": GtfsNormalizer.normalize_calendar,
    "routes": GtfsNormalizer.normalize_route,
    "stops": GtfsNormalizer.normalize_stop,
    "trips": GtfsNormalizer.normalize_trip,
    "stop_times": GtfsNormalizer.normalize_stop_time,
    "shapes": GtfsNormalizer.normalize_shape_point,
}


class LoadReport:
    """Collects load metrics and warnings."""

    def __init__(self, source: str, load_id: str | None = None) -> None:
        self.load_id = load_id or str(uuid.uuid4())
        self.source = source
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self.duration_ms: int | None = None
        self.counts: dict[str, dict[str, int]] = {}
        self.warnings: list[str] = []
        self.warning_count = 0
        self.generation = 0
        self.skipped_unchanged = False

    def init_table(self, table: str) -> None:
        self.counts[table] = {"read": 0, "written": 0, "skipped": 0}

    def warn(self, message: str) -> None:
        self.warning_count += 1
        if len(self.warnings) < MAX_REPORTED_WARNINGS:
            self.warnings.append(message)

    def finish(self) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "load_id": self.load_id,
            "source": self.source,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "generation": self.generation,
            "skipped_unchanged": self.skipped_unchanged,
            "counts": self.counts,
            "warning_count": self.warning_count,
            "warnings": self.warnings,
        }


class StaticLoader:
    """Loads a static snapshot into the store and swaps in a new index set.

    The write is all-or-nothing: every table is cleared and rewritten in a
    single transaction. Indices are built from what the store returns after
    the commit, not from the parsed rows, so they always mirror durable data.
    """

    def __init__(
        self,
        store: TransitStore,
        catalog: TransitCatalog,
        clock: Clock,
        strict: bool = False,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._clock = clock
        self.strict = strict
        self._generation = 0

    async def load(self, reader: StaticArchiveReader, source: str = "archive") -> LoadReport:
        """Persist every table from ``reader`` and publish fresh indices.

        Args:
            reader: Source of parsed rows per table.
            source: Label for logs and the report.

        Returns:
            LoadReport with per-table counts.

        Raises:
            FeedFormatError: If stops, routes or trips are absent, a required
                column is missing, or (strict mode) a row is invalid.
            StoreError: If the transactional write fails.
        """
        present = reader.tables()
        missing = REQUIRED_TABLES - present
        if missing:
            msg = f"Static feed is missing required tables: {sorted(missing)}"
            raise FeedFormatError(msg)

        report = LoadReport(source=source)
        logger.info(
            "Starting static load",
            load_id=report.load_id,
            source=source,
            tables=sorted(present),
            strict=self.strict,
        )

        async def _write_all(session: AsyncSession) -> None:
            await self._store.clear_static(session)
            for table in STATIC_TABLES:
                report.init_table(table)
                if table not in present:
                    continue
                rows = self._normalized_rows(reader, table, report)
                written = await self._store.bulk_insert(
                    table, rows, session, skip_duplicates=not self.strict
                )
                report.counts[table]["written"] = written
                logger.info("Static table written", table=table, **report.counts[table])

        await self._store.run_in_transaction(_write_all)

        index_set = await self._read_back()
        self._catalog.publish_static(index_set)

        report.generation = index_set.generation
        report.finish()
        logger.info(
            "Static load complete",
            load_id=report.load_id,
            duration_ms=report.duration_ms,
            generation=index_set.generation,
            warning_count=report.warning_count,
        )
        return report

    async def restore(self) -> StaticIndexSet | None:
        """Rebuild indices from whatever the store already holds.

        Returns:
            The published index set, or None when the store holds no snapshot.
        """
        if await self._store.count("routes") == 0:
            logger.info("No stored static snapshot to restore")
            return None
        index_set = await self._read_back()
        self._catalog.publish_static(index_set)
        return index_set

    def _normalized_rows(
        self, reader: StaticArchiveReader, table: str, report: LoadReport
    ) -> Iterator[dict[str, Any]]:
        """Lazily normalize rows; lenient mode skips bad rows with a warning."""
        normalize = _NORMALIZERS[table]
        counts = report.counts[table]
        for line_no, row in enumerate(reader.rows(table), start=2):
            counts["read"] += 1
            try:
                yield normalize(row)
            except (NormalizationError, TimeParseError) as exc:
                msg = f"{table} line {line_no}: {exc}"
                if self.strict:
                    raise FeedFormatError(msg) from exc
                counts["skipped"] += 1
                report.warn(msg)

    async def _read_back(self) -> StaticIndexSet:
        """Re-read each static table and build the index set from it."""
        loaded: dict[str, list[Any]] = {}
        converters: dict[str, Callable[[Any], Any]] = {
            "agency": Agency.from_row,
            "calendar": ServiceCalendar.from_row,
            "routes": Route.from_row,
            "stops": Stop.from_row,
            "trips": Trip.from_row,
            "stop_times": StopTime.from_row,
            "shapes": ShapePoint.from_row,
        }
        for table in STATIC_TABLES:
            convert = converters[table]
            items: list[Any] = []
            async for partition in self._store.iter_table(table):
                items.extend(convert(row) for row in partition)
            loaded[table] = items

        self._generation += 1
        return build_indices(
            agencies=loaded["agency"],
            calendars=loaded["calendar"],
            routes=loaded["routes"],
            stops=loaded["stops"],
            trips=loaded["trips"],
            stop_times=loaded["stop_times"],
            shape_points=loaded["shapes"],
            generation=self._generation,
            loaded_at=self._clock.now(),
        )
