"""Persistent store adapter: bulk writes, queries and transactional batches.

Every unit of work acquires a pooled session and releases it when done. A
batch runs in one explicit transaction that either commits as a whole or is
rolled back as a whole.
"""

from __future__ import annotations

from itertools import islice
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Table, delete, insert, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from transit_sync.entities import ArrivalPrediction, Incident, VehiclePosition
from transit_sync.errors import StoreError
from transit_sync.logging import get_logger
from transit_sync.models import Base

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_sync.database import Database

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 1000

# Static tables in insert order; the read-back order keys are the natural identity
STATIC_TABLES: tuple[str, ...] = (
    "agency",
    "calendar",
    "routes",
    "stops",
    "trips",
    "stop_times",
    "shapes",
)

_ORDER_BY: dict[str, tuple[str, ...]] = {
    "agency": ("agency_id",),
    "calendar": ("service_id",),
    "routes": ("route_id",),
    "stops": ("stop_id",),
    "trips": ("trip_id",),
    "stop_times": ("trip_id", "stop_sequence"),
    "shapes": ("shape_id", "sequence"),
}

VEHICLE_FEED = "vehicle_positions"
TRIP_UPDATE_FEED = "trip_updates"
STATIC_FEED = "static"


def _table(name: str) -> Table:
    try:
        return Base.metadata.tables[name]
    except KeyError as exc:
        msg = f"Unknown table: {name}"
        raise StoreError(msg) from exc


class TransitStore:
    """Thin adapter over the relational store used by the sync engine."""

    def __init__(self, database: Database, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._db = database
        self.batch_size = batch_size

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    async def bulk_insert(
        self,
        table: str,
        rows: Iterable[dict[str, Any]],
        session: AsyncSession | None = None,
        skip_duplicates: bool = False,
    ) -> int:
        """Insert rows in chunks of ``batch_size``.

        Rows are consumed lazily, so a generator over millions of rows only
        keeps one chunk in memory.

        Args:
            table: Table name.
            rows: Row dicts keyed by column name.
            session: Run inside this caller-owned transaction. When omitted
                the insert runs in its own transaction.
            skip_duplicates: Keep the first row per primary key instead of
                failing on a conflict.

        Returns:
            Number of rows submitted.

        Raises:
            StoreError: If the insert fails (own transaction only; inside a
                caller transaction the SQLAlchemy error propagates to it).
        """
        if session is None:
            return await self.run_in_transaction(
                lambda own_session: self.bulk_insert(
                    table, rows, own_session, skip_duplicates=skip_duplicates
                )
            )

        if skip_duplicates:
            stmt = self._upsert_stmt(_table(table)).on_conflict_do_nothing()
        else:
            stmt = insert(_table(table))
        iterator = iter(rows)
        total = 0
        while True:
            batch = list(islice(iterator, self.batch_size))
            if not batch:
                break
            await session.execute(stmt, batch)
            total += len(batch)

        logger.debug("Bulk insert complete", table=table, total_rows=total)
        return total

    async def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        session: AsyncSession | None = None,
    ) -> list[dict[str, Any]]:
        """Run a read query and return rows as dicts."""
        if session is not None:
            result = await session.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings()]

        try:
            async with self._db.session() as own_session:
                result = await own_session.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            msg = f"Query failed: {exc}"
            logger.error("Store query failed", error=str(exc))
            raise StoreError(msg) from exc

    async def run_in_transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``fn`` inside one transaction.

        Commits when ``fn`` returns, rolls back in full when it raises.

        Raises:
            StoreError: On any SQLAlchemy failure inside the transaction.
                Other exceptions raised by ``fn`` propagate unchanged.
        """
        try:
            async with self._db.session() as session:
                async with session.begin():
                    return await fn(session)
        except SQLAlchemyError as exc:
            logger.error("Transaction rolled back", error=str(exc))
            msg = f"Transaction failed: {exc}"
            raise StoreError(msg) from exc

    async def delete_where(
        self,
        table: str,
        predicate: str | None = None,
        params: dict[str, Any] | None = None,
        session: AsyncSession | None = None,
    ) -> int:
        """Delete rows matching a SQL predicate (all rows when None)."""
        if session is None:
            return await self.run_in_transaction(
                lambda own_session: self.delete_where(table, predicate, params, own_session)
            )

        stmt = delete(_table(table))
        if predicate:
            stmt = stmt.where(text(predicate))
        result = await session.execute(stmt, params or {})
        return result.rowcount or 0

    async def iter_table(self, table: str) -> AsyncIterator[list[dict[str, Any]]]:
        """Stream a table in identity order, one partition of rows at a time."""
        tbl = _table(table)
        order = [tbl.c[name] for name in _ORDER_BY.get(table, ())]
        try:
            async with self._db.session() as session:
                result = await session.stream(select(tbl).order_by(*order))
                async for partition in result.mappings().partitions(self.batch_size):
                    yield [dict(row) for row in partition]
        except SQLAlchemyError as exc:
            msg = f"Failed to read {table}: {exc}"
            raise StoreError(msg) from exc

    async def count(self, table: str) -> int:
        rows = await self.query(f"SELECT COUNT(*) AS n FROM {_table(table).name}")
        return int(rows[0]["n"])

    # ------------------------------------------------------------------
    # Static snapshot
    # ------------------------------------------------------------------

    async def clear_static(self, session: AsyncSession) -> None:
        """Delete every static table inside the caller's transaction."""
        for table in reversed(STATIC_TABLES):
            await self.delete_where(table, session=session)

    # ------------------------------------------------------------------
    # Realtime cache
    # ------------------------------------------------------------------

    async def upsert_vehicles(self, vehicles: Sequence[VehiclePosition]) -> int:
        """Insert or refresh vehicle rows keyed by vehicle_id."""
        if not vehicles:
            return 0

        table = _table("vehicle_positions")
        update_cols = [c.name for c in table.columns if c.name != "vehicle_id"]

        async def _write(session: AsyncSession) -> int:
            rows = [v.to_row() for v in vehicles]
            for batch_start in range(0, len(rows), self.batch_size):
                batch = rows[batch_start : batch_start + self.batch_size]
                stmt = self._upsert_stmt(table)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["vehicle_id"],
                    set_={col: stmt.excluded[col] for col in update_cols},
                )
                await session.execute(stmt, batch)
            return len(rows)

        written = await self.run_in_transaction(_write)
        logger.debug("Vehicle positions persisted", rows=written)
        return written

    async def load_vehicles(self) -> list[VehiclePosition]:
        rows = await self.query("SELECT * FROM vehicle_positions ORDER BY vehicle_id")
        return [VehiclePosition.from_row(row) for row in rows]

    async def delete_stale_vehicles(self, cutoff_epoch: int) -> int:
        """Remove vehicles not refreshed since ``cutoff_epoch``."""
        return await self.delete_where(
            "vehicle_positions", "recorded_at < :cutoff", {"cutoff": cutoff_epoch}
        )

    async def replace_trip_updates(self, predictions: Sequence[ArrivalPrediction]) -> int:
        """Swap the cached trip-update snapshot for a new one."""

        async def _replace(session: AsyncSession) -> int:
            await self.delete_where("trip_updates", session=session)
            return await self.bulk_insert(
                "trip_updates", (p.to_row() for p in predictions), session
            )

        return await self.run_in_transaction(_replace)

    async def load_trip_updates(self) -> list[ArrivalPrediction]:
        rows = await self.query(
            "SELECT * FROM trip_updates ORDER BY trip_id, stop_sequence, id"
        )
        return [ArrivalPrediction.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Incidents
    # ------------------------------------------------------------------

    async def save_incidents(self, incidents: Sequence[Incident]) -> int:
        if not incidents:
            return 0

        table = _table("incidents")
        update_cols = [c.name for c in table.columns if c.name != "incident_id"]

        async def _write(session: AsyncSession) -> int:
            stmt = self._upsert_stmt(table)
            stmt = stmt.on_conflict_do_update(
                index_elements=["incident_id"],
                set_={col: stmt.excluded[col] for col in update_cols},
            )
            await session.execute(stmt, [i.to_row() for i in incidents])
            return len(incidents)

        return await self.run_in_transaction(_write)

    async def load_active_incidents(self) -> list[Incident]:
        rows = await self.query(
            "SELECT * FROM incidents WHERE active = :active ORDER BY incident_id",
            {"active": True},
        )
        return [Incident.from_row(row) for row in rows]

    async def delete_resolved_incidents(self, cutoff_epoch: int) -> int:
        """Garbage-collect retired incidents that ended before ``cutoff_epoch``."""
        return await self.delete_where(
            "incidents",
            "active = :active AND end_time IS NOT NULL AND end_time < :cutoff",
            {"active": False, "cutoff": cutoff_epoch},
        )

    # ------------------------------------------------------------------
    # Feed metadata
    # ------------------------------------------------------------------

    async def get_feed_meta(self, feed_type: str) -> dict[str, Any] | None:
        rows = await self.query(
            "SELECT * FROM feed_meta WHERE feed_type = :feed_type",
            {"feed_type": feed_type},
        )
        return rows[0] if rows else None

    async def update_feed_meta(
        self,
        feed_type: str,
        status: str,
        attempted_at: int,
        entity_count: int = 0,
        feed_hash: str = "",
        error_message: str = "",
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> None:
        """Upsert the meta row for a feed.

        ``last_success_at`` only moves on an ``ok`` status. Conditional
        headers are kept unless new values are given.
        """
        existing = await self.get_feed_meta(feed_type) or {}
        row = {
            "feed_type": feed_type,
            "etag": etag if etag is not None else existing.get("etag", ""),
            "last_modified": (
                last_modified if last_modified is not None else existing.get("last_modified", "")
            ),
            "last_success_at": (
                attempted_at if status == "ok" else existing.get("last_success_at")
            ),
            "last_attempt_at": attempted_at,
            "status": status,
            "error_message": error_message[:500] if error_message else "",
            "feed_hash": feed_hash or existing.get("feed_hash", ""),
            "entity_count": entity_count,
        }
        table = _table("feed_meta")

        async def _write(session: AsyncSession) -> None:
            stmt = self._upsert_stmt(table)
            stmt = stmt.on_conflict_do_update(
                index_elements=["feed_type"],
                set_={col: stmt.excluded[col] for col in row if col != "feed_type"},
            )
            await session.execute(stmt, [row])

        await self.run_in_transaction(_write)

    def _upsert_stmt(self, table: Table) -> Any:
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self._db.engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)
