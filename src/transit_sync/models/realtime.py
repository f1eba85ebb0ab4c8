"""GTFS-Realtime cache tables.

These hold the last sanitized snapshot of each realtime feed so a sync cycle
can fall back to it when the upstream feed is unavailable. All timestamps are
unix seconds.
"""

from __future__ import annotations

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from transit_sync.models.base import Base


class VehiclePositionRow(Base):
    """Latest known position per vehicle."""

    __tablename__ = "vehicle_positions"

    vehicle_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    trip_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    route_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    bearing: Mapped[float | None] = mapped_column(Float, nullable=True)
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="UNKNOWN")
    current_stop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_stop_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    occupancy_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_vehicle_positions_route_id", "route_id"),
        Index("ix_vehicle_positions_recorded_at", "recorded_at"),
    )


class TripUpdateRow(Base):
    """One arrival prediction per (trip, stop_sequence) from the last trip-updates feed."""

    __tablename__ = "trip_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    route_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vehicle_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stop_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    predicted_arrival: Mapped[int | None] = mapped_column(Integer, nullable=True)
    predicted_departure: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    schedule_relationship: Mapped[str] = mapped_column(
        String(32), nullable=False, default="SCHEDULED"
    )
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_trip_updates_stop_id", "stop_id"),
        Index("ix_trip_updates_route_id", "route_id"),
    )


class FeedMetaRow(Base):
    """Per-feed fetch bookkeeping (conditional headers, last success)."""

    __tablename__ = "feed_meta"

    feed_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    etag: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_modified: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    last_success_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_attempt_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    feed_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    entity_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
