"""Route-level delay incidents."""

from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from transit_sync.models.base import Base


class IncidentRow(Base):
    """Persisted incident, retired rather than deleted while recent."""

    __tablename__ = "incidents"

    incident_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    incident_type: Mapped[str] = mapped_column(String(16), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Comma separated route ids
    affected_routes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_time: Mapped[int] = mapped_column(Integer, nullable=False)
    end_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_incidents_active_end", "active", "end_time"),)
