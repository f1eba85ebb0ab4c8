"""Time source used by staleness, health and incident windows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def to_epoch(value: datetime | None) -> int | None:
    """Convert an aware datetime to unix seconds."""
    if value is None:
        return None
    return int(value.timestamp())


def from_epoch(value: int | None) -> datetime | None:
    """Convert unix seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)
