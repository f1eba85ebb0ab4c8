"""Subscriber lists for sync cycle outcomes."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Union

from transit_sync.logging import get_logger

logger = get_logger(__name__)

VehiclesUpdatedCallback = Callable[[list[Any]], Union[None, Awaitable[None]]]
UpdateFailedCallback = Callable[[str], Union[None, Awaitable[None]]]


class SyncEvents:
    """Fan-out of sync results to registered callbacks.

    Callbacks may be plain functions or coroutine functions. Each notify
    iterates over a copy of the subscriber list, so a callback may
    unsubscribe itself (or others) while being called.
    """

    def __init__(self) -> None:
        self._vehicles_updated: list[VehiclesUpdatedCallback] = []
        self._update_failed: list[UpdateFailedCallback] = []

    def on_vehicles_updated(self, callback: VehiclesUpdatedCallback) -> Callable[[], None]:
        """Register a callback receiving the active vehicle list.

        Returns:
            A callable that unsubscribes the callback.
        """
        self._vehicles_updated.append(callback)
        return lambda: self._remove(self._vehicles_updated, callback)

    def on_update_failed(self, callback: UpdateFailedCallback) -> Callable[[], None]:
        """Register a callback receiving the failure message of a cycle."""
        self._update_failed.append(callback)
        return lambda: self._remove(self._update_failed, callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._vehicles_updated) + len(self._update_failed)

    async def emit_vehicles_updated(self, vehicles: list[Any]) -> None:
        for callback in list(self._vehicles_updated):
            await self._call(callback, vehicles)

    async def emit_update_failed(self, message: str) -> None:
        for callback in list(self._update_failed):
            await self._call(callback, message)

    @staticmethod
    def _remove(callbacks: list[Any], callback: Any) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    @staticmethod
    async def _call(callback: Callable[[Any], Any], payload: Any) -> None:
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                "Sync event callback failed",
                callback=getattr(callback, "__qualname__", repr(callback)),
                exc_info=exc,
            )
