"""Error taxonomy shared by the static and realtime pipelines."""

from __future__ import annotations


class FeedFormatError(Exception):
    """Raised when a static feed is malformed or misses a required table."""


class StoreError(Exception):
    """Raised when a store operation or transaction fails."""


class NetworkError(Exception):
    """Raised when a feed cannot be fetched.

    ``online`` reports the connectivity probe result taken after the failure,
    so callers can tell an upstream outage from a local one.
    """

    def __init__(self, message: str, *, online: bool = True) -> None:
        super().__init__(message)
        self.online = online


class FeedDecodeError(Exception):
    """Raised when a realtime payload envelope cannot be parsed."""
