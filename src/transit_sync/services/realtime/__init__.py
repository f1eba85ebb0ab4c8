"""GTFS-Realtime fetch, decode and sanitize pipeline."""

from transit_sync.services.realtime.decoder import RealtimeDecoder
from transit_sync.services.realtime.events import SyncEvents
from transit_sync.services.realtime.feed_client import FeedClient, FeedKind
from transit_sync.services.realtime.http import HttpFetcher
from transit_sync.services.realtime.sanitizer import (
    ForeignKeySanitizer,
    InvalidReferenceReporter,
    ReferenceLookups,
)

__all__ = [
    "FeedClient",
    "FeedKind",
    "ForeignKeySanitizer",
    "HttpFetcher",
    "InvalidReferenceReporter",
    "RealtimeDecoder",
    "ReferenceLookups",
    "SyncEvents",
]
