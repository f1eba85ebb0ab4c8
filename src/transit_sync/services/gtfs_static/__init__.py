"""Static GTFS load pipeline."""

from transit_sync.services.gtfs_static.indexer import StaticIndexSet, build_indices
from transit_sync.services.gtfs_static.loader import LoadReport, StaticLoader
from transit_sync.services.gtfs_static.normalizer import GtfsNormalizer
from transit_sync.services.gtfs_static.reader import GtfsZipReader, StaticArchiveReader
from transit_sync.services.gtfs_static.refresher import StaticRefresher

__all__ = [
    "GtfsNormalizer",
    "GtfsZipReader",
    "LoadReport",
    "StaticArchiveReader",
    "StaticIndexSet",
    "StaticLoader",
    "StaticRefresher",
    "build_indices",
]
