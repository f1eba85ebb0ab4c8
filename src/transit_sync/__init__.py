"""Transit data synchronization and indexing service (GTFS + GTFS-Realtime)."""

__version__ = "0.1.0"
