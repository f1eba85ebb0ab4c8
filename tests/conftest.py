"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from transit_sync.config import Settings
from transit_sync.context import TransitContext
from transit_sync.database import Database
from transit_sync.errors import NetworkError
from transit_sync.main import create_app
from transit_sync.services.catalog import TransitCatalog
from transit_sync.services.gtfs_static.loader import StaticLoader
from transit_sync.services.gtfs_static.reader import GtfsZipReader
from transit_sync.services.realtime.feed_client import FeedKind
from transit_sync.services.realtime.http import HttpFetcher, HttpFetchError
from transit_sync.store import TransitStore

from .fixtures.gtfs_fixture import build_gtfs_zip

MEMORY_URL = "sqlite+aiosqlite:///:memory:"
T0 = datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class StubFeedClient:
    """Feed client double serving canned realtime payloads."""

    def __init__(self) -> None:
        self.payloads: dict[FeedKind, bytes] = {}
        self.errors: dict[FeedKind, Exception] = {}
        self.calls: list[FeedKind] = []

    def serve(self, kind: FeedKind, data: bytes) -> None:
        self.errors.pop(kind, None)
        self.payloads[kind] = data

    def fail(self, kind: FeedKind, message: str = "connection refused") -> None:
        self.errors[kind] = NetworkError(message, online=False)

    async def fetch(self, kind: FeedKind) -> bytes:
        self.calls.append(kind)
        if kind in self.errors:
            raise self.errors[kind]
        return self.payloads.get(kind, b"")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh in-memory database with the schema created."""
    db = Database(MEMORY_URL)
    await db.create_schema()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> TransitStore:
    return TransitStore(database, batch_size=2)


@pytest.fixture
def catalog() -> TransitCatalog:
    return TransitCatalog()


@pytest.fixture
def loader(store: TransitStore, catalog: TransitCatalog, clock: FakeClock) -> StaticLoader:
    return StaticLoader(store, catalog, clock)


@pytest.fixture
async def loaded_catalog(loader: StaticLoader, catalog: TransitCatalog) -> TransitCatalog:
    """Catalog with the sample feed loaded."""
    with GtfsZipReader(build_gtfs_zip()) as reader:
        await loader.load(reader, source="fixture")
    return catalog


@pytest.fixture
def feed_client() -> StubFeedClient:
    return StubFeedClient()


@pytest.fixture
def mock_http() -> Any:
    """HttpFetcher double; every request fails unless a test says otherwise."""
    http = AsyncMock(spec=HttpFetcher)
    http.is_online.return_value = True
    http.get.side_effect = HttpFetchError("no network in tests")
    http.fetch.side_effect = HttpFetchError("no network in tests")
    http.head.side_effect = HttpFetchError("no network in tests")
    return http


@pytest.fixture
async def context(clock: FakeClock, mock_http: Any) -> AsyncGenerator[TransitContext, None]:
    """Wired services over an in-memory store, sample feed loaded."""
    settings = Settings(_env_file=None, DATABASE_URL=MEMORY_URL)
    ctx = TransitContext.build(settings, clock=clock, http=mock_http)
    await ctx.database.create_schema()
    with GtfsZipReader(build_gtfs_zip()) as reader:
        await ctx.loader.load(reader, source="fixture")
    yield ctx
    await ctx.shutdown()


@pytest.fixture
async def client(context: TransitContext) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing."""
    transport = ASGITransport(app=create_app(context))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
