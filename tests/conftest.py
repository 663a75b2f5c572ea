"""Shared test fixtures and factory functions.

Factories return valid domain objects with sensible defaults. Override
any field via keyword arguments to create specific test scenarios
without repeating boilerplate.

Each test gets a fresh SQLite file database (aiosqlite). Point
TEST_DATABASE_URL at a PostgreSQL database to run the same suite
against asyncpg; the schema is dropped and recreated per test.
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.api.app import create_app
from src.core.config import Settings, SyncSchedule
from src.db.session import create_engine, create_session_factory
from src.models.database import Base
from src.models.domain import DocumentFields, DocumentKind, FetchedRecord, FetchPage
from src.services.content_store import ContentStore
from src.services.cursor_tracker import CursorTracker
from src.services.events import ChangeBus
from src.services.job_queue import JobQueue
from src.services.search_cache import SearchCache

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

EPOCH = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Simulated time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Settings / database
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings configured for testing — console logs, isolated database."""
    return Settings(
        debug=False,
        database_url=TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        log_format="console",
        log_level="DEBUG",
        job_backoff_base_seconds=1.0,
        job_backoff_cap_seconds=60.0,
        job_visibility_timeout_seconds=30,
        search_cache_ttl_seconds=60,
        sync_schedules=[
            SyncSchedule(source="courtlistener", collection="opinions", interval_seconds=3600),
        ],
    )


@pytest.fixture
async def engine(test_settings: Settings) -> AsyncIterator[AsyncEngine]:
    """Engine with a freshly created schema."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        if TEST_DATABASE_URL:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def change_bus() -> ChangeBus:
    return ChangeBus()


@pytest.fixture
def content_store(
    session_factory: async_sessionmaker[AsyncSession],
    change_bus: ChangeBus,
    clock: FakeClock,
) -> ContentStore:
    return ContentStore(session_factory=session_factory, change_bus=change_bus, clock=clock)


@pytest.fixture
def cursor_tracker(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> CursorTracker:
    return CursorTracker(
        session_factory=session_factory,
        clock=clock,
        stale_after=timedelta(seconds=test_settings.job_visibility_timeout_seconds),
    )


@pytest.fixture
def job_queue(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> JobQueue:
    return JobQueue.from_settings(test_settings, session_factory, clock=clock)


@pytest.fixture
def search_cache(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> SearchCache:
    return SearchCache(session_factory=session_factory, default_ttl_seconds=60, clock=clock)


# ---------------------------------------------------------------------------
# App / Client
# ---------------------------------------------------------------------------


@pytest.fixture
def app(test_settings: Settings, engine: AsyncEngine, clock: FakeClock) -> FastAPI:
    """FastAPI application wired with test settings and the schema in place."""
    return create_app(test_settings, clock=clock)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client bound to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    await app.state.engine.dispose()


# ---------------------------------------------------------------------------
# Domain model factories
# ---------------------------------------------------------------------------


def make_document_fields(**overrides: object) -> DocumentFields:
    """Build valid DocumentFields with sensible defaults."""
    defaults: dict[str, object] = {
        "court": "pasuperct",
        "jurisdiction": "PA",
        "docket_number": "1234 EDA 2024",
        "case_name": "Commonwealth v. Smith",
        "date_filed": datetime(2024, 5, 1, tzinfo=UTC),
        "citations": [{"volume": 310, "reporter": "A.3d", "page": 112}],
        "parties": [{"name": "Commonwealth of Pennsylvania", "role": "appellee"}],
        "judges": [{"name": "Bender, P.J.E."}],
        "metadata": {"precedential": True},
        "full_text": None,
        "source_url": "https://www.courtlistener.com/opinion/1/commonwealth-v-smith/",
    }
    defaults.update(overrides)
    return DocumentFields(**defaults)  # type: ignore[arg-type]


def make_record(external_id: str, body: bytes | None = None, **overrides: object) -> FetchedRecord:
    """Build a FetchedRecord whose body defaults to one derived from its id."""
    kind = overrides.pop("kind", DocumentKind.OPINION)
    return FetchedRecord(
        external_id=external_id,
        kind=kind,  # type: ignore[arg-type]
        body=body if body is not None else f"opinion body {external_id}".encode(),
        fields=make_document_fields(
            source_url=f"https://www.courtlistener.com/opinion/{external_id}/", **overrides
        ),
    )


class FakeFetcher:
    """Serves pre-built pages keyed by the cursor they start from.

    ``errors`` maps a cursor to an exception raised instead of a page.
    """

    def __init__(
        self,
        pages: dict[str | None, FetchPage],
        errors: dict[str | None, Exception] | None = None,
    ) -> None:
        self.pages = pages
        self.errors = errors or {}
        self.calls: list[tuple[str, str | None]] = []

    async def fetch(self, collection: str, cursor: str | None) -> FetchPage:
        self.calls.append((collection, cursor))
        if cursor in self.errors:
            raise self.errors[cursor]
        return self.pages[cursor]
