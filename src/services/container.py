"""Wiring of the engine's services.

Both the API and the worker process build one ServiceContainer from
settings and a session factory, so they share identical construction
(change bus subscriptions included).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from src.models.domain import JobType
from src.services.content_store import ContentStore
from src.services.cursor_tracker import CursorTracker
from src.services.events import ChangeBus
from src.services.ingestion.fetcher import FetcherRegistry
from src.services.ingestion.sync_runner import IngestionRunner
from src.services.job_queue import JobQueue
from src.services.queue.handlers import make_cache_sweep_handler, make_ingest_handler
from src.services.queue.worker import JobWorker
from src.services.scheduler import Scheduler
from src.services.search_cache import SearchCache
from src.services.source_registry import SourceRegistry
from src.utils.time import Clock, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.core.config import Settings


@dataclass
class ServiceContainer:
    """Every long-lived service, built once per process."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    change_bus: ChangeBus
    sources: SourceRegistry
    fetchers: FetcherRegistry
    content_store: ContentStore
    cursor_tracker: CursorTracker
    job_queue: JobQueue
    search_cache: SearchCache
    runner: IngestionRunner
    scheduler: Scheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
        fetchers: FetcherRegistry | None = None,
    ) -> ServiceContainer:
        """Construct and connect all services.

        Fetchers come from ``settings.fetchers`` unless a registry is given.
        """
        change_bus = ChangeBus()
        sources = SourceRegistry.from_settings(settings)
        if fetchers is None:
            fetchers = FetcherRegistry.from_import_paths(settings.fetchers, sources)

        content_store = ContentStore(
            session_factory=session_factory, change_bus=change_bus, clock=clock
        )
        job_queue = JobQueue.from_settings(settings, session_factory, clock=clock)
        # A run that stops heartbeating for one job lease is presumed dead.
        cursor_tracker = CursorTracker(
            session_factory=session_factory,
            clock=clock,
            stale_after=job_queue.visibility_timeout,
        )
        search_cache = SearchCache(
            session_factory=session_factory,
            default_ttl_seconds=settings.search_cache_ttl_seconds,
            clock=clock,
        )
        change_bus.subscribe(search_cache.on_document_changed)

        runner = IngestionRunner(
            fetchers=fetchers,
            content_store=content_store,
            cursor_tracker=cursor_tracker,
        )
        scheduler = Scheduler(
            queue=job_queue,
            cursor_tracker=cursor_tracker,
            schedules=settings.sync_schedules,
            sweep_interval=timedelta(seconds=settings.search_cache_sweep_interval_seconds),
            job_retention=timedelta(days=settings.job_retention_days),
            ingest_max_attempts=settings.ingest_job_max_attempts,
            enabled_sources=fetchers.sources,
            clock=clock,
        )
        return cls(
            settings=settings,
            session_factory=session_factory,
            change_bus=change_bus,
            sources=sources,
            fetchers=fetchers,
            content_store=content_store,
            cursor_tracker=cursor_tracker,
            job_queue=job_queue,
            search_cache=search_cache,
            runner=runner,
            scheduler=scheduler,
        )

    def build_worker(self, worker_id: str | None = None) -> JobWorker:
        """A worker with the built-in ingest and cache sweep handlers registered."""
        worker = JobWorker(queue=self.job_queue, worker_id=worker_id or self.settings.worker_id or None)
        worker.register(JobType.INGEST, make_ingest_handler(self.runner))
        worker.register(JobType.CACHE_SWEEP, make_cache_sweep_handler(self.search_cache))
        return worker
