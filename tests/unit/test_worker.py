"""Tests for the job worker and the built-in job handlers."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from src.core.exceptions import (
    AlreadyRunningError,
    InvalidJobError,
    PermanentFetchError,
    TransientFetchError,
)
from src.models.domain import FetchPage, JobStatus, JobType, RunStatus
from src.services.container import ServiceContainer
from src.services.ingestion.fetcher import FetcherRegistry
from src.services.queue.handlers import parse_ingest_payload
from src.services.queue.worker import JobContext, JobWorker
from src.worker import run_loop
from tests.conftest import FakeFetcher, make_record


@pytest.fixture
def worker(job_queue) -> JobWorker:
    return JobWorker(queue=job_queue, worker_id="worker-test")


def _processed(job_type: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "jobs_processed_total", {"job_type": job_type, "outcome": outcome}
    )
    return value or 0.0


# ===================================================================
# Dispatch and settlement
# ===================================================================


class TestJobWorker:
    async def test_idle_when_queue_empty(self, worker):
        assert await worker.process_next() is False

    async def test_generated_worker_id(self, job_queue):
        assert JobWorker(queue=job_queue).worker_id.startswith("worker-")

    async def test_successful_handler_completes_job(self, worker, job_queue):
        seen: list[JobContext] = []

        async def handler(ctx: JobContext) -> None:
            seen.append(ctx)

        worker.register(JobType.EXPORT, handler)
        job_id = await job_queue.enqueue(JobType.EXPORT, {"format": "pdf"})
        before = _processed("export", "completed")

        assert await worker.process_next() is True
        assert seen[0].job.id == job_id
        assert seen[0].job.payload == {"format": "pdf"}
        assert seen[0].worker_id == "worker-test"
        assert (await job_queue.get(job_id)).status is JobStatus.COMPLETED
        assert _processed("export", "completed") == before + 1

    async def test_unexpected_error_is_retried(self, worker, job_queue):
        async def handler(ctx: JobContext) -> None:
            raise RuntimeError("socket closed")

        worker.register(JobType.EXPORT, handler)
        job_id = await job_queue.enqueue(JobType.EXPORT, max_attempts=3)
        before = _processed("export", "retried")

        await worker.process_next()
        job = await job_queue.get(job_id)
        assert job.status is JobStatus.PENDING
        assert job.attempts == 1
        assert job.error_message == "RuntimeError: socket closed"
        assert _processed("export", "retried") == before + 1

    async def test_permanent_error_fails_immediately(self, worker, job_queue):
        async def handler(ctx: JobContext) -> None:
            raise PermanentFetchError("courtlistener returned HTTP 404")

        worker.register(JobType.EXPORT, handler)
        job_id = await job_queue.enqueue(JobType.EXPORT, max_attempts=5)

        await worker.process_next()
        job = await job_queue.get(job_id)
        assert job.status is JobStatus.FAILED
        assert job.attempts == 1
        assert job.error_message == "PermanentFetchError: courtlistener returned HTTP 404"

    async def test_unknown_job_type_fails_terminally(self, worker, job_queue):
        job_id = await job_queue.enqueue("efiling_submission", max_attempts=5)
        await worker.process_next()
        job = await job_queue.get(job_id)
        assert job.status is JobStatus.FAILED
        assert job.error_message.startswith("InvalidJobError: No handler registered")

    async def test_handler_heartbeat_extends_lease(self, worker, job_queue, clock):
        async def handler(ctx: JobContext) -> None:
            clock.advance(seconds=25)
            await ctx.heartbeat()
            clock.advance(seconds=25)
            assert await job_queue.claim("worker-other") is None

        worker.register(JobType.EXPORT, handler)
        job_id = await job_queue.enqueue(JobType.EXPORT)
        await worker.process_next()
        assert (await job_queue.get(job_id)).status is JobStatus.COMPLETED

    async def test_lost_lease_is_not_fatal(self, worker, job_queue, clock):
        async def handler(ctx: JobContext) -> None:
            clock.advance(seconds=31)
            stolen = await job_queue.claim("worker-other")
            assert stolen is not None

        worker.register(JobType.EXPORT, handler)
        job_id = await job_queue.enqueue(JobType.EXPORT)

        assert await worker.process_next() is True
        job = await job_queue.get(job_id)
        assert job.status is JobStatus.RUNNING
        assert job.claimed_by == "worker-other"

    async def test_register_replaces_handler(self, worker):
        async def first(ctx: JobContext) -> None:
            return None

        async def second(ctx: JobContext) -> None:
            return None

        worker.register("export", first)
        worker.register(JobType.EXPORT, second)
        worker.register(JobType.DRAFT, first)
        assert worker.job_types == ["draft", "export"]


# ===================================================================
# Built-in handlers
# ===================================================================


class TestParseIngestPayload:
    def test_valid(self):
        payload = parse_ingest_payload({"source_id": "govinfo", "collection": "documents", "x": 1})
        assert payload.source_id == "govinfo"
        assert payload.collection == "documents"

    def test_missing_collection(self):
        with pytest.raises(InvalidJobError):
            parse_ingest_payload({"source_id": "govinfo"})


class TestBuiltinHandlers:
    @pytest.fixture
    def fetcher(self) -> FakeFetcher:
        return FakeFetcher(
            {
                None: FetchPage(
                    records=[make_record("1"), make_record("2")], next_cursor="p2", has_more=True
                ),
                "p2": FetchPage(records=[make_record("3")], next_cursor="p3"),
            }
        )

    @pytest.fixture
    def container(self, test_settings, session_factory, clock, fetcher) -> ServiceContainer:
        registry = FetcherRegistry()
        registry.register("courtlistener", fetcher)
        return ServiceContainer.build(test_settings, session_factory, clock=clock, fetchers=registry)

    async def test_ingest_job_runs_sync(self, container):
        worker = container.build_worker("worker-test")
        job_id = await container.job_queue.enqueue(
            JobType.INGEST, {"source_id": "courtlistener", "collection": "opinions"}
        )

        await worker.process_next()

        assert (await container.job_queue.get(job_id)).status is JobStatus.COMPLETED
        assert await container.content_store.count(source_id="courtlistener") == 3
        cursor = await container.cursor_tracker.get("courtlistener", "opinions")
        assert cursor.cursor_token == "p3"

    async def test_ingest_job_with_bad_payload_fails(self, container):
        worker = container.build_worker("worker-test")
        job_id = await container.job_queue.enqueue(JobType.INGEST, {"source_id": "courtlistener"})
        await worker.process_next()

        job = await container.job_queue.get(job_id)
        assert job.status is JobStatus.FAILED
        assert job.error_message.startswith("InvalidJobError")

    async def test_ingest_job_for_unknown_source_fails(self, container):
        worker = container.build_worker("worker-test")
        job_id = await container.job_queue.enqueue(
            JobType.INGEST, {"source_id": "govinfo", "collection": "documents"}
        )
        await worker.process_next()
        assert (await container.job_queue.get(job_id)).status is JobStatus.FAILED

    async def test_transient_fetch_error_retries_job(self, container, fetcher):
        fetcher.errors["p2"] = TransientFetchError("HTTP 502")
        worker = container.build_worker("worker-test")
        job_id = await container.job_queue.enqueue(
            JobType.INGEST, {"source_id": "courtlistener", "collection": "opinions"}
        )
        await worker.process_next()

        job = await container.job_queue.get(job_id)
        assert job.status is JobStatus.PENDING
        assert job.attempts == 1
        assert await container.cursor_tracker.get_resume_point("courtlistener", "opinions") is None

    async def test_crashed_ingest_is_recovered_after_lease_expiry(self, container, clock, fetcher):
        payload = {"source_id": "courtlistener", "collection": "opinions"}
        job_id = await container.job_queue.enqueue(JobType.INGEST, payload)

        # worker-a claims and starts the run, then dies without settling
        abandoned = await container.job_queue.claim("worker-a")
        assert abandoned.id == job_id
        await container.cursor_tracker.begin_run("courtlistener", "opinions")

        clock.advance(seconds=29)
        assert await container.build_worker("worker-b").process_next() is False
        clock.advance(seconds=1)

        assert await container.build_worker("worker-b").process_next() is True
        job = await container.job_queue.get(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.attempts == 0
        cursor = await container.cursor_tracker.get("courtlistener", "opinions")
        assert cursor.status is RunStatus.SUCCESS
        assert cursor.cursor_token == "p3"
        assert fetcher.calls == [("opinions", None), ("opinions", "p2")]
        assert await container.content_store.count(source_id="courtlistener") == 3

    async def test_ingest_refreshes_cursor_heartbeat_per_page(self, container, clock, fetcher):
        original_fetch = fetcher.fetch

        async def slow_fetch(collection, cursor):
            clock.advance(seconds=20)
            if cursor == "p2":
                # 40s into a 30s stale window, the refreshed heartbeat keeps the run
                with pytest.raises(AlreadyRunningError):
                    await container.cursor_tracker.begin_run("courtlistener", "opinions")
            return await original_fetch(collection, cursor)

        fetcher.fetch = slow_fetch
        job_id = await container.job_queue.enqueue(
            JobType.INGEST, {"source_id": "courtlistener", "collection": "opinions"}
        )
        await container.build_worker("worker-test").process_next()

        assert (await container.job_queue.get(job_id)).status is JobStatus.COMPLETED
        cursor = await container.cursor_tracker.get("courtlistener", "opinions")
        assert cursor.status is RunStatus.SUCCESS
        assert cursor.cursor_token == "p3"

    async def test_cache_sweep_job(self, container, clock):
        await container.search_cache.store({"query": "old"}, [], ttl_seconds=1)
        clock.advance(seconds=2)
        job_id = await container.job_queue.enqueue(JobType.CACHE_SWEEP)

        await container.build_worker().process_next()
        assert (await container.job_queue.get(job_id)).status is JobStatus.COMPLETED
        assert await container.search_cache.sweep() == 0

    async def test_run_loop_processes_until_stopped(self, container):
        stop = asyncio.Event()
        worker = container.build_worker("worker-test")

        async def handler(ctx: JobContext) -> None:
            stop.set()

        worker.register(JobType.EXPORT, handler)
        job_id = await container.job_queue.enqueue(JobType.EXPORT)

        await asyncio.wait_for(
            run_loop(worker, container.scheduler, stop, poll_interval=0.01), timeout=10
        )
        assert (await container.job_queue.get(job_id)).status is JobStatus.COMPLETED
        assert len(await container.job_queue.list(job_type=JobType.CACHE_SWEEP)) == 1
