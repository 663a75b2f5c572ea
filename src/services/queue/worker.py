"""Database-backed async job processor.

JobWorker drives one job at a time through its lifecycle:
  1. process_next — claim the highest-priority due job from the queue
  2. dispatch — hand it to the handler registered for its job type
  3. settle — complete it, or fail it with retry semantics decided by
     the error: invalid jobs and permanent fetch errors are terminal,
     everything else is retried with backoff
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from src.core.exceptions import (
    InvalidJobError,
    InvalidStateError,
    NotFoundError,
    PermanentFetchError,
)
from src.core.logging import bind_job_context, clear_job_context

if TYPE_CHECKING:
    from src.models.domain import Job
    from src.services.job_queue import JobQueue

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

JOBS_PROCESSED = Counter(
    "jobs_processed_total",
    "Jobs settled by workers",
    ["job_type", "outcome"],
)
JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Wall time spent running a job handler",
    ["job_type"],
)

# Errors that retrying the same job cannot fix.
PERMANENT_ERRORS: tuple[type[BaseException], ...] = (
    InvalidJobError,
    PermanentFetchError,
    NotFoundError,
    ValidationError,
)


@dataclass
class JobContext:
    """What a handler gets besides the job itself."""

    job: Job
    worker_id: str
    queue: JobQueue

    async def heartbeat(self) -> None:
        """Extend this worker's lease on the job."""
        await self.queue.heartbeat(self.job.id, self.worker_id)


JobHandler = Callable[[JobContext], Awaitable[None]]


def default_worker_id() -> str:
    return f"worker-{uuid.uuid4().hex[:12]}"


class JobWorker:
    """Claims jobs and dispatches them to registered handlers."""

    def __init__(self, *, queue: JobQueue, worker_id: str | None = None) -> None:
        self._queue = queue
        self._worker_id = worker_id or default_worker_id()
        self._handlers: dict[str, JobHandler] = {}

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, job_type: str, handler: JobHandler) -> None:
        """Route jobs of ``job_type`` to ``handler``; replaces any earlier one."""
        self._handlers[str(job_type)] = handler

    async def process_next(self) -> bool:
        """Claim and run one job.

        Returns True if a job was processed, False if none was due.
        """
        job = await self._queue.claim(self._worker_id)
        if job is None:
            return False

        bind_job_context(worker_id=self._worker_id, job_id=job.id, job_type=job.job_type)
        try:
            await self._run(job)
        except InvalidStateError as exc:
            # The lease lapsed and the job was released or reclaimed elsewhere.
            logger.warning("job_lease_lost", error=exc.message)
        finally:
            clear_job_context()
        return True

    async def _run(self, job: Job) -> None:
        handler = self._handlers.get(job.job_type)
        if handler is None:
            await self._settle_failure(
                job,
                InvalidJobError(f"No handler registered for job type {job.job_type!r}"),
            )
            return

        t0 = time.monotonic()
        try:
            await handler(JobContext(job=job, worker_id=self._worker_id, queue=self._queue))
        except Exception as exc:
            JOB_DURATION.labels(job_type=job.job_type).observe(time.monotonic() - t0)
            await self._settle_failure(job, exc)
            return

        JOB_DURATION.labels(job_type=job.job_type).observe(time.monotonic() - t0)
        await self._queue.complete(job.id, worker_id=self._worker_id)
        JOBS_PROCESSED.labels(job_type=job.job_type, outcome="completed").inc()

    async def _settle_failure(self, job: Job, exc: Exception) -> None:
        retryable = not isinstance(exc, PERMANENT_ERRORS)
        if retryable:
            logger.warning("job_handler_failed", error_type=type(exc).__name__, error=str(exc))
        else:
            logger.error("job_handler_failed", error_type=type(exc).__name__, error=str(exc))

        settled = await self._queue.fail(
            job.id,
            _describe(exc),
            retryable=retryable,
            worker_id=self._worker_id,
        )
        outcome = "failed" if settled.status.is_terminal else "retried"
        JOBS_PROCESSED.labels(job_type=job.job_type, outcome=outcome).inc()


def _describe(exc: Exception) -> str:
    """Human-readable error message stored on the job row."""
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return f"{type(exc).__name__}: {message}"
