"""Durable priority job queue backed by the ``jobs`` table.

Lifecycle of one job:
  1. enqueue — insert a pending row with a priority and a due time
  2. claim — a worker moves the best due row to running under a lease
  3. complete / fail — the claimant reports the outcome; failures are
     re-queued with exponential backoff until ``max_attempts`` runs out

Claims never hold row locks across job execution. Exclusivity comes from
a conditional UPDATE, and a worker that dies mid-job simply lets its
lease lapse so the next claim returns the job to the pending pool.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from src.core.exceptions import InvalidStateError, NotFoundError
from src.db.repositories import JobRepo
from src.db.session import get_session
from src.models.database import JobRow
from src.models.domain import Job, JobStatus, JobType
from src.utils.time import Clock, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_MAX_ERROR_LENGTH = 4000
_CLAIM_BATCH = 10


def compute_backoff(attempts: int, *, base: float, cap: float) -> float:
    """Exponential backoff in seconds: ``min(cap, base * 2**attempts)``."""
    if attempts < 0:
        msg = f"attempts must be non-negative, got {attempts}"
        raise ValueError(msg)
    # Clamp the exponent so huge attempt counts cannot overflow the float.
    return min(cap, base * 2 ** min(attempts, 62))


class JobQueue:
    """Enqueue, claim and settle background jobs."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        default_max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        backoff_cap_seconds: float = 900.0,
        visibility_timeout_seconds: float = 600.0,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._default_max_attempts = default_max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
    ) -> JobQueue:
        return cls(
            session_factory=session_factory,
            default_max_attempts=settings.job_default_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
            backoff_cap_seconds=settings.job_backoff_cap_seconds,
            visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
            clock=clock,
        )

    @property
    def visibility_timeout(self) -> timedelta:
        return self._visibility_timeout

    def backoff_for(self, attempts: int) -> float:
        """Delay before the retry that follows ``attempts`` failures."""
        return compute_backoff(max(attempts - 1, 0), base=self._backoff_base, cap=self._backoff_cap)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        *,
        priority: int = 0,
        max_attempts: int | None = None,
        delay_seconds: float = 0.0,
    ) -> str:
        """Insert a pending job and return its id."""
        max_attempts = max_attempts if max_attempts is not None else self._default_max_attempts
        if max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {max_attempts}"
            raise ValueError(msg)

        now = self._clock()
        job_id = str(uuid.uuid4())
        async with get_session(self._session_factory) as session:
            await JobRepo(session).create(
                JobRow(
                    id=job_id,
                    job_type=str(job_type),
                    payload=payload or {},
                    status=JobStatus.PENDING.value,
                    priority=priority,
                    attempts=0,
                    max_attempts=max_attempts,
                    scheduled_at=now + timedelta(seconds=max(delay_seconds, 0.0)),
                    created_at=now,
                )
            )

        logger.info(
            "job_enqueued",
            job_id=job_id,
            job_type=str(job_type),
            priority=priority,
            max_attempts=max_attempts,
        )
        return job_id

    async def cancel(self, job_id: str) -> Job:
        """Cancel a job that has not been claimed yet."""
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = JobRepo(session)
            ok = await repo.transition(
                job_id,
                from_statuses=(JobStatus.PENDING.value,),
                values={"status": JobStatus.CANCELLED.value, "completed_at": now},
            )
            if not ok:
                await self._raise_bad_transition(repo, job_id, "cancel")
            job = await self._load(repo, job_id)

        logger.info("job_cancelled", job_id=job_id)
        return job

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    async def claim(self, worker_id: str) -> Job | None:
        """Claim the highest-priority due job, or return None.

        Lapsed leases are released first so their jobs compete for the
        claim like any other pending job.
        """
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = JobRepo(session)
            released = await repo.release_expired_leases(now=now)
            if released:
                logger.warning("job_leases_expired", count=released)

            for job_id in await repo.claim_candidates(now=now, limit=_CLAIM_BATCH):
                won = await repo.try_claim(
                    job_id,
                    worker_id=worker_id,
                    now=now,
                    lease_expires_at=now + self._visibility_timeout,
                )
                if won:
                    job = await self._load(repo, job_id)
                    break
            else:
                return None

        logger.info(
            "job_claimed",
            job_id=job.id,
            job_type=job.job_type,
            worker_id=worker_id,
            attempt=job.attempts + 1,
        )
        return job

    async def heartbeat(self, job_id: str, worker_id: str) -> Job:
        """Extend the lease on a running job held by ``worker_id``."""
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = JobRepo(session)
            ok = await repo.transition(
                job_id,
                from_statuses=(JobStatus.RUNNING.value,),
                values={"lease_expires_at": now + self._visibility_timeout},
                claimed_by=worker_id,
            )
            if not ok:
                await self._raise_bad_transition(repo, job_id, "heartbeat")
            return await self._load(repo, job_id)

    async def complete(self, job_id: str, *, worker_id: str | None = None) -> Job:
        """Mark a running job completed."""
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = JobRepo(session)
            ok = await repo.transition(
                job_id,
                from_statuses=(JobStatus.RUNNING.value,),
                values={
                    "status": JobStatus.COMPLETED.value,
                    "completed_at": now,
                    "lease_expires_at": None,
                    "error_message": None,
                },
                claimed_by=worker_id,
            )
            if not ok:
                await self._raise_bad_transition(repo, job_id, "complete")
            job = await self._load(repo, job_id)

        logger.info("job_completed", job_id=job_id, job_type=job.job_type, attempts=job.attempts)
        return job

    async def fail(
        self,
        job_id: str,
        error_message: str,
        *,
        retryable: bool = True,
        worker_id: str | None = None,
    ) -> Job:
        """Record a failed attempt.

        The job goes back to pending after a backoff delay while attempts
        remain and the error is retryable; otherwise it becomes terminally
        failed with the error message preserved.
        """
        now = self._clock()
        error_message = error_message[:_MAX_ERROR_LENGTH]
        async with get_session(self._session_factory) as session:
            repo = JobRepo(session)
            row = await repo.get_by_id(job_id)
            if row is None or row.status != JobStatus.RUNNING.value:
                await self._raise_bad_transition(repo, job_id, "fail")
            attempts = row.attempts + 1
            values: dict[str, Any] = {
                "attempts": attempts,
                "error_message": error_message,
                "claimed_by": None,
                "lease_expires_at": None,
            }
            if retryable and attempts < row.max_attempts:
                delay = self.backoff_for(attempts)
                values["status"] = JobStatus.PENDING.value
                values["scheduled_at"] = now + timedelta(seconds=delay)
            else:
                delay = None
                values["status"] = JobStatus.FAILED.value
                values["completed_at"] = now

            ok = await repo.transition(
                job_id,
                from_statuses=(JobStatus.RUNNING.value,),
                values=values,
                claimed_by=worker_id,
            )
            if not ok:
                await self._raise_bad_transition(repo, job_id, "fail")
            job = await self._load(repo, job_id)

        if job.status is JobStatus.FAILED:
            logger.error(
                "job_failed",
                job_id=job_id,
                job_type=job.job_type,
                attempts=attempts,
                retryable=retryable,
                error=error_message,
            )
        else:
            logger.warning(
                "job_retry_scheduled",
                job_id=job_id,
                job_type=job.job_type,
                attempts=attempts,
                delay_seconds=delay,
                error=error_message,
            )
        return job

    # ------------------------------------------------------------------
    # Queries and housekeeping
    # ------------------------------------------------------------------

    async def get(self, job_id: str) -> Job:
        async with get_session(self._session_factory) as session:
            return await self._load(JobRepo(session), job_id)

    async def list(
        self,
        *,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Job]:
        async with get_session(self._session_factory) as session:
            rows = await JobRepo(session).list_jobs(
                status=status.value if status is not None else None,
                job_type=job_type,
                limit=limit,
                offset=offset,
            )
            return [Job.model_validate(r) for r in rows]

    async def has_open(self, job_type: JobType | str, payload: dict[str, Any] | None = None) -> bool:
        """Whether a pending or running job of this type (and payload) exists."""
        async with get_session(self._session_factory) as session:
            rows = await JobRepo(session).list_open(str(job_type))
        if payload is None:
            return bool(rows)
        return any(row.payload == payload for row in rows)

    async def purge_finished(self, older_than: timedelta) -> int:
        """Delete terminal jobs that finished more than ``older_than`` ago."""
        cutoff = self._clock() - older_than
        async with get_session(self._session_factory) as session:
            deleted = await JobRepo(session).delete_finished_before(cutoff)
        if deleted:
            logger.info("jobs_purged", count=deleted, cutoff=cutoff.isoformat())
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load(repo: JobRepo, job_id: str) -> Job:
        row = await repo.get_by_id(job_id)
        if row is None:
            msg = f"Job {job_id} not found"
            raise NotFoundError(msg, details={"job_id": job_id})
        return Job.model_validate(row)

    @staticmethod
    async def _raise_bad_transition(repo: JobRepo, job_id: str, operation: str) -> NoReturn:
        row = await repo.get_by_id(job_id)
        if row is None:
            msg = f"Job {job_id} not found"
            raise NotFoundError(msg, details={"job_id": job_id})
        msg = f"Cannot {operation} job {job_id} in status {row.status}"
        raise InvalidStateError(
            msg,
            details={"job_id": job_id, "status": row.status, "operation": operation},
        )
