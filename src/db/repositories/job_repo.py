"""Repository for job queue rows.

Handles creating jobs, selecting claim candidates, and conditional
status transitions. A transition only applies when the row is still in
the state the caller observed, which is what makes claims exclusive.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import CursorResult, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.database import JobRow


class JobRepo:
    """Async repository for queued jobs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, job: JobRow) -> JobRow:
        """Insert a new job and return it."""
        self._session.add(job)
        await self._session.flush()
        return job

    async def get_by_id(self, job_id: str) -> JobRow | None:
        """Fetch a job by its primary key."""
        stmt = select(JobRow).where(JobRow.id == job_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        *,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[JobRow]:
        """List jobs newest first with optional filters."""
        stmt = select(JobRow)
        if status is not None:
            stmt = stmt.where(JobRow.status == status)
        if job_type is not None:
            stmt = stmt.where(JobRow.job_type == job_type)
        stmt = stmt.order_by(JobRow.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_open(self, job_type: str) -> list[JobRow]:
        """Pending and running jobs of a type."""
        stmt = select(JobRow).where(
            JobRow.job_type == job_type,
            JobRow.status.in_(("pending", "running")),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim_candidates(self, *, now: datetime, limit: int = 10) -> list[str]:
        """IDs of due pending jobs in claim order.

        Highest priority first, FIFO by creation time within a priority.
        """
        stmt = (
            select(JobRow.id)
            .where(JobRow.status == "pending", JobRow.scheduled_at <= now)
            .order_by(JobRow.priority.desc(), JobRow.created_at.asc(), JobRow.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def try_claim(
        self,
        job_id: str,
        *,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> bool:
        """Atomically move a pending job to running for one worker."""
        stmt = (
            update(JobRow)
            .where(JobRow.id == job_id, JobRow.status == "pending")
            .values(
                status="running",
                claimed_by=worker_id,
                started_at=now,
                lease_expires_at=lease_expires_at,
            )
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def release_expired_leases(self, *, now: datetime) -> int:
        """Return running jobs with lapsed leases to pending.

        The attempt counter is left alone: a lapsed lease is an
        infrastructure failure, not a task failure.
        """
        stmt = (
            update(JobRow)
            .where(JobRow.status == "running", JobRow.lease_expires_at <= now)
            .values(
                status="pending",
                claimed_by=None,
                lease_expires_at=None,
                scheduled_at=now,
                error_message="Worker lease expired before the job finished",
            )
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount

    async def transition(
        self,
        job_id: str,
        *,
        from_statuses: Iterable[str],
        values: dict[str, Any],
        claimed_by: str | None = None,
    ) -> bool:
        """Apply ``values`` only if the job is in one of ``from_statuses``.

        When ``claimed_by`` is given the job must also still belong to
        that worker.
        """
        stmt = update(JobRow).where(JobRow.id == job_id, JobRow.status.in_(tuple(from_statuses)))
        if claimed_by is not None:
            stmt = stmt.where(JobRow.claimed_by == claimed_by)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs completed before ``cutoff``."""
        stmt = delete(JobRow).where(
            JobRow.status.in_(("completed", "failed", "cancelled")),
            JobRow.completed_at < cutoff,
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount
