"""Timer-driven producer of recurring jobs.

Each tick enqueues an ``ingest`` job for every configured
(source, collection) schedule that is due and has no job already
pending or running, and a ``cache_sweep`` job once per sweep interval.
Ticks are idempotent: calling tick twice in a row enqueues nothing new.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from src.models.domain import JobType
from src.utils.time import Clock, utcnow

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from src.core.config import SyncSchedule
    from src.services.cursor_tracker import CursorTracker
    from src.services.job_queue import JobQueue

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class Scheduler:
    """Enqueues recurring ingestion and maintenance jobs."""

    def __init__(
        self,
        *,
        queue: JobQueue,
        cursor_tracker: CursorTracker,
        schedules: Sequence[SyncSchedule],
        sweep_interval: timedelta,
        job_retention: timedelta | None = None,
        ingest_max_attempts: int | None = None,
        enabled_sources: Collection[str] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._queue = queue
        self._cursors = cursor_tracker
        self._schedules = list(schedules)
        self._sweep_interval = sweep_interval
        self._job_retention = job_retention
        self._ingest_max_attempts = ingest_max_attempts
        self._enabled = set(enabled_sources) if enabled_sources is not None else None
        self._clock = clock
        self._last_sweep_at: datetime | None = None

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Enqueue whatever is due at ``now``; returns the new job ids."""
        now = now or self._clock()
        enqueued: list[str] = []

        for schedule in self._schedules:
            if self._enabled is not None and schedule.source not in self._enabled:
                continue
            job_id = await self._maybe_enqueue_ingest(schedule, now)
            if job_id is not None:
                enqueued.append(job_id)

        if self._last_sweep_at is None or now - self._last_sweep_at >= self._sweep_interval:
            if not await self._queue.has_open(JobType.CACHE_SWEEP):
                enqueued.append(await self._queue.enqueue(JobType.CACHE_SWEEP, {}))
            if self._job_retention is not None:
                await self._queue.purge_finished(self._job_retention)
            self._last_sweep_at = now

        if enqueued:
            logger.info("scheduler_tick", enqueued=len(enqueued))
        return enqueued

    async def _maybe_enqueue_ingest(self, schedule: SyncSchedule, now: datetime) -> str | None:
        payload = {"source_id": schedule.source, "collection": schedule.collection}
        interval = timedelta(seconds=schedule.interval_seconds)
        if not await self._cursors.is_due(
            schedule.source, schedule.collection, interval=interval, now=now
        ):
            return None
        if await self._queue.has_open(JobType.INGEST, payload):
            logger.debug("ingest_already_queued", **payload)
            return None
        return await self._queue.enqueue(
            JobType.INGEST,
            payload,
            priority=schedule.priority,
            max_attempts=self._ingest_max_attempts,
        )
