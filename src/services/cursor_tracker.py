"""Per-(source, collection) incremental sync state machine.

    pending ──► running ──► success
                   │
                   └──────► error
    success | error ──► running   (next scheduled attempt)
    running (stale) ──► running   (takeover after a crashed run)

The ``running`` guard is a conditional UPDATE, so at most one run of a
collection is active regardless of how many workers try. A live run
refreshes its heartbeat every page; a ``running`` row whose heartbeat is
older than ``stale_after`` belongs to a dead worker and may be taken over.
The resume token only moves on a successful run; a failed run leaves it
where the last good run put it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.core.exceptions import AlreadyRunningError, InvalidStateError, NotFoundError
from src.db.repositories import CursorRepo
from src.db.session import get_session
from src.models.domain import RunStatus, SyncCursor
from src.utils.time import Clock, ensure_utc, utcnow

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.models.database import SyncCursorRow

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_MAX_ERROR_LENGTH = 2000


class CursorTracker:
    """Owner of sync cursor rows."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        stale_after: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._stale_after = stale_after

    def _stale_before(self, now: datetime) -> datetime | None:
        if self._stale_after is None:
            return None
        return now - self._stale_after

    def _is_stale(self, row: SyncCursorRow, now: datetime) -> bool:
        stale_before = self._stale_before(now)
        if stale_before is None:
            return False
        heartbeat = ensure_utc(row.updated_at)
        return heartbeat is not None and heartbeat <= stale_before

    async def begin_run(self, source_id: str, collection: str) -> str | None:
        """Mark a run as started and return the resume token.

        ``None`` means there is no prior progress: do a full resync.
        Raises AlreadyRunningError instead of waiting if another run of
        the same collection is active. A stale run is taken over.
        """
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = CursorRepo(session)
            previous = await repo.get(source_id, collection)
            previous_status = previous.status if previous is not None else None
            started = await repo.try_mark_running(
                source_id, collection, now=now, stale_before=self._stale_before(now)
            )
            if not started and previous is None:
                started = await repo.create_running(source_id, collection, now=now)
            if not started:
                raise AlreadyRunningError(
                    f"Ingestion of {source_id}/{collection} is already running",
                    details={"source_id": source_id, "collection": collection},
                )
            row = await repo.get(source_id, collection)
            token = row.cursor_token if row is not None else None

        if previous_status == RunStatus.RUNNING.value:
            logger.warning("stale_run_taken_over", source_id=source_id, collection=collection)
        logger.info("run_started", source_id=source_id, collection=collection, cursor=token)
        return token

    async def heartbeat(self, source_id: str, collection: str) -> bool:
        """Mark a live run as still making progress.

        Returns False if the run is no longer ``running`` (it finished or
        was taken over after going stale).
        """
        async with get_session(self._session_factory) as session:
            alive = await CursorRepo(session).touch_running(
                source_id, collection, now=self._clock()
            )
        if not alive:
            logger.warning("run_heartbeat_lost", source_id=source_id, collection=collection)
        return alive

    async def complete_run(
        self,
        source_id: str,
        collection: str,
        new_cursor: str | None,
        processed: int,
        failed: int,
    ) -> SyncCursor:
        """Finish a run successfully and advance the resume token."""
        now = self._clock()
        cursor = await self._finish(
            source_id,
            collection,
            {
                "status": RunStatus.SUCCESS.value,
                "cursor_token": new_cursor,
                "last_success_at": now,
                "error_message": None,
                "records_processed": processed,
                "records_failed": failed,
                "updated_at": now,
            },
        )
        logger.info(
            "run_completed",
            source_id=source_id,
            collection=collection,
            cursor=new_cursor,
            processed=processed,
            failed=failed,
        )
        return cursor

    async def fail_run(
        self,
        source_id: str,
        collection: str,
        error_message: str,
        failed: int = 0,
    ) -> SyncCursor:
        """Finish a run in error. The previous resume token is kept."""
        now = self._clock()
        cursor = await self._finish(
            source_id,
            collection,
            {
                "status": RunStatus.ERROR.value,
                "error_message": error_message[:_MAX_ERROR_LENGTH],
                "records_failed": failed,
                "updated_at": now,
            },
        )
        logger.warning(
            "run_failed",
            source_id=source_id,
            collection=collection,
            error=error_message,
            failed=failed,
        )
        return cursor

    async def _finish(self, source_id: str, collection: str, values: dict[str, object]) -> SyncCursor:
        async with get_session(self._session_factory) as session:
            repo = CursorRepo(session)
            if not await repo.finish_running(source_id, collection, values):
                existing = await repo.get(source_id, collection)
                status = existing.status if existing is not None else None
                msg = f"No running ingestion for {source_id}/{collection} (status={status})"
                raise InvalidStateError(
                    msg,
                    details={"source_id": source_id, "collection": collection, "status": status},
                )
            row = await repo.get(source_id, collection)
            return SyncCursor.model_validate(row)

    async def get_resume_point(self, source_id: str, collection: str) -> str | None:
        """The token the next run resumes from; ``None`` means full resync."""
        async with get_session(self._session_factory) as session:
            row = await CursorRepo(session).get(source_id, collection)
            return row.cursor_token if row is not None else None

    async def get(self, source_id: str, collection: str) -> SyncCursor:
        """Current cursor state or NotFoundError if never run."""
        async with get_session(self._session_factory) as session:
            row = await CursorRepo(session).get(source_id, collection)
            if row is None:
                msg = f"No sync cursor for {source_id}/{collection}"
                raise NotFoundError(msg, details={"source_id": source_id, "collection": collection})
            return SyncCursor.model_validate(row)

    async def list(self, *, source_id: str | None = None) -> list[SyncCursor]:
        """All cursors, for dashboards."""
        async with get_session(self._session_factory) as session:
            rows = await CursorRepo(session).list_cursors(source_id=source_id)
            return [SyncCursor.model_validate(r) for r in rows]

    async def is_due(
        self,
        source_id: str,
        collection: str,
        *,
        interval: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """Whether the scheduler should start a new run.

        Due when the last success is at least ``interval`` old (or there
        was none). A live run is never due and a stale one always is. After
        a failed run the next attempt also waits ``interval`` from the
        failed attempt.
        """
        now = now or self._clock()
        async with get_session(self._session_factory) as session:
            row = await CursorRepo(session).get(source_id, collection)
        if row is None:
            return True
        if row.status == RunStatus.RUNNING.value:
            return self._is_stale(row, now)
        if row.status == RunStatus.ERROR.value:
            last_attempt = ensure_utc(row.last_attempt_at)
            if last_attempt is not None and now - last_attempt < interval:
                return False
        last_success = ensure_utc(row.last_success_at)
        if last_success is None:
            return True
        return now - last_success >= interval
