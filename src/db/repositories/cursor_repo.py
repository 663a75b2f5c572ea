"""Repository for per-(source, collection) sync cursors.

Status transitions are conditional UPDATEs so the database, not an
in-process lock, decides which caller wins a race.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import CursorResult, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.dialect import upsert_insert
from src.models.database import SyncCursorRow


class CursorRepo:
    """Async repository for sync cursors."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, source_id: str, collection: str) -> SyncCursorRow | None:
        """Fetch the cursor row for a (source, collection)."""
        stmt = (
            select(SyncCursorRow)
            .where(SyncCursorRow.source_id == source_id, SyncCursorRow.collection == collection)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_cursors(self, *, source_id: str | None = None) -> list[SyncCursorRow]:
        """List cursor rows ordered by source and collection."""
        stmt = select(SyncCursorRow)
        if source_id is not None:
            stmt = stmt.where(SyncCursorRow.source_id == source_id)
        stmt = stmt.order_by(SyncCursorRow.source_id, SyncCursorRow.collection)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def try_mark_running(
        self,
        source_id: str,
        collection: str,
        *,
        now: datetime,
        stale_before: datetime | None = None,
    ) -> bool:
        """Move an existing cursor to ``running``.

        A cursor already ``running`` is only taken over when its last
        heartbeat (``updated_at``) is at or before ``stale_before``.
        Returns False if the row is missing or held by a live run.
        """
        claimable = SyncCursorRow.status != "running"
        if stale_before is not None:
            claimable = or_(claimable, SyncCursorRow.updated_at <= stale_before)
        stmt = (
            update(SyncCursorRow)
            .where(
                SyncCursorRow.source_id == source_id,
                SyncCursorRow.collection == collection,
                claimable,
            )
            .values(status="running", last_attempt_at=now, error_message=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def create_running(self, source_id: str, collection: str, *, now: datetime) -> bool:
        """Insert a brand-new cursor already in ``running``.

        Returns False if a concurrent caller created the row first.
        """
        stmt = (
            upsert_insert(self._session, SyncCursorRow)
            .values(
                source_id=source_id,
                collection=collection,
                status="running",
                last_attempt_at=now,
                records_processed=0,
                records_failed=0,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["source_id", "collection"])
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def touch_running(self, source_id: str, collection: str, *, now: datetime) -> bool:
        """Refresh the heartbeat of a ``running`` cursor."""
        stmt = (
            update(SyncCursorRow)
            .where(
                SyncCursorRow.source_id == source_id,
                SyncCursorRow.collection == collection,
                SyncCursorRow.status == "running",
            )
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def finish_running(
        self,
        source_id: str,
        collection: str,
        values: dict[str, Any],
    ) -> bool:
        """Apply end-of-run values to a cursor that is still ``running``."""
        stmt = (
            update(SyncCursorRow)
            .where(
                SyncCursorRow.source_id == source_id,
                SyncCursorRow.collection == collection,
                SyncCursorRow.status == "running",
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1
