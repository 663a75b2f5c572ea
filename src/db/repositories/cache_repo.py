"""Repository for the search result cache.

Entries are keyed by query fingerprint. A reverse index table records
which sources each cached query touches so source-wide invalidation is
a plain indexed delete.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import CursorResult, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.dialect import upsert_insert
from src.models.database import CacheEntryRow, CacheSourceRow


class CacheRepo:
    """Async repository for cached search pages."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_live(self, fingerprint: str, *, now: datetime) -> CacheEntryRow | None:
        """Fetch an entry only if it has not expired at ``now``."""
        stmt = (
            select(CacheEntryRow)
            .where(CacheEntryRow.fingerprint == fingerprint, CacheEntryRow.expires_at > now)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        *,
        fingerprint: str,
        query_params: dict[str, Any],
        results: list[Any],
        created_at: datetime,
        expires_at: datetime,
        source_ids: list[str],
    ) -> None:
        """Insert or fully replace the entry for a fingerprint."""
        values: dict[str, Any] = {
            "fingerprint": fingerprint,
            "query_params": query_params,
            "results": results,
            "result_count": len(results),
            "created_at": created_at,
            "expires_at": expires_at,
            "hit_count": 1,
        }
        insert_stmt = upsert_insert(self._session, CacheEntryRow).values(**values)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=["fingerprint"],
            set_={key: insert_stmt.excluded[key] for key in values if key != "fingerprint"},
        )
        await self._session.execute(stmt)

        await self._session.execute(
            delete(CacheSourceRow).where(CacheSourceRow.fingerprint == fingerprint)
        )
        if source_ids:
            index_stmt = (
                upsert_insert(self._session, CacheSourceRow)
                .values([{"fingerprint": fingerprint, "source_id": s} for s in source_ids])
                .on_conflict_do_nothing(index_elements=["fingerprint", "source_id"])
            )
            await self._session.execute(index_stmt)

    async def increment_hits(self, fingerprint: str) -> bool:
        """Bump the hit counter. Returns False if the entry is gone."""
        stmt = (
            update(CacheEntryRow)
            .where(CacheEntryRow.fingerprint == fingerprint)
            .values(hit_count=CacheEntryRow.hit_count + 1)
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def delete_for_sources(self, source_ids: list[str]) -> int:
        """Delete every entry indexed under any of ``source_ids``."""
        fingerprints = select(CacheSourceRow.fingerprint).where(
            CacheSourceRow.source_id.in_(source_ids)
        )
        return await self._delete_where(CacheEntryRow.fingerprint.in_(fingerprints))

    async def delete_expired(self, *, now: datetime) -> int:
        """Delete every entry with ``expires_at <= now``."""
        return await self._delete_where(CacheEntryRow.expires_at <= now)

    async def _delete_where(self, condition: Any) -> int:
        doomed = list(
            (await self._session.execute(select(CacheEntryRow.fingerprint).where(condition)))
            .scalars()
            .all()
        )
        if not doomed:
            return 0
        # Index rows are removed explicitly; SQLite does not enforce ON DELETE CASCADE by default.
        await self._session.execute(
            delete(CacheSourceRow).where(CacheSourceRow.fingerprint.in_(doomed))
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(  # type: ignore[assignment]
            delete(CacheEntryRow).where(CacheEntryRow.fingerprint.in_(doomed))
        )
        return cursor.rowcount
