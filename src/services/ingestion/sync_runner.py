"""Incremental sync of one (source, collection).

Coordinates a single run: claim the collection's running guard → page
through the fetcher from the resume cursor → store every record in the
content store → advance the cursor on success. A fetch error fails the
run without moving the cursor, so the next attempt resumes from the last
good position.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.exceptions import ConflictError, PermanentFetchError
from src.models.domain import FetchedRecord, RunSummary

if TYPE_CHECKING:
    from src.services.content_store import ContentStore
    from src.services.cursor_tracker import CursorTracker
    from src.services.ingestion.fetcher import FetcherRegistry

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

PageCallback = Callable[[], Awaitable[None]]


@dataclass
class _RunCounters:
    """Mutable counters accumulated during a sync run."""

    pages: int = 0
    processed: int = 0
    failed: int = 0
    new_content: int = 0


class IngestionRunner:
    """Runs incremental ingestion for a (source, collection) pair."""

    def __init__(
        self,
        *,
        fetchers: FetcherRegistry,
        content_store: ContentStore,
        cursor_tracker: CursorTracker,
        put_attempts: int = 3,
        put_retry_max_wait: float = 2.0,
    ) -> None:
        self._fetchers = fetchers
        self._store = content_store
        self._cursors = cursor_tracker
        self._put_attempts = put_attempts
        self._put_retry_max_wait = put_retry_max_wait

    async def run(
        self,
        source_id: str,
        collection: str,
        *,
        on_page: PageCallback | None = None,
    ) -> RunSummary:
        """Run one sync pass and return what it did.

        The cursor heartbeat is refreshed after every stored page, then
        ``on_page`` is awaited; the worker uses it to extend its job
        lease. Raises AlreadyRunningError if the collection is busy and
        re-raises fetch errors after recording them.
        """
        fetcher = self._fetchers.get(source_id)
        cursor = await self._cursors.begin_run(source_id, collection)

        t0 = time.monotonic()
        counters = _RunCounters()
        try:
            while True:
                page = await fetcher.fetch(collection, cursor)
                counters.pages += 1

                for record in page.records:
                    await self._store_record(source_id, record, counters)

                if page.has_more and page.next_cursor in (None, cursor):
                    msg = f"{source_id}/{collection} reported more pages without advancing its cursor"
                    raise PermanentFetchError(
                        msg, details={"source_id": source_id, "cursor": cursor}
                    )
                if page.next_cursor is not None:
                    cursor = page.next_cursor

                logger.debug(
                    "sync_page_stored",
                    source_id=source_id,
                    collection=collection,
                    page=counters.pages,
                    records=len(page.records),
                    cursor=cursor,
                )
                await self._cursors.heartbeat(source_id, collection)
                if on_page is not None:
                    await on_page()
                if not page.has_more:
                    break
        except Exception as exc:
            await self._cursors.fail_run(
                source_id,
                collection,
                f"{type(exc).__name__}: {exc}",
                failed=counters.failed,
            )
            raise

        await self._cursors.complete_run(
            source_id,
            collection,
            cursor,
            processed=counters.processed,
            failed=counters.failed,
        )

        elapsed = time.monotonic() - t0
        logger.info(
            "sync_complete",
            source_id=source_id,
            collection=collection,
            pages=counters.pages,
            processed=counters.processed,
            failed=counters.failed,
            new_content=counters.new_content,
            elapsed_seconds=round(elapsed, 2),
        )
        return RunSummary(
            source_id=source_id,
            collection=collection,
            pages=counters.pages,
            records_processed=counters.processed,
            records_failed=counters.failed,
            new_content=counters.new_content,
            final_cursor=cursor,
            elapsed_seconds=round(elapsed, 3),
        )

    async def _store_record(
        self,
        source_id: str,
        record: FetchedRecord,
        counters: _RunCounters,
    ) -> None:
        """Store one record; a failure is counted, never fatal to the run."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ConflictError),
                stop=stop_after_attempt(self._put_attempts),
                wait=wait_exponential(multiplier=0.05, max=self._put_retry_max_wait),
                reraise=True,
            ):
                with attempt:
                    result = await self._store.put(
                        source_id,
                        record.external_id,
                        record.kind,
                        record.fields,
                        record.body,
                    )
        except Exception:
            logger.exception(
                "record_store_failed",
                source_id=source_id,
                external_id=record.external_id,
            )
            counters.failed += 1
            return

        counters.processed += 1
        if result.was_new_content:
            counters.new_content += 1
