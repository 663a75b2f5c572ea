"""Built-in job handlers: source ingestion and cache sweep.

Export, drafting and e-filing jobs share the same queue but their
handlers are registered by the collaborators that own them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.exceptions import InvalidJobError

if TYPE_CHECKING:
    from src.services.ingestion.sync_runner import IngestionRunner
    from src.services.queue.worker import JobContext, JobHandler
    from src.services.search_cache import SearchCache

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class IngestPayload(BaseModel):
    """Payload of an ``ingest`` job."""

    model_config = ConfigDict(extra="ignore")

    source_id: str = Field(..., min_length=1)
    collection: str = Field(..., min_length=1)


def parse_ingest_payload(payload: dict[str, object]) -> IngestPayload:
    try:
        return IngestPayload.model_validate(payload)
    except ValidationError as exc:
        msg = "Ingest job payload needs non-empty 'source_id' and 'collection'"
        raise InvalidJobError(msg, details={"payload": payload}) from exc


def make_ingest_handler(runner: IngestionRunner) -> JobHandler:
    """Handler that runs one incremental sync and heartbeats per page."""

    async def handle_ingest(ctx: JobContext) -> None:
        payload = parse_ingest_payload(ctx.job.payload)
        summary = await runner.run(
            payload.source_id,
            payload.collection,
            on_page=ctx.heartbeat,
        )
        logger.info(
            "ingest_job_finished",
            source_id=summary.source_id,
            collection=summary.collection,
            processed=summary.records_processed,
            failed=summary.records_failed,
            new_content=summary.new_content,
        )

    return handle_ingest


def make_cache_sweep_handler(cache: SearchCache) -> JobHandler:
    """Handler that deletes expired search cache entries."""

    async def handle_cache_sweep(ctx: JobContext) -> None:
        removed = await cache.sweep()
        logger.info("cache_sweep_job_finished", removed=removed)

    return handle_cache_sweep
