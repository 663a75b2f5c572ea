"""Sync cursor status and manual sync triggers."""

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import get_cursor_tracker, get_job_queue, get_source_registry
from src.core.exceptions import AlreadyRunningError
from src.models.domain import JobStatus, JobType, SyncCursor
from src.models.requests import SyncTriggerRequest
from src.models.responses import JobCreatedResponse, SyncCursorListResponse
from src.services.cursor_tracker import CursorTracker
from src.services.job_queue import JobQueue
from src.services.source_registry import SourceRegistry

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/cursors", response_model=SyncCursorListResponse)
async def list_cursors(
    source_id: str | None = None,
    tracker: CursorTracker = Depends(get_cursor_tracker),
) -> SyncCursorListResponse:
    return SyncCursorListResponse(cursors=await tracker.list(source_id=source_id))


@router.get("/cursors/{source_id}/{collection}", response_model=SyncCursor)
async def get_cursor(
    source_id: str,
    collection: str,
    tracker: CursorTracker = Depends(get_cursor_tracker),
) -> SyncCursor:
    return await tracker.get(source_id, collection)


@router.post("/{source_id}/{collection}", response_model=JobCreatedResponse, status_code=202)
async def trigger_sync(
    source_id: str,
    collection: str,
    request: SyncTriggerRequest | None = None,
    registry: SourceRegistry = Depends(get_source_registry),
    queue: JobQueue = Depends(get_job_queue),
) -> JobCreatedResponse:
    """Enqueue an ingest job unless one is already pending or running."""
    registry.get(source_id)
    payload = {"source_id": source_id, "collection": collection}
    if await queue.has_open(JobType.INGEST, payload):
        msg = f"An ingest job for {source_id}/{collection} is already queued"
        raise AlreadyRunningError(msg, details=payload)

    priority = request.priority if request is not None else SyncTriggerRequest().priority
    job_id = await queue.enqueue(JobType.INGEST, payload, priority=priority)
    logger.info("sync_triggered", job_id=job_id, **payload)
    return JobCreatedResponse(job_id=job_id, status=JobStatus.PENDING)
