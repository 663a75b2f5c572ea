"""Job queue endpoints.

POST /jobs           — enqueue a job, returns job_id immediately
GET  /jobs           — list jobs, filterable by status and type
GET  /jobs/{id}      — poll a job; failures carry a readable error_message
POST /jobs/{id}/cancel — cancel a job that has not started
"""

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_job_queue
from src.models.domain import Job, JobStatus
from src.models.requests import JobCreateRequest
from src.models.responses import JobCreatedResponse, JobListResponse
from src.services.job_queue import JobQueue

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobCreatedResponse, status_code=202)
async def create_job(
    request: JobCreateRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> JobCreatedResponse:
    job_id = await queue.enqueue(
        request.job_type,
        request.payload,
        priority=request.priority,
        max_attempts=request.max_attempts,
        delay_seconds=request.delay_seconds,
    )
    return JobCreatedResponse(job_id=job_id, status=JobStatus.PENDING)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = None,
    job_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queue: JobQueue = Depends(get_job_queue),
) -> JobListResponse:
    jobs = await queue.list(status=status, job_type=job_type, limit=limit, offset=offset)
    return JobListResponse(jobs=jobs)


@router.get("/{job_id}", response_model=Job)
async def get_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> Job:
    return await queue.get(job_id)


@router.post("/{job_id}/cancel", response_model=Job)
async def cancel_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> Job:
    """Cancel a pending job; running and finished jobs answer 409."""
    return await queue.cancel(job_id)
