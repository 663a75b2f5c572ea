"""API response schemas.

Every outbound response is serialized through one of these models.
Structured error responses are included — the API never leaks raw
stack traces.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.domain import Document, DocumentKind, Job, JobStatus, SourceInfo, SyncCursor

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class DependencyHealth(BaseModel):
    """Health status of a single infrastructure dependency."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: str = Field(..., description="'healthy' or 'unhealthy'")
    latency_ms: float | None = None
    details: str | None = None


class HealthResponse(BaseModel):
    """Aggregate health check response."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(..., description="'healthy' or 'unhealthy'")
    version: str
    uptime_seconds: float
    dependencies: list[DependencyHealth]


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class SourceListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    sources: list[SourceInfo]


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentListResponse(BaseModel):
    """One page of documents plus the overall count."""

    model_config = ConfigDict(frozen=True)

    documents: list[Document]
    total: int
    limit: int
    offset: int


class DocumentPutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: int
    was_new_content: bool
    content_digest: str


# ---------------------------------------------------------------------------
# Jobs and sync
# ---------------------------------------------------------------------------


class JobCreatedResponse(BaseModel):
    """Returned immediately after enqueueing a job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus


class JobListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    jobs: list[Job]


class SyncCursorListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    cursors: list[SyncCursor]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchHit(BaseModel):
    """A single document in a search result page."""

    model_config = ConfigDict(frozen=True)

    document_id: int
    source_id: str
    external_id: str
    kind: DocumentKind
    court: str | None = None
    docket_number: str | None = None
    case_name: str | None = None
    date_filed: datetime | None = None
    text_summary: str | None = None
    source_url: str

    @classmethod
    def from_document(cls, doc: Document) -> "SearchHit":
        return cls(
            document_id=doc.id,
            source_id=doc.source_id,
            external_id=doc.external_id,
            kind=doc.kind,
            court=doc.court,
            docket_number=doc.docket_number,
            case_name=doc.case_name,
            date_filed=doc.date_filed,
            text_summary=doc.text_summary,
            source_url=doc.source_url,
        )


class SearchResponse(BaseModel):
    """One page of search hits, served from cache when ``cached`` is true."""

    model_config = ConfigDict(frozen=True)

    results: list[SearchHit]
    result_count: int
    page: int
    page_size: int
    cached: bool
    fingerprint: str
    expires_at: datetime


class CacheSweepResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    removed: int


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Structured error body returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
