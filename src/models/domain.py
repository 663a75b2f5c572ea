"""Core domain models and enumerations.

These are the canonical data shapes of the sync engine. Every service
produces or consumes these types — never raw ORM rows. Frozen models
are used for value objects that should be immutable once created.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from src.core.exceptions import ExhaustedRetriesError
from src.utils.time import ensure_utc

UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DocumentKind(StrEnum):
    """Kinds of legal record a source can deliver."""

    OPINION = "opinion"
    DOCKET = "docket"
    FILING = "filing"
    RULE = "rule"
    AUDIO = "audio"
    ORDER = "order"
    MOTION = "motion"
    BRIEF = "brief"


class RunStatus(StrEnum):
    """Status of the latest ingestion run for a (source, collection)."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class JobStatus(StrEnum):
    """Lifecycle status of a queued job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(StrEnum):
    """Known job type tags."""

    INGEST = "ingest"
    EXPORT = "export"
    DRAFT = "draft"
    EFILING_SUBMISSION = "efiling_submission"
    CACHE_SWEEP = "cache_sweep"


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class DocumentFields(BaseModel):
    """Descriptive fields supplied alongside a document body on put.

    Citations, parties, judges and attorneys are ordered sequences of
    opaque structured records; metadata is an opaque mapping. The store
    persists and returns them verbatim.
    """

    model_config = ConfigDict(frozen=True)

    court: str | None = None
    jurisdiction: str | None = None
    docket_number: str | None = None
    case_name: str | None = None
    date_filed: UTCDateTime | None = None
    date_modified: UTCDateTime | None = None
    citations: list[dict[str, Any]] = Field(default_factory=list)
    parties: list[dict[str, Any]] = Field(default_factory=list)
    judges: list[dict[str, Any]] = Field(default_factory=list)
    attorneys: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    text_summary: str | None = None
    full_text: str | None = None
    source_url: str = Field(..., min_length=1)
    pdf_path: str | None = None
    txt_path: str | None = None
    page_count: int | None = Field(default=None, ge=0)


class Document(BaseModel):
    """A stored legal record as returned by the content store."""

    model_config = ConfigDict(frozen=True, from_attributes=True, populate_by_name=True)

    id: int
    source_id: str
    external_id: str
    kind: DocumentKind
    court: str | None = None
    jurisdiction: str | None = None
    docket_number: str | None = None
    case_name: str | None = None
    date_filed: UTCDateTime | None = None
    date_modified: UTCDateTime | None = None
    citations: list[dict[str, Any]] = Field(default_factory=list)
    parties: list[dict[str, Any]] = Field(default_factory=list)
    judges: list[dict[str, Any]] = Field(default_factory=list)
    attorneys: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    text_summary: str | None = None
    full_text: str | None = None
    content_digest: str = Field(..., min_length=64, max_length=64)
    source_url: str
    pdf_path: str | None = None
    txt_path: str | None = None
    byte_size: int = Field(..., ge=0)
    page_count: int | None = None
    version: int = Field(..., ge=1)
    created_at: UTCDateTime
    updated_at: UTCDateTime


class PutResult(BaseModel):
    """Outcome of a content store put."""

    model_config = ConfigDict(frozen=True)

    document_id: int
    was_new_content: bool
    content_digest: str


class DocumentChanged(BaseModel):
    """Notification published when a put stored new content."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    external_id: str
    document_id: int
    content_digest: str


# ---------------------------------------------------------------------------
# Source registry
# ---------------------------------------------------------------------------


class SourceInfo(BaseModel):
    """Configured metadata for one external source."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    base_url: str
    api_version: str
    rate_limit_per_window: int = Field(..., ge=1)
    window_seconds: int = Field(default=60, ge=1)


# ---------------------------------------------------------------------------
# Cursor tracker
# ---------------------------------------------------------------------------


class SyncCursor(BaseModel):
    """Incremental sync state of one (source, collection)."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    source_id: str
    collection: str
    status: RunStatus
    cursor_token: str | None = None
    last_success_at: UTCDateTime | None = None
    last_attempt_at: UTCDateTime | None = None
    error_message: str | None = None
    records_processed: int = 0
    records_failed: int = 0
    updated_at: UTCDateTime


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------


class Job(BaseModel):
    """One unit of asynchronous work."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    priority: int = 0
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    scheduled_at: UTCDateTime
    claimed_by: str | None = None
    lease_expires_at: UTCDateTime | None = None
    started_at: UTCDateTime | None = None
    completed_at: UTCDateTime | None = None
    error_message: str | None = None
    created_at: UTCDateTime

    def raise_for_status(self) -> None:
        """Raise ExhaustedRetriesError if the job ended in ``failed``."""
        if self.status == JobStatus.FAILED:
            raise ExhaustedRetriesError(
                self.error_message or f"Job {self.id} failed",
                details={
                    "job_id": self.id,
                    "job_type": self.job_type,
                    "attempts": self.attempts,
                    "max_attempts": self.max_attempts,
                },
            )


# ---------------------------------------------------------------------------
# Search cache
# ---------------------------------------------------------------------------


class CachedResult(BaseModel):
    """A live search cache entry."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    fingerprint: str
    query_params: dict[str, Any]
    results: list[Any]
    result_count: int = Field(..., ge=0)
    created_at: UTCDateTime
    expires_at: UTCDateTime
    hit_count: int = Field(..., ge=1)


# ---------------------------------------------------------------------------
# Fetchers / ingestion
# ---------------------------------------------------------------------------


class FetchedRecord(BaseModel):
    """One record produced by a source fetcher."""

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(..., min_length=1)
    kind: DocumentKind
    body: bytes
    fields: DocumentFields


class FetchPage(BaseModel):
    """A page of fetcher output and where to resume after it."""

    model_config = ConfigDict(frozen=True)

    records: list[FetchedRecord] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


class RunSummary(BaseModel):
    """Counters of one completed ingestion run."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    collection: str
    pages: int = Field(..., ge=0)
    records_processed: int = Field(..., ge=0)
    records_failed: int = Field(..., ge=0)
    new_content: int = Field(..., ge=0)
    final_cursor: str | None = None
    elapsed_seconds: float = Field(..., ge=0.0)
