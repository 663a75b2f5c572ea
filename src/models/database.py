"""SQLAlchemy 2.0 ORM models for all database tables.

These map directly to the storage schema. Domain enums are stored as
VARCHAR via their StrEnum string values. JSON columns become JSONB on
PostgreSQL and plain JSON elsewhere (SQLite in tests). Timestamps are
written by the services from an injectable clock rather than server
defaults, so ordering and expiry stay deterministic under test.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Shared base for all ORM models."""


# ---------------------------------------------------------------------------
# content_blobs
# ---------------------------------------------------------------------------


class ContentBlobRow(Base):
    """Document body bytes, stored once per sha256 digest."""

    __tablename__ = "content_blobs"

    digest: Mapped[str] = mapped_column(String(64), primary_key=True)
    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ContentBlobRow digest={self.digest[:12]} size={self.byte_size}>"


# ---------------------------------------------------------------------------
# documents
# ---------------------------------------------------------------------------


class DocumentRow(Base):
    """One ingested legal record, unique per (source_id, external_id)."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    court: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    jurisdiction: Mapped[str | None] = mapped_column(String(100), nullable=True)
    docket_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    case_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_filed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_modified: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    citations: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    parties: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    judges: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    attorneys: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    text_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_digest: Mapped[str] = mapped_column(
        String(64), ForeignKey("content_blobs.digest"), nullable=False, index=True
    )
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    pdf_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    txt_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("source_id", "external_id", name="uq_documents_source_external"),
        Index("ix_documents_date_filed", "date_filed"),
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentRow id={self.id} source={self.source_id!r} "
            f"external_id={self.external_id!r} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# sync_cursors
# ---------------------------------------------------------------------------


class SyncCursorRow(Base):
    """Incremental sync state for one (source, collection)."""

    __tablename__ = "sync_cursors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(50), nullable=False)
    collection: Mapped[str] = mapped_column(String(100), nullable=False)
    last_success_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cursor_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("source_id", "collection", name="uq_sync_cursors_source_collection"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncCursorRow {self.source_id}/{self.collection} "
            f"status={self.status!r} cursor={self.cursor_token!r}>"
        )


# ---------------------------------------------------------------------------
# jobs
# ---------------------------------------------------------------------------


class JobRow(Base):
    """Durable unit of asynchronous work."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_jobs_claim_order", "status", "priority", "created_at"),
        Index("ix_jobs_scheduled_at", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<JobRow id={self.id!r} type={self.job_type!r} status={self.status!r} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )


# ---------------------------------------------------------------------------
# search_cache
# ---------------------------------------------------------------------------


class CacheEntryRow(Base):
    """Cached result page for one normalized query fingerprint."""

    __tablename__ = "search_cache"

    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    query_params: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    results: Mapped[list[Any]] = mapped_column(JSONType, nullable=False)
    result_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<CacheEntryRow fp={self.fingerprint[:12]} hits={self.hit_count}>"


class CacheSourceRow(Base):
    """Reverse index: which sources a cached query touches ('*' = any)."""

    __tablename__ = "search_cache_sources"

    fingerprint: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("search_cache.fingerprint", ondelete="CASCADE"),
        primary_key=True,
    )
    source_id: Mapped[str] = mapped_column(String(50), primary_key=True, index=True)
