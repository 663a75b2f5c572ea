"""Initial schema: documents, content blobs, sync cursors, jobs, search cache.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")
TZ = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "content_blobs",
        sa.Column("digest", sa.String(64), primary_key=True),
        sa.Column("body", sa.LargeBinary(), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("court", sa.String(100), nullable=True),
        sa.Column("jurisdiction", sa.String(100), nullable=True),
        sa.Column("docket_number", sa.String(100), nullable=True),
        sa.Column("case_name", sa.Text(), nullable=True),
        sa.Column("date_filed", TZ, nullable=True),
        sa.Column("date_modified", TZ, nullable=True),
        sa.Column("citations", JSONType, nullable=False),
        sa.Column("parties", JSONType, nullable=False),
        sa.Column("judges", JSONType, nullable=False),
        sa.Column("attorneys", JSONType, nullable=False),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("text_summary", sa.Text(), nullable=True),
        sa.Column("full_text", sa.Text(), nullable=True),
        sa.Column(
            "content_digest",
            sa.String(64),
            sa.ForeignKey("content_blobs.digest"),
            nullable=False,
        ),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("pdf_path", sa.Text(), nullable=True),
        sa.Column("txt_path", sa.Text(), nullable=True),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
        sa.Column("updated_at", TZ, nullable=False),
        sa.UniqueConstraint("source_id", "external_id", name="uq_documents_source_external"),
    )
    op.create_index("ix_documents_source_id", "documents", ["source_id"])
    op.create_index("ix_documents_kind", "documents", ["kind"])
    op.create_index("ix_documents_court", "documents", ["court"])
    op.create_index("ix_documents_docket_number", "documents", ["docket_number"])
    op.create_index("ix_documents_content_digest", "documents", ["content_digest"])
    op.create_index("ix_documents_date_filed", "documents", ["date_filed"])

    op.create_table(
        "sync_cursors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.String(50), nullable=False),
        sa.Column("collection", sa.String(100), nullable=False),
        sa.Column("last_success_at", TZ, nullable=True),
        sa.Column("last_attempt_at", TZ, nullable=True),
        sa.Column("cursor_token", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("records_failed", sa.Integer(), nullable=False),
        sa.Column("updated_at", TZ, nullable=False),
        sa.UniqueConstraint(
            "source_id", "collection", name="uq_sync_cursors_source_collection"
        ),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("scheduled_at", TZ, nullable=False),
        sa.Column("claimed_by", sa.String(100), nullable=True),
        sa.Column("lease_expires_at", TZ, nullable=True),
        sa.Column("started_at", TZ, nullable=True),
        sa.Column("completed_at", TZ, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", TZ, nullable=False),
    )
    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_claim_order", "jobs", ["status", "priority", "created_at"])
    op.create_index("ix_jobs_scheduled_at", "jobs", ["scheduled_at"])

    op.create_table(
        "search_cache",
        sa.Column("fingerprint", sa.String(64), primary_key=True),
        sa.Column("query_params", JSONType, nullable=False),
        sa.Column("results", JSONType, nullable=False),
        sa.Column("result_count", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
        sa.Column("expires_at", TZ, nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False),
    )
    op.create_index("ix_search_cache_expires_at", "search_cache", ["expires_at"])

    op.create_table(
        "search_cache_sources",
        sa.Column(
            "fingerprint",
            sa.String(64),
            sa.ForeignKey("search_cache.fingerprint", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("source_id", sa.String(50), primary_key=True),
    )
    op.create_index(
        "ix_search_cache_sources_source_id", "search_cache_sources", ["source_id"]
    )


def downgrade() -> None:
    op.drop_table("search_cache_sources")
    op.drop_table("search_cache")
    op.drop_table("jobs")
    op.drop_table("sync_cursors")
    op.drop_table("documents")
    op.drop_table("content_blobs")
