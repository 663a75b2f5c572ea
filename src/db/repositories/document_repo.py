"""Repository for document and content blob storage.

All database access for the documents and content_blobs tables is
encapsulated here. Services never execute raw SQL — they call
repository methods.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import CursorResult, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.dialect import upsert_insert
from src.models.database import ContentBlobRow, DocumentRow


class DocumentRepo:
    """Async repository for documents and their content-addressed bodies."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------

    async def create(self, document: DocumentRow) -> DocumentRow:
        """Insert a single document and return it with generated fields populated."""
        self._session.add(document)
        await self._session.flush()
        return document

    async def get_by_id(self, document_id: int) -> DocumentRow | None:
        """Fetch a document by its primary key."""
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.id == document_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_source_external(self, source_id: str, external_id: str) -> DocumentRow | None:
        """Fetch a document by its (source, external id) natural key."""
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.source_id == source_id, DocumentRow.external_id == external_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_if_version(
        self,
        document_id: int,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        """Compare-and-swap update keyed on ``version``.

        Bumps the version on success. Returns False if another writer
        moved the row first.
        """
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1

    async def list_documents(
        self,
        *,
        source_id: str | None = None,
        kind: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DocumentRow]:
        """List documents, newest filing first, with optional filters."""
        stmt = select(DocumentRow)
        if source_id is not None:
            stmt = stmt.where(DocumentRow.source_id == source_id)
        if kind is not None:
            stmt = stmt.where(DocumentRow.kind == kind)
        stmt = (
            stmt.order_by(DocumentRow.date_filed.desc(), DocumentRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def search(
        self,
        *,
        text: str | None = None,
        source_ids: list[str] | None = None,
        kinds: list[str] | None = None,
        court: str | None = None,
        docket_number: str | None = None,
        limit: int = 25,
        offset: int = 0,
    ) -> list[DocumentRow]:
        """Substring search over case name, docket number and full text.

        Returns one page of rows, newest filing first. Ranking is left to
        the external search index; this is the fallback path.
        """
        conditions = []
        if text:
            pattern = f"%{text}%"
            conditions.append(
                or_(
                    DocumentRow.case_name.ilike(pattern),
                    DocumentRow.docket_number.ilike(pattern),
                    DocumentRow.full_text.ilike(pattern),
                )
            )
        if source_ids:
            conditions.append(DocumentRow.source_id.in_(source_ids))
        if kinds:
            conditions.append(DocumentRow.kind.in_(kinds))
        if court:
            conditions.append(DocumentRow.court == court)
        if docket_number:
            conditions.append(DocumentRow.docket_number == docket_number)

        page_stmt = (
            select(DocumentRow)
            .where(*conditions)
            .order_by(DocumentRow.date_filed.desc(), DocumentRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(page_stmt)
        return list(result.scalars().all())

    async def count(self, *, source_id: str | None = None) -> int:
        """Count documents, optionally filtered by source."""
        stmt = select(func.count(DocumentRow.id))
        if source_id is not None:
            stmt = stmt.where(DocumentRow.source_id == source_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    # ------------------------------------------------------------------
    # content_blobs
    # ------------------------------------------------------------------

    async def get_blob(self, digest: str) -> ContentBlobRow | None:
        """Fetch a stored body by digest."""
        stmt = select(ContentBlobRow).where(ContentBlobRow.digest == digest)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def store_blob(self, digest: str, body: bytes, *, created_at: datetime) -> bool:
        """Store a body under its digest unless it already exists.

        Returns True if this call inserted the blob.
        """
        stmt = (
            upsert_insert(self._session, ContentBlobRow)
            .values(digest=digest, body=body, byte_size=len(body), created_at=created_at)
            .on_conflict_do_nothing(index_elements=["digest"])
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount == 1
