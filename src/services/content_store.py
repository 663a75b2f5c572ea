"""Content-addressed document store.

ContentStore is the only writer of document rows. Bodies are hashed
with sha256 and stored once per digest; document rows point at their
current digest. A put for an existing (source, external id) updates the
row in place through a compare-and-swap on its version column, so two
writers racing on the same key cannot both win: the loser gets a
ConflictError and may retry.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import IntegrityError

from src.core.exceptions import ConflictError, ContentIntegrityError, NotFoundError
from src.db.repositories import DocumentRepo
from src.db.session import get_session
from src.models.database import DocumentRow
from src.models.domain import Document, DocumentChanged, DocumentFields, DocumentKind, PutResult
from src.utils.text_cleaning import estimate_page_count, summarize_text
from src.utils.time import Clock, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.services.events import ChangeBus

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

# Fields refreshed even when the body digest is unchanged.
VOLATILE_FIELDS = ("date_modified", "metadata", "source_url", "pdf_path", "txt_path")


def compute_digest(body: bytes) -> str:
    """sha256 hex digest of the canonical body bytes."""
    return hashlib.sha256(body).hexdigest()


class ContentStore:
    """Deduplicating persistence for ingested legal records."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        change_bus: ChangeBus | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._bus = change_bus
        self._clock = clock

    async def put(
        self,
        source_id: str,
        external_id: str,
        kind: DocumentKind | str,
        fields: DocumentFields,
        body: bytes,
    ) -> PutResult:
        """Insert or update one document.

        Returns ``was_new_content=False`` when the body digest matches
        what is already stored (only volatile metadata is refreshed).
        Raises ConflictError if a concurrent writer got there first.
        """
        kind = DocumentKind(kind)
        digest = compute_digest(body)
        fields = _with_derived_fields(fields)
        now = self._clock()

        try:
            async with get_session(self._session_factory) as session:
                result = await self._put_in_session(
                    DocumentRepo(session),
                    source_id=source_id,
                    external_id=external_id,
                    kind=kind,
                    fields=fields,
                    body=body,
                    digest=digest,
                    now=now,
                )
        except IntegrityError as exc:
            msg = f"Concurrent insert for {source_id}/{external_id}"
            raise ConflictError(
                msg, details={"source_id": source_id, "external_id": external_id}
            ) from exc

        logger.debug(
            "document_put",
            source_id=source_id,
            external_id=external_id,
            document_id=result.document_id,
            was_new_content=result.was_new_content,
        )

        if result.was_new_content and self._bus is not None:
            await self._bus.publish(
                DocumentChanged(
                    source_id=source_id,
                    external_id=external_id,
                    document_id=result.document_id,
                    content_digest=digest,
                )
            )
        return result

    async def _put_in_session(
        self,
        repo: DocumentRepo,
        *,
        source_id: str,
        external_id: str,
        kind: DocumentKind,
        fields: DocumentFields,
        body: bytes,
        digest: str,
        now: Any,
    ) -> PutResult:
        existing = await repo.get_by_source_external(source_id, external_id)

        if existing is None:
            await repo.store_blob(digest, body, created_at=now)
            row = await repo.create(
                DocumentRow(
                    source_id=source_id,
                    external_id=external_id,
                    kind=kind.value,
                    content_digest=digest,
                    byte_size=len(body),
                    version=1,
                    created_at=now,
                    updated_at=now,
                    **_row_values(fields),
                )
            )
            return PutResult(document_id=row.id, was_new_content=True, content_digest=digest)

        if existing.content_digest == digest:
            full = _row_values(fields)
            values = {_column_attr(name): full[_column_attr(name)] for name in VOLATILE_FIELDS}
            values["updated_at"] = now
            was_new_content = False
        else:
            await repo.store_blob(digest, body, created_at=now)
            values = {
                **_row_values(fields),
                "kind": kind.value,
                "content_digest": digest,
                "byte_size": len(body),
                "updated_at": now,
            }
            was_new_content = True

        if not await repo.update_if_version(existing.id, existing.version, values):
            msg = f"Document {source_id}/{external_id} was modified concurrently"
            raise ConflictError(
                msg,
                details={
                    "source_id": source_id,
                    "external_id": external_id,
                    "expected_version": existing.version,
                },
            )
        return PutResult(
            document_id=existing.id, was_new_content=was_new_content, content_digest=digest
        )

    async def get(self, document_id: int) -> Document:
        """Fetch a document by id or raise NotFoundError."""
        async with get_session(self._session_factory) as session:
            row = await DocumentRepo(session).get_by_id(document_id)
            if row is None:
                msg = f"Document {document_id} not found"
                raise NotFoundError(msg, details={"document_id": document_id})
            return Document.model_validate(row)

    async def find_by_source_external(self, source_id: str, external_id: str) -> Document:
        """Fetch a document by (source, external id) or raise NotFoundError."""
        async with get_session(self._session_factory) as session:
            row = await DocumentRepo(session).get_by_source_external(source_id, external_id)
            if row is None:
                msg = f"Document {source_id}/{external_id} not found"
                raise NotFoundError(
                    msg, details={"source_id": source_id, "external_id": external_id}
                )
            return Document.model_validate(row)

    async def get_body(self, digest: str) -> bytes:
        """Return stored body bytes after re-verifying their digest."""
        async with get_session(self._session_factory) as session:
            blob = await DocumentRepo(session).get_blob(digest)
        if blob is None:
            msg = f"No content stored for digest {digest}"
            raise NotFoundError(msg, details={"digest": digest})
        actual = compute_digest(blob.body)
        if actual != digest:
            logger.error("content_digest_mismatch", expected=digest, actual=actual)
            msg = f"Stored content for {digest} does not match its digest"
            raise ContentIntegrityError(msg, details={"expected": digest, "actual": actual})
        return blob.body

    async def list_documents(
        self,
        *,
        source_id: str | None = None,
        kind: DocumentKind | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Document]:
        """List stored documents, newest filing first."""
        async with get_session(self._session_factory) as session:
            rows = await DocumentRepo(session).list_documents(
                source_id=source_id,
                kind=kind.value if kind is not None else None,
                limit=limit,
                offset=offset,
            )
            return [Document.model_validate(r) for r in rows]

    async def count(self, *, source_id: str | None = None) -> int:
        async with get_session(self._session_factory) as session:
            return await DocumentRepo(session).count(source_id=source_id)

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
    ) -> list[Document]:
        """Run a simple filtered search and return one page."""
        async with get_session(self._session_factory) as session:
            rows = await DocumentRepo(session).search(
                text=text,
                source_ids=source_ids,
                kinds=kinds,
                court=court,
                docket_number=docket_number,
                limit=limit,
                offset=offset,
            )
            return [Document.model_validate(r) for r in rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _column_attr(field_name: str) -> str:
    return "metadata_" if field_name == "metadata" else field_name


def _row_values(fields: DocumentFields) -> dict[str, Any]:
    """Map DocumentFields onto DocumentRow attribute names."""
    data = fields.model_dump()
    data["metadata_"] = data.pop("metadata")
    return data


def _with_derived_fields(fields: DocumentFields) -> DocumentFields:
    """Fill summary and page count from the full text when missing."""
    updates: dict[str, Any] = {}
    if not fields.text_summary and fields.full_text:
        updates["text_summary"] = summarize_text(fields.full_text) or None
    if fields.page_count is None and fields.full_text:
        updates["page_count"] = estimate_page_count(fields.full_text)
    return fields.model_copy(update=updates) if updates else fields
