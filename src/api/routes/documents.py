"""Document endpoints: list, fetch and store ingested records."""

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_content_store
from src.models.domain import Document, DocumentKind
from src.models.requests import DocumentPutRequest
from src.models.responses import DocumentListResponse, DocumentPutResponse
from src.services.content_store import ContentStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    source_id: str | None = None,
    kind: DocumentKind | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: ContentStore = Depends(get_content_store),
) -> DocumentListResponse:
    """List stored documents, newest filing first."""
    documents = await store.list_documents(
        source_id=source_id, kind=kind, limit=limit, offset=offset
    )
    total = await store.count(source_id=source_id)
    return DocumentListResponse(documents=documents, total=total, limit=limit, offset=offset)


@router.get("/lookup", response_model=Document)
async def lookup_document(
    source_id: str = Query(..., min_length=1),
    external_id: str = Query(..., min_length=1),
    store: ContentStore = Depends(get_content_store),
) -> Document:
    """Find a document by its source and the source's own identifier."""
    return await store.find_by_source_external(source_id, external_id)


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: int,
    store: ContentStore = Depends(get_content_store),
) -> Document:
    return await store.get(document_id)


@router.put("", response_model=DocumentPutResponse)
async def put_document(
    request: DocumentPutRequest,
    store: ContentStore = Depends(get_content_store),
) -> DocumentPutResponse:
    """Insert a document or update it in place; identical bodies are deduplicated."""
    result = await store.put(
        request.source_id,
        request.external_id,
        request.kind,
        request.fields,
        request.body_bytes(),
    )
    logger.info(
        "document_stored",
        source_id=request.source_id,
        external_id=request.external_id,
        was_new_content=result.was_new_content,
    )
    return DocumentPutResponse(
        document_id=result.document_id,
        was_new_content=result.was_new_content,
        content_digest=result.content_digest,
    )
