"""Search API endpoints.

POST /search             — cached filtered search over stored documents
POST /search/cache/sweep — drop expired cache entries now
"""

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import get_content_store, get_search_cache, get_settings_from_app
from src.core.config import Settings
from src.models.requests import SearchRequest
from src.models.responses import CacheSweepResponse, SearchHit, SearchResponse
from src.services.content_store import ContentStore
from src.services.search_cache import SearchCache

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse, summary="Search stored documents")
async def search_documents(
    request: SearchRequest,
    settings: Settings = Depends(get_settings_from_app),
    cache: SearchCache = Depends(get_search_cache),
    store: ContentStore = Depends(get_content_store),
) -> SearchResponse:
    """Serve a page from cache, or run the query and cache the page."""
    page_size = request.page_size or settings.search_default_page_size
    params = request.cache_params(page_size)

    entry, hit = await cache.lookup(params)
    if entry is None or not hit:
        documents = await store.search(
            text=request.query,
            source_ids=request.sources,
            kinds=[k.value for k in request.kinds] if request.kinds else None,
            court=request.court,
            docket_number=request.docket_number,
            limit=page_size,
            offset=(request.page - 1) * page_size,
        )
        hits = [SearchHit.from_document(d).model_dump(mode="json") for d in documents]
        entry = await cache.store(params, hits, ttl_seconds=request.ttl_seconds)

    logger.info("search_served", cached=hit, result_count=entry.result_count)
    return SearchResponse(
        results=[SearchHit.model_validate(r) for r in entry.results],
        result_count=entry.result_count,
        page=request.page,
        page_size=page_size,
        cached=hit,
        fingerprint=entry.fingerprint,
        expires_at=entry.expires_at,
    )


@router.post("/cache/sweep", response_model=CacheSweepResponse)
async def sweep_cache(cache: SearchCache = Depends(get_search_cache)) -> CacheSweepResponse:
    return CacheSweepResponse(removed=await cache.sweep())
