"""Source registry endpoints."""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_source_registry
from src.models.domain import SourceInfo
from src.models.responses import SourceListResponse
from src.services.source_registry import SourceRegistry

router = APIRouter(prefix="/sources", tags=["sources"])


@router.get("", response_model=SourceListResponse)
async def list_sources(
    registry: SourceRegistry = Depends(get_source_registry),
) -> SourceListResponse:
    """List configured sources with their advisory rate limits."""
    return SourceListResponse(sources=registry.list())


@router.get("/{name}", response_model=SourceInfo)
async def get_source(
    name: str,
    registry: SourceRegistry = Depends(get_source_registry),
) -> SourceInfo:
    return registry.get(name)
