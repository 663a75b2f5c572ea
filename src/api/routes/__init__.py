"""API route aggregation.

All sub-routers are collected into a single api_router that the
app factory mounts under the configured prefix.
"""

from fastapi import APIRouter

from src.api.routes import documents, health, jobs, search, sources, sync

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(sources.router)
api_router.include_router(documents.router)
api_router.include_router(jobs.router)
api_router.include_router(sync.router)
api_router.include_router(search.router)
