"""Health check and Prometheus metrics endpoints.

/health probes the database through the application's own engine,
measures probe latency, and reports aggregate status.
"""

import asyncio
import time

import structlog
from fastapi import APIRouter, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.responses import Response

from src.models.responses import DependencyHealth, HealthResponse

router = APIRouter(tags=["observability"])
logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_start_time: float = time.time()


async def _probe_database(engine: AsyncEngine) -> DependencyHealth:
    """Run ``SELECT 1`` on a pooled connection."""
    start = time.perf_counter()
    name = engine.dialect.name
    try:
        async with asyncio.timeout(3.0), engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(name=name, status="healthy", latency_ms=round(latency, 2))
    except Exception as exc:
        latency = (time.perf_counter() - start) * 1000
        logger.warning("health_probe_failed", dependency=name, error=str(exc))
        return DependencyHealth(
            name=name,
            status="unhealthy",
            latency_ms=round(latency, 2),
            details=str(exc)[:200],
        )


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check API and database health."""
    dependencies = [await _probe_database(request.app.state.engine)]
    status = "healthy" if all(d.status == "healthy" for d in dependencies) else "unhealthy"
    return HealthResponse(
        status=status,
        version=request.app.version,
        uptime_seconds=round(time.time() - _start_time, 2),
        dependencies=dependencies,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
