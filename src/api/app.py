"""FastAPI application factory and lifespan management.

create_app() builds the fully configured application: logging,
database engine, service container, middleware, exception handlers,
and routes. The lifespan context manager disposes the connection pool
on shutdown.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from src.api.dependencies import get_settings
from src.api.middleware import RequestTracingMiddleware, register_exception_handlers
from src.api.routes import api_router
from src.core.config import Settings
from src.core.logging import setup_logging
from src.db.session import create_engine, create_schema, create_session_factory
from src.services.container import ServiceContainer
from src.services.ingestion.fetcher import FetcherRegistry
from src.utils.time import Clock, utcnow

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown."""
    settings: Settings = app.state.settings
    logger.info("application_starting", version=APP_VERSION, debug=settings.debug)
    if app.state.engine.dialect.name == "sqlite":
        await create_schema(app.state.engine)
    yield
    logger.info("application_shutting_down")
    await app.state.engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    clock: Clock = utcnow,
    fetchers: FetcherRegistry | None = None,
) -> FastAPI:
    """Build and return a fully configured FastAPI application.

    The API only enqueues ingestion, so no fetchers are loaded unless a
    registry is passed in.
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="Docket Sync Engine",
        description="Incremental ingestion, deduplicated storage and cached search for legal dockets",
        version=APP_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.container = ServiceContainer.build(
        settings,
        session_factory,
        clock=clock,
        fetchers=fetchers or FetcherRegistry(),
    )

    app.add_middleware(RequestTracingMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    return app
