"""FastAPI dependency injection providers.

Every service the API layer needs is accessed through a Depends()
callable defined here. Services are resolved from the ServiceContainer
on app.state, which create_app() builds.
"""

from functools import lru_cache

from fastapi import Request

from src.core.config import Settings
from src.services.container import ServiceContainer
from src.services.content_store import ContentStore
from src.services.cursor_tracker import CursorTracker
from src.services.job_queue import JobQueue
from src.services.search_cache import SearchCache
from src.services.source_registry import SourceRegistry


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton."""
    return Settings()


def get_settings_from_app(request: Request) -> Settings:
    """Retrieve settings stored on the running app instance.

    Preferred over the cached version inside route handlers since
    it respects the settings the app was actually started with
    (important for tests that override config).
    """
    settings: Settings = request.app.state.settings
    return settings


def get_container(request: Request) -> ServiceContainer:
    container: ServiceContainer = request.app.state.container
    return container


def get_content_store(request: Request) -> ContentStore:
    return get_container(request).content_store


def get_source_registry(request: Request) -> SourceRegistry:
    return get_container(request).sources


def get_cursor_tracker(request: Request) -> CursorTracker:
    return get_container(request).cursor_tracker


def get_job_queue(request: Request) -> JobQueue:
    return get_container(request).job_queue


def get_search_cache(request: Request) -> SearchCache:
    return get_container(request).search_cache
