"""Fetcher contract and the per-source fetcher registry.

A fetcher pulls one page of a collection from an external source,
starting at an opaque resume cursor. It must signal failures with
TransientFetchError (worth retrying) or PermanentFetchError (not).
Concrete fetchers live outside the engine and are plugged in through
``Settings.fetchers`` as ``"package.module:attribute"`` import paths.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from src.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from src.models.domain import FetchPage, SourceInfo
    from src.services.source_registry import SourceRegistry, TokenBucket

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@runtime_checkable
class Fetcher(Protocol):
    """One source's page-at-a-time record supplier."""

    async def fetch(self, collection: str, cursor: str | None) -> FetchPage:
        """Return the page that follows ``cursor`` (``None`` = from the start)."""
        ...


class FetcherFactory(Protocol):
    def __call__(self, source: SourceInfo, limiter: TokenBucket) -> Fetcher: ...


def load_object(path: str) -> object:
    """Import ``"package.module:attribute"`` and return the attribute."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Invalid import path {path!r}, expected 'module:attribute'"
        raise ValueError(msg)
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        msg = f"Module {module_name!r} has no attribute {attr!r}"
        raise ImportError(msg) from exc


class FetcherRegistry:
    """Source name to fetcher mapping used by the ingestion runner."""

    def __init__(self) -> None:
        self._fetchers: dict[str, Fetcher] = {}

    def register(self, source_id: str, fetcher: Fetcher) -> None:
        if not isinstance(fetcher, Fetcher):
            msg = f"{fetcher!r} does not implement fetch(collection, cursor)"
            raise TypeError(msg)
        self._fetchers[source_id] = fetcher
        logger.info("fetcher_registered", source_id=source_id, fetcher=type(fetcher).__name__)

    def get(self, source_id: str) -> Fetcher:
        try:
            return self._fetchers[source_id]
        except KeyError:
            msg = f"No fetcher registered for source {source_id!r}"
            raise NotFoundError(msg, details={"source_id": source_id}) from None

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._fetchers

    @property
    def sources(self) -> list[str]:
        return sorted(self._fetchers)

    @classmethod
    def from_import_paths(
        cls,
        paths: Mapping[str, str],
        sources: SourceRegistry,
    ) -> FetcherRegistry:
        """Build a registry from ``{source: "module:attribute"}``.

        The attribute is either a ready fetcher instance or a factory
        called with the source's metadata and its rate limiter.
        """
        registry = cls()
        for source_id, path in paths.items():
            info = sources.get(source_id)
            target = load_object(path)
            if isinstance(target, type) or not isinstance(target, Fetcher):
                fetcher = target(info, sources.limiter(source_id))  # type: ignore[operator]
            else:
                fetcher = target
            registry.register(source_id, fetcher)
        return registry
