"""Time-bounded cache of search result pages.

Each entry is keyed by a fingerprint of the canonicalised query. An
entry past ``expires_at`` is treated as absent even before the sweep
physically removes it.

Invalidation is coarse on purpose: when any document of a source
changes, every entry whose query is scoped to that source is dropped,
along with every unscoped query (those can return documents from any
source). Over-invalidating only costs a re-query; under-invalidating
serves stale pages.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from src.db.repositories import CacheRepo
from src.db.session import get_session
from src.models.domain import CachedResult
from src.utils.text_cleaning import normalize_unicode
from src.utils.time import Clock, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.models.domain import DocumentChanged

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

# Query keys that restrict a search to particular sources.
SOURCE_KEYS = ("source", "sources", "source_id", "source_ids")
# Index marker for queries not restricted to any source.
ALL_SOURCES = "*"


# ---------------------------------------------------------------------------
# Canonicalisation
# ---------------------------------------------------------------------------


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return _canonical(value.value)
    if isinstance(value, str):
        return normalize_unicode(value).strip()
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {
            str(k): _canonical(v)
            for k, v in value.items()
            if v is not None
        }
    if isinstance(value, set | frozenset):
        return sorted((_canonical(v) for v in value), key=_sort_key)
    if isinstance(value, list | tuple):
        return [_canonical(v) for v in value]
    return value


def _sort_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def canonicalize(query_params: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise query parameters so equivalent queries compare equal.

    ``None`` values are dropped, strings trimmed, dates rendered as ISO
    strings and source filters sorted and de-duplicated.
    """
    canonical: dict[str, Any] = _canonical(query_params)
    for key in SOURCE_KEYS:
        value = canonical.get(key)
        if isinstance(value, list):
            canonical[key] = sorted({str(v) for v in value if v not in ("", None)})
    return canonical


def fingerprint(query_params: Mapping[str, Any]) -> str:
    """Stable sha256 hex digest of the canonical query."""
    payload = json.dumps(
        canonicalize(query_params),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def referenced_sources(query_params: Mapping[str, Any]) -> list[str]:
    """Sources a query is scoped to, or ``["*"]`` when it is unscoped."""
    canonical = canonicalize(query_params)
    found: set[str] = set()
    for key in SOURCE_KEYS:
        value = canonical.get(key)
        if isinstance(value, list):
            found.update(value)
        elif isinstance(value, str) and value:
            found.add(value)
    return sorted(found) if found else [ALL_SOURCES]


# ---------------------------------------------------------------------------
# Cache service
# ---------------------------------------------------------------------------


class SearchCache:
    """Fingerprint-keyed search result cache with TTL and hit counts."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        default_ttl_seconds: int = 3600,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    fingerprint = staticmethod(fingerprint)

    async def lookup(
        self,
        query_params: Mapping[str, Any],
        *,
        record_hit: bool = True,
    ) -> tuple[CachedResult | None, bool]:
        """Return ``(entry, True)`` for a live entry, ``(None, False)`` otherwise."""
        fp = fingerprint(query_params)
        now = self._clock()
        async with get_session(self._session_factory) as session:
            repo = CacheRepo(session)
            row = await repo.get_live(fp, now=now)
            if row is None:
                logger.debug("search_cache_miss", fingerprint=fp)
                return None, False
            if record_hit:
                await repo.increment_hits(fp)
                row = await repo.get_live(fp, now=now) or row
            entry = CachedResult.model_validate(row)

        logger.debug("search_cache_hit", fingerprint=fp, hit_count=entry.hit_count)
        return entry, True

    async def store(
        self,
        query_params: Mapping[str, Any],
        results: list[Any],
        ttl_seconds: int | None = None,
    ) -> CachedResult:
        """Insert or replace the entry for this query; the hit count resets to 1."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            msg = f"ttl_seconds must be positive, got {ttl}"
            raise ValueError(msg)

        canonical = canonicalize(query_params)
        fp = fingerprint(query_params)
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)
        sources = referenced_sources(query_params)
        async with get_session(self._session_factory) as session:
            await CacheRepo(session).upsert(
                fingerprint=fp,
                query_params=canonical,
                results=results,
                created_at=now,
                expires_at=expires_at,
                source_ids=sources,
            )

        logger.debug("search_cache_stored", fingerprint=fp, result_count=len(results), ttl=ttl)
        return CachedResult(
            fingerprint=fp,
            query_params=canonical,
            results=results,
            result_count=len(results),
            created_at=now,
            expires_at=expires_at,
            hit_count=1,
        )

    async def record_hit(self, fp: str) -> bool:
        """Bump the hit counter; does not touch expiry."""
        async with get_session(self._session_factory) as session:
            return await CacheRepo(session).increment_hits(fp)

    async def invalidate_by_source(self, source_id: str) -> int:
        """Drop entries scoped to ``source_id`` and all unscoped entries."""
        async with get_session(self._session_factory) as session:
            removed = await CacheRepo(session).delete_for_sources([source_id, ALL_SOURCES])
        logger.info("search_cache_invalidated", source_id=source_id, removed=removed)
        return removed

    async def sweep(self, now: datetime | None = None) -> int:
        """Physically delete every expired entry."""
        now = now or self._clock()
        async with get_session(self._session_factory) as session:
            removed = await CacheRepo(session).delete_expired(now=now)
        logger.info("search_cache_swept", removed=removed)
        return removed

    async def on_document_changed(self, event: DocumentChanged) -> None:
        """Change bus subscriber. Never raises into the publisher."""
        try:
            await self.invalidate_by_source(event.source_id)
        except Exception:
            logger.exception(
                "search_cache_invalidation_failed",
                source_id=event.source_id,
                document_id=event.document_id,
            )
