"""Registry of external sources and their advisory rate limits.

Source metadata is static configuration. The registry never throttles
network calls itself; it hands fetchers a token bucket sized from the
configured limit so they can honour it.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from src.core.exceptions import NotFoundError
from src.models.domain import SourceInfo

if TYPE_CHECKING:
    from src.core.config import Settings


# ---------------------------------------------------------------------------
# In-memory token bucket rate limiter
# ---------------------------------------------------------------------------


class TokenBucket:
    """Async token bucket rate limiter.

    Refills at ``rate`` tokens per second up to ``max_tokens`` capacity.
    ``acquire()`` blocks until a token is available.
    """

    def __init__(self, rate: float, max_tokens: int | None = None) -> None:
        if rate <= 0:
            msg = f"rate must be positive, got {rate}"
            raise ValueError(msg)
        self._rate = rate
        self._max_tokens = float(max_tokens or max(int(rate * 2), 1))
        self._tokens = self._max_tokens
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._max_tokens

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                deficit = 1.0 - self._tokens
                await asyncio.sleep(deficit / self._rate)
                self._refill()
            self._tokens -= 1.0

    def try_acquire(self) -> bool:
        """Consume a token if one is available right now."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self._max_tokens, self._tokens + elapsed * self._rate)
        self._last_refill = now


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SourceRegistry:
    """Read-only lookup of configured sources."""

    def __init__(self, sources: list[SourceInfo]) -> None:
        self._sources: dict[str, SourceInfo] = {s.name: s for s in sources}
        self._limiters: dict[str, TokenBucket] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> SourceRegistry:
        """Build the registry from the configured source list."""
        return cls(
            [
                SourceInfo(
                    name=cfg.name,
                    description=cfg.description,
                    base_url=cfg.base_url,
                    api_version=cfg.api_version,
                    rate_limit_per_window=cfg.rate_limit,
                    window_seconds=settings.rate_limit_window_seconds,
                )
                for cfg in settings.sources
            ]
        )

    def get(self, name: str) -> SourceInfo:
        """Return a source's metadata or raise NotFoundError."""
        try:
            return self._sources[name]
        except KeyError:
            msg = f"Unknown source {name!r}"
            raise NotFoundError(msg, details={"source": name}) from None

    def list(self) -> list[SourceInfo]:
        """All configured sources, ordered by name."""
        return sorted(self._sources.values(), key=lambda s: s.name)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def limiter(self, name: str) -> TokenBucket:
        """Shared token bucket enforcing the source's configured rate.

        Capacity equals one window's allowance; refill is spread evenly
        across the window.
        """
        if name not in self._limiters:
            source = self.get(name)
            self._limiters[name] = TokenBucket(
                rate=source.rate_limit_per_window / source.window_seconds,
                max_tokens=source.rate_limit_per_window,
            )
        return self._limiters[name]
