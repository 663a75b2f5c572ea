"""Tests for the source registry and its token bucket limiter."""

import pytest

from src.core.exceptions import NotFoundError
from src.models.domain import SourceInfo
from src.services.source_registry import SourceRegistry, TokenBucket


class TestTokenBucket:
    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(rate=0)

    def test_default_capacity_is_two_seconds_of_tokens(self):
        assert TokenBucket(rate=5).capacity == 10
        assert TokenBucket(rate=0.1).capacity == 1

    def test_try_acquire_drains_capacity(self):
        bucket = TokenBucket(rate=0.001, max_tokens=3)
        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]

    async def test_acquire_takes_available_token(self):
        bucket = TokenBucket(rate=0.001, max_tokens=2)
        await bucket.acquire()
        await bucket.acquire()
        assert bucket.try_acquire() is False


class TestSourceRegistry:
    def test_from_settings_lists_configured_sources(self, test_settings):
        registry = SourceRegistry.from_settings(test_settings)
        names = [s.name for s in registry.list()]
        assert names == sorted(names)
        assert {"courtlistener", "govinfo", "ujs_portal", "pacfile"} <= set(names)
        assert "courtlistener" in registry

    def test_get(self, test_settings):
        registry = SourceRegistry.from_settings(test_settings)
        info = registry.get("courtlistener")
        assert info.rate_limit_per_window == 5
        assert info.window_seconds == 60
        assert info.base_url.startswith("https://www.courtlistener.com/")

    def test_get_unknown(self, test_settings):
        registry = SourceRegistry.from_settings(test_settings)
        with pytest.raises(NotFoundError) as exc_info:
            registry.get("pacer")
        assert exc_info.value.details == {"source": "pacer"}

    def test_limiter_sized_from_window(self):
        registry = SourceRegistry(
            [
                SourceInfo(
                    name="govinfo",
                    base_url="https://api.govinfo.gov/",
                    api_version="v1",
                    rate_limit_per_window=30,
                    window_seconds=60,
                )
            ]
        )
        limiter = registry.limiter("govinfo")
        assert limiter.rate == 0.5
        assert limiter.capacity == 30
        assert registry.limiter("govinfo") is limiter

    def test_limiter_unknown_source(self):
        with pytest.raises(NotFoundError):
            SourceRegistry([]).limiter("govinfo")
