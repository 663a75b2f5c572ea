"""Tests for query fingerprinting and the search result cache."""

from datetime import date, timedelta

import pytest

from src.models.domain import DocumentChanged, DocumentKind
from src.services.search_cache import canonicalize, fingerprint, referenced_sources
from tests.conftest import make_document_fields

RESULTS = [{"id": 1, "case_name": "Commonwealth v. Smith"}, {"id": 2, "case_name": "In re B."}]


class TestFingerprint:
    def test_equivalent_queries_share_fingerprint(self):
        a = {"query": " smith ", "sources": ["govinfo", "courtlistener", "govinfo"], "court": None}
        b = {"sources": ["courtlistener", "govinfo"], "query": "smith"}
        assert fingerprint(a) == fingerprint(b)

    def test_different_pages_differ(self):
        assert fingerprint({"query": "smith", "page": 1}) != fingerprint(
            {"query": "smith", "page": 2}
        )

    def test_is_sha256_hex(self):
        fp = fingerprint({"query": "smith"})
        assert len(fp) == 64
        int(fp, 16)

    def test_canonical_values(self):
        canonical = canonicalize(
            {
                "kinds": [DocumentKind.OPINION],
                "filed_after": date(2024, 1, 31),
                "tags": {"b", "a"},
                "empty": None,
            }
        )
        assert canonical == {"kinds": ["opinion"], "filed_after": "2024-01-31", "tags": ["a", "b"]}

    def test_referenced_sources(self):
        assert referenced_sources({"sources": ["b", "a"]}) == ["a", "b"]
        assert referenced_sources({"source_id": "govinfo"}) == ["govinfo"]
        assert referenced_sources({"query": "smith"}) == ["*"]


class TestLookupAndStore:
    async def test_miss(self, search_cache):
        assert await search_cache.lookup({"query": "smith"}) == (None, False)

    async def test_store_then_hit(self, search_cache, clock):
        stored = await search_cache.store({"query": "smith"}, RESULTS)
        assert stored.hit_count == 1
        assert stored.result_count == 2

        entry, hit = await search_cache.lookup({"query": " smith"})
        assert hit is True
        assert entry.results == RESULTS
        assert entry.hit_count == 2
        assert entry.fingerprint == stored.fingerprint
        assert entry.created_at == clock.now

    async def test_lookup_without_recording_hit(self, search_cache):
        await search_cache.store({"query": "smith"}, RESULTS)
        entry, _ = await search_cache.lookup({"query": "smith"}, record_hit=False)
        assert entry.hit_count == 1

    async def test_record_hit(self, search_cache):
        stored = await search_cache.store({"query": "smith"}, RESULTS)
        assert await search_cache.record_hit(stored.fingerprint) is True
        assert await search_cache.record_hit("0" * 64) is False

    async def test_restore_resets_hit_count(self, search_cache):
        await search_cache.store({"query": "smith"}, RESULTS)
        await search_cache.lookup({"query": "smith"})
        await search_cache.store({"query": "smith"}, RESULTS[:1])

        entry, _ = await search_cache.lookup({"query": "smith"}, record_hit=False)
        assert entry.hit_count == 1
        assert entry.result_count == 1

    async def test_expired_entry_is_a_miss(self, search_cache, clock):
        await search_cache.store({"query": "smith"}, RESULTS)
        clock.advance(seconds=59)
        assert (await search_cache.lookup({"query": "smith"}))[1] is True
        clock.advance(seconds=1)
        assert await search_cache.lookup({"query": "smith"}) == (None, False)

    async def test_custom_ttl(self, search_cache, clock):
        stored = await search_cache.store({"query": "smith"}, RESULTS, ttl_seconds=5)
        assert stored.expires_at == clock.now + timedelta(seconds=5)

    async def test_non_positive_ttl_rejected(self, search_cache):
        with pytest.raises(ValueError):
            await search_cache.store({"query": "smith"}, RESULTS, ttl_seconds=0)


class TestInvalidation:
    async def _seed(self, search_cache):
        await search_cache.store({"query": "a", "sources": ["courtlistener"]}, RESULTS)
        await search_cache.store({"query": "b", "sources": ["govinfo"]}, RESULTS)
        await search_cache.store({"query": "c", "sources": ["courtlistener", "govinfo"]}, RESULTS)
        await search_cache.store({"query": "d"}, RESULTS)

    async def test_invalidate_source_drops_scoped_and_unscoped(self, search_cache):
        await self._seed(search_cache)
        assert await search_cache.invalidate_by_source("courtlistener") == 3

        assert (await search_cache.lookup({"query": "a", "sources": ["courtlistener"]}))[1] is False
        assert (await search_cache.lookup({"query": "d"}))[1] is False
        assert (await search_cache.lookup({"query": "b", "sources": ["govinfo"]}))[1] is True

    async def test_document_change_invalidates(self, search_cache):
        await self._seed(search_cache)
        await search_cache.on_document_changed(
            DocumentChanged(
                source_id="govinfo", external_id="x", document_id=1, content_digest="0" * 64
            )
        )
        assert (await search_cache.lookup({"query": "a", "sources": ["courtlistener"]}))[1] is True
        assert (await search_cache.lookup({"query": "b", "sources": ["govinfo"]}))[1] is False

    async def test_invalidation_follows_store_pipeline(self, search_cache, content_store, change_bus):
        change_bus.subscribe(search_cache.on_document_changed)
        await search_cache.store({"query": "smith", "sources": ["courtlistener"]}, RESULTS)
        await content_store.put("courtlistener", "1", "opinion", make_document_fields(), b"new")
        assert await search_cache.lookup({"query": "smith", "sources": ["courtlistener"]}) == (
            None,
            False,
        )


class TestSweep:
    async def test_sweep_removes_only_expired(self, search_cache, clock):
        await search_cache.store({"query": "short"}, RESULTS, ttl_seconds=10)
        await search_cache.store({"query": "long"}, RESULTS, ttl_seconds=600)

        clock.advance(seconds=10)
        assert await search_cache.sweep() == 1
        assert (await search_cache.lookup({"query": "long"}))[1] is True
        assert await search_cache.sweep() == 0
