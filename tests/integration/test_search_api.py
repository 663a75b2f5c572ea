"""Integration tests for POST /api/v1/search and its cache."""

import pytest

from tests.conftest import make_document_fields

pytestmark = pytest.mark.integration

API = "/api/v1"


async def _put(client, external_id: str, case_name: str, body: str, source_id="courtlistener"):
    response = await client.put(
        f"{API}/documents",
        json={
            "source_id": source_id,
            "external_id": external_id,
            "kind": "opinion",
            "fields": make_document_fields(case_name=case_name).model_dump(mode="json"),
            "body": body,
        },
    )
    assert response.status_code == 200


class TestSearch:
    async def test_second_identical_search_is_cached(self, client):
        await _put(client, "1", "Commonwealth v. Alvarez", "a")
        await _put(client, "2", "Commonwealth v. Brown", "b")

        first = await client.post(f"{API}/search", json={"query": "alvarez"})
        assert first.status_code == 200
        body = first.json()
        assert body["cached"] is False
        assert body["result_count"] == 1
        assert body["results"][0]["case_name"] == "Commonwealth v. Alvarez"
        assert body["page_size"] == 25

        second = await client.post(f"{API}/search", json={"query": " alvarez "})
        assert second.json()["cached"] is True
        assert second.json()["fingerprint"] == body["fingerprint"]
        assert second.json()["results"] == body["results"]

    async def test_new_content_invalidates_cached_pages(self, client):
        await _put(client, "1", "Commonwealth v. Alvarez", "a")
        request = {"query": "alvarez", "sources": ["courtlistener"]}
        await client.post(f"{API}/search", json=request)

        await _put(client, "2", "Alvarez v. Pennsylvania", "b")
        refreshed = (await client.post(f"{API}/search", json=request)).json()
        assert refreshed["cached"] is False
        assert refreshed["result_count"] == 2

    async def test_other_source_change_keeps_scoped_entry(self, client):
        await _put(client, "1", "Commonwealth v. Alvarez", "a")
        request = {"query": "alvarez", "sources": ["courtlistener"]}
        await client.post(f"{API}/search", json=request)

        await _put(client, "g1", "Alvarez Rulemaking", "g", source_id="govinfo")
        assert (await client.post(f"{API}/search", json=request)).json()["cached"] is True

    async def test_pagination(self, client):
        for i in range(3):
            await _put(client, str(i), f"Alvarez {i}", f"body {i}")
        page = (
            await client.post(f"{API}/search", json={"query": "alvarez", "page": 2, "page_size": 2})
        ).json()
        assert page["page"] == 2
        assert page["result_count"] == 1

    async def test_expired_entries_swept(self, client, clock):
        await client.post(f"{API}/search", json={"query": "x", "ttl_seconds": 5})
        clock.advance(seconds=6)
        response = await client.post(f"{API}/search/cache/sweep")
        assert response.json() == {"removed": 1}

    async def test_invalid_page_size(self, client):
        response = await client.post(f"{API}/search", json={"page_size": 1000})
        assert response.status_code == 422
