"""Tests for the fetcher registry and the JSON API fetcher base class.

HTTP traffic is served by httpx.MockTransport; tenacity's wait is
patched out so retries run instantly.
"""

from typing import Any

import httpx
import pytest
from tenacity import wait_none

from src.core.exceptions import NotFoundError, PermanentFetchError, TransientFetchError
from src.models.domain import FetchPage, SourceInfo
from src.services.ingestion.fetcher import FetcherRegistry, load_object
from src.services.ingestion.http_fetcher import JsonApiFetcher
from src.services.job_queue import compute_backoff
from src.services.source_registry import SourceRegistry, TokenBucket
from tests.conftest import FakeFetcher, make_record

SOURCE = SourceInfo(
    name="courtlistener",
    base_url="https://cl.test/api/rest/v3/",
    api_version="v3",
    rate_limit_per_window=60,
)


class OpinionsFetcher(JsonApiFetcher):
    def build_request(self, collection: str, cursor: str | None) -> tuple[str, dict[str, Any]]:
        return f"{collection}/", ({"cursor": cursor} if cursor else {})

    def parse_page(self, collection: str, data: Any) -> FetchPage:
        return FetchPage(
            records=[make_record(str(item["id"])) for item in data["results"]],
            next_cursor=data.get("next"),
            has_more=data.get("next") is not None,
        )


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch):
    monkeypatch.setattr(JsonApiFetcher._get.retry, "wait", wait_none())


def _fetcher(handler) -> tuple[OpinionsFetcher, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return OpinionsFetcher(SOURCE, TokenBucket(rate=1000), http_client=client), requests


# ===================================================================
# Registry
# ===================================================================


class TestFetcherRegistry:
    def test_register_and_get(self):
        registry = FetcherRegistry()
        fetcher = FakeFetcher({})
        registry.register("courtlistener", fetcher)
        assert registry.get("courtlistener") is fetcher
        assert "courtlistener" in registry
        assert registry.sources == ["courtlistener"]

    def test_register_rejects_non_fetcher(self):
        with pytest.raises(TypeError):
            FetcherRegistry().register("courtlistener", object())  # type: ignore[arg-type]

    def test_get_unregistered(self):
        with pytest.raises(NotFoundError):
            FetcherRegistry().get("govinfo")

    def test_from_import_paths_calls_factory(self, test_settings):
        sources = SourceRegistry.from_settings(test_settings)
        registry = FetcherRegistry.from_import_paths(
            {"courtlistener": "src.services.ingestion.http_fetcher:JsonApiFetcher"},
            sources,
        )
        fetcher = registry.get("courtlistener")
        assert isinstance(fetcher, JsonApiFetcher)
        assert fetcher.source.name == "courtlistener"

    def test_from_import_paths_unknown_source(self, test_settings):
        sources = SourceRegistry.from_settings(test_settings)
        with pytest.raises(NotFoundError):
            FetcherRegistry.from_import_paths(
                {"pacer": "src.services.ingestion.http_fetcher:JsonApiFetcher"}, sources
            )


class TestLoadObject:
    def test_loads_attribute(self):
        assert load_object("src.services.job_queue:compute_backoff") is compute_backoff

    def test_rejects_malformed_path(self):
        with pytest.raises(ValueError):
            load_object("src.services.job_queue")

    def test_missing_attribute(self):
        with pytest.raises(ImportError):
            load_object("src.services.job_queue:nope")


# ===================================================================
# JsonApiFetcher
# ===================================================================


class TestJsonApiFetcher:
    async def test_fetches_and_parses_page(self):
        fetcher, requests = _fetcher(
            lambda req: httpx.Response(200, json={"results": [{"id": 1}, {"id": 2}], "next": "c2"})
        )
        page = await fetcher.fetch("opinions", "c1")

        assert [r.external_id for r in page.records] == ["1", "2"]
        assert page.next_cursor == "c2"
        assert page.has_more is True
        assert len(requests) == 1
        assert requests[0].url.path == "/api/rest/v3/opinions/"
        assert requests[0].url.params["cursor"] == "c1"
        assert requests[0].headers["Accept"] == "application/json"

    async def test_retries_server_errors(self):
        responses = iter(
            [httpx.Response(503), httpx.Response(200, json={"results": [], "next": None})]
        )
        fetcher, requests = _fetcher(lambda req: next(responses))
        page = await fetcher.fetch("opinions", None)
        assert page.records == []
        assert page.has_more is False
        assert len(requests) == 2

    async def test_persistent_rate_limit_is_transient(self):
        fetcher, requests = _fetcher(lambda req: httpx.Response(429))
        with pytest.raises(TransientFetchError) as exc_info:
            await fetcher.fetch("opinions", None)
        assert exc_info.value.details["status"] == 429
        assert len(requests) == 3

    async def test_connection_error_is_transient(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher, requests = _fetcher(refuse)
        with pytest.raises(TransientFetchError):
            await fetcher.fetch("opinions", None)
        assert len(requests) == 3

    async def test_client_error_is_permanent(self):
        fetcher, requests = _fetcher(lambda req: httpx.Response(404))
        with pytest.raises(PermanentFetchError) as exc_info:
            await fetcher.fetch("opinions", None)
        assert exc_info.value.details["status"] == 404
        assert len(requests) == 1

    async def test_invalid_json_is_permanent(self):
        fetcher, _ = _fetcher(lambda req: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(PermanentFetchError):
            await fetcher.fetch("opinions", None)

    async def test_absolute_urls_pass_through(self):
        class AbsoluteFetcher(OpinionsFetcher):
            def build_request(self, collection, cursor):
                return "https://mirror.test/opinions", {}

        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"results": []})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = AbsoluteFetcher(SOURCE, TokenBucket(rate=1000), http_client=client)
        await fetcher.fetch("opinions", None)
        assert str(requests[0].url) == "https://mirror.test/opinions"
