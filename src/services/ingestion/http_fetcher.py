"""Base class for fetchers that page through a JSON HTTP API.

Handles the plumbing every REST-backed source needs: rate-limit tokens
from the source registry, retries with exponential backoff on network
errors and 5xx/429 responses, and translation of the final outcome into
TransientFetchError / PermanentFetchError. Subclasses only describe the
request for a page and how to parse its body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.exceptions import PermanentFetchError, TransientFetchError

if TYPE_CHECKING:
    from src.models.domain import FetchPage, SourceInfo
    from src.services.source_registry import TokenBucket

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


class _RetryableResponse(Exception):
    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class JsonApiFetcher:
    """Rate-limited, retrying page fetcher for JSON APIs.

    Subclasses implement ``build_request`` and ``parse_page``.
    """

    def __init__(
        self,
        source: SourceInfo,
        limiter: TokenBucket,
        *,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._source = source
        self._limiter = limiter
        self._base_url = source.base_url.rstrip("/")
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def source(self) -> SourceInfo:
        return self._source

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    def build_request(self, collection: str, cursor: str | None) -> tuple[str, dict[str, Any]]:
        """Return ``(url_or_path, query_params)`` for the page after ``cursor``."""
        raise NotImplementedError

    def parse_page(self, collection: str, data: Any) -> FetchPage:
        """Turn a decoded JSON body into a FetchPage."""
        raise NotImplementedError

    async def fetch(self, collection: str, cursor: str | None) -> FetchPage:
        url, params = self.build_request(collection, cursor)
        if not url.startswith(("http://", "https://")):
            url = f"{self._base_url}/{url.lstrip('/')}"

        try:
            data = await self._get(url, params)
        except _RetryableResponse as exc:
            msg = f"{self._source.name} returned HTTP {exc.response.status_code}"
            raise TransientFetchError(
                msg, details={"url": url, "status": exc.response.status_code}
            ) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"{self._source.name} returned HTTP {exc.response.status_code}"
            raise PermanentFetchError(
                msg, details={"url": url, "status": exc.response.status_code}
            ) from exc
        except httpx.TransportError as exc:
            msg = f"{self._source.name} connection error: {exc}"
            raise TransientFetchError(msg, details={"url": url}) from exc
        except ValueError as exc:
            msg = f"{self._source.name} returned a body that is not valid JSON"
            raise PermanentFetchError(msg, details={"url": url}) from exc

        page = self.parse_page(collection, data)
        logger.info(
            "page_fetched",
            source_id=self._source.name,
            collection=collection,
            records=len(page.records),
            has_more=page.has_more,
        )
        return page

    @retry(
        retry=retry_if_exception_type((_RetryableResponse, httpx.TransportError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, url: str, params: dict[str, Any]) -> Any:
        """Rate-limited GET with retry. Returns parsed JSON."""
        await self._limiter.acquire()

        logger.debug("source_request", source_id=self._source.name, url=url, params=params)
        response = await self._client.get(url, headers=self._headers, params=params or None)

        if response.status_code in _RETRY_STATUSES:
            logger.warning(
                "source_request_retryable",
                source_id=self._source.name,
                status=response.status_code,
                retry_after=response.headers.get("Retry-After"),
            )
            raise _RetryableResponse(response)

        response.raise_for_status()
        return response.json()
