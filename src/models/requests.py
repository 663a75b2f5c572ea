"""API request schemas.

Every inbound request body is validated through one of these models.
No raw dicts ever reach the service layer.
"""

import base64
import binascii
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.domain import DocumentFields, DocumentKind, JobType

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentPutRequest(BaseModel):
    """Store one document (insert or update in place)."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1)
    kind: DocumentKind
    fields: DocumentFields
    body: str = Field(..., description="Canonical body, UTF-8 text or base64")
    body_encoding: Literal["utf-8", "base64"] = "utf-8"

    @model_validator(mode="after")
    def _check_body(self) -> "DocumentPutRequest":
        if self.body_encoding == "base64":
            try:
                base64.b64decode(self.body, validate=True)
            except (binascii.Error, ValueError) as exc:
                msg = "body is not valid base64"
                raise ValueError(msg) from exc
        return self

    def body_bytes(self) -> bytes:
        if self.body_encoding == "base64":
            return base64.b64decode(self.body, validate=True)
        return self.body.encode("utf-8")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    """Enqueue a background job."""

    model_config = ConfigDict(frozen=True)

    job_type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=0, ge=-100, le=100)
    max_attempts: int | None = Field(default=None, ge=1, le=50)
    delay_seconds: float = Field(default=0.0, ge=0.0)


class SyncTriggerRequest(BaseModel):
    """Optional body for triggering a sync run."""

    model_config = ConfigDict(frozen=True)

    priority: int = Field(default=10, ge=-100, le=100)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchRequest(BaseModel):
    """Filtered document search; identical requests share a cache entry."""

    model_config = ConfigDict(frozen=True)

    query: str | None = Field(default=None, max_length=500)
    sources: list[str] | None = Field(
        default=None,
        min_length=1,
        description="Restrict to these sources, e.g. ['courtlistener']",
    )
    kinds: list[DocumentKind] | None = Field(default=None, min_length=1)
    court: str | None = None
    docket_number: str | None = None
    page: int = Field(default=1, ge=1, le=1000)
    page_size: int | None = Field(default=None, ge=1, le=100)
    ttl_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Override the cache TTL for this query's entry",
    )

    def cache_params(self, page_size: int) -> dict[str, Any]:
        """Parameters that identify this query's result page."""
        params = self.model_dump(mode="json", exclude={"ttl_seconds", "page_size"})
        params["page_size"] = page_size
        return params
