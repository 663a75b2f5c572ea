"""Custom exception hierarchy for the docket sync engine.

Every service-layer error inherits from PipelineError, giving the API
layer and the job worker a single base class to catch and translate.
Subclasses carry domain-specific context in the details dict.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)


class NotFoundError(PipelineError):
    """Raised when a requested entity does not exist."""


class ConflictError(PipelineError):
    """Raised when a concurrent writer collided on the same content key."""


class AlreadyRunningError(PipelineError):
    """Raised when an ingestion run is already active for a collection."""


class InvalidStateError(PipelineError):
    """Raised on an illegal state transition, e.g. cancelling a running job."""


class FetchError(PipelineError):
    """Base for errors raised by source fetchers."""


class TransientFetchError(FetchError):
    """Fetch failed for a reason that may clear up; the job is retried."""


class PermanentFetchError(FetchError):
    """Fetch failed for a reason retrying will not fix."""


class ExhaustedRetriesError(PipelineError):
    """Raised when a job has used up its attempts and is terminally failed."""


class ContentIntegrityError(PipelineError):
    """Raised when a stored body no longer matches its content digest."""


class DatabaseError(PipelineError):
    """Raised when the configured database cannot perform an operation."""


class InvalidJobError(PipelineError):
    """Raised when a job's type is unknown or its payload is malformed."""
