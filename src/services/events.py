"""In-process change notifications.

The content store publishes DocumentChanged after it commits new
content; the search cache subscribes to drop stale pages. Delivery is
best-effort: a failing subscriber is logged and never blocks ingestion.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from src.models.domain import DocumentChanged

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

ChangeHandler = Callable[[DocumentChanged], Awaitable[None]]


class ChangeBus:
    """Fan-out of document change notifications to async subscribers."""

    def __init__(self) -> None:
        self._handlers: list[ChangeHandler] = []

    def subscribe(self, handler: ChangeHandler) -> None:
        """Register a handler; duplicates are ignored."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    async def publish(self, event: DocumentChanged) -> int:
        """Deliver an event to every subscriber.

        Returns the number of handlers that completed without error.
        """
        delivered = 0
        for handler in self._handlers:
            try:
                await handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "change_handler_failed",
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    source_id=event.source_id,
                    document_id=event.document_id,
                )
        return delivered
