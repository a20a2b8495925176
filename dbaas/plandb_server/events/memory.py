"""
In-memory index publisher for testing.

Collects published events in a list so tests can assert on the
notifications a plan store emitted, and can inject a failure to exercise
the best-effort path.
"""

from __future__ import annotations

import asyncio
import logging

from .base import IndexConnectionError, IndexEvent, IndexOperation, IndexPublishError

logger = logging.getLogger(__name__)


class InMemoryIndexPublisher:
    """In-memory implementation of IndexPublisher.

    Example:
        >>> publisher = InMemoryIndexPublisher()
        >>> await publisher.connect()
        >>> await publisher.publish(event)
        >>> publisher.events[0].operation
        <IndexOperation.INDEX: 'index'>
    """

    def __init__(self) -> None:
        self.events: list[IndexEvent] = []
        self._connected = False
        self._pending_failure: Exception | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def publish(self, event: IndexEvent) -> None:
        """Record the event, or raise the injected failure once."""
        if not self._connected:
            raise IndexConnectionError("Not connected")

        await asyncio.sleep(0)

        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise failure

        self.events.append(event)
        logger.debug("Index event recorded", extra={"message_id": event.message_id})

    async def health_check(self) -> bool:
        return self._connected

    # Testing helpers

    def fail_next(self, error: Exception | None = None) -> None:
        """Make the next publish() raise (testing helper)."""
        self._pending_failure = error or IndexPublishError("injected failure")

    def operations(self) -> list[IndexOperation]:
        """Operations of all recorded events in publish order (testing helper)."""
        return [event.operation for event in self.events]
