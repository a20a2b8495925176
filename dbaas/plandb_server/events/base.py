"""
Base protocol and types for search-index notifications.

After every committed create/patch/delete the plan store publishes an
IndexEvent so an out-of-process worker can keep the search index in step.
The link is best-effort: a publish failure is reported to the caller of
publish(), which logs it and moves on.

Invariants:
    - Events for the same plan use the plan id as partition key, so a
      single consumer sees them in commit order
    - The wire form is a JSON object {operation, data, timestamp, messageId}

How to change safely:
    - Consumers parse the wire form; add fields, never rename them
    - Protocol changes require updating all implementations
"""

from __future__ import annotations

import json
import logging
import time
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class IndexPublishError(Exception):
    """Publishing an index event failed."""

    pass


class IndexConnectionError(IndexPublishError):
    """The notification backend is unreachable or was never connected."""

    pass


class IndexOperation(Enum):
    """What the indexing worker should do with the event payload."""

    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class IndexEvent:
    """A notification for the indexing worker.

    Attributes:
        operation: index, update or delete
        data: Full plan document, or {"objectId": id} for deletes
        timestamp: ISO-8601 creation time
        message_id: "<operation>-<objectId>-<unix ms>"
    """

    operation: IndexOperation
    data: dict[str, Any]
    timestamp: str
    message_id: str

    @classmethod
    def create(cls, operation: IndexOperation, data: dict[str, Any]) -> IndexEvent:
        """Build an event stamped with the current time."""
        now = datetime.now(timezone.utc)
        object_id = data.get("objectId", "")
        return cls(
            operation=operation,
            data=data,
            timestamp=now.isoformat(),
            message_id=f"{operation.value}-{object_id}-{int(time.time() * 1000)}",
        )

    @property
    def key(self) -> str:
        """Partition key (the plan id)."""
        return str(self.data.get("objectId", ""))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {
            "operation": self.operation.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexEvent:
        """Create from the wire dictionary."""
        return cls(
            operation=IndexOperation(data["operation"]),
            data=data["data"],
            timestamp=data["timestamp"],
            message_id=data["messageId"],
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


@runtime_checkable
class IndexPublisher(Protocol):
    """Protocol for index notification backends.

    Example:
        >>> publisher = KafkaIndexPublisher(config)
        >>> await publisher.connect()
        >>> await publisher.publish(IndexEvent.create(IndexOperation.INDEX, plan))
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            IndexConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Flush pending events and release resources."""
        ...

    @abstractmethod
    async def publish(self, event: IndexEvent) -> None:
        """Publish one event, returning once the backend acknowledged it.

        Raises:
            IndexConnectionError: If not connected
            IndexPublishError: For other failures
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_index_publisher(config: ServerConfig) -> IndexPublisher | None:
    """Factory function to create a publisher from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate IndexPublisher, or None when indexing is disabled

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import IndexBackend
    from .kafka import KafkaIndexPublisher
    from .memory import InMemoryIndexPublisher

    if config.index_backend == IndexBackend.KAFKA:
        return KafkaIndexPublisher(config.kafka)
    elif config.index_backend == IndexBackend.MEMORY:
        return InMemoryIndexPublisher()
    elif config.index_backend == IndexBackend.DISABLED:
        return None
    else:
        raise ValueError(f"Unsupported index backend: {config.index_backend}")
