"""
Search-index notification channel for PlanDB.

This module provides a pluggable publisher interface supporting:
- Kafka/Redpanda (production)
- In-memory (for testing)

Invariants:
    - Notifications are emitted only after the store commit succeeded
    - A failed notification never rolls back a commit
"""

from .base import (
    IndexConnectionError,
    IndexEvent,
    IndexOperation,
    IndexPublisher,
    IndexPublishError,
    create_index_publisher,
)
from .kafka import KafkaIndexPublisher
from .memory import InMemoryIndexPublisher

__all__ = [
    # Protocol and types
    "IndexPublisher",
    "IndexEvent",
    "IndexOperation",
    "IndexPublishError",
    "IndexConnectionError",
    # Factory
    "create_index_publisher",
    # Implementations
    "KafkaIndexPublisher",
    "InMemoryIndexPublisher",
]
