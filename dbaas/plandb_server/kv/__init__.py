"""
Key-value store abstraction for PlanDB.

This module provides a pluggable backend interface supporting:
- Redis / Valkey (production)
- In-memory (for testing)

The store is handed to PlanStore explicitly at construction; there is no
process-wide connection object.

Invariants:
    - compare_and_commit() is the only write path
    - Backend exceptions are wrapped in KvError subclasses
"""

from .base import KeyValueStore, KvConnectionError, KvError, create_kv_store
from .memory import InMemoryKeyValueStore
from .redis import RedisKeyValueStore

__all__ = [
    # Protocol and errors
    "KeyValueStore",
    "KvError",
    "KvConnectionError",
    # Factory
    "create_kv_store",
    # Implementations
    "RedisKeyValueStore",
    "InMemoryKeyValueStore",
]
