"""
In-memory key-value store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a Redis server

Invariants:
    - All data is lost on process exit
    - compare_and_commit() has the same atomicity as the Redis backend
    - Every call awaits at least once, so concurrent coroutines interleave
      at the same points they would against a network store

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with KeyValueStore protocol
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence

from .base import KvConnectionError

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore:
    """In-memory implementation of KeyValueStore for testing.

    Attributes:
        latency: Seconds each call sleeps before touching data (0 still yields)
        commit_count: Number of successful compare_and_commit() calls
        rejected_count: Number of compare_and_commit() calls that lost the race

    Example:
        >>> kv = InMemoryKeyValueStore()
        >>> await kv.connect()
        >>> await kv.compare_and_commit("a", None, {"a": "1"}, ())
        True
        >>> await kv.get("a")
        '1'
    """

    def __init__(self, latency: float = 0.0) -> None:
        """Initialize in-memory store.

        Args:
            latency: Simulated round-trip time per call
        """
        self.latency = latency
        self.commit_count = 0
        self.rejected_count = 0
        self._data: dict[str, str] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryKeyValueStore connected")

    async def close(self) -> None:
        """Close the store. Data is kept so a reconnect sees it again."""
        self._connected = False
        logger.debug("InMemoryKeyValueStore closed")

    async def get(self, key: str) -> str | None:
        await self._round_trip()
        return self._data.get(key)

    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        await self._round_trip()
        return [self._data.get(key) for key in keys]

    async def compare_and_commit(
        self,
        guard_key: str,
        expected: str | None,
        writes: Mapping[str, str],
        deletes: Iterable[str],
    ) -> bool:
        """Apply the batch under the store lock if the guard still matches."""
        await self._round_trip()

        async with self._lock:
            if self._data.get(guard_key) != expected:
                self.rejected_count += 1
                logger.debug("Guard check failed", extra={"guard_key": guard_key})
                return False

            for key, value in writes.items():
                self._data[key] = value
            for key in deletes:
                self._data.pop(key, None)
            self.commit_count += 1

        return True

    async def health_check(self) -> bool:
        return self._connected

    async def _round_trip(self) -> None:
        if not self._connected:
            raise KvConnectionError("Not connected")
        await asyncio.sleep(self.latency)

    # Testing helpers

    def keys(self) -> list[str]:
        """All stored keys in insertion order (testing helper)."""
        return list(self._data)

    def dump(self) -> dict[str, str]:
        """Copy of the whole key space (testing helper)."""
        return dict(self._data)

    def put(self, key: str, value: str) -> None:
        """Write a raw value bypassing the guard (testing helper)."""
        self._data[key] = value
