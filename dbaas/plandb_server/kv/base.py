"""
Base protocol and errors for the key-value store abstraction.

Plan records live in a flat string key space. The store only has to offer
point reads, multi-key reads and one conditional write primitive; every
higher-level guarantee (versioning, cascades, retries) is built on top of
compare_and_commit().

Invariants:
    - compare_and_commit() is atomic: either every write and delete is
      applied, or nothing is
    - The guard comparison is made against the stored value at commit
      time, never against a client-side session
    - Values are opaque strings to the store

How to change safely:
    - Protocol changes require updating all implementations
    - New backends must be tested with the interleaving tests in
      tests/unit/test_concurrency.py
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class KvError(Exception):
    """Base exception for key-value store operations."""

    pass


class KvConnectionError(KvError):
    """Connection to the key-value backend failed or was never opened."""

    pass


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for key-value store backends.

    Example:
        >>> kv = RedisKeyValueStore(config)
        >>> await kv.connect()
        >>> ok = await kv.compare_and_commit(
        ...     "plan:1", expected=None, writes={"plan:1": "{...}"}, deletes=()
        ... )
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            KvConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection and any pooled resources."""
        ...

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None if absent."""
        ...

    @abstractmethod
    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        """Return values for keys in the same order, None for absent keys."""
        ...

    @abstractmethod
    async def compare_and_commit(
        self,
        guard_key: str,
        expected: str | None,
        writes: Mapping[str, str],
        deletes: Iterable[str],
    ) -> bool:
        """Atomically apply writes and deletes if guard_key still holds expected.

        Args:
            guard_key: Key whose current value is compared
            expected: Value the guard must hold; None means it must be absent
            writes: Keys to set
            deletes: Keys to remove

        Returns:
            True if the batch was applied, False if the guard check failed
            (nothing was written in that case).

        Raises:
            KvConnectionError: If not connected
            KvError: For other backend failures
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Whether the backend currently answers requests."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has succeeded and close() was not called."""
        ...


def create_kv_store(config: ServerConfig) -> KeyValueStore:
    """Factory function to create a key-value store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate KeyValueStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import KvBackend
    from .memory import InMemoryKeyValueStore
    from .redis import RedisKeyValueStore

    if config.kv_backend == KvBackend.REDIS:
        return RedisKeyValueStore(config.redis)
    elif config.kv_backend == KvBackend.MEMORY:
        return InMemoryKeyValueStore()
    else:
        raise ValueError(f"Unsupported KV backend: {config.kv_backend}")
