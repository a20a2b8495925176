"""
Redis key-value store implementation.

Works with Redis, Valkey, and any server speaking the Redis protocol with
Lua scripting enabled. All keys of one commit must live on the same node,
so Redis Cluster is not supported.

Invariants:
    - compare_and_commit() runs as a single Lua script, so the guard read
      and the writes cannot be interleaved with other clients
    - The client pool is shared; a connection is held only for the
      duration of one command

How to change safely:
    - Any change to the commit script must keep the KEYS/ARGV layout in
      sync with compare_and_commit()
    - Test against a real server before deploying
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from redis import asyncio as redis_async
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .base import KvConnectionError, KvError

logger = logging.getLogger(__name__)

# KEYS[1]           guard key
# KEYS[2..n+1]      keys to set, values in ARGV[4..n+3]
# KEYS[n+2..]       keys to delete
# ARGV[1]           "1" if the guard must be absent
# ARGV[2]           expected guard value
# ARGV[3]           n
COMMIT_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
    if current then
        return 0
    end
elseif current ~= ARGV[2] then
    return 0
end
local n = tonumber(ARGV[3])
for i = 1, n do
    redis.call('SET', KEYS[1 + i], ARGV[3 + i])
end
for i = n + 2, #KEYS do
    redis.call('DEL', KEYS[i])
end
return 1
"""


class RedisKeyValueStore:
    """Redis implementation of KeyValueStore protocol.

    Uses redis.asyncio with a connection pool. The conditional commit is a
    registered Lua script (EVALSHA with automatic reload).

    Example:
        >>> config = RedisConfig(url="redis://localhost:6379/0")
        >>> kv = RedisKeyValueStore(config)
        >>> await kv.connect()
        >>> await kv.get("plan:12xvxc345ssdsds-508")
    """

    def __init__(self, config: Any) -> None:
        """Initialize Redis store.

        Args:
            config: RedisConfig instance with connection settings
        """
        self.config = config
        self._client: redis_async.Redis | None = None
        self._commit_script: Any = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to Redis."""
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """Create the client pool and verify the server answers.

        Raises:
            KvConnectionError: If connection fails
        """
        if self._connected:
            return

        try:
            self._client = redis_async.Redis.from_url(
                self.config.url,
                decode_responses=True,
                socket_timeout=self.config.socket_timeout,
                max_connections=self.config.max_connections,
            )
            await self._client.ping()
            self._commit_script = self._client.register_script(COMMIT_SCRIPT)
            self._connected = True
            logger.info("Connected to Redis", extra={"max_connections": self.config.max_connections})
        except RedisError as e:
            self._connected = False
            raise KvConnectionError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """Close the client pool."""
        if self._client:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis client: {e}")
            self._client = None

        self._connected = False
        logger.info("Redis connection closed")

    async def get(self, key: str) -> str | None:
        client = self._require_client()
        try:
            return await client.get(key)
        except RedisError as e:
            raise self._wrap(e, "GET") from e

    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        if not keys:
            return []
        client = self._require_client()
        try:
            return await client.mget(list(keys))
        except RedisError as e:
            raise self._wrap(e, "MGET") from e

    async def compare_and_commit(
        self,
        guard_key: str,
        expected: str | None,
        writes: Mapping[str, str],
        deletes: Iterable[str],
    ) -> bool:
        """Run the commit script.

        Returns:
            True if the script applied the batch, False if the guard moved.
        """
        self._require_client()
        write_keys = list(writes)
        keys = [guard_key, *write_keys, *deletes]
        args = [
            "1" if expected is None else "0",
            expected or "",
            str(len(write_keys)),
            *(writes[key] for key in write_keys),
        ]

        try:
            result = await self._commit_script(keys=keys, args=args)
        except RedisError as e:
            raise self._wrap(e, "EVALSHA") from e

        applied = int(result) == 1
        if not applied:
            logger.debug("Guard check failed", extra={"guard_key": guard_key})
        return applied

    async def health_check(self) -> bool:
        """Check if the Redis connection is healthy."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    def _require_client(self) -> redis_async.Redis:
        if not self._client:
            raise KvConnectionError("Not connected to Redis")
        return self._client

    def _wrap(self, error: RedisError, command: str) -> KvError:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self._connected = False
            return KvConnectionError(f"Redis {command} failed: {error}")
        return KvError(f"Redis {command} failed: {error}")
