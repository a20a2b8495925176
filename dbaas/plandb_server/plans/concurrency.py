"""
Optimistic concurrency control around a plan's root record.

Every mutation is a read-compute-commit cycle:

1. Read the guard (root) record and remember its raw stored value.
2. If the caller supplied an If-Match ETag and it differs from the stored
   one, fail with E_PRECONDITION at once. That is a stale client, not a
   race, so it is never retried.
3. Let the caller compute the writes from what was read.
4. Commit with compare_and_commit(): the batch lands only if the root
   record still holds the value read in step 1.
5. If another writer committed in between, start over from step 1, up to
   max_attempts cycles in total; then fail with E_PRECONDITION.

Comparing the whole raw root value is at least as strict as comparing its
etag: every commit rewrites lastModified, so any interleaved commit moves
the guard even when the content (and so the ETag) is unchanged.

Invariants:
    - No lock is held across an await; the only mutual exclusion is the
      store-side compare_and_commit()
    - A failed cycle writes nothing
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..kv.base import KeyValueStore
from .errors import PreconditionFailedError
from .graph import StoredRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Snapshot:
    """The guard record as read at the start of a cycle.

    Attributes:
        key: Guard key
        raw: Stored value, None if the key is absent
        record: Parsed record, None if absent or unparseable
    """

    key: str
    raw: str | None
    record: StoredRecord | None

    @property
    def exists(self) -> bool:
        return self.raw is not None

    @property
    def etag(self) -> str | None:
        return self.record.etag if self.record else None


@dataclass
class Mutation:
    """What one cycle wants to commit, and what run() returns if it lands."""

    writes: dict[str, str] = field(default_factory=dict)
    deletes: list[str] = field(default_factory=list)
    result: Any = None


Prepare = Callable[[Snapshot], Awaitable[Mutation]]


class OptimisticExecutor:
    """Runs read-compute-commit cycles with bounded retry.

    Attributes:
        kv: Store handle used for reads and the conditional commit
        max_attempts: Cycles tried before giving up
        retry_backoff_ms: Upper bound of the random sleep between cycles

    Example:
        >>> executor = OptimisticExecutor(kv)
        >>> async def prepare(snapshot):
        ...     return Mutation(writes={snapshot.key: new_value}, result=new_value)
        >>> await executor.run("plan:1", prepare, if_match='"abc"')
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_ms: int = 0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.kv = kv
        self.max_attempts = max_attempts
        self.retry_backoff_ms = retry_backoff_ms

    async def read(self, key: str) -> Snapshot:
        """Read the guard record."""
        raw = await self.kv.get(key)
        record = None
        if raw is not None:
            try:
                record = StoredRecord.from_json(raw)
            except ValueError as e:
                logger.warning("Guard record is malformed", extra={"key": key, "error": str(e)})
        return Snapshot(key=key, raw=raw, record=record)

    async def run(
        self,
        guard_key: str,
        prepare: Prepare,
        if_match: str | None = None,
    ) -> Any:
        """Run cycles until one commits.

        Args:
            guard_key: Key of the root record
            prepare: Computes the mutation from a snapshot; may raise to abort
            if_match: ETag the stored root must carry, if any. Only checked
                when the root exists; prepare() decides what absence means.

        Returns:
            The committed mutation's result

        Raises:
            PreconditionFailedError: On ETag mismatch, or once max_attempts
                cycles lost the race
            Whatever prepare() raises
        """
        for attempt in range(1, self.max_attempts + 1):
            snapshot = await self.read(guard_key)

            if if_match is not None and snapshot.exists and snapshot.etag != if_match:
                raise PreconditionFailedError(current_etag=snapshot.etag)

            mutation = await prepare(snapshot)

            committed = await self.kv.compare_and_commit(
                guard_key, snapshot.raw, mutation.writes, mutation.deletes
            )
            if committed:
                if attempt > 1:
                    logger.debug(
                        "Committed after retry",
                        extra={"guard_key": guard_key, "attempt": attempt},
                    )
                return mutation.result

            logger.debug(
                "Concurrent commit detected",
                extra={"guard_key": guard_key, "attempt": attempt},
            )
            if attempt < self.max_attempts:
                await self._backoff()

        logger.warning(
            "Giving up after concurrent commits",
            extra={"guard_key": guard_key, "attempts": self.max_attempts},
        )
        raise PreconditionFailedError(exhausted=True)

    async def _backoff(self) -> None:
        if self.retry_backoff_ms > 0:
            await asyncio.sleep(random.uniform(0, self.retry_backoff_ms / 1000))
