"""
Plan store: create, read, patch and delete plan documents.

The store composes the pieces of this package:
- graph.decompose() / graph.reconstruct() map documents to records
- etag.compute_etag() versions every committed document
- merge.deep_merge() applies patches
- concurrency.OptimisticExecutor commits under the root record's guard

Besides one record per entity, each plan owns a member index
``plan-members:<planId>`` listing its record keys in document order.
Reads fetch exactly those keys; the store is never scanned. The index is
written and removed in the same commit as the records.

Invariants:
    - patch/delete without If-Match fail with E_PRECONDITION_REQUIRED before
      anything is read
    - A plan's records are all rewritten on every patch; records that are
      no longer part of the document are deleted in the same commit
    - Index notifications happen after the commit and never undo it

How to change safely:
    - Keep the member index in document order; array order is part of the
      ETag and reconstruct() attaches siblings in read order
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..events.base import IndexEvent, IndexOperation, IndexPublisher, IndexPublishError
from ..kv.base import KeyValueStore
from .concurrency import DEFAULT_MAX_ATTEMPTS, Mutation, OptimisticExecutor, Snapshot
from .errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PreconditionRequiredError,
)
from .etag import compute_etag
from .graph import (
    OBJECT_TYPES,
    PLAN_TYPE,
    StoredRecord,
    decompose,
    extract_all_object_ids,
    member_index_key,
    reconstruct,
    record_key,
)
from .merge import deep_merge

logger = logging.getLogger(__name__)

Validator = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class PlanResult:
    """A plan document at one version.

    Attributes:
        id: Plan objectId
        document: The full nested document
        etag: Strong ETag of the document
        last_modified: Time of the commit that produced this version (UTC)
    """

    id: str
    document: dict[str, Any]
    etag: str
    last_modified: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PlanStore:
    """Versioned persistence for plan documents.

    Attributes:
        kv: Key-value store handle (shared, long-lived)
        publisher: Index notification channel, or None to disable
        validator: Optional callable that raises DocumentValidationError
            for documents that must not be stored

    Example:
        >>> store = PlanStore(kv, publisher)
        >>> created = await store.create(plan)
        >>> patched = await store.patch(plan["objectId"], {"planType": "outOfNetwork"},
        ...                             if_match=created.etag)
        >>> await store.delete(plan["objectId"], if_match=patched.etag)
        True
    """

    def __init__(
        self,
        kv: KeyValueStore,
        publisher: IndexPublisher | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_ms: int = 0,
        validator: Validator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.kv = kv
        self.publisher = publisher
        self.validator = validator
        self._executor = OptimisticExecutor(
            kv, max_attempts=max_attempts, retry_backoff_ms=retry_backoff_ms
        )
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._executor.max_attempts

    async def create(self, document: dict[str, Any]) -> PlanResult:
        """Store a new plan.

        Raises:
            BadRequestError: If the document has no objectId, is not a
                plan, or fails validation
            ConflictError: If a plan with this objectId exists
        """
        if not isinstance(document, dict) or not document.get("objectId"):
            raise BadRequestError("missing objectId")
        plan_id = document["objectId"]
        if not isinstance(plan_id, str):
            raise BadRequestError("objectId must be a string")

        self._validate(document)

        etag = compute_etag(document)
        now = self._clock()
        records = self._decompose(plan_id, document, etag, now.isoformat(), now.isoformat())
        result = PlanResult(id=plan_id, document=document, etag=etag, last_modified=now)

        async def prepare(snapshot: Snapshot) -> Mutation:
            if snapshot.exists:
                raise ConflictError(plan_id)
            return Mutation(writes=self._writes(plan_id, records), result=result)

        await self._executor.run(record_key(PLAN_TYPE, plan_id), prepare)

        logger.info("Plan created", extra={"plan_id": plan_id, "records": len(records)})
        await self._notify(IndexOperation.INDEX, document)
        return result

    async def get(self, plan_id: str) -> PlanResult | None:
        """Reconstruct a plan, or return None if it does not exist.

        If the plan is committed to while its members are being read, the
        read starts over (bounded by max_attempts) so the document and
        ETag belong to the same version.
        """
        root_key = record_key(PLAN_TYPE, plan_id)
        values: list[str | None] = []

        for attempt in range(1, self.max_attempts + 1):
            root_raw = await self.kv.get(root_key)
            if root_raw is None:
                return None
            _, values = await self._read_members(plan_id)
            if values[0] == root_raw:
                break
            logger.debug(
                "Plan changed during read", extra={"plan_id": plan_id, "attempt": attempt}
            )

        document = reconstruct(plan_id, values)
        if document is None or values[0] is None:
            return None

        root = StoredRecord.from_json(values[0])
        return PlanResult(
            id=plan_id,
            document=document,
            etag=root.etag or compute_etag(document),
            last_modified=_parse_timestamp(root.last_modified) or self._clock(),
        )

    async def patch(
        self,
        plan_id: str,
        patch: dict[str, Any],
        if_match: str | None,
    ) -> PlanResult:
        """Deep-merge a patch into a stored plan.

        Args:
            plan_id: Plan objectId
            patch: Partial document; arrays of objectId items merge by id
            if_match: ETag the caller last saw

        Raises:
            PreconditionRequiredError: If if_match is missing
            BadRequestError: If the patch is not an object, or the merged
                document fails validation
            NotFoundError: If the plan does not exist
            PreconditionFailedError: If if_match is stale, or retries ran out
        """
        if not if_match:
            raise PreconditionRequiredError()
        if not isinstance(patch, dict):
            raise BadRequestError("patch must be an object")

        async def prepare(snapshot: Snapshot) -> Mutation:
            if not snapshot.exists:
                raise NotFoundError(plan_id)

            keys, values = await self._read_members(plan_id)
            current = reconstruct(plan_id, values)
            if current is None:
                raise NotFoundError(plan_id)

            updated = deep_merge(current, patch)
            updated["objectId"] = plan_id
            self._validate(updated)

            etag = compute_etag(updated)
            now = self._clock()
            created_at = (snapshot.record and snapshot.record.created_at) or now.isoformat()
            records = self._decompose(plan_id, updated, etag, created_at, now.isoformat())

            writes = self._writes(plan_id, records)
            return Mutation(
                writes=writes,
                deletes=[key for key in keys if key not in writes],
                result=PlanResult(id=plan_id, document=updated, etag=etag, last_modified=now),
            )

        result = await self._executor.run(record_key(PLAN_TYPE, plan_id), prepare, if_match=if_match)

        logger.info("Plan patched", extra={"plan_id": plan_id, "etag": result.etag})
        await self._notify(IndexOperation.UPDATE, result.document)
        return result

    async def delete(self, plan_id: str, if_match: str | None) -> bool:
        """Delete a plan and every record that belongs to it.

        Raises:
            PreconditionRequiredError: If if_match is missing
            NotFoundError: If the plan does not exist
            PreconditionFailedError: If if_match is stale, or retries ran out
        """
        if not if_match:
            raise PreconditionRequiredError()

        root_key = record_key(PLAN_TYPE, plan_id)
        index_key = member_index_key(plan_id)

        async def prepare(snapshot: Snapshot) -> Mutation:
            if not snapshot.exists:
                raise NotFoundError(plan_id)

            keys, values = await self._read_members(plan_id)
            doomed = dict.fromkeys(keys)
            document = reconstruct(plan_id, values)
            if document is not None:
                for ref in extract_all_object_ids(document):
                    if ref.object_type:
                        doomed[record_key(ref.object_type, ref.object_id)] = None
            doomed[root_key] = None
            doomed[index_key] = None
            return Mutation(deletes=list(doomed), result=len(doomed) - 1)

        removed = await self._executor.run(root_key, prepare, if_match=if_match)

        logger.info("Plan deleted", extra={"plan_id": plan_id, "records": removed})
        await self._notify(IndexOperation.DELETE, {"objectId": plan_id})
        return True

    async def get_object(self, object_id: str) -> dict[str, Any] | None:
        """Return the stored record of any plan member by its objectId.

        Returns:
            The record in its persisted layout, or None if no known type
            has a record with this id
        """
        keys = [record_key(object_type, object_id) for object_type in OBJECT_TYPES]
        for key, raw in zip(keys, await self.kv.mget(keys)):
            if raw is None:
                continue
            try:
                return StoredRecord.from_json(raw).to_dict()
            except ValueError as e:
                logger.warning("Skipping malformed record", extra={"key": key, "error": str(e)})
        return None

    async def _read_members(self, plan_id: str) -> tuple[list[str], list[str | None]]:
        """Read the member index, then every member. Root is always first."""
        root_key = record_key(PLAN_TYPE, plan_id)
        keys = [root_key]

        index_raw = await self.kv.get(member_index_key(plan_id))
        if index_raw is not None:
            try:
                listed = json.loads(index_raw)
            except ValueError:
                logger.warning("Member index is malformed", extra={"plan_id": plan_id})
                listed = []
            if isinstance(listed, list):
                keys.extend(key for key in listed if isinstance(key, str) and key != root_key)

        return keys, await self.kv.mget(keys)

    def _decompose(
        self,
        plan_id: str,
        document: dict[str, Any],
        etag: str,
        created_at: str,
        last_modified: str,
    ) -> dict[str, StoredRecord]:
        if document.get("objectType") != PLAN_TYPE:
            raise BadRequestError(f"objectType of plan {plan_id!r} must be {PLAN_TYPE!r}")
        try:
            return decompose(
                document, etag=etag, created_at=created_at, last_modified=last_modified
            )
        except ValueError as e:
            raise BadRequestError(str(e)) from e

    def _writes(self, plan_id: str, records: dict[str, StoredRecord]) -> dict[str, str]:
        writes = {key: record.to_json() for key, record in records.items()}
        writes[member_index_key(plan_id)] = json.dumps(list(records))
        return writes

    def _validate(self, document: dict[str, Any]) -> None:
        if self.validator is not None:
            self.validator(document)

    async def _notify(self, operation: IndexOperation, data: dict[str, Any]) -> None:
        if self.publisher is None:
            return
        event = IndexEvent.create(operation, data)
        try:
            await self.publisher.publish(event)
        except IndexPublishError as e:
            logger.warning(
                "Failed to publish index event",
                extra={"operation": operation.value, "message_id": event.message_id, "error": str(e)},
            )
        except Exception as e:
            logger.error(
                f"Index publisher raised unexpectedly: {e}",
                exc_info=True,
                extra={"operation": operation.value, "message_id": event.message_id},
            )
