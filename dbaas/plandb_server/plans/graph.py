"""
Decomposition of plan documents into flat records, and the way back.

A plan document is a tree. Every node of the tree that carries an
``objectId`` is stored under its own key ``<objectType>:<objectId>`` as::

    {"data": <own fields>, "parentId": <id or null>, "objectType": <type>}

The root record additionally holds ``etag``, ``createdAt`` and
``lastModified``. Child objects are removed from their parent's ``data``;
on read they are re-attached under a field name chosen by CHILD_SLOTS
from the (child type, parent type) pair.

Invariants:
    - Exactly one record per objectId-bearing entity
    - parentId is the objectId of the nearest enclosing entity
    - reconstruct(decompose(d)) equals d up to object key order, provided
      the records are supplied in the order decompose() produced them
    - Malformed records are skipped, never fatal

How to change safely:
    - New child types need a CHILD_SLOTS entry for every parent type they
      can appear under; otherwise they come back under their type name
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

PLAN_TYPE = "plan"

# Every type that may own a record key, in lookup order for get_object().
OBJECT_TYPES = ("plan", "membercostshare", "planservice", "service")

MEMBER_INDEX_PREFIX = "plan-members"


@dataclass(frozen=True)
class ChildSlot:
    """Where a child record is attached in its parent's document."""

    field_name: str
    is_array: bool = False


# (child objectType, parent objectType) -> slot
CHILD_SLOTS: dict[tuple[str, str], ChildSlot] = {
    ("membercostshare", "plan"): ChildSlot("planCostShares"),
    ("planservice", "plan"): ChildSlot("linkedPlanServices", is_array=True),
    ("service", "planservice"): ChildSlot("linkedService"),
    ("membercostshare", "planservice"): ChildSlot("planserviceCostShares"),
}


def child_slot(child_type: str, parent_type: str) -> ChildSlot:
    """Resolve the field a child is attached under.

    Unknown pairs fall back to a scalar field named after the child type.
    """
    return CHILD_SLOTS.get((child_type, parent_type)) or ChildSlot(child_type)


def record_key(object_type: str, object_id: str) -> str:
    return f"{object_type}:{object_id}"


def member_index_key(plan_id: str) -> str:
    return f"{MEMBER_INDEX_PREFIX}:{plan_id}"


@dataclass(frozen=True)
class ObjectRef:
    """An objectId-bearing entity found in a document.

    Attributes:
        object_id: The entity's objectId
        object_type: The entity's objectType (None if the document omits it)
        parent_id: objectId of the nearest enclosing entity, None for the root
    """

    object_id: str
    object_type: str | None
    parent_id: str | None


@dataclass
class StoredRecord:
    """One persisted entity.

    Attributes:
        data: The entity's own fields (children stripped)
        parent_id: objectId of the parent entity, None for the root
        object_type: The entity's objectType
        etag: Plan ETag (root record only)
        created_at: ISO-8601 creation time (root record only)
        last_modified: ISO-8601 time of the last commit (root record only)
    """

    data: dict[str, Any]
    parent_id: str | None
    object_type: str
    etag: str | None = None
    created_at: str | None = None
    last_modified: str | None = None

    @property
    def object_id(self) -> str:
        return self.data["objectId"]

    @property
    def key(self) -> str:
        return record_key(self.object_type, self.object_id)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted dictionary layout."""
        out: dict[str, Any] = {
            "data": self.data,
            "parentId": self.parent_id,
            "objectType": self.object_type,
        }
        if self.etag is not None:
            out["etag"] = self.etag
        if self.created_at is not None:
            out["createdAt"] = self.created_at
        if self.last_modified is not None:
            out["lastModified"] = self.last_modified
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> StoredRecord:
        """Create from the persisted layout.

        Raises:
            ValueError: If the value does not have the record shape
        """
        if not isinstance(raw, dict):
            raise ValueError("record is not an object")
        data = raw.get("data")
        if not isinstance(data, dict) or not data.get("objectId"):
            raise ValueError("record has no data.objectId")
        object_type = raw.get("objectType")
        if not isinstance(object_type, str):
            raise ValueError("record has no objectType")
        return cls(
            data=data,
            parent_id=raw.get("parentId"),
            object_type=object_type,
            etag=raw.get("etag"),
            created_at=raw.get("createdAt"),
            last_modified=raw.get("lastModified"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> StoredRecord:
        """Parse a stored value.

        Raises:
            ValueError: If the value is not JSON or not a record
        """
        return cls.from_dict(json.loads(raw))


def _has_object_id(value: Any) -> bool:
    return isinstance(value, dict) and bool(value.get("objectId"))


def _walk(node: Any, parent_id: str | None = None) -> Iterator[tuple[dict[str, Any], str | None]]:
    """Depth-first walk yielding (entity, parent_id) for objectId-bearing objects."""
    if isinstance(node, list):
        for item in node:
            yield from _walk(item, parent_id)
        return
    if not isinstance(node, dict):
        return

    if _has_object_id(node):
        yield node, parent_id
        parent_id = node["objectId"]

    for value in node.values():
        if isinstance(value, (dict, list)):
            yield from _walk(value, parent_id)


def extract_all_object_ids(document: Any) -> list[ObjectRef]:
    """List every objectId-bearing entity of a document in depth-first order."""
    return [
        ObjectRef(
            object_id=entity["objectId"],
            object_type=entity.get("objectType"),
            parent_id=parent_id,
        )
        for entity, parent_id in _walk(document)
    ]


def flatten(entity: dict[str, Any]) -> dict[str, Any]:
    """Return the entity's own fields.

    Nested objects carrying an objectId, and arrays containing such
    objects, become separate records and are left out.
    """
    flat: dict[str, Any] = {}
    for key, value in entity.items():
        if _has_object_id(value):
            continue
        if isinstance(value, list) and any(_has_object_id(item) for item in value):
            continue
        flat[key] = value
    return flat


def decompose(
    document: dict[str, Any],
    etag: str | None = None,
    created_at: str | None = None,
    last_modified: str | None = None,
) -> dict[str, StoredRecord]:
    """Split a document into records keyed by record key.

    The root record (the document itself) receives the version metadata.
    Keys are in depth-first order with the root first.

    Raises:
        ValueError: If an entity has no string objectType
    """
    records: dict[str, StoredRecord] = {}
    for entity, parent_id in _walk(document):
        object_type = entity.get("objectType")
        if not isinstance(object_type, str) or not object_type:
            raise ValueError(f"object {entity['objectId']!r} has no objectType")

        record = StoredRecord(data=flatten(entity), parent_id=parent_id, object_type=object_type)
        if entity is document:
            record.etag = etag
            record.created_at = created_at
            record.last_modified = last_modified
        records[record.key] = record
    return records


def reconstruct(root_id: str, raw_records: Iterable[str | bytes | None]) -> dict[str, Any] | None:
    """Rebuild the nested document rooted at root_id.

    Args:
        root_id: objectId of the plan
        raw_records: Stored values (None entries and malformed values are
            skipped); siblings are attached in the order given

    Returns:
        The document, or None if no record for root_id is present
    """
    records: dict[str, StoredRecord] = {}
    children: dict[str, list[StoredRecord]] = defaultdict(list)

    for raw in raw_records:
        if raw is None:
            continue
        try:
            record = StoredRecord.from_json(raw)
        except ValueError as e:
            logger.warning("Skipping malformed record", extra={"error": str(e)})
            continue

        if record.object_id in records:
            continue
        records[record.object_id] = record
        if record.parent_id:
            children[record.parent_id].append(record)

    root = records.get(root_id)
    if root is None:
        return None
    return _build(root, children, set())


def _build(
    record: StoredRecord,
    children: dict[str, list[StoredRecord]],
    seen: set[str],
) -> dict[str, Any]:
    document = dict(record.data)
    seen.add(record.object_id)

    for child in children.get(record.object_id, ()):
        if child.object_id in seen:
            continue
        slot = child_slot(child.object_type, record.object_type)
        built = _build(child, children, seen)

        if slot.is_array:
            items = document.get(slot.field_name)
            if not isinstance(items, list):
                items = document[slot.field_name] = []
            items.append(built)
        else:
            document[slot.field_name] = built

    return document
