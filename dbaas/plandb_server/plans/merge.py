"""
Deep merge of a patch into a plan document.

Rules:
    - A patch that is not an object or array replaces the target, so
      ``null`` overwrites the field with null
    - Objects merge key by key; keys absent from the patch are kept
    - Arrays whose items all carry an objectId merge by objectId: matching
      items are deep-merged in place, unknown items are appended, and
      items the patch does not mention are kept. This lets a client patch
      one linkedPlanServices entry without resending the whole array.
    - Any other array replaces the target array

The target is never mutated; untouched subtrees are shared with it.
"""

from __future__ import annotations

import copy
from typing import Any


def _is_identified_list(items: list[Any]) -> bool:
    return bool(items) and all(
        isinstance(item, dict) and item.get("objectId") for item in items
    )


def deep_merge(target: Any, patch: Any) -> Any:
    """Merge patch into target and return the result.

    >>> deep_merge({"a": 1, "b": {"c": 2}}, {"b": {"d": 3}})
    {'a': 1, 'b': {'c': 2, 'd': 3}}
    """
    if isinstance(patch, dict):
        merged = dict(target) if isinstance(target, dict) else {}
        for key, value in patch.items():
            merged[key] = deep_merge(merged.get(key), value)
        return merged

    if isinstance(patch, list):
        if isinstance(target, list) and _is_identified_list(patch):
            return _merge_by_object_id(target, patch)
        return copy.deepcopy(patch)

    return patch


def _merge_by_object_id(target: list[Any], patch: list[dict[str, Any]]) -> list[Any]:
    merged = list(target)
    positions = {
        item["objectId"]: index
        for index, item in enumerate(merged)
        if isinstance(item, dict) and item.get("objectId")
    }

    for item in patch:
        index = positions.get(item["objectId"])
        if index is None:
            positions[item["objectId"]] = len(merged)
            merged.append(copy.deepcopy(item))
        else:
            merged[index] = deep_merge(merged[index], item)

    return merged
