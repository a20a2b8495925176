"""
Content hashing for plan documents.

The ETag of a document is the SHA-256 of its canonical JSON form, in hex,
wrapped in double quotes (a strong ETag). Canonical form means object keys
sorted recursively; arrays keep their order, so reordering an array is a
content change.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonicalize(value: Any) -> Any:
    """Return a copy of value with every object's keys in sorted order.

    Arrays keep positional order; each element is canonicalized on its own.
    Scalars are returned unchanged.
    """
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [canonicalize(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """Serialize value deterministically (sorted keys, no whitespace, ASCII only).

    Non-ASCII text is \\u-escaped, so lone surrogates hash like any other
    string.
    """
    return json.dumps(canonicalize(value), separators=(",", ":"), ensure_ascii=True)


def compute_etag(document: Any) -> str:
    """Compute the strong ETag of a document.

    >>> compute_etag({"b": 1, "a": 2}) == compute_etag({"a": 2, "b": 1})
    True
    """
    digest = hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()
    return f'"{digest}"'
