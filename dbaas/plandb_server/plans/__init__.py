"""
Plan document persistence for PlanDB.

This module handles:
- Canonical hashing of documents (ETags)
- Decomposition into per-entity records and reconstruction
- Deep-merge patches with merge-by-objectId arrays
- Optimistic, compare-and-swap commits with bounded retry

Invariants:
    - The root record is the only versioned record of a plan
    - Every mutation rewrites or removes the whole record set atomically
"""

from .concurrency import Mutation, OptimisticExecutor, Snapshot
from .errors import (
    BadRequestError,
    ConflictError,
    DocumentValidationError,
    NotFoundError,
    PlanStoreError,
    PreconditionFailedError,
    PreconditionRequiredError,
)
from .etag import canonicalize, compute_etag
from .graph import StoredRecord, decompose, extract_all_object_ids, flatten, reconstruct
from .merge import deep_merge
from .store import PlanResult, PlanStore

__all__ = [
    "PlanStore",
    "PlanResult",
    "OptimisticExecutor",
    "Mutation",
    "Snapshot",
    "StoredRecord",
    "canonicalize",
    "compute_etag",
    "decompose",
    "deep_merge",
    "extract_all_object_ids",
    "flatten",
    "reconstruct",
    "PlanStoreError",
    "BadRequestError",
    "DocumentValidationError",
    "ConflictError",
    "NotFoundError",
    "PreconditionFailedError",
    "PreconditionRequiredError",
]
