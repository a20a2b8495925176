"""
PlanDB Server - versioned storage for hierarchical plan documents.

This package persists plan documents (a root plan with a fixed tree of
typed children) in a key-value store:
- Documents are decomposed into one flat record per objectId-bearing entity
- Reads rebuild the nested document from the plan's member records
- Every committed version carries a content-derived strong ETag
- Writes are compare-and-swap transactions guarded by the root record

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│    PlanStore    │
    └─────────────┘     │   (aiohttp) │     └────────┬────────┘
                        └─────────────┘              │
                              ┌──────────────────────┼─────────────────┐
                              │                      │                 │
                              ▼                      ▼                 ▼
                        ┌───────────┐        ┌──────────────┐   ┌────────────┐
                        │ graph /   │        │ Optimistic   │   │  Index     │
                        │ merge /   │        │ Executor     │   │  Publisher │
                        │ etag      │        │ (CAS retry)  │   │  (Kafka)   │
                        └───────────┘        └──────┬───────┘   └────────────┘
                                                    │
                                                    ▼
                                             ┌──────────────┐
                                             │ KV store     │
                                             │ (Redis)      │
                                             └──────────────┘

Invariants:
    - Record keys are "<objectType>:<objectId>"; only the root record
      carries etag/createdAt/lastModified
    - All records of a plan are written and deleted in one atomic commit
    - Two documents that are equal as data share an ETag
    - Index notifications are best-effort and never undo a commit

How to change safely:
    - Keep the persisted record layout stable; old records must still load
    - New child types need an entry in plans.graph.CHILD_SLOTS
"""

from ._version import __version__

__all__ = ["__version__"]
