"""
Error types raised by the plan store.

Every error carries a stable kind string in ``code`` that boundaries map
to caller-visible outcomes:

- E_BAD_REQUEST: malformed input, missing objectId, failed validation
- E_CONFLICT: create on an id that already exists
- E_NOT_FOUND: patch/delete of an absent plan
- E_PRECONDITION: ETag mismatch, or CAS retries exhausted
- E_PRECONDITION_REQUIRED: mutation without an If-Match token

Invariants:
    - All errors inherit from PlanStoreError
    - None of these errors is fatal to the process
"""

from __future__ import annotations

from typing import Any

E_BAD_REQUEST = "E_BAD_REQUEST"
E_CONFLICT = "E_CONFLICT"
E_NOT_FOUND = "E_NOT_FOUND"
E_PRECONDITION = "E_PRECONDITION"
E_PRECONDITION_REQUIRED = "E_PRECONDITION_REQUIRED"


class PlanStoreError(Exception):
    """Base exception for plan store errors.

    Attributes:
        message: Error message
        code: Error kind for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class BadRequestError(PlanStoreError):
    """The request itself is malformed (e.g. document without objectId)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code=E_BAD_REQUEST, details=details)


class DocumentValidationError(BadRequestError):
    """A document was rejected by the configured validator.

    Attributes:
        errors: List of {"field": ..., "message": ...} entries
    """

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class ConflictError(PlanStoreError):
    """A plan with this objectId already exists."""

    def __init__(self, object_id: str) -> None:
        super().__init__(
            "resource exists",
            code=E_CONFLICT,
            details={"objectId": object_id},
        )
        self.object_id = object_id


class NotFoundError(PlanStoreError):
    """The plan does not exist."""

    def __init__(self, object_id: str) -> None:
        super().__init__("not found", code=E_NOT_FOUND, details={"objectId": object_id})
        self.object_id = object_id


class PreconditionFailedError(PlanStoreError):
    """The caller's ETag is stale, or the store stayed too contended.

    Callers cannot tell the two cases apart through ``code``; ``exhausted``
    is set when the bounded retry loop gave up.

    Attributes:
        current_etag: Stored ETag observed when the check failed, if known
        exhausted: True if retries ran out rather than the ETag mismatching
    """

    def __init__(self, current_etag: str | None = None, exhausted: bool = False) -> None:
        super().__init__(
            "precondition failed",
            code=E_PRECONDITION,
            details={"currentEtag": current_etag, "exhausted": exhausted},
        )
        self.current_etag = current_etag
        self.exhausted = exhausted


class PreconditionRequiredError(PlanStoreError):
    """A mutation was attempted without an If-Match token."""

    def __init__(self) -> None:
        super().__init__("precondition required", code=E_PRECONDITION_REQUIRED)
