"""
Payload validation for plan documents.

The plan store itself never validates; the server wires validate_plan()
into PlanStore so both created documents and merged patch results are
checked before they are committed.

Shape:
    plan
    ├── planCostShares: membercostshare
    └── linkedPlanServices: [planservice]
        ├── linkedService: service
        └── planserviceCostShares: membercostshare
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from ..plans.errors import DocumentValidationError


class _Entity(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    org: StrictStr = Field(alias="_org", min_length=1)
    objectId: StrictStr = Field(min_length=1)


class CostShare(_Entity):
    objectType: Literal["membercostshare"]
    deductible: StrictInt = Field(ge=0)
    copay: StrictInt = Field(ge=0)


class Service(_Entity):
    objectType: Literal["service"]
    name: StrictStr


class PlanService(_Entity):
    objectType: Literal["planservice"]
    linkedService: Service
    planserviceCostShares: CostShare


class Plan(_Entity):
    objectType: Literal["plan"]
    planType: StrictStr
    creationDate: StrictStr
    planCostShares: CostShare
    linkedPlanServices: list[PlanService]


def validate_plan(document: dict[str, Any]) -> None:
    """Check a full plan document.

    Raises:
        DocumentValidationError: With one {"field", "message"} entry per problem
    """
    try:
        Plan.model_validate(document)
    except ValidationError as e:
        errors = [
            {
                "field": "/" + "/".join(str(part) for part in error["loc"]),
                "message": error["msg"],
            }
            for error in e.errors()
        ]
        raise DocumentValidationError("validation failed", errors=errors) from e
