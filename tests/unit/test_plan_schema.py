"""
Unit tests for plan payload validation.
"""

import pytest

from dbaas.plandb_server.api.schema import validate_plan
from dbaas.plandb_server.plans.errors import E_BAD_REQUEST, DocumentValidationError


def fields(exc_info):
    return [error["field"] for error in exc_info.value.errors]


class TestValidatePlan:
    """Tests for validate_plan()."""

    def test_valid_plan(self, plan):
        validate_plan(plan)

    def test_empty_service_list_allowed(self, plan):
        plan["linkedPlanServices"] = []

        validate_plan(plan)

    def test_missing_field(self, plan):
        del plan["planType"]

        with pytest.raises(DocumentValidationError) as exc_info:
            validate_plan(plan)

        assert exc_info.value.code == E_BAD_REQUEST
        assert "/planType" in fields(exc_info)

    def test_nested_type_error(self, plan):
        plan["linkedPlanServices"][1]["planserviceCostShares"]["copay"] = "free"

        with pytest.raises(DocumentValidationError) as exc_info:
            validate_plan(plan)

        assert "/linkedPlanServices/1/planserviceCostShares/copay" in fields(exc_info)

    def test_wrong_object_type(self, plan):
        plan["planCostShares"]["objectType"] = "service"

        with pytest.raises(DocumentValidationError):
            validate_plan(plan)

    def test_org_required(self, plan):
        del plan["_org"]

        with pytest.raises(DocumentValidationError) as exc_info:
            validate_plan(plan)

        assert "/_org" in fields(exc_info)

    def test_unknown_field_rejected(self, plan):
        plan["planCostShares"]["discount"] = 5

        with pytest.raises(DocumentValidationError):
            validate_plan(plan)

    def test_negative_amount_rejected(self, plan):
        plan["planCostShares"]["deductible"] = -1

        with pytest.raises(DocumentValidationError):
            validate_plan(plan)
