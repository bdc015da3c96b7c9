from decimal import Decimal

import pytest
from pydantic import ValidationError

from expenseflow.models.shared.enums import ApproverType, RuleType
from expenseflow.schemas.approval.approval_flow_schema import (
    ApprovalFlowCreate, ApprovalFlowUpdate, ApprovalRuleCreate, ApprovalStepCreate
)
from expenseflow.schemas.expense.expense_schema import ExpenseCreate


def step(order, approver_type=ApproverType.ROLE, ref="MANAGER"):
    return {"step_order": order, "approver_type": approver_type, "approver_ref": ref}


class TestExpenseCreate:

    def test_currency_is_normalized(self):
        expense = ExpenseCreate(amount=Decimal("10"), currency=" eur ", category="Meals", description="Lunch")

        assert expense.currency == "EUR"

    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError):
            ExpenseCreate(amount=Decimal(amount), currency="USD", category="Meals", description="Lunch")

    def test_blank_category_is_rejected(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(amount=Decimal("1"), currency="USD", category="  ", description="Lunch")


class TestFlowSchemas:

    def test_steps_are_sorted_by_order(self):
        flow = ApprovalFlowCreate(name="Travel", steps=[step(2), step(1, ApproverType.USER, "7")])

        assert [s.step_order for s in flow.steps] == [1, 2]

    def test_duplicate_step_orders_are_rejected(self):
        with pytest.raises(ValidationError):
            ApprovalFlowCreate(name="Travel", steps=[step(1), step(1)])

    def test_role_ref_must_name_a_role(self):
        with pytest.raises(ValidationError):
            ApprovalStepCreate(**step(1, ApproverType.ROLE, "manager"))

    def test_user_ref_must_be_an_id(self):
        with pytest.raises(ValidationError):
            ApprovalStepCreate(**step(1, ApproverType.USER, "bob"))

    def test_percentage_rule_needs_threshold(self):
        with pytest.raises(ValidationError):
            ApprovalRuleCreate(rule_type=RuleType.PERCENTAGE, params={})

    def test_min_approval_percentage_bounds(self):
        with pytest.raises(ValidationError):
            ApprovalFlowCreate(name="Travel", steps=[step(1)], min_approval_percentage=0)

    def test_update_detects_definition_changes(self):
        assert not ApprovalFlowUpdate(name="Renamed", is_active=False).changes_definition
        assert ApprovalFlowUpdate(min_approval_percentage=50).changes_definition
