from expenseflow.models.approval.approval import Approval
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import (
    ApprovalStatus, ApproverType, ExpenseStatus, SequenceType, UserRole
)
from expenseflow.services.approval.approval_state import (
    ExpenseStateKind, current_gate_approvals, derive_state, find_matching_approval,
    has_recorded_decision, is_step_complete
)


def approval(id, approver_id, step_id=None, status=ApprovalStatus.PENDING) -> Approval:
    return Approval(id=id, approver_id=approver_id, step_id=step_id, status=status)


def role_step(id=10, role="MANAGER", order=1) -> ApprovalStep:
    return ApprovalStep(id=id, step_order=order, approver_type=ApproverType.ROLE, approver_ref=role)


class TestCurrentGate:

    def test_pending_manager_gate_hides_step_approvals(self):
        gate = approval(1, approver_id=5)
        at_step = approval(2, approver_id=6, step_id=10)

        assert current_gate_approvals([at_step, gate], current_step_id=10) == [gate]

    def test_step_approvals_once_gate_decided(self):
        gate = approval(1, approver_id=5, status=ApprovalStatus.APPROVED)
        first = approval(2, approver_id=6, step_id=10)
        other_step = approval(3, approver_id=7, step_id=11)
        second = approval(4, approver_id=8, step_id=10)

        assert current_gate_approvals([second, gate, other_step, first], current_step_id=10) == [first, second]

    def test_nothing_actionable_without_current_step(self):
        assert current_gate_approvals([approval(1, 6, step_id=10)], current_step_id=None) == []


class TestFindMatchingApproval:

    def test_direct_assignment_wins(self):
        mine = approval(2, approver_id=6, step_id=10)
        gate = [approval(1, approver_id=5, step_id=10), mine]

        assert find_matching_approval(gate, role_step(), 6, UserRole.MANAGER) is mine

    def test_role_match_takes_oldest_pending(self):
        gate = [approval(1, approver_id=5, step_id=10), approval(2, approver_id=6, step_id=10)]

        assert find_matching_approval(gate, role_step(), 99, UserRole.MANAGER) is gate[0]

    def test_role_match_respects_role_name(self):
        gate = [approval(1, approver_id=5, step_id=10)]

        assert find_matching_approval(gate, role_step(), 99, UserRole.ADMIN) is None

    def test_role_match_can_be_disabled(self):
        gate = [approval(1, approver_id=5, step_id=10)]

        assert find_matching_approval(gate, role_step(), 99, UserRole.MANAGER, allow_role_match=False) is None

    def test_user_steps_never_role_match(self):
        step = ApprovalStep(id=10, step_order=1, approver_type=ApproverType.USER, approver_ref="5")
        gate = [approval(1, approver_id=5, step_id=10)]

        assert find_matching_approval(gate, step, 99, UserRole.MANAGER) is None

    def test_manager_gate_is_direct_only(self):
        gate = [approval(1, approver_id=5)]

        assert find_matching_approval(gate, role_step(), 99, UserRole.MANAGER) is None


def test_recorded_decision_detects_replay():
    approvals = [approval(1, 5, step_id=10, status=ApprovalStatus.APPROVED), approval(2, 6, step_id=11)]

    assert has_recorded_decision(approvals, 5)
    assert not has_recorded_decision(approvals, 6)


class TestStepCompletion:

    def test_sequential_needs_one_approval(self):
        step_approvals = [
            approval(1, 5, step_id=10, status=ApprovalStatus.APPROVED),
            approval(2, 6, step_id=10),
        ]
        assert is_step_complete(step_approvals, SequenceType.SEQUENTIAL, 100)

    def test_parallel_uses_min_percentage(self):
        step_approvals = [
            approval(1, 5, step_id=10, status=ApprovalStatus.APPROVED),
            approval(2, 6, step_id=10),
            approval(3, 7, step_id=10),
        ]
        assert not is_step_complete(step_approvals, SequenceType.PARALLEL, 50)
        assert is_step_complete(step_approvals, SequenceType.PARALLEL, 33)

    def test_parallel_without_approvals_is_incomplete(self):
        assert not is_step_complete([], SequenceType.PARALLEL, 1)


class TestDeriveState:

    def test_terminal_states(self):
        assert derive_state(Expense(status=ExpenseStatus.APPROVED), [], None).is_terminal
        assert derive_state(Expense(status=ExpenseStatus.REJECTED), [], None).kind == ExpenseStateKind.REJECTED

    def test_awaiting_manager_before_steps(self):
        expense = Expense(status=ExpenseStatus.PENDING)
        state = derive_state(expense, [approval(1, 5)], role_step(order=2))

        assert state.kind == ExpenseStateKind.AWAITING_MANAGER

    def test_awaiting_step_reports_order(self):
        expense = Expense(status=ExpenseStatus.PENDING)
        state = derive_state(expense, [], role_step(order=2))

        assert str(state) == "AWAITING_STEP(2)"

    def test_unrouted_without_step(self):
        expense = Expense(status=ExpenseStatus.PENDING)
        assert derive_state(expense, [], None).kind == ExpenseStateKind.UNROUTED
