"""
Expense routing state and the decider-matching predicate

An expense is in exactly one of these states:

    AWAITING_MANAGER      manager-chain approval (no step) still pending
    AWAITING_STEP(n)      step with step_order n awaits action
    UNROUTED              pending but nothing to act on (no flow, or an unstaffed step)
    APPROVED / REJECTED   terminal

The manager-chain gate is decided before any flow step. Approve and Reject
share `find_matching_approval` so both paths accept exactly the same deciders.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from expenseflow.models.approval.approval import Approval
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import (
    ApprovalStatus, ApproverType, ExpenseStatus, SequenceType, UserRole
)


class ExpenseStateKind(str, Enum):
    AWAITING_MANAGER = "AWAITING_MANAGER"
    AWAITING_STEP = "AWAITING_STEP"
    UNROUTED = "UNROUTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class ExpenseState:
    kind: ExpenseStateKind
    step_order: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in (ExpenseStateKind.APPROVED, ExpenseStateKind.REJECTED)

    def __str__(self) -> str:
        if self.kind == ExpenseStateKind.AWAITING_STEP:
            return f"AWAITING_STEP({self.step_order})"
        return self.kind.value


def derive_state(
    expense: Expense,
    approvals: Iterable[Approval],
    current_step: Optional[ApprovalStep]
) -> ExpenseState:
    if expense.status == ExpenseStatus.APPROVED:
        return ExpenseState(ExpenseStateKind.APPROVED)
    if expense.status == ExpenseStatus.REJECTED:
        return ExpenseState(ExpenseStateKind.REJECTED)

    if any(a.is_manager_gate and a.status == ApprovalStatus.PENDING for a in approvals):
        return ExpenseState(ExpenseStateKind.AWAITING_MANAGER)
    if current_step is not None:
        return ExpenseState(ExpenseStateKind.AWAITING_STEP, current_step.step_order)
    return ExpenseState(ExpenseStateKind.UNROUTED)


def current_gate_approvals(approvals: Iterable[Approval], current_step_id: Optional[int]) -> List[Approval]:
    """Pending approvals that can be acted on right now, in creation order"""
    pending = sorted(
        (a for a in approvals if a.status == ApprovalStatus.PENDING),
        key=lambda a: a.id
    )

    manager_gate = [a for a in pending if a.is_manager_gate]
    if manager_gate:
        return manager_gate

    if current_step_id is None:
        return []
    return [a for a in pending if a.step_id == current_step_id]


def _role_value(role) -> str:
    return role.value if isinstance(role, UserRole) else str(role)


def find_matching_approval(
    gate_approvals: List[Approval],
    current_step: Optional[ApprovalStep],
    user_id: int,
    user_role,
    allow_role_match: bool = True
) -> Optional[Approval]:
    """
    Pick the approval the user may decide: a direct assignment first, otherwise
    (for ROLE steps, when allowed) the oldest pending approval of a step whose
    role matches the user's role.
    """
    for approval in gate_approvals:
        if approval.approver_id == user_id:
            return approval

    if not allow_role_match or current_step is None:
        return None
    if current_step.approver_type != ApproverType.ROLE:
        return None
    if current_step.approver_ref != _role_value(user_role):
        return None

    for approval in gate_approvals:
        if approval.step_id == current_step.id:
            return approval
    return None


def has_recorded_decision(approvals: Iterable[Approval], user_id: int) -> bool:
    """The user already holds a decided approval on this expense (decision replay)"""
    return any(
        a.approver_id == user_id and a.status != ApprovalStatus.PENDING
        for a in approvals
    )


def is_step_complete(
    step_approvals: List[Approval],
    sequence_type: SequenceType,
    min_approval_percentage: int
) -> bool:
    approved = sum(1 for a in step_approvals if a.status == ApprovalStatus.APPROVED)

    if sequence_type != SequenceType.PARALLEL:
        return approved > 0

    total = len(step_approvals)
    return total > 0 and approved * 100 >= min_approval_percentage * total
