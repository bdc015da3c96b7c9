import logging
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from sqlalchemy import select, func, or_, and_, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, aliased
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError
from fastapi import HTTPException, status

from expenseflow.core.config import settings
from expenseflow.core.exceptions import (
    InvalidStateError, NoNextStepError, NotAuthorizedError, NotFoundError
)
from expenseflow.core.locks import expense_locks
from expenseflow.core.logging import log_approval_action
from expenseflow.models.approval.approval import Approval
from expenseflow.models.approval.approval_flow import ApprovalFlow
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.auth.user import User
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import (
    ApprovalStatus, ApproverType, ExpenseStatus, RuleOutcome, SequenceType, UserRole
)
from expenseflow.schemas.approval.approval_schema import (
    ApprovalInfo, DecisionResult, EscalationCandidate, PendingApprovalItem
)
from expenseflow.schemas.common.user_info import UserInfo
from expenseflow.services.approval.approval_state import (
    current_gate_approvals, derive_state, find_matching_approval,
    has_recorded_decision, is_step_complete
)
from expenseflow.services.approval.approver_resolver import ApproverResolver, no_approvers_warning
from expenseflow.services.approval.rule_evaluator import RuleEvaluator

logger = logging.getLogger(__name__)

FULLY_APPROVED = "Expense fully approved"
STEP_APPROVED = "Step approved successfully"
REJECTED = "Expense rejected"
ESCALATED = "Step escalated to next approver"
NO_NEXT_STEP = "No next step available for escalation"


def _step_by_id(flow: Optional[ApprovalFlow], step_id: Optional[int]) -> Optional[ApprovalStep]:
    if flow is None or step_id is None:
        return None
    return next((s for s in flow.steps if s.id == step_id), None)


def _next_step(flow: ApprovalFlow, step: ApprovalStep) -> Optional[ApprovalStep]:
    later = [s for s in flow.steps if s.step_order > step.step_order]
    return min(later, key=lambda s: s.step_order) if later else None


def to_pending_item(approval: Approval) -> PendingApprovalItem:
    expense = approval.expense
    step = approval.step
    return PendingApprovalItem(
        approval_id=approval.id,
        expense_id=expense.id,
        employee=UserInfo.model_validate(expense.employee, from_attributes=True),
        amount=expense.amount,
        currency=expense.currency,
        amount_converted=expense.amount_converted,
        category=expense.category,
        description=expense.description,
        date=expense.date,
        step_order=step.step_order if step else None,
        approver_type=step.approver_type if step else None,
        approver_ref=step.approver_ref if step else None,
        created_at=approval.created_at
    )


class ApprovalService:
    """
    Approval state machine.

    Every decision runs under the expense's in-process lock and inside one
    transaction that re-reads the expense row FOR UPDATE; the expense version
    counter turns a lost race between processes into InvalidStateError.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.resolver = ApproverResolver(session)
        self.rule_evaluator = RuleEvaluator(session)

    # region ========== Loading ==========

    async def _load_for_decision(self, expense_id: int, user: User) -> Expense:
        result = await self.session.execute(
            select(Expense)
            .options(
                selectinload(Expense.employee),
                selectinload(Expense.approvals),
                selectinload(Expense.flow).selectinload(ApprovalFlow.steps)
            )
            .where(Expense.id == expense_id, Expense.is_deleted == False)
            .with_for_update(of=Expense)
            .execution_options(populate_existing=True)
        )
        expense = result.scalar_one_or_none()

        # Other tenants' expenses do not exist for this user
        if not expense or expense.employee.company_id != user.company_id:
            raise NotFoundError("Expense not found")
        return expense

    def _state(self, expense: Expense) -> str:
        return str(derive_state(
            expense,
            expense.approvals,
            _step_by_id(expense.flow, expense.current_step_id)
        ))

    def _touch(self, expense: Expense, user_id: int):
        # Force an UPDATE so the version counter moves on every decision
        expense.updated_by = user_id
        flag_modified(expense, "updated_by")

    # endregion

    # region ========== Step Materialization ==========

    async def materialize_step(
        self,
        expense: Expense,
        step: ApprovalStep,
        company_id: int,
        created_by: Optional[int] = None
    ) -> Tuple[List[Approval], List[str]]:
        """
        Create one PENDING approval per resolved approver of `step`.

        The submitting employee is never an approver. A step that resolves to
        nobody is returned as a warning and logged; the expense stays at it.
        """
        approver_ids = await self.resolver.resolve(step, company_id, exclude_user_id=expense.employee_id)

        if not approver_ids:
            warning = no_approvers_warning(step)
            logger.warning(f"⚠️ Expense {expense.id}: {warning}")
            return [], [warning]

        approvals = []
        for approver_id in approver_ids:
            approval = Approval(
                step_id=step.id,
                approver_id=approver_id,
                status=ApprovalStatus.PENDING,
                created_by=created_by
            )
            expense.approvals.append(approval)
            approvals.append(approval)

        await self.session.flush()
        logger.info(
            f"Materialized {len(approvals)} approval(s) for expense {expense.id} "
            f"at step {step.step_order}: approvers {approver_ids}"
        )
        return approvals, []

    # endregion

    # region ========== Decisions ==========

    def _match_decider(
        self,
        expense: Expense,
        user: User,
        expected_step_id: Optional[int] = None
    ) -> Approval:
        """Shared by approve and reject so both accept the same deciders"""
        if expense.is_terminal:
            raise InvalidStateError()

        gate = current_gate_approvals(expense.approvals, expense.current_step_id)
        current_step = _step_by_id(expense.flow, expense.current_step_id)
        allow_role_match = (
            expense.flow is not None
            and expense.flow.sequence_type == SequenceType.SEQUENTIAL
        )

        approval = None
        if user.id != expense.employee_id:
            approval = find_matching_approval(gate, current_step, user.id, user.role, allow_role_match)

        if approval is None:
            if has_recorded_decision(expense.approvals, user.id):
                raise InvalidStateError("Decision already recorded for this expense")
            raise NotAuthorizedError()

        if expected_step_id is not None and approval.step_id != expected_step_id:
            raise InvalidStateError("Expense is no longer at the requested step")
        return approval

    async def _decide(self, expense_id: int, user: User, action: str, operation) -> DecisionResult:
        """Run one decision under the expense lock, committing or rolling back as a unit"""
        user_id = user.id
        async with expense_locks.hold(expense_id):
            try:
                result = await operation()
                await self.session.commit()
            except HTTPException:
                await self.session.rollback()
                raise
            except StaleDataError:
                await self.session.rollback()
                logger.warning(f"Concurrent {action} on expense {expense_id} by user {user_id} lost the race")
                raise InvalidStateError("Expense was modified by a concurrent decision")
            except Exception as e:
                await self.session.rollback()
                logger.error(f"Error during {action} on expense {expense_id}: {e}")
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=f"Error processing {action.lower()}"
                )

        log_approval_action(user_id, action, expense_id, result.message)
        return result

    def _finish(self, expense: Expense, final_status: ExpenseStatus):
        expense.status = final_status
        expense.current_step_id = None

    async def approve_expense(
        self,
        expense_id: int,
        user: User,
        comments: Optional[str] = None,
        expected_step_id: Optional[int] = None
    ) -> DecisionResult:
        async def operation() -> DecisionResult:
            expense = await self._load_for_decision(expense_id, user)
            before = self._state(expense)
            approval = self._match_decider(expense, user, expected_step_id)

            approval.status = ApprovalStatus.APPROVED
            approval.approver_id = user.id  # Rebinds role-matched approvals to the decider
            approval.comments = comments
            approval.decided_at = datetime.now(timezone.utc)
            approval.updated_by = user.id
            self._touch(expense, user.id)

            warnings: List[str] = []
            message = STEP_APPROVED
            flow = expense.flow

            # Rules run before advancing so an auto-approval leaves no later step records
            outcome = await self.rule_evaluator.evaluate(expense.flow_id, expense, user.id)

            if outcome == RuleOutcome.AUTO_APPROVE:
                self._finish(expense, ExpenseStatus.APPROVED)
                message = FULLY_APPROVED

            elif approval.is_manager_gate:
                # Manager-chain gate; step routing (if any) is already in place
                if flow is None and expense.current_step_id is None:
                    self._finish(expense, ExpenseStatus.APPROVED)
                    message = FULLY_APPROVED

            else:
                step = _step_by_id(flow, approval.step_id)
                step_approvals = [a for a in expense.approvals if a.step_id == step.id]

                if is_step_complete(step_approvals, flow.sequence_type, flow.min_approval_percentage):
                    next_step = _next_step(flow, step)
                    if next_step is None:
                        self._finish(expense, ExpenseStatus.APPROVED)
                        message = FULLY_APPROVED
                    else:
                        _, warnings = await self.materialize_step(
                            expense, next_step, expense.employee.company_id, created_by=user.id
                        )
                        expense.current_step_id = next_step.id

            await self.session.flush()
            logger.info(f"✅ Expense {expense.id} approved by user {user.id}: {before} -> {self._state(expense)}")

            return DecisionResult(
                expense_id=expense.id,
                status=expense.status,
                current_step_id=expense.current_step_id,
                message=message,
                warnings=warnings
            )

        return await self._decide(expense_id, user, "APPROVE", operation)

    async def reject_expense(
        self,
        expense_id: int,
        user: User,
        comments: Optional[str] = None,
        expected_step_id: Optional[int] = None
    ) -> DecisionResult:
        async def operation() -> DecisionResult:
            expense = await self._load_for_decision(expense_id, user)
            before = self._state(expense)
            approval = self._match_decider(expense, user, expected_step_id)

            approval.status = ApprovalStatus.REJECTED
            approval.approver_id = user.id
            approval.comments = comments
            approval.decided_at = datetime.now(timezone.utc)
            approval.updated_by = user.id
            self._touch(expense, user.id)
            self._finish(expense, ExpenseStatus.REJECTED)

            await self.session.flush()
            logger.info(f"❌ Expense {expense.id} rejected by user {user.id}: {before} -> {self._state(expense)}")

            return DecisionResult(
                expense_id=expense.id,
                status=expense.status,
                current_step_id=None,
                message=REJECTED
            )

        return await self._decide(expense_id, user, "REJECT", operation)

    async def escalate_expense(
        self,
        expense_id: int,
        user: User,
        step_id: Optional[int] = None
    ) -> DecisionResult:
        """
        Force an expense past a stalled step (admins only).

        With no later step, a fallback ADMIN approval is created at the same
        step and committed, then NoNextStepError reports that the expense
        could not move forward.
        """
        if user.role != UserRole.ADMIN:
            raise NotAuthorizedError("Only admins can escalate approvals")

        fallback: Dict[str, Optional[int]] = {}

        async def operation() -> DecisionResult:
            expense = await self._load_for_decision(expense_id, user)
            if expense.is_terminal:
                raise InvalidStateError()

            target = _step_by_id(expense.flow, step_id or expense.current_step_id)
            if target is None:
                raise NotFoundError("Step not found")
            current_step = _step_by_id(expense.flow, expense.current_step_id)
            if current_step is not None and target.step_order < current_step.step_order:
                raise InvalidStateError("Expense is no longer at the requested step")

            now = datetime.now(timezone.utc)
            company_id = expense.employee.company_id
            next_step = _next_step(expense.flow, target)

            if next_step is None:
                admin_id = await self.resolver.find_fallback_admin(
                    company_id, [user.id, expense.employee_id]
                )
                if admin_id is not None:
                    approval = Approval(
                        step_id=target.id,
                        approver_id=admin_id,
                        status=ApprovalStatus.PENDING,
                        comments=settings.FALLBACK_ESCALATION_COMMENT,
                        created_by=user.id
                    )
                    expense.approvals.append(approval)
                    if expense.current_step_id is None:
                        expense.current_step_id = target.id
                    self._touch(expense, user.id)
                    await self.session.flush()
                    fallback.update(approval_id=approval.id, approver_id=admin_id)
                    logger.warning(
                        f"⚠️ Expense {expense.id} has no step after {target.step_order}; "
                        f"fallback approval {approval.id} assigned to admin {admin_id}"
                    )
                else:
                    logger.warning(
                        f"⚠️ Expense {expense.id} has no step after {target.step_order} "
                        f"and no fallback admin in company {company_id}"
                    )
                return DecisionResult(
                    expense_id=expense.id,
                    status=expense.status,
                    current_step_id=expense.current_step_id,
                    message=NO_NEXT_STEP
                )

            for approval in expense.approvals:
                if approval.step_id == target.id and approval.status == ApprovalStatus.PENDING:
                    approval.status = ApprovalStatus.REJECTED
                    approval.comments = settings.ESCALATION_COMMENT
                    approval.decided_at = now
                    approval.updated_by = user.id

            _, warnings = await self.materialize_step(expense, next_step, company_id, created_by=user.id)
            expense.current_step_id = next_step.id
            self._touch(expense, user.id)

            await self.session.flush()
            logger.info(
                f"⏫ Expense {expense.id} escalated by admin {user.id} "
                f"from step {target.step_order} to step {next_step.step_order}"
            )
            return DecisionResult(
                expense_id=expense.id,
                status=expense.status,
                current_step_id=expense.current_step_id,
                message=ESCALATED,
                warnings=warnings
            )

        result = await self._decide(expense_id, user, "ESCALATE", operation)

        if result.message == NO_NEXT_STEP:
            raise NoNextStepError(
                NO_NEXT_STEP,
                fallback_approval_id=fallback.get("approval_id"),
                fallback_approver_id=fallback.get("approver_id")
            )
        return result

    # endregion

    # region ========== Queries ==========

    def _pending_queue_conditions(self, user: User) -> List[Any]:
        Employee = aliased(User)
        Gate = aliased(Approval)
        Own = aliased(Approval)
        Sibling = aliased(Approval)

        gate_pending = exists().where(
            Gate.expense_id == Approval.expense_id,
            Gate.step_id.is_(None),
            Gate.status == ApprovalStatus.PENDING
        )
        at_gate = or_(
            Approval.step_id.is_(None),
            and_(Approval.step_id == Expense.current_step_id, ~gate_pending)
        )

        own_pending_at_step = exists().where(
            Own.expense_id == Approval.expense_id,
            Own.step_id == Approval.step_id,
            Own.approver_id == user.id,
            Own.status == ApprovalStatus.PENDING
        )
        first_sibling = (
            select(func.min(Sibling.id))
            .where(
                Sibling.expense_id == Approval.expense_id,
                Sibling.step_id == Approval.step_id,
                Sibling.status == ApprovalStatus.PENDING
            )
            .scalar_subquery()
        )
        role_match = and_(
            ApprovalStep.approver_type == ApproverType.ROLE,
            ApprovalStep.approver_ref == UserRole(user.role).value,
            ApprovalFlow.sequence_type == SequenceType.SEQUENTIAL,
            Approval.approver_id != user.id,
            ~own_pending_at_step,
            Approval.id == first_sibling
        )

        company_member = exists().where(
            Employee.id == Expense.employee_id,
            Employee.company_id == user.company_id
        )

        return [
            Approval.status == ApprovalStatus.PENDING,
            Expense.status == ExpenseStatus.PENDING,
            Expense.is_deleted == False,
            Expense.employee_id != user.id,
            company_member,
            at_gate,
            or_(Approval.approver_id == user.id, role_match),
        ]

    def _pending_queue_query(self, columns, user: User):
        return (
            select(columns)
            .select_from(Approval)
            .join(Expense, Expense.id == Approval.expense_id)
            .outerjoin(ApprovalStep, ApprovalStep.id == Approval.step_id)
            .outerjoin(ApprovalFlow, ApprovalFlow.id == Expense.flow_id)
            .where(*self._pending_queue_conditions(user))
        )

    async def get_pending_approvals_for_approver(
        self,
        user: User,
        page_index: int = 1,
        page_size: int = 100
    ) -> Dict[str, Any]:
        """
        Approvals the user can decide right now: assigned to them directly or,
        in sequential flows, open to their role. Only approvals at the expense's
        current gate are listed, one entry per expense and step.
        """
        total_count = await self.session.scalar(
            self._pending_queue_query(func.count(Approval.id), user)
        )

        skip = (page_index - 1) * page_size
        result = await self.session.execute(
            self._pending_queue_query(Approval, user)
            .options(
                selectinload(Approval.expense).selectinload(Expense.employee),
                selectinload(Approval.step)
            )
            .order_by(Approval.created_at.asc(), Approval.id.asc())
            .offset(skip)
            .limit(page_size)
        )
        approvals = result.scalars().all()

        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total_count or 0,
            "data": [to_pending_item(a) for a in approvals]
        }
    async def get_expense_approvals(self, expense_id: int, user: User) -> List[ApprovalInfo]:
        """Approval history of one expense, for its owner, its approvers and admins"""
        result = await self.session.execute(
            select(Expense)
            .options(
                selectinload(Expense.employee),
                selectinload(Expense.approvals).selectinload(Approval.approver),
                selectinload(Expense.approvals).selectinload(Approval.step)
            )
            .where(Expense.id == expense_id, Expense.is_deleted == False)
        )
        expense = result.scalar_one_or_none()
        if not expense or expense.employee.company_id != user.company_id:
            raise NotFoundError("Expense not found")

        is_approver = any(a.approver_id == user.id for a in expense.approvals)
        if user.id != expense.employee_id and not is_approver and user.role != UserRole.ADMIN:
            raise NotAuthorizedError("You are not allowed to view this expense's approvals")

        return [
            ApprovalInfo.model_validate(approval, from_attributes=True)
            for approval in expense.approvals
        ]

    async def get_escalation_candidates(
        self,
        company_id: int,
        now: Optional[datetime] = None
    ) -> List[EscalationCandidate]:
        """Pending approvals at the current step whose escalation window has elapsed"""
        now = now or datetime.now(timezone.utc)
        Employee = aliased(User)

        result = await self.session.execute(
            select(Approval, ApprovalStep)
            .join(Expense, Expense.id == Approval.expense_id)
            .join(ApprovalStep, ApprovalStep.id == Approval.step_id)
            .join(Employee, Employee.id == Expense.employee_id)
            .where(
                Employee.company_id == company_id,
                Expense.status == ExpenseStatus.PENDING,
                Expense.is_deleted == False,
                Approval.status == ApprovalStatus.PENDING,
                Approval.step_id == Expense.current_step_id,
                ApprovalStep.can_escalate_in.is_not(None)
            )
            .order_by(Approval.created_at.asc(), Approval.id.asc())
        )

        candidates = []
        for approval, step in result.all():
            pending_since = approval.created_at
            if pending_since.tzinfo is None:
                # SQLite hands back naive timestamps; they are stored as UTC
                pending_since = pending_since.replace(tzinfo=timezone.utc)

            due_at = pending_since + timedelta(**{settings.ESCALATION_TIME_UNIT: step.can_escalate_in})
            if due_at <= now:
                candidates.append(EscalationCandidate(
                    approval_id=approval.id,
                    expense_id=approval.expense_id,
                    step_id=step.id,
                    step_order=step.step_order,
                    approver_id=approval.approver_id,
                    pending_since=pending_since,
                    escalation_due_at=due_at
                ))

        logger.debug(f"Found {len(candidates)} escalation candidates for company {company_id}")
        return candidates

    # endregion
