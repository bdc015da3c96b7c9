import logging
from typing import List
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_, exists
from sqlalchemy.orm import selectinload, aliased

from expenseflow.models.approval.approval import Approval
from expenseflow.models.approval.approval_flow import ApprovalFlow
from expenseflow.models.approval.approval_rule import ApprovalRule
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.auth.user import User
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import ApprovalStatus, ApproverType, ExpenseStatus, UserRole
from expenseflow.schemas.approval.approval_schema import PendingApprovalItem
from expenseflow.schemas.dashboard.dashboard_schema import (
    DashboardResponse, DashboardStats, OnboardingState, ReimbursementTotal
)
from expenseflow.services.approval.approval_service import to_pending_item
from expenseflow.services.organization.company_service import CompanyService

logger = logging.getLogger(__name__)

class DashboardService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_dashboard_data(self, company_id: int) -> DashboardResponse:
        """Get complete admin dashboard data for one company"""
        try:
            company = await CompanyService(self.session).get_company(company_id)

            stats = await self._get_stats(company_id, company.currency)
            flows_count = company.approval_flows
            pending_approvals = await self._get_recent_pending(company_id)

            return DashboardResponse(
                company=company,
                stats=stats,
                onboarding=OnboardingState(
                    has_team=company.members > 1,
                    has_flows=flows_count > 0,
                    has_company_profile=bool(company.currency and company.country)
                ),
                pending_approvals=pending_approvals
            )

        except Exception as e:
            logger.error(f"Error getting dashboard data: {str(e)}")
            raise

    def _pending_in_company(self, company_id: int):
        Employee = aliased(User)
        return (
            select(func.count(Approval.id))
            .select_from(Approval)
            .join(Expense, Expense.id == Approval.expense_id)
            .join(Employee, Employee.id == Expense.employee_id)
            .outerjoin(ApprovalStep, ApprovalStep.id == Approval.step_id)
            .where(
                Employee.company_id == company_id,
                Approval.status == ApprovalStatus.PENDING,
                Expense.status == ExpenseStatus.PENDING,
                Expense.is_deleted == False
            )
        )

    async def _queue_count(self, company_id: int, role: UserRole) -> int:
        Approver = aliased(User)
        count = await self.session.scalar(
            self._pending_in_company(company_id)
            .join(Approver, Approver.id == Approval.approver_id)
            .where(or_(
                Approver.role == role,
                and_(
                    ApprovalStep.approver_type == ApproverType.ROLE,
                    ApprovalStep.approver_ref == role.value
                )
            ))
        )
        return count or 0

    async def _get_stats(self, company_id: int, currency: str) -> DashboardStats:
        pending = await self.session.scalar(self._pending_in_company(company_id))

        month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        reimbursed = await self.session.scalar(
            select(func.sum(func.coalesce(Expense.amount_converted, Expense.amount)))
            .join(User, User.id == Expense.employee_id)
            .where(
                User.company_id == company_id,
                Expense.status == ExpenseStatus.APPROVED,
                Expense.is_deleted == False,
                Expense.date >= month_start
            )
        )

        active_approvers = await self.session.scalar(
            select(func.count(User.id)).where(
                User.company_id == company_id,
                User.is_active == True,
                User.is_deleted == False,
                or_(
                    User.role.in_([UserRole.MANAGER, UserRole.ADMIN]),
                    User.is_manager_approver == True
                )
            )
        )

        flow_conditions = [ApprovalFlow.company_id == company_id, ApprovalFlow.is_deleted == False]
        total_flows = await self.session.scalar(
            select(func.count(ApprovalFlow.id)).where(*flow_conditions)
        )
        flows_with_rules = await self.session.scalar(
            select(func.count(ApprovalFlow.id)).where(
                *flow_conditions,
                exists().where(ApprovalRule.flow_id == ApprovalFlow.id)
            )
        )
        coverage = round(flows_with_rules * 100 / total_flows) if total_flows else 0

        return DashboardStats(
            pending_approvals=pending or 0,
            manager_queue=await self._queue_count(company_id, UserRole.MANAGER),
            admin_queue=await self._queue_count(company_id, UserRole.ADMIN),
            reimbursements_this_month=ReimbursementTotal(
                total=Decimal(str(reimbursed or 0)),
                currency=currency
            ),
            active_approvers=active_approvers or 0,
            automation_coverage=coverage
        )

    async def _get_recent_pending(self, company_id: int, limit: int = 10) -> List[PendingApprovalItem]:
        result = await self.session.execute(
            select(Approval)
            .join(Expense, Expense.id == Approval.expense_id)
            .join(User, User.id == Expense.employee_id)
            .options(
                selectinload(Approval.expense).selectinload(Expense.employee),
                selectinload(Approval.step)
            )
            .where(
                User.company_id == company_id,
                Approval.status == ApprovalStatus.PENDING,
                Expense.status == ExpenseStatus.PENDING,
                Expense.is_deleted == False
            )
            .order_by(Expense.created_at.desc(), Approval.id.desc())
            .limit(limit)
        )

        return [to_pending_item(a) for a in result.scalars().all()]
