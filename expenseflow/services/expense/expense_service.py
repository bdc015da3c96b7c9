import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import select, func, or_, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from fastapi import HTTPException, status

from expenseflow.core.exceptions import NotAuthorizedError, NotFoundError, ValidationError
from expenseflow.core.logging import log_approval_action
from expenseflow.models.approval.approval import Approval
from expenseflow.models.auth.user import User
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import ApprovalStatus, ExpenseStatus, UserRole
from expenseflow.schemas.expense.expense_schema import (
    ExpenseCreate, ExpenseResponse, ExpenseStats, ExpenseSubmissionResponse
)
from expenseflow.services.approval.approval_flow_service import ApprovalFlowService
from expenseflow.services.approval.approval_service import ApprovalService
from expenseflow.services.currency.currency_service import CurrencyConverter

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "date": Expense.date,
    "amount": Expense.amount,
    "created_at": Expense.created_at,
    "status": Expense.status,
    "category": Expense.category,
}

class ExpenseService:
    def __init__(self, session: AsyncSession, converter: Optional[CurrencyConverter] = None):
        self.session = session
        self.converter = converter or CurrencyConverter()
        self.flow_service = ApprovalFlowService(session)
        self.approval_service = ApprovalService(session)

    def _detail_query(self):
        return select(Expense).options(
            selectinload(Expense.employee),
            selectinload(Expense.current_step),
            selectinload(Expense.approvals).selectinload(Approval.approver),
            selectinload(Expense.approvals).selectinload(Approval.step)
        )

    async def _get_expense_detail(self, expense_id: int) -> Optional[Expense]:
        result = await self.session.execute(
            self._detail_query()
            .where(Expense.id == expense_id, Expense.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # region ========== Submission ==========

    async def submit_expense(self, data: ExpenseCreate, user: User) -> ExpenseSubmissionResponse:
        """
        Create a PENDING expense and its initial approvals.

        Approvals created: the manager-chain gate when the employee's manager
        is a manager-approver, plus the first step of the company's active
        flow. Later steps are resolved as the expense advances.
        """
        if data.amount is None or Decimal(data.amount) <= 0:
            raise ValidationError("Amount must be a positive number")

        try:
            result = await self.session.execute(
                select(User)
                .options(selectinload(User.manager), selectinload(User.company))
                .where(User.id == user.id, User.is_deleted == False)
                .execution_options(populate_existing=True)
            )
            employee = result.scalar_one_or_none()
            if not employee:
                raise NotFoundError("Employee not found")

            company = employee.company
            amount_converted = await self.converter.convert(data.amount, data.currency, company.currency)

            flow = await self.flow_service.get_active_flow(company.id)
            if flow is not None and not flow.steps:
                logger.warning(f"Active flow {flow.id} of company {company.id} has no steps; ignoring it")
                flow = None

            expense = Expense(
                employee_id=employee.id,
                amount=data.amount,
                currency=data.currency,
                amount_converted=amount_converted,
                category=data.category,
                description=data.description,
                date=data.date or datetime.now(timezone.utc),
                status=ExpenseStatus.PENDING,
                flow_id=flow.id if flow else None,
                created_by=employee.id,
                approvals=[]
            )
            self.session.add(expense)
            await self.session.flush()

            warnings = []
            manager = employee.manager
            if (
                manager is not None
                and manager.id != employee.id
                and manager.is_manager_approver
                and manager.is_active
                and not manager.is_deleted
                and manager.company_id == employee.company_id
            ):
                expense.approvals.append(Approval(
                    approver_id=manager.id,
                    status=ApprovalStatus.PENDING,
                    created_by=employee.id
                ))

            if flow is not None:
                first_step = flow.steps[0]
                approvals, warnings = await self.approval_service.materialize_step(
                    expense, first_step, company.id, created_by=employee.id
                )
                if approvals:
                    expense.current_step_id = first_step.id

            if flow is None and not expense.approvals:
                warnings.append("No active approval flow applies; the expense needs manual resolution")

            await self.session.commit()

            log_approval_action(employee.id, "SUBMIT", expense.id, f"flow={expense.flow_id}")
            logger.info(
                f"📄 Expense {expense.id} submitted by user {employee.id}: {data.amount} {data.currency}, "
                f"flow={expense.flow_id}, step={expense.current_step_id}"
            )

            detail = await self._get_expense_detail(expense.id)
            return ExpenseSubmissionResponse(
                expense=ExpenseResponse.model_validate(detail, from_attributes=True),
                message="Expense submitted successfully",
                warnings=warnings
            )

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error submitting expense: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error submitting expense"
            )

    # endregion

    # region ========== Queries ==========

    async def get_expense(self, expense_id: int, user: User) -> ExpenseResponse:
        """Employees see their own expenses; managers and admins see their company's"""
        expense = await self._get_expense_detail(expense_id)
        if not expense or expense.employee.company_id != user.company_id:
            raise NotFoundError("Expense not found")

        if expense.employee_id != user.id and user.role == UserRole.EMPLOYEE:
            raise NotAuthorizedError("You are not allowed to view this expense")

        return ExpenseResponse.model_validate(expense, from_attributes=True)

    def _filters(
        self,
        status_filter: Optional[ExpenseStatus] = None,
        category: Optional[str] = None,
        search: Optional[str] = None
    ):
        conditions = [Expense.is_deleted == False]
        if status_filter:
            conditions.append(Expense.status == status_filter)
        if category:
            conditions.append(Expense.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Expense.description.ilike(pattern),
                Expense.category.ilike(pattern)
            ))
        return conditions

    async def _paginate(
        self,
        conditions,
        page_index: int,
        page_size: int,
        order_by
    ) -> Dict[str, Any]:
        total_count = await self.session.scalar(
            select(func.count(Expense.id)).select_from(Expense).join(User, User.id == Expense.employee_id).where(*conditions)
        )

        skip = (page_index - 1) * page_size
        result = await self.session.execute(
            self._detail_query()
            .join(User, User.id == Expense.employee_id)
            .where(*conditions)
            .order_by(*order_by)
            .offset(skip)
            .limit(page_size)
        )
        expenses = result.scalars().all()

        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total_count or 0,
            "data": [
                ExpenseResponse.model_validate(expense, from_attributes=True)
                for expense in expenses
            ]
        }

    async def list_expenses(
        self,
        user: User,
        page_index: int = 1,
        page_size: int = 100,
        status_filter: Optional[ExpenseStatus] = None,
        category: Optional[str] = None,
        search: Optional[str] = None
    ) -> Dict[str, Any]:
        """Get the current user's own expenses, newest first"""
        conditions = self._filters(status_filter, category, search)
        conditions.append(Expense.employee_id == user.id)

        return await self._paginate(
            conditions, page_index, page_size,
            (Expense.date.desc(), Expense.id.desc())
        )

    async def list_company_expenses(
        self,
        company_id: int,
        page_index: int = 1,
        page_size: int = 100,
        status_filter: Optional[ExpenseStatus] = None,
        search: Optional[str] = None,
        sort_by: str = "date",
        sort_order: str = "desc"
    ) -> Dict[str, Any]:
        column = SORTABLE_FIELDS.get(sort_by)
        if column is None:
            raise ValidationError(f"Cannot sort by '{sort_by}'. Use one of: {', '.join(SORTABLE_FIELDS)}")

        conditions = self._filters(status_filter, None, None)
        conditions.append(User.company_id == company_id)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Expense.description.ilike(pattern),
                Expense.category.ilike(pattern),
                User.name.ilike(pattern),
                User.email.ilike(pattern)
            ))

        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        return await self._paginate(conditions, page_index, page_size, (ordering, Expense.id.desc()))

    async def get_expense_stats(self, user: User) -> ExpenseStats:
        result = await self.session.execute(
            select(
                func.count(Expense.id),
                func.sum(case((Expense.status == ExpenseStatus.PENDING, 1), else_=0)),
                func.sum(case((Expense.status == ExpenseStatus.APPROVED, 1), else_=0)),
                func.sum(case((Expense.status == ExpenseStatus.REJECTED, 1), else_=0)),
                func.sum(case((Expense.status == ExpenseStatus.APPROVED, Expense.amount), else_=0))
            ).where(Expense.employee_id == user.id, Expense.is_deleted == False)
        )
        total, pending, approved, rejected, total_amount = result.one()

        return ExpenseStats(
            total=total or 0,
            pending=pending or 0,
            approved=approved or 0,
            rejected=rejected or 0,
            total_amount=Decimal(str(total_amount or 0))
        )

    # endregion
