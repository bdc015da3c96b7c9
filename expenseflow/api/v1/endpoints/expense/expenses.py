import logging
from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from expenseflow.api.dependencies import get_current_user
from expenseflow.core.database import get_async_session
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import ExpenseStatus
from expenseflow.schemas.approval.approval_schema import ApprovalInfo
from expenseflow.schemas.common.pagination import PaginatedResponse
from expenseflow.schemas.expense.expense_schema import (
    ExpenseCreate, ExpenseResponse, ExpenseStats, ExpenseSubmissionResponse
)
from expenseflow.services.approval.approval_service import ApprovalService
from expenseflow.services.expense.expense_service import ExpenseService

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/", response_model=ExpenseSubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_expense(
    expense: ExpenseCreate,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Submit an expense and route it into the company's approval flow"""
    service = ExpenseService(session)
    return await service.submit_expense(expense, current_user)

@router.get("/", response_model=PaginatedResponse[ExpenseResponse])
async def list_my_expenses(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    status_filter: Optional[ExpenseStatus] = Query(None, alias="status"),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Search description or category"),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get the current user's expenses"""
    service = ExpenseService(session)
    return await service.list_expenses(
        current_user,
        page_index=page_index,
        page_size=page_size,
        status_filter=status_filter,
        category=category,
        search=search
    )

@router.get("/stats", response_model=ExpenseStats)
async def get_my_expense_stats(
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    service = ExpenseService(session)
    return await service.get_expense_stats(current_user)

@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    service = ExpenseService(session)
    return await service.get_expense(expense_id, current_user)

@router.get("/{expense_id}/approvals", response_model=List[ApprovalInfo])
async def get_expense_approvals(
    expense_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Approval history of an expense"""
    service = ApprovalService(session)
    return await service.get_expense_approvals(expense_id, current_user)
