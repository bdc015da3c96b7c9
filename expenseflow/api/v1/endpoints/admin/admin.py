import logging
from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from expenseflow.api.dependencies import require_roles
from expenseflow.core.database import get_async_session
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import ExpenseStatus, UserRole
from expenseflow.schemas.auth.user_schema import UserCreate, UserResponse, UserUpdate
from expenseflow.schemas.common.pagination import PaginatedResponse
from expenseflow.schemas.dashboard.dashboard_schema import DashboardResponse
from expenseflow.schemas.expense.expense_schema import ExpenseResponse
from expenseflow.schemas.organization.company_schema import CompanyResponse, CompanyUpdate
from expenseflow.services.auth.user_service import UserService
from expenseflow.services.dashboard.dashboard_service import DashboardService
from expenseflow.services.expense.expense_service import ExpenseService
from expenseflow.services.organization.company_service import CompanyService

router = APIRouter()
logger = logging.getLogger(__name__)

admin_only = require_roles(UserRole.ADMIN)

# region ========== Dashboard & Company ==========

@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = DashboardService(session)
    return await service.get_dashboard_data(current_user.company_id)

@router.get("/company", response_model=CompanyResponse)
async def get_company(
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = CompanyService(session)
    return await service.get_company(current_user.company_id)

@router.put("/company", response_model=CompanyResponse)
async def update_company(
    company_update: CompanyUpdate,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = CompanyService(session)
    return await service.update_company(current_user.company_id, company_update, current_user.id)

# endregion

# region ========== Users ==========

@router.get("/users", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    role: Optional[UserRole] = Query(None),
    search: Optional[str] = Query(None, description="Search name or email"),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = UserService(session)
    return await service.list_users(
        current_user.company_id,
        page_index=page_index,
        page_size=page_size,
        role=role,
        search=search
    )

@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user: UserCreate,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = UserService(session)
    return await service.create_user(current_user.company_id, user, created_by=current_user.id)

@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int = Path(...),
    user_update: UserUpdate = ...,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = UserService(session)
    return await service.update_user(current_user.company_id, user_id, user_update, updated_by=current_user.id)

@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = UserService(session)
    await service.delete_user(current_user.company_id, user_id, deleted_by=current_user.id)
    return {"message": "User deleted successfully"}

# endregion

# region ========== Expenses ==========

@router.get("/expenses", response_model=PaginatedResponse[ExpenseResponse])
async def list_company_expenses(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    status_filter: Optional[ExpenseStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Search employee, description or category"),
    sort_by: str = Query("date"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = ExpenseService(session)
    return await service.list_company_expenses(
        current_user.company_id,
        page_index=page_index,
        page_size=page_size,
        status_filter=status_filter,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order
    )

# endregion
