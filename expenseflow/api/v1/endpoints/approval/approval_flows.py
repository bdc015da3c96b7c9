import logging
from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from expenseflow.api.dependencies import require_roles
from expenseflow.core.database import get_async_session
from expenseflow.core.exceptions import NotFoundError
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import UserRole
from expenseflow.schemas.approval.approval_flow_schema import (
    ApprovalFlowCreate, ApprovalFlowResponse, ApprovalFlowUpdate
)
from expenseflow.schemas.common.pagination import PaginatedResponse
from expenseflow.services.approval.approval_flow_service import ApprovalFlowService

router = APIRouter()
logger = logging.getLogger(__name__)

admin_only = require_roles(UserRole.ADMIN)

@router.get("/", response_model=PaginatedResponse[ApprovalFlowResponse])
async def list_approval_flows(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    is_active: Optional[bool] = Query(None),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    """Get the company's flows, newest first"""
    service = ApprovalFlowService(session)
    return await service.list_flows(
        current_user.company_id,
        page_index=page_index,
        page_size=page_size,
        is_active=is_active
    )

@router.get("/active", response_model=ApprovalFlowResponse)
async def get_active_approval_flow(
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    """The flow new expenses are routed through"""
    service = ApprovalFlowService(session)
    flow = await service.get_active_flow_response(current_user.company_id)
    if not flow:
        raise NotFoundError("No active approval flow")
    return flow

@router.get("/{flow_id}", response_model=ApprovalFlowResponse)
async def get_approval_flow(
    flow_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = ApprovalFlowService(session)
    return await service.get_flow(current_user.company_id, flow_id)

@router.post("/", response_model=ApprovalFlowResponse, status_code=status.HTTP_201_CREATED)
async def create_approval_flow(
    flow: ApprovalFlowCreate,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = ApprovalFlowService(session)
    return await service.create_flow(current_user.company_id, flow, current_user.id)

@router.put("/{flow_id}", response_model=ApprovalFlowResponse)
async def update_approval_flow(
    flow_id: int = Path(...),
    flow_update: ApprovalFlowUpdate = ...,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    """Update a flow; step, rule or sequencing changes create a new version"""
    service = ApprovalFlowService(session)
    return await service.update_flow(current_user.company_id, flow_id, flow_update, current_user.id)

@router.patch("/{flow_id}/toggle", response_model=ApprovalFlowResponse)
async def toggle_approval_flow(
    flow_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    service = ApprovalFlowService(session)
    return await service.toggle_flow(current_user.company_id, flow_id, current_user.id)

@router.delete("/{flow_id}", response_model=ApprovalFlowResponse)
async def deactivate_approval_flow(
    flow_id: int = Path(...),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(admin_only)
):
    """Deactivate a flow; expenses already routed by it keep their links"""
    service = ApprovalFlowService(session)
    return await service.deactivate_flow(current_user.company_id, flow_id, current_user.id)
