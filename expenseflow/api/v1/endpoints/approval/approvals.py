import logging
from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from expenseflow.api.dependencies import get_current_user, require_roles
from expenseflow.core.database import get_async_session
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import UserRole
from expenseflow.schemas.approval.approval_schema import (
    ApprovalActionRequest, DecisionResult, EscalationCandidate,
    EscalationRequest, PendingApprovalItem
)
from expenseflow.schemas.common.pagination import PaginatedResponse
from expenseflow.services.approval.approval_service import ApprovalService

router = APIRouter()
logger = logging.getLogger(__name__)

# region ========== Queues ==========

@router.get("/pending", response_model=PaginatedResponse[PendingApprovalItem])
async def get_pending_approvals(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(require_roles(UserRole.MANAGER, UserRole.ADMIN))
):
    """Approvals waiting on the current user, directly or through their role"""
    service = ApprovalService(session)
    return await service.get_pending_approvals_for_approver(
        current_user,
        page_index=page_index,
        page_size=page_size
    )

@router.get("/escalation-candidates", response_model=List[EscalationCandidate])
async def get_escalation_candidates(
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN))
):
    """Pending approvals whose step escalation window has elapsed"""
    service = ApprovalService(session)
    return await service.get_escalation_candidates(current_user.company_id)

# endregion

# region ========== Decisions ==========

@router.post("/{expense_id}/approve", response_model=DecisionResult)
async def approve_expense(
    expense_id: int = Path(...),
    action: Optional[ApprovalActionRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    action = action or ApprovalActionRequest()
    service = ApprovalService(session)
    return await service.approve_expense(
        expense_id,
        current_user,
        comments=action.comments,
        expected_step_id=action.step_id
    )

@router.post("/{expense_id}/reject", response_model=DecisionResult)
async def reject_expense(
    expense_id: int = Path(...),
    action: Optional[ApprovalActionRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    action = action or ApprovalActionRequest()
    service = ApprovalService(session)
    return await service.reject_expense(
        expense_id,
        current_user,
        comments=action.comments,
        expected_step_id=action.step_id
    )

@router.post("/{expense_id}/escalate", response_model=DecisionResult)
async def escalate_expense(
    expense_id: int = Path(...),
    escalation: Optional[EscalationRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN))
):
    """Force an expense past its current (or the given) step"""
    escalation = escalation or EscalationRequest()
    service = ApprovalService(session)
    return await service.escalate_expense(expense_id, current_user, step_id=escalation.step_id)

# endregion
