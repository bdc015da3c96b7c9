from pydantic import BaseModel
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from expenseflow.models.shared.enums import ApprovalStatus, ApproverType, ExpenseStatus
from expenseflow.schemas.common.user_info import UserInfo

class ApprovalActionRequest(BaseModel):
    comments: Optional[str] = None
    step_id: Optional[int] = None  # When given, must equal the expense's current step

class EscalationRequest(BaseModel):
    step_id: Optional[int] = None  # Defaults to the expense's current step

class ApprovalStepInfo(BaseModel):
    id: int
    step_order: int
    approver_type: ApproverType
    approver_ref: str

    class Config:
        from_attributes = True

class ApprovalInfo(BaseModel):
    id: int
    expense_id: int
    step_id: Optional[int] = None
    step: Optional[ApprovalStepInfo] = None
    approver_id: int
    approver: Optional[UserInfo] = None
    status: ApprovalStatus
    comments: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DecisionResult(BaseModel):
    """Outcome of approve/reject/escalate on one expense"""
    expense_id: int
    status: ExpenseStatus
    current_step_id: Optional[int] = None
    message: str
    warnings: List[str] = []

class PendingApprovalItem(BaseModel):
    approval_id: int
    expense_id: int
    employee: UserInfo
    amount: Decimal
    currency: str
    amount_converted: Optional[Decimal] = None
    category: str
    description: str
    date: datetime
    step_order: Optional[int] = None
    approver_type: Optional[ApproverType] = None
    approver_ref: Optional[str] = None
    created_at: Optional[datetime] = None

class EscalationCandidate(BaseModel):
    approval_id: int
    expense_id: int
    step_id: int
    step_order: int
    approver_id: int
    pending_since: datetime
    escalation_due_at: datetime
