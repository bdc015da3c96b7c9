from pydantic import BaseModel, validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from expenseflow.models.shared.enums import ExpenseStatus
from expenseflow.schemas.common.user_info import UserInfo
from expenseflow.schemas.approval.approval_schema import ApprovalInfo, ApprovalStepInfo

class ExpenseBase(BaseModel):
    amount: Decimal
    currency: str
    category: str
    description: str
    date: Optional[datetime] = None

class ExpenseCreate(ExpenseBase):
    @validator('amount')
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError('Amount must be a positive number')
        return v

    @validator('currency')
    def validate_currency(cls, v):
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError('Currency must be a valid 3-letter code (e.g., USD)')
        return v

    @validator('category', 'description')
    def validate_required_text(cls, v):
        if not v or not v.strip():
            raise ValueError('Field is required')
        return v.strip()

class ExpenseResponse(ExpenseBase):
    id: int
    employee_id: int
    employee: Optional[UserInfo] = None
    date: datetime
    amount_converted: Optional[Decimal] = None
    status: ExpenseStatus
    flow_id: Optional[int] = None
    current_step_id: Optional[int] = None
    current_step: Optional[ApprovalStepInfo] = None
    approvals: List[ApprovalInfo] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ExpenseSubmissionResponse(BaseModel):
    expense: ExpenseResponse
    message: str
    warnings: List[str] = []

class ExpenseStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    total_amount: Decimal
