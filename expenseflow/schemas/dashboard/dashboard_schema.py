from pydantic import BaseModel
from typing import List
from decimal import Decimal
from expenseflow.schemas.organization.company_schema import CompanyResponse
from expenseflow.schemas.approval.approval_schema import PendingApprovalItem

class ReimbursementTotal(BaseModel):
    total: Decimal
    currency: str

class DashboardStats(BaseModel):
    pending_approvals: int
    manager_queue: int
    admin_queue: int
    reimbursements_this_month: ReimbursementTotal
    active_approvers: int
    automation_coverage: int  # % of flows carrying at least one rule

class OnboardingState(BaseModel):
    has_team: bool
    has_flows: bool
    has_company_profile: bool

class DashboardResponse(BaseModel):
    company: CompanyResponse
    stats: DashboardStats
    onboarding: OnboardingState
    pending_approvals: List[PendingApprovalItem]
