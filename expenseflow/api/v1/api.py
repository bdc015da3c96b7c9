from fastapi import APIRouter
from expenseflow.api.v1.endpoints.admin import admin
from expenseflow.api.v1.endpoints.approval import approval_flows, approvals
from expenseflow.api.v1.endpoints.expense import expenses

api_router = APIRouter()

# Expense routes
api_router.include_router(expenses.router, prefix="/expenses", tags=["Expenses"])

# Approval routes
api_router.include_router(approvals.router, prefix="/approvals", tags=["Approvals"])
api_router.include_router(approval_flows.router, prefix="/approval-flows", tags=["Approval Flows"])

# Admin routes
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
