from expenseflow.models.organization.company import Company
from expenseflow.models.auth.user import User
from expenseflow.models.approval.approval_flow import ApprovalFlow
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.approval.approval_rule import ApprovalRule
from expenseflow.models.expense.expense import Expense
from expenseflow.models.approval.approval import Approval


__all__ = [
    "Company",
    "User",
    "ApprovalFlow",
    "ApprovalStep",
    "ApprovalRule",
    "Expense",
    "Approval",
]
