from enum import Enum

# region User Enums

class UserRole(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

# endregion

# region Expense Enums

class ExpenseStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

# endregion

# region Approval System Enums

class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class ApproverType(str, Enum):
    USER = "USER"      # approver_ref holds a user id
    ROLE = "ROLE"      # approver_ref holds a UserRole name

class RuleType(str, Enum):
    PERCENTAGE = "PERCENTAGE"                # params.threshold is an amount cutoff
    SPECIFIC_APPROVER = "SPECIFIC_APPROVER"  # params.approver_id / params.skip_remaining
    HYBRID = "HYBRID"                        # reserved, never fires

class SequenceType(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"

class RuleOutcome(str, Enum):
    NONE = "NONE"
    AUTO_APPROVE = "AUTO_APPROVE"

# endregion
