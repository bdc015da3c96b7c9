import logging
from typing import Any, Optional

audit_logger = logging.getLogger("audit")

def log_approval_action(user_id: int, action: str, expense_id: Any, detail: Optional[str] = None):
    """Log approval decisions for audit trail"""
    audit_logger.info(
        f"User {user_id} performed {action} on expense {expense_id}"
        + (f" - {detail}" if detail else "")
    )
