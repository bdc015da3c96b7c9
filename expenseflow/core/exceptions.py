from typing import Any, Optional
from fastapi import HTTPException, status

class BaseAppException(HTTPException):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(status_code=status_code, detail=detail)

class ValidationError(BaseAppException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

class NotFoundError(BaseAppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class ConflictError(BaseAppException):
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class InvalidStateError(BaseAppException):
    """Operation on a non-pending expense, a replayed decision or a lost race"""
    def __init__(self, detail: str = "Expense is not pending approval"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class NotAuthorizedError(BaseAppException):
    """Same answer for 'not your approval' and 'wrong step'"""
    def __init__(self, detail: str = "You are not authorized to act on this step"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ResolverError(BaseAppException):
    """A USER-type step points at a user that does not exist in the company"""
    def __init__(self, detail: str = "Approval step references an unknown user"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

class NoNextStepError(BaseAppException):
    """Escalation found no later step; a fallback approval may still have been committed"""
    def __init__(
        self,
        detail: str = "No next step available for escalation",
        fallback_approval_id: Optional[int] = None,
        fallback_approver_id: Optional[int] = None,
    ):
        self.fallback_approval_id = fallback_approval_id
        self.fallback_approver_id = fallback_approver_id
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": detail,
                "fallback_approval_id": fallback_approval_id,
                "fallback_approver_id": fallback_approver_id,
            },
        )
