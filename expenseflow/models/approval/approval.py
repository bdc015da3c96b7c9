from sqlalchemy import Column, Integer, Text, ForeignKey, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from expenseflow.db.base import BaseModel
from expenseflow.models.shared.enums import ApprovalStatus

class Approval(BaseModel):
    __tablename__ = "approvals"

    expense_id = Column(Integer, ForeignKey("expenses.id"), nullable=False, index=True)
    step_id = Column(Integer, ForeignKey("approval_steps.id", ondelete="SET NULL"), nullable=True)  # Null for the manager-chain gate
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING, index=True)
    comments = Column(Text)
    decided_at = Column(DateTime(timezone=True))

    # Relationships
    expense = relationship("Expense", back_populates="approvals")
    step = relationship("ApprovalStep")
    approver = relationship("User", foreign_keys=[approver_id])

    @property
    def is_manager_gate(self) -> bool:
        return self.step_id is None
