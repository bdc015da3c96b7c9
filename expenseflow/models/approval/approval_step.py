from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from expenseflow.db.base import BaseModel
from expenseflow.models.shared.enums import ApproverType

class ApprovalStep(BaseModel):
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("flow_id", "step_order", name="uq_approval_steps_flow_order"),
    )

    flow_id = Column(Integer, ForeignKey("approval_flows.id"), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)
    approver_type = Column(SQLEnum(ApproverType), nullable=False)
    approver_ref = Column(String(100), nullable=False)  # User id for USER, role name for ROLE
    can_escalate_in = Column(Integer, nullable=True)  # In settings.ESCALATION_TIME_UNIT

    # Relationships
    flow = relationship("ApprovalFlow", back_populates="steps")

    def __repr__(self):
        return f"<ApprovalStep {self.step_order} {self.approver_type.value}:{self.approver_ref}>"
