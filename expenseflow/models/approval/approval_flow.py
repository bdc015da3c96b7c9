from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from expenseflow.db.base import BaseModel
from expenseflow.models.shared.enums import SequenceType

class ApprovalFlow(BaseModel):
    __tablename__ = "approval_flows"
    __table_args__ = (
        CheckConstraint(
            "min_approval_percentage >= 1 AND min_approval_percentage <= 100",
            name="ck_approval_flows_min_approval_percentage",
        ),
    )

    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)  # Inactive flows are never picked for new expenses
    sequence_type = Column(SQLEnum(SequenceType), nullable=False, default=SequenceType.SEQUENTIAL)
    min_approval_percentage = Column(Integer, nullable=False, default=100)  # PARALLEL steps only

    # Steps and rules are immutable per version; edits create a new version
    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(Integer, ForeignKey("approval_flows.id"), nullable=True)

    # Relationships
    company = relationship("Company", back_populates="flows")
    steps = relationship(
        "ApprovalStep",
        back_populates="flow",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
    )
    rules = relationship(
        "ApprovalRule",
        back_populates="flow",
        order_by="ApprovalRule.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<ApprovalFlow {self.name} v{self.version}>"
