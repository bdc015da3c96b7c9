from sqlalchemy import Column, Integer, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from expenseflow.db.base import BaseModel
from expenseflow.models.shared.enums import RuleType

class ApprovalRule(BaseModel):
    __tablename__ = "approval_rules"

    flow_id = Column(Integer, ForeignKey("approval_flows.id"), nullable=False, index=True)
    rule_type = Column(SQLEnum(RuleType), nullable=False)
    params = Column(JSON, nullable=False, default=dict)

    # Relationships
    flow = relationship("ApprovalFlow", back_populates="rules")
