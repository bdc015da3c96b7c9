from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from expenseflow.db.base import BaseModel
from expenseflow.models.shared.enums import ExpenseStatus

class Expense(BaseModel):
    __tablename__ = "expenses"

    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    amount_converted = Column(Numeric(14, 2), nullable=True)  # In company currency, reporting only
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    status = Column(SQLEnum(ExpenseStatus), nullable=False, default=ExpenseStatus.PENDING, index=True)

    # Flow version applied at submission; null when no flow applied
    flow_id = Column(Integer, ForeignKey("approval_flows.id"), nullable=True)
    # Step awaiting action; null once terminal or when no step is staffed
    current_step_id = Column(Integer, ForeignKey("approval_steps.id", ondelete="SET NULL"), nullable=True)

    # Bumped on every UPDATE; a stale writer fails instead of double-advancing
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    employee = relationship("User", foreign_keys=[employee_id])
    flow = relationship("ApprovalFlow", foreign_keys=[flow_id])
    current_step = relationship("ApprovalStep", foreign_keys=[current_step_id])
    approvals = relationship(
        "Approval",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="Approval.id",
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    @property
    def is_terminal(self) -> bool:
        return self.status != ExpenseStatus.PENDING

    def __repr__(self):
        return f"<Expense {self.id} {self.status}>"
