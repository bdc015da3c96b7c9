from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
from expenseflow.db.base import BaseModel

class Company(BaseModel):
    __tablename__ = "companies"

    name = Column(String(255), nullable=False)
    country = Column(String(100), nullable=False)
    currency = Column(String(3), nullable=False)  # ISO 4217 code, e.g. USD

    # Relationships
    users = relationship("User", back_populates="company")
    flows = relationship("ApprovalFlow", back_populates="company")

    def __repr__(self):
        return f"<Company {self.name}>"
