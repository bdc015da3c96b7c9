from pydantic import BaseModel
from expenseflow.models.shared.enums import UserRole

class UserInfo(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole

    class Config:
        from_attributes = True
