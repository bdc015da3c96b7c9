from typing import Optional
from pydantic import BaseModel, EmailStr, validator
from datetime import datetime
from expenseflow.models.shared.enums import UserRole

class ManagerInfo(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True

class UserBase(BaseModel):
    email: EmailStr
    name: str
    role: UserRole = UserRole.EMPLOYEE
    manager_id: Optional[int] = None

    @validator('name')
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Name is required')
        return v.strip()

class UserCreate(UserBase):
    # Defaults to True for MANAGER accounts when omitted
    is_manager_approver: Optional[bool] = None

class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    role: Optional[UserRole] = None
    manager_id: Optional[int] = None
    clear_manager: bool = False
    is_manager_approver: Optional[bool] = None
    is_active: Optional[bool] = None

    @validator('name')
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip() if v else v

class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    role: UserRole
    company_id: int
    manager_id: Optional[int] = None
    manager: Optional[ManagerInfo] = None
    is_manager_approver: bool
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
