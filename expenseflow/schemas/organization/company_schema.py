from pydantic import BaseModel, validator
from typing import Optional
from datetime import datetime

class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None

    @validator('name', 'country')
    def validate_text(cls, v):
        if v is not None and not v.strip():
            raise ValueError('Must be a non-empty string')
        return v.strip() if v else v

    @validator('currency')
    def validate_currency(cls, v):
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError('Currency must be a valid 3-letter code (e.g., USD)')
        return v

class CompanyResponse(BaseModel):
    id: int
    name: str
    country: str
    currency: str
    created_at: Optional[datetime] = None
    members: int = 0
    approval_flows: int = 0
