from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional
from datetime import datetime
from office_access.core.clock import ensure_utc
from office_access.models.user import UserType, UserStatus
from office_access.schemas.common import CamelModel


class UserCreate(CamelModel):
    """Schema for registering an employee, visitor or admin"""
    name: str = Field(..., min_length=1, max_length=255, description="Full name of the user")
    username: Optional[str] = Field(None, min_length=3, max_length=50, description="Unique login name, admins only")
    phone: Optional[str] = Field(None, max_length=20, description="Phone number of the user")
    user_type: UserType = Field(..., description="Role of the user")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="Initial account status")
    merchant_id: Optional[int] = Field(None, gt=0, description="Merchant the user belongs to")


class UserStatusUpdate(BaseModel):
    """Schema for updating only the user status"""
    status: UserStatus = Field(..., description="New status for the user")


class UserResponse(CamelModel):
    """Schema for user response"""
    id: int
    name: str
    username: Optional[str] = None
    phone: Optional[str] = None
    user_type: UserType
    status: UserStatus
    merchant_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


class TokenData(BaseModel):
    """Schema for token payload data"""
    user_id: int
    user_type: Optional[str] = None
