from pydantic import Field
from typing import List, Optional
from datetime import datetime
from office_access.models.passcode import PasscodeType, PasscodeStatus
from office_access.schemas.common import CamelModel


class PasscodeGenerate(CamelModel):
    """Schema for issuing a passcode to a user"""
    user_id: int = Field(..., gt=0, description="Owner of the new passcode")
    type: PasscodeType = Field(..., description="employee or visitor")
    duration: Optional[int] = Field(None, gt=0, le=60 * 24 * 30, description="Validity in minutes")
    usage_limit: Optional[int] = Field(None, gt=0, description="Maximum number of successful validations")
    permissions: List[str] = Field(default_factory=list, description="Extra permission codes")
    application_id: Optional[int] = Field(None, gt=0, description="Approved visitor application")


class PasscodeBatchGenerate(CamelModel):
    user_ids: List[int] = Field(..., min_length=1, max_length=500)
    type: PasscodeType
    duration: Optional[int] = Field(None, gt=0, le=60 * 24 * 30)
    usage_limit: Optional[int] = Field(None, gt=0)
    permissions: List[str] = Field(default_factory=list)


class PasscodeCreate(CamelModel):
    """Raw passcode row, checked by the store's own rules"""
    user_id: int
    code: str
    type: str
    status: Optional[str] = None
    expiry_time: Optional[str] = Field(None, description="ISO-8601 timestamp")
    usage_limit: Optional[int] = None
    usage_count: Optional[int] = None
    permissions: List[str] = Field(default_factory=list)
    application_id: Optional[int] = None


class PasscodeUpdate(CamelModel):
    """Schema for a partial passcode update"""
    status: Optional[PasscodeStatus] = None
    expiry_time: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_count: Optional[int] = None
    permissions: Optional[List[str]] = None

