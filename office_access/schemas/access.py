from pydantic import Field
from typing import List, Optional
from datetime import datetime
from office_access.models.access_record import AccessDirection, AccessResult
from office_access.schemas.common import CamelModel


class DeviceContext(CamelModel):
    """Where a pass attempt happened; sent by every access device"""
    device_id: Optional[str] = Field(None, max_length=100, description="Identifier of the reading device")
    direction: AccessDirection = Field(default=AccessDirection.IN, description="Entry (in) or exit (out)")
    device_type: Optional[str] = Field(None, max_length=50, description="Kind of device, e.g. turnstile")
    project_id: Optional[int] = Field(None, gt=0)
    venue_id: Optional[int] = Field(None, gt=0)
    floor_id: Optional[int] = Field(None, gt=0)


class ValidatePasscodeRequest(DeviceContext):
    """Plain passcode read by a device. code and deviceId are checked by the endpoint."""
    code: Optional[str] = Field(None, max_length=128, description="Passcode string")


class ValidateQRPasscodeRequest(DeviceContext):
    qr_content: Optional[str] = Field(None, description="Encrypted QR payload")


class ValidateTimeBasedPasscodeRequest(DeviceContext):
    time_based_code: Optional[str] = Field(None, max_length=64, description="Code for the current time window")
    base_code: Optional[str] = Field(None, max_length=128, description="Passcode the time code is derived from")


class PasscodeValidationData(CamelModel):
    """Body of a validation response"""
    valid: bool
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_type: Optional[str] = None
    permissions: Optional[List[str]] = None
    reason: Optional[str] = None
    timestamp: str


class AccessRecordCreate(CamelModel):
    """One record of a batch import, e.g. from an offline device"""
    user_id: int = Field(..., description="User who passed; must exist upstream")
    passcode_id: Optional[int] = None
    device_id: str = Field(..., max_length=100)
    device_type: Optional[str] = Field(None, max_length=50)
    direction: AccessDirection
    result: AccessResult
    fail_reason: Optional[str] = Field(None, max_length=255)
    project_id: Optional[int] = None
    venue_id: Optional[int] = None
    floor_id: Optional[int] = None
    timestamp: Optional[datetime] = None


class AccessRecordBatchCreate(CamelModel):
    records: List[AccessRecordCreate] = Field(..., min_length=1, max_length=1000)
