from office_access.schemas.common import CamelModel, api_response, error_body, paginate
from office_access.schemas.user import UserCreate, UserStatusUpdate, UserResponse, TokenData
from office_access.schemas.passcode import (
    PasscodeGenerate,
    PasscodeBatchGenerate,
    PasscodeCreate,
    PasscodeUpdate,
)
from office_access.schemas.access import (
    ValidatePasscodeRequest,
    ValidateQRPasscodeRequest,
    ValidateTimeBasedPasscodeRequest,
    PasscodeValidationData,
    AccessRecordCreate,
    AccessRecordBatchCreate,
)

__all__ = [
    "CamelModel",
    "api_response",
    "error_body",
    "paginate",
    "UserCreate",
    "UserStatusUpdate",
    "UserResponse",
    "TokenData",
    "PasscodeGenerate",
    "PasscodeBatchGenerate",
    "PasscodeCreate",
    "PasscodeUpdate",
    "ValidatePasscodeRequest",
    "ValidateQRPasscodeRequest",
    "ValidateTimeBasedPasscodeRequest",
    "PasscodeValidationData",
    "AccessRecordCreate",
    "AccessRecordBatchCreate",
]
